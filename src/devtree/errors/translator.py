"""Translate technical errors to user-friendly messages."""

import re
from dataclasses import dataclass
from typing import List, Optional, Union


@dataclass
class UserFriendlyError:
    """User-friendly error representation."""
    original_error: str
    title: str
    explanation: str
    actions: List[str]
    show_technical: bool = False


class ErrorTranslator:
    """Translate technical errors to user-friendly messages."""

    ERROR_PATTERNS = {
        r"CAPACITY_EXCEEDED|Maximum number of running worktrees": {
            "title": "Too many running worktrees",
            "explanation": "Every port offset is in use. Each running dev server holds one offset until it stops.",
            "actions": [
                "Stop a worktree you are not using",
                "Raise max_instances in .devtree/config.yaml",
            ],
        },

        r"address already in use|EADDRINUSE": {
            "title": "Port already in use",
            "explanation": "The dev server tried to bind a port that another process holds. "
                           "This usually means the main checkout is running on the same base ports.",
            "actions": [
                "Stop the process listening on that port",
                "Increase ports.offset_step so worktree ports move further from the base ports",
            ],
        },

        r"already checked out|is already used by worktree": {
            "title": "Branch already checked out",
            "explanation": "Git allows a branch to be checked out in only one worktree at a time.",
            "actions": [
                "Use a different branch name",
                "Remove the worktree that currently holds the branch",
            ],
        },

        r"no commits yet|Repository has no commits": {
            "title": "Repository has no commits",
            "explanation": "Worktrees are created from an existing commit, and this repository has none.",
            "actions": [
                "Create an initial commit: git add . && git commit -m 'Initial commit'",
            ],
        },

        r"not a git repository": {
            "title": "Not a git repository",
            "explanation": "devtree must run inside a git repository.",
            "actions": [
                "Run devtree from the repository root",
                "Pass --config-dir pointing at the repository's .devtree directory",
            ],
        },

        r"command not found|No such file or directory": {
            "title": "Command not found",
            "explanation": "A configured command (start, install or hook step) is not available on PATH.",
            "actions": [
                "Check start_command and install_command in .devtree/config.yaml",
                "Install the missing tool or fix the hook step command",
            ],
        },

        r"WORKTREE_EXISTS|already exists": {
            "title": "Worktree already exists",
            "explanation": "A worktree with this id is already on disk or registered with git.",
            "actions": [
                "Pick a different name",
                "Remove the existing worktree first: devtree remove <id>",
            ],
        },

        r"Invalid branch name|Invalid worktree id": {
            "title": "Invalid name",
            "explanation": "Branch names must start with a letter or digit, use only letters, digits, "
                           "'/', '_', '.', '-' and must not contain '..'. Worktree ids use letters, digits and '-'.",
            "actions": [
                "Rename the branch or pass an explicit --name",
            ],
        },
    }

    def translate(self, error: Union[Exception, str]) -> UserFriendlyError:
        """Convert an exception or raw error message to user-friendly format."""
        if isinstance(error, Exception):
            full_error = f"{type(error).__name__}: {error}"
            code = getattr(error, "code", None)
            if code:
                full_error = f"{code} {full_error}"
        else:
            full_error = str(error)

        for pattern, translation in self.ERROR_PATTERNS.items():
            if re.search(pattern, full_error, re.IGNORECASE):
                return UserFriendlyError(
                    original_error=str(error),
                    title=translation["title"],
                    explanation=translation["explanation"],
                    actions=translation["actions"],
                )

        return UserFriendlyError(
            original_error=str(error),
            title="Unexpected error",
            explanation=str(error),
            actions=[
                "Check .devtree/logs/devtree.log for details",
            ],
            show_technical=True,
        )

    def format_for_cli(self, friendly_error: UserFriendlyError) -> str:
        """Format error for CLI display (rich markup)."""
        output = f"[bold red]{friendly_error.title}[/]\n\n"
        output += f"{friendly_error.explanation}\n\n"

        output += "[bold]How to fix:[/]\n"
        for i, action in enumerate(friendly_error.actions, 1):
            output += f"  {i}. {action}\n"

        if friendly_error.show_technical:
            output += f"\n[dim]Technical details:[/]\n[dim]{friendly_error.original_error}[/]"

        return output


def translate_message(message: Optional[str]) -> UserFriendlyError:
    """Convenience wrapper for structured results that only carry an error string."""
    return ErrorTranslator().translate(message or "Unknown error")
