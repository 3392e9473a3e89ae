"""Error taxonomy for worktree and pipeline operations.

Every expected failure is a DevtreeError subclass carrying a stable ``code``.
Public manager operations convert these into structured results instead of
letting them escape, so the UI and agent layers can render them directly.
"""

from typing import List, Optional


class DevtreeError(Exception):
    """Base class for all expected devtree failures."""

    code = "ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class InvalidInputError(DevtreeError):
    """Rejected input (bad branch name, bad worktree id). Raised before any side effect."""

    code = "INVALID_INPUT"


class NotFoundError(DevtreeError):
    """Operation on a worktree, step or file that does not exist."""

    code = "NOT_FOUND"


class AlreadyExistsError(DevtreeError):
    """Target worktree directory (or git registration) already exists."""

    code = "WORKTREE_EXISTS"

    def __init__(self, message: str, worktree_id: Optional[str] = None):
        super().__init__(message)
        self.worktree_id = worktree_id


class ConflictError(DevtreeError):
    """Operation collides with one already in flight or with current state."""

    code = "CONFLICT"


class CapacityExceededError(DevtreeError):
    """All port offsets are held; caller must surface this rather than retry."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, max_instances: int):
        super().__init__(
            f"Maximum number of running worktrees reached ({max_instances}). "
            f"Stop a running worktree first."
        )
        self.max_instances = max_instances


class SpawnFailedError(DevtreeError):
    """The dev server process could not be started."""

    code = "SPAWN_FAILED"


class CommandFailedError(DevtreeError):
    """An external command exited non-zero or timed out."""

    code = "COMMAND_FAILED"

    def __init__(
        self,
        cmd: str,
        returncode: Optional[int],
        output: str = "",
        timed_out: bool = False,
    ):
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        self.timed_out = timed_out
        if timed_out:
            message = f"Command timed out: {cmd}"
        else:
            message = f"Command failed with exit code {returncode}: {cmd}"
        if output.strip():
            message += f"\n{output.strip()}"
        super().__init__(message)


class GitOperationFailedError(DevtreeError):
    """Every fallback strategy for a git operation failed."""

    code = "GIT_OPERATION_FAILED"

    def __init__(self, message: str, attempts: Optional[List[str]] = None):
        super().__init__(message)
        self.attempts = attempts or []
