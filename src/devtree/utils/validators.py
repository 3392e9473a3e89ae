"""Validation utilities for branch names and worktree identifiers."""

import re
from typing import Optional

from ..errors import InvalidInputError

BRANCH_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9/_.-]*$')
WORKTREE_ID_PATTERN = re.compile(r'^[A-Za-z0-9-]+$')
BRANCH_PREFIXES = re.compile(r'^(feature|fix|chore)/')


def validate_branch_name(branch_name: str) -> str:
    """
    Validate a git branch name before it reaches any git command.

    Args:
        branch_name: Branch name to validate

    Returns:
        Validated branch name

    Raises:
        InvalidInputError: If branch name is invalid
    """
    if not branch_name:
        raise InvalidInputError("Branch name cannot be empty")

    if not BRANCH_NAME_PATTERN.match(branch_name):
        raise InvalidInputError(
            f"Invalid branch name: {branch_name}. "
            f"Must start with a letter or digit and contain only letters, digits, '/', '_', '.', '-'"
        )

    if '..' in branch_name:
        raise InvalidInputError(f"Invalid branch name: {branch_name}. Must not contain '..'")

    if len(branch_name) > 255:
        raise InvalidInputError("Branch name too long")

    return branch_name


def validate_worktree_id(worktree_id: str) -> str:
    """
    Validate a worktree id, which doubles as a directory name.

    Raises:
        InvalidInputError: If the id contains anything but letters, digits and '-'
    """
    if not worktree_id:
        raise InvalidInputError("Worktree id cannot be empty")

    if not WORKTREE_ID_PATTERN.match(worktree_id):
        raise InvalidInputError(
            f"Invalid worktree id: {worktree_id}. Only letters, digits and '-' are allowed"
        )

    if len(worktree_id) > 128:
        raise InvalidInputError("Worktree id too long")

    return worktree_id


def derive_worktree_id(branch: str, name: Optional[str] = None) -> str:
    """Worktree id for a branch: explicit name, else branch minus its feature/fix/chore prefix."""
    if name:
        return name
    return re.sub(r'[^A-Za-z0-9-]', '-', BRANCH_PREFIXES.sub('', branch))
