"""Shared utility functions for devtree."""

from .atomic_io import atomic_write_json, atomic_write_model, read_model
from .error_handling import ErrorContext, log_and_ignore
from .process_utils import kill_process_tree
from .rich_logging import DevtreeLogFormatter, LogEcho, setup_logging
from .subprocess_utils import (
    CommandResult,
    run_command,
    run_git_command,
    run_shell_command,
)
from .validators import derive_worktree_id, validate_branch_name, validate_worktree_id

__all__ = [
    # Atomic I/O
    "atomic_write_json",
    "atomic_write_model",
    "read_model",
    # Error handling
    "ErrorContext",
    "log_and_ignore",
    # Processes
    "kill_process_tree",
    # Logging
    "DevtreeLogFormatter",
    "LogEcho",
    "setup_logging",
    # Subprocess utilities
    "CommandResult",
    "run_command",
    "run_git_command",
    "run_shell_command",
    # Validation
    "derive_worktree_id",
    "validate_branch_name",
    "validate_worktree_id",
]
