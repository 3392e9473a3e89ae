"""Standardized error handling utilities."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


def log_and_ignore(
    error: Exception,
    message: str,
    *,
    logger_instance: Optional[logging.Logger] = None,
    level: int = logging.WARNING,
) -> None:
    """
    Log an error and ignore it (don't re-raise).

    Use for best-effort steps (fetch, prune, kill of an already-exited
    process) whose failure must not interrupt the operation.

    Args:
        error: Exception to log
        message: Context message to log
        logger_instance: Logger to use (defaults to module logger)
        level: Log level (default: WARNING)
    """
    log = logger_instance or logger
    log.log(level, f"{message}: {error}")


class ErrorContext:
    """
    Context manager for best-effort blocks with consistent logging.

    Usage:
        with ErrorContext("pruning worktrees", raise_on_error=False):
            await run_git_command(["worktree", "prune"], cwd=root)
    """

    def __init__(
        self,
        operation: str,
        *,
        raise_on_error: bool = True,
        logger_instance: Optional[logging.Logger] = None,
        log_level: int = logging.ERROR,
    ):
        self.operation = operation
        self.raise_on_error = raise_on_error
        self.logger = logger_instance or logger
        self.log_level = log_level
        self.error: Optional[Exception] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            return False
        if not issubclass(exc_type, Exception):
            # Never swallow cancellation or KeyboardInterrupt
            return False
        self.error = exc_val
        self.logger.log(self.log_level, f"Error during {self.operation}: {exc_val}")
        return not self.raise_on_error
