"""Logging setup with worktree context and colored dev-server echo."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.text import Text

LOGGER_NAME = "devtree"

# Cycled per worktree for the dev-server echo prefix
PREFIX_COLORS = ["cyan", "magenta", "yellow", "green", "blue", "bright_red", "bright_cyan"]


class DevtreeLogFormatter(logging.Formatter):
    """Formatter that renders an optional worktree_id attribute as a prefix."""

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        worktree_context = ""
        if hasattr(record, "worktree_id"):
            worktree_context = f"[{record.worktree_id}] "

        if self.use_colors:
            level_colors = {
                "DEBUG": "\033[36m",      # Cyan
                "INFO": "\033[32m",       # Green
                "WARNING": "\033[33m",    # Yellow
                "ERROR": "\033[31m",      # Red
                "CRITICAL": "\033[35m",   # Magenta
            }
            reset = "\033[0m"
            level_color = level_colors.get(record.levelname, "")
        else:
            level_color = ""
            reset = ""

        message = record.getMessage()
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"{worktree_context}{message}"
        )


def setup_logging(
    config_dir: Optional[Path] = None,
    log_level: str = "INFO",
    use_file: bool = True,
) -> logging.Logger:
    """
    Configure the devtree logger.

    Args:
        config_dir: The .devtree directory; the log file goes to config_dir/logs
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_file: Also write to config_dir/logs/devtree.log

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    use_colors = sys.stderr.isatty() if hasattr(sys.stderr, "isatty") else False
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(DevtreeLogFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if use_file and config_dir is not None:
        log_dir = config_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "devtree.log")
        file_handler.setFormatter(DevtreeLogFormatter(use_colors=False))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


class LogEcho:
    """Echo dev-server output to the orchestrator terminal with a colored [id] prefix."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True, highlight=False)
        self._colors = {}

    def color_for(self, worktree_id: str) -> str:
        if worktree_id not in self._colors:
            self._colors[worktree_id] = PREFIX_COLORS[len(self._colors) % len(PREFIX_COLORS)]
        return self._colors[worktree_id]

    def echo(self, worktree_id: str, line: str, is_error: bool = False) -> None:
        text = Text(f"[{worktree_id}] ", style=self.color_for(worktree_id))
        text.append(line, style="red" if is_error else None)
        self.console.print(text, soft_wrap=True)
