"""devtree - isolated git worktrees, each with its own dev server and verification hooks."""

__version__ = "0.1.0"
