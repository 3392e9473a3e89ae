"""Git worktree inspector.

Discovers worktrees by scanning the worktrees root and resolves each one's
branch by reading git metadata directly. Nothing here shells out or keeps
state, so every call reflects what is on disk right now.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

from .models import ScannedWorktree

logger = logging.getLogger(__name__)

GITDIR_PATTERN = re.compile(r"^gitdir:\s*(.+)$", re.MULTILINE)
HEAD_REF_PATTERN = re.compile(r"^ref:\s*refs/heads/(.+)$")

UNKNOWN_BRANCH = "unknown"


def resolve_git_dir(worktree_path: Path) -> Optional[Path]:
    """Follow a worktree's .git pointer to the real git directory.

    Linked worktrees have a .git *file* containing ``gitdir: <path>``; a
    plain clone has a .git directory.
    """
    dot_git = worktree_path / ".git"
    if dot_git.is_dir():
        return dot_git
    if not dot_git.is_file():
        return None

    try:
        content = dot_git.read_text()
    except OSError as e:
        logger.debug(f"Cannot read {dot_git}: {e}")
        return None

    match = GITDIR_PATTERN.search(content)
    if not match:
        return None

    git_dir = Path(match.group(1).strip())
    if not git_dir.is_absolute():
        git_dir = (worktree_path / git_dir).resolve()
    return git_dir


def get_worktree_branch(worktree_path: Path) -> str:
    """Branch checked out in a worktree, or the short hash if HEAD is detached."""
    git_dir = resolve_git_dir(worktree_path)
    if git_dir is None:
        return UNKNOWN_BRANCH

    try:
        head = (git_dir / "HEAD").read_text().strip()
    except OSError as e:
        logger.debug(f"Cannot read HEAD for {worktree_path}: {e}")
        return UNKNOWN_BRANCH

    match = HEAD_REF_PATTERN.match(head)
    if match:
        return match.group(1)
    return head[:7] or UNKNOWN_BRANCH


def scan_worktrees(worktrees_root: Path, exclude: Iterable[str] = ()) -> List[ScannedWorktree]:
    """List every subdirectory of worktrees_root that carries git metadata.

    Args:
        worktrees_root: Directory holding one subdirectory per worktree
        exclude: Ids to skip (worktrees still being created)

    Returns:
        Worktrees sorted by id
    """
    if not worktrees_root.is_dir():
        return []

    excluded = set(exclude)
    found = []
    for entry in sorted(worktrees_root.iterdir()):
        if not entry.is_dir() or entry.name in excluded:
            continue
        if not (entry / ".git").exists():
            continue
        found.append(
            ScannedWorktree(
                id=entry.name,
                path=str(entry),
                branch=get_worktree_branch(entry),
            )
        )
    return found
