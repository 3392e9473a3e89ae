"""Test helpers shared across unit test modules."""

import asyncio
from pathlib import Path
from typing import Optional


def make_linked_worktree(path: Path, branch: str = "main", detached_sha: Optional[str] = None) -> Path:
    """Lay out a directory the way `git worktree add` does: a .git file pointing at a gitdir."""
    path.mkdir(parents=True, exist_ok=True)
    git_dir = path.parent.parent / "fake-git" / "worktrees" / path.name
    git_dir.mkdir(parents=True, exist_ok=True)
    if detached_sha:
        (git_dir / "HEAD").write_text(f"{detached_sha}\n")
    else:
        (git_dir / "HEAD").write_text(f"ref: refs/heads/{branch}\n")
    (path / ".git").write_text(f"gitdir: {git_dir}\n")
    return path


async def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until true or timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()
