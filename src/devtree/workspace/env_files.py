"""Copy untracked .env files from the main checkout into a new worktree."""

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)

SKIP_DIRS = {"node_modules", ".git"}


def copy_env_files(source_root: Path, target_root: Path, skip: Iterable[Path] = ()) -> List[Path]:
    """Copy every ``.env*`` file under source_root to the same relative path under target_root.

    Existing files in the target are never overwritten.

    Args:
        source_root: Main checkout
        target_root: New worktree
        skip: Extra directories to leave out (the config dir, the worktrees root)

    Returns:
        Relative paths that were copied
    """
    skip_paths = {Path(p).resolve() for p in skip}
    skip_paths.add(target_root.resolve())
    copied: List[Path] = []

    for dirpath, dirnames, filenames in os.walk(source_root):
        current = Path(dirpath)
        dirnames[:] = [
            d for d in dirnames
            if d not in SKIP_DIRS and (current / d).resolve() not in skip_paths
        ]
        for filename in filenames:
            if not filename.startswith(".env"):
                continue
            src = current / filename
            rel = src.relative_to(source_root)
            dst = target_root / rel
            if dst.exists():
                continue
            try:
                dst.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dst)
            except OSError as e:
                logger.warning(f"Failed to copy {rel} into {target_root}: {e}")
                continue
            copied.append(rel)

    if copied:
        logger.info(f"Copied {len(copied)} env file(s) into {target_root.name}")
    return copied
