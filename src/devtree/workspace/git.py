"""Git operations used by the worktree manager.

Mutating git calls live here; branch *reading* is done by the inspector
without spawning git.
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Tuple, TypeVar

from ..errors import CommandFailedError, GitOperationFailedError
from ..utils.error_handling import ErrorContext, log_and_ignore
from ..utils.subprocess_utils import run_git_command

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = Tuple[str, Callable[[], Awaitable[T]]]

BASE_REF_FALLBACKS = ["main", "master", "HEAD"]


async def try_strategies(operation: str, strategies: Sequence[Strategy]) -> Tuple[str, T]:
    """Run strategies in order and return (description, result) of the first success.

    Each attempt is best effort; only total exhaustion is surfaced.

    Raises:
        GitOperationFailedError: listing every attempt and ending with the last error
    """
    attempts: List[str] = []
    last_error: Optional[Exception] = None

    for description, attempt in strategies:
        try:
            result = await attempt()
        except CommandFailedError as e:
            last_error = e
            attempts.append(f"{description}: {e.output or e.message}")
            logger.debug(f"{operation}: '{description}' failed: {e.output or e.message}")
            continue
        logger.debug(f"{operation}: '{description}' succeeded")
        return description, result

    detail = (last_error.output or last_error.message) if last_error else "no strategies"
    raise GitOperationFailedError(
        f"{operation} failed after {len(attempts)} attempts: {detail}",
        attempts=attempts,
    )


async def has_commits(repo: Path) -> bool:
    result = await run_git_command(["rev-parse", "--verify", "HEAD"], cwd=repo, check=False)
    return result.ok


async def ref_exists(repo: Path, ref: str) -> bool:
    result = await run_git_command(["rev-parse", "--verify", "--quiet", ref], cwd=repo, check=False)
    return result.ok


async def resolve_base_ref(repo: Path, configured: str) -> str:
    """First ref that exists among the configured base branch, main, master and HEAD."""
    candidates = [configured] + [ref for ref in BASE_REF_FALLBACKS if ref != configured]
    for ref in candidates:
        if await ref_exists(repo, ref):
            if ref != configured:
                logger.info(f"Base branch '{configured}' not found, using '{ref}'")
            return ref
    raise GitOperationFailedError(
        f"No usable base ref (tried {', '.join(candidates)})",
        attempts=candidates,
    )


async def list_registered_worktrees(repo: Path) -> Set[str]:
    """Resolved paths of every worktree git knows about (from --porcelain)."""
    result = await run_git_command(["worktree", "list", "--porcelain"], cwd=repo, check=False)
    if not result.ok:
        return set()
    paths = set()
    for line in result.stdout.splitlines():
        if line.startswith("worktree "):
            paths.add(str(Path(line[len("worktree "):].strip()).resolve()))
    return paths


async def fetch_branch(repo: Path, branch: str) -> None:
    """Fetch a branch from origin. Failure is expected for local-only or new branches."""
    try:
        await run_git_command(["fetch", "origin", branch], cwd=repo, timeout=120)
    except CommandFailedError as e:
        log_and_ignore(e, f"Fetch of '{branch}' from origin skipped", logger_instance=logger, level=logging.DEBUG)


async def prune_worktrees(repo: Path) -> None:
    with ErrorContext("pruning worktrees", raise_on_error=False, logger_instance=logger, log_level=logging.WARNING):
        await run_git_command(["worktree", "prune"], cwd=repo)


async def add_worktree(repo: Path, path: Path, branch: str, base_ref: str) -> str:
    """Check out branch into path using the first strategy that works.

    Order: new branch from base_ref, existing local branch, force-created
    branch tracking origin/<branch>.

    Returns:
        Description of the strategy that succeeded
    """
    target = str(path)

    async def new_branch():
        return await run_git_command(["worktree", "add", target, "-b", branch, base_ref], cwd=repo)

    async def existing_branch():
        return await run_git_command(["worktree", "add", target, branch], cwd=repo)

    async def tracking_branch():
        return await run_git_command(
            ["worktree", "add", target, "-B", branch, f"origin/{branch}"], cwd=repo,
        )

    description, _ = await try_strategies(
        f"Checking out '{branch}'",
        [
            (f"create branch from {base_ref}", new_branch),
            ("check out existing local branch", existing_branch),
            (f"force-create branch tracking origin/{branch}", tracking_branch),
        ],
    )
    logger.info(f"Created worktree {path} (branch: {branch}) via '{description}'")
    return description


async def remove_worktree(repo: Path, path: Path) -> None:
    await run_git_command(["worktree", "remove", str(path), "--force"], cwd=repo)


async def move_worktree(repo: Path, old_path: Path, new_path: Path) -> None:
    await run_git_command(["worktree", "move", str(old_path), str(new_path)], cwd=repo)


async def rename_branch(worktree_path: Path, old_branch: str, new_branch: str) -> None:
    await run_git_command(["branch", "-m", old_branch, new_branch], cwd=worktree_path)
