"""Server-Sent Events stream of worktree snapshots and hook updates."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List

from ..workspace.manager import WorktreeManager
from ..workspace.models import Worktree

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15


def worktrees_message(worktrees: List[Worktree]) -> Dict[str, Any]:
    return {
        "type": "worktrees",
        "worktrees": [w.model_dump(mode="json") for w in worktrees],
    }


def hook_update_message(worktree_id: str) -> Dict[str, Any]:
    return {"type": "hook-update", "worktreeId": worktree_id}


def format_sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def event_stream(
    manager: WorktreeManager,
    request,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames until the client disconnects.

    Messages are serialized when the broadcast happens, so a slow client
    sees each snapshot as it was. Both listeners are removed on exit.
    """
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = manager.subscribe(lambda worktrees: queue.put_nowait(worktrees_message(worktrees)))
    unsubscribe_hooks = manager.subscribe_hook_updates(
        lambda worktree_id: queue.put_nowait(hook_update_message(worktree_id))
    )
    logger.debug("SSE client connected")

    try:
        yield format_sse(worktrees_message(manager.list_worktrees()))
        while True:
            if await request.is_disconnected():
                break
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(payload)
    finally:
        unsubscribe()
        unsubscribe_hooks()
        logger.debug("SSE client disconnected")
