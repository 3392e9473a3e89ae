"""Dev-server process supervision.

The supervisor owns the live process table. It spawns one shell command per
worktree in its own session, tails stdout/stderr into a bounded buffer,
and reacts to exit by releasing the offset, dropping the table entry and
broadcasting. Exit is observed by a watcher task per process, never raised.
"""

import asyncio
import logging
import re
import signal
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Set

from ..errors import SpawnFailedError
from ..utils.process_utils import kill_process_tree
from ..utils.rich_logging import LogEcho
from .models import WorktreeStatus
from .port_allocator import PortAllocator

logger = logging.getLogger(__name__)

MAX_LOG_LINES = 100
NOTIFY_DEBOUNCE_SECONDS = 0.25
READ_CHUNK_SIZE = 4096
# Longest unterminated line kept before it is flushed as-is
MAX_PENDING_CHARS = 4 * READ_CHUNK_SIZE

READY_PATTERN = re.compile(
    r"\bready\b|listening on|listening at|started server|server running"
    r"|compiled successfully|local:\s+https?://|running at https?://",
    re.IGNORECASE,
)


class LogBuffer:
    """Most recent output lines of a process, oldest dropped first."""

    def __init__(self, maxlen: int = MAX_LOG_LINES):
        self._lines: Deque[str] = deque(maxlen=maxlen)

    def append_text(self, text: str) -> List[str]:
        """Split text on newlines, drop blank lines, append the rest.

        Returns:
            The lines that were appended
        """
        added = [line.rstrip("\r") for line in text.split("\n") if line.strip()]
        self._lines.extend(added)
        return added

    def lines(self) -> List[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)


@dataclass
class RunningProcess:
    """A live dev server. In memory only."""
    worktree_id: str
    pid: int
    offset: int
    ports: List[int]
    process: asyncio.subprocess.Process
    logs: LogBuffer = field(default_factory=LogBuffer)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: Optional[datetime] = None
    ready: bool = False
    exited: asyncio.Event = field(default_factory=asyncio.Event)
    ready_timer: Optional[asyncio.TimerHandle] = None

    @property
    def status(self) -> WorktreeStatus:
        return WorktreeStatus.RUNNING if self.ready else WorktreeStatus.STARTING


class ProcessSupervisor:
    """Spawns and tracks dev servers, one per worktree id."""

    def __init__(
        self,
        allocator: PortAllocator,
        on_change: Callable[[], None],
        echo: Optional[LogEcho] = None,
        ready_timeout: float = 30,
        debounce: float = NOTIFY_DEBOUNCE_SECONDS,
    ):
        self.allocator = allocator
        self.on_change = on_change
        self.echo = echo
        self.ready_timeout = ready_timeout
        self.debounce = debounce
        self._processes: Dict[str, RunningProcess] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._debounce_handle: Optional[asyncio.TimerHandle] = None

    @property
    def processes(self) -> Dict[str, RunningProcess]:
        """Snapshot of the live process table."""
        return dict(self._processes)

    def get(self, worktree_id: str) -> Optional[RunningProcess]:
        return self._processes.get(worktree_id)

    def is_running(self, worktree_id: str) -> bool:
        return worktree_id in self._processes

    def get_logs(self, worktree_id: str) -> List[str]:
        rp = self._processes.get(worktree_id)
        return rp.logs.lines() if rp else []

    async def spawn(
        self,
        worktree_id: str,
        cwd: Path,
        command: str,
        offset: int,
        env: Dict[str, str],
    ) -> RunningProcess:
        """Start command in cwd and register it under worktree_id.

        The caller allocated offset and still owns it if this raises.

        Raises:
            SpawnFailedError: the process could not be created
        """
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnFailedError(f"Failed to start '{command}' in {cwd}: {e}") from e

        rp = RunningProcess(
            worktree_id=worktree_id,
            pid=process.pid,
            offset=offset,
            ports=self.allocator.ports_for(offset),
            process=process,
        )
        self._processes[worktree_id] = rp
        logger.info(
            f"Started '{command}' (pid {process.pid}, ports {rp.ports})",
            extra={"worktree_id": worktree_id},
        )

        loop = asyncio.get_running_loop()
        if self.ready_timeout > 0:
            rp.ready_timer = loop.call_later(self.ready_timeout, self._mark_ready, rp)
        else:
            rp.ready = True

        readers = [
            self._track(self._read_stream(rp, process.stdout, is_error=False)),
            self._track(self._read_stream(rp, process.stderr, is_error=True)),
        ]
        self._track(self._watch(rp, readers))
        return rp

    def detach(self, worktree_id: str) -> Optional[RunningProcess]:
        """Drop a process from the table and release its offset, without signalling it.

        After this the exit watcher treats the process as already handled.
        """
        rp = self._processes.pop(worktree_id, None)
        if rp is None:
            return None
        self.allocator.release(rp.offset)
        self._cancel_ready_timer(rp)
        return rp

    async def terminate(self, rp: RunningProcess, timeout: float = 5) -> None:
        """SIGTERM the process group, then SIGKILL after timeout.

        A process that already exited is not an error.
        """
        worktree_id = rp.worktree_id
        if rp.exited.is_set():
            return

        if not kill_process_tree(rp.pid, signal.SIGTERM):
            logger.debug(f"Process {rp.pid} already exited", extra={"worktree_id": worktree_id})

        try:
            await asyncio.wait_for(rp.exited.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Process {rp.pid} ignored SIGTERM for {timeout}s, sending SIGKILL",
                extra={"worktree_id": worktree_id},
            )
            kill_process_tree(rp.pid, signal.SIGKILL)
            try:
                await asyncio.wait_for(rp.exited.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error(
                    f"Process {rp.pid} still alive after SIGKILL",
                    extra={"worktree_id": worktree_id},
                )
        logger.info(f"Stopped (pid {rp.pid})", extra={"worktree_id": worktree_id})

    async def stop(self, worktree_id: str, timeout: float = 5) -> bool:
        """Detach and terminate.

        Returns:
            False if nothing was running under this id
        """
        rp = self.detach(worktree_id)
        if rp is None:
            return False
        await self.terminate(rp, timeout)
        return True

    async def stop_all(self, timeout: float = 5) -> List[str]:
        ids = list(self._processes)
        await asyncio.gather(*(self.stop(worktree_id, timeout) for worktree_id in ids))
        return ids

    async def close(self) -> None:
        """Stop everything and wait for background tasks (server shutdown)."""
        await self.stop_all()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _read_stream(self, rp: RunningProcess, stream: asyncio.StreamReader, is_error: bool) -> None:
        pending = ""
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                pending += chunk.decode(errors="replace")
                if "\n" not in pending:
                    if len(pending) > MAX_PENDING_CHARS:
                        # \r-only progress output: keep the latest frame
                        latest = pending.rstrip("\r").rsplit("\r", 1)[-1]
                        self._on_output(rp, latest[-MAX_PENDING_CHARS:], is_error)
                        pending = ""
                    continue
                complete, pending = pending.rsplit("\n", 1)
                self._on_output(rp, complete, is_error)
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.debug(f"Stream closed: {e}", extra={"worktree_id": rp.worktree_id})
        if pending:
            self._on_output(rp, pending, is_error)

    def _on_output(self, rp: RunningProcess, text: str, is_error: bool) -> None:
        added = rp.logs.append_text(text)
        if not added:
            return
        rp.last_activity = datetime.now(timezone.utc)

        if self.echo is not None:
            for line in added:
                self.echo.echo(rp.worktree_id, line, is_error=is_error)

        if not rp.ready and any(READY_PATTERN.search(line) for line in added):
            self._mark_ready(rp)
        else:
            self._schedule_notify()

    def _mark_ready(self, rp: RunningProcess) -> None:
        self._cancel_ready_timer(rp)
        if rp.ready or self._processes.get(rp.worktree_id) is not rp:
            return
        rp.ready = True
        logger.info(f"Dev server ready on ports {rp.ports}", extra={"worktree_id": rp.worktree_id})
        self._notify_now()

    def _cancel_ready_timer(self, rp: RunningProcess) -> None:
        if rp.ready_timer is not None:
            rp.ready_timer.cancel()
            rp.ready_timer = None

    def _schedule_notify(self) -> None:
        if self._debounce_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.debounce, self._notify_now)

    def _notify_now(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        self.on_change()

    async def _watch(self, rp: RunningProcess, readers: List[asyncio.Task]) -> None:
        try:
            await rp.process.wait()
            # Grandchildren may hold the pipes open after the shell exits
            done, pending = await asyncio.wait(readers, timeout=1)
            for task in pending:
                task.cancel()
        finally:
            rp.exited.set()
            self._handle_exit(rp)

    def _handle_exit(self, rp: RunningProcess) -> None:
        """Release, unregister and broadcast, but only if rp is still the live entry.

        stop() removes the entry first, so an exit caused by stop() is a no-op here.
        """
        self._cancel_ready_timer(rp)
        if self._processes.get(rp.worktree_id) is not rp:
            return
        del self._processes[rp.worktree_id]
        self.allocator.release(rp.offset)
        logger.info(
            f"Process {rp.pid} exited with code {rp.process.returncode}",
            extra={"worktree_id": rp.worktree_id},
        )
        self._notify_now()
