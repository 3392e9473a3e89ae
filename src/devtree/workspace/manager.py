"""Worktree lifecycle orchestration.

WorktreeManager is constructed once per server and composes the inspector,
port allocator and process supervisor. Existence comes from the filesystem
on every read; runtime fields come from the supervisor's process table.
Expected failures are returned as OperationResult, never raised.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..core.config import DevtreeConfig, load_config, update_config
from ..errors import (
    AlreadyExistsError,
    CommandFailedError,
    ConflictError,
    DevtreeError,
    GitOperationFailedError,
    InvalidInputError,
    NotFoundError,
)
from ..utils.error_handling import log_and_ignore
from ..utils.rich_logging import LogEcho
from ..utils.subprocess_utils import run_shell_command
from ..utils.validators import derive_worktree_id, validate_branch_name, validate_worktree_id
from . import git
from .env_files import copy_env_files
from .inspector import get_worktree_branch, scan_worktrees
from .models import OperationResult, ScannedWorktree, Worktree, WorktreeStatus
from .port_allocator import PortAllocator, detect_env_mapping
from .supervisor import ProcessSupervisor, RunningProcess

logger = logging.getLogger(__name__)

WORKTREES_DIR_NAME = "worktrees"

WorktreeListener = Callable[[List[Worktree]], None]
HookUpdateListener = Callable[[str], None]


def overlay_runtime(
    scanned: List[ScannedWorktree],
    processes: Dict[str, RunningProcess],
    transitions: Optional[Dict[str, WorktreeStatus]] = None,
) -> List[Worktree]:
    """Join scanned worktrees with the live process table by id.

    The scan decides which worktrees exist; a process for an id that is not
    on disk is ignored. The process table decides status, ports, pid and logs.
    Stopping/deleting transitions apply only to ids with no live process.
    """
    transitions = transitions or {}
    result = []
    for entry in scanned:
        rp = processes.get(entry.id)
        if rp is not None:
            result.append(
                Worktree(
                    id=entry.id,
                    path=entry.path,
                    branch=entry.branch,
                    status=rp.status,
                    ports=list(rp.ports),
                    offset=rp.offset,
                    pid=rp.pid,
                    logs=rp.logs.lines(),
                    last_activity=rp.last_activity or rp.started_at,
                )
            )
        else:
            status = transitions.get(entry.id, WorktreeStatus.STOPPED)
            if status not in (WorktreeStatus.STOPPING, WorktreeStatus.DELETING):
                status = WorktreeStatus.STOPPED
            result.append(
                Worktree(id=entry.id, path=entry.path, branch=entry.branch, status=status)
            )
    return result


class WorktreeManager:
    """Create, start, stop, remove and list worktrees under <config_dir>/worktrees."""

    def __init__(
        self,
        config_dir: Path,
        config: Optional[DevtreeConfig] = None,
        echo: Optional[LogEcho] = None,
    ):
        self.config_dir = Path(config_dir).resolve()
        self.repo_root = self.config_dir.parent
        self.config = config or load_config(self.config_dir)
        self.worktrees_root = self.config_dir / WORKTREES_DIR_NAME

        if echo is None and self.config.echo_logs:
            echo = LogEcho()
        self.allocator = PortAllocator.from_config(self.config)
        self.supervisor = ProcessSupervisor(
            self.allocator,
            on_change=self.notify_listeners,
            echo=echo,
            ready_timeout=self.config.ready_timeout,
        )

        self._listeners: List[WorktreeListener] = []
        self._hook_listeners: List[HookUpdateListener] = []
        self._creating: Dict[str, Worktree] = {}
        self._transitions: Dict[str, WorktreeStatus] = {}

    # -- Queries -------------------------------------------------------------

    @property
    def project_dir(self) -> Path:
        return (self.repo_root / self.config.project_dir).resolve()

    def list_worktrees(self) -> List[Worktree]:
        scanned = scan_worktrees(self.worktrees_root, exclude=self._creating)
        worktrees = overlay_runtime(scanned, self.supervisor.processes, self._transitions)
        worktrees.extend(wt.model_copy(deep=True) for wt in self._creating.values())
        return worktrees

    def get_worktree(self, worktree_id: str) -> Optional[Worktree]:
        for worktree in self.list_worktrees():
            if worktree.id == worktree_id:
                return worktree
        return None

    def get_worktree_path(self, worktree_id: str) -> Optional[Path]:
        """Checkout path of an existing, fully created worktree."""
        if worktree_id in self._creating:
            return None
        try:
            validate_worktree_id(worktree_id)
        except InvalidInputError:
            return None
        path = self.worktrees_root / worktree_id
        if not (path / ".git").exists():
            return None
        return path

    def get_logs(self, worktree_id: str) -> List[str]:
        return self.supervisor.get_logs(worktree_id)

    def ports_info(self) -> Dict:
        return {
            "discovered": list(self.allocator.base_ports),
            "offset_step": self.allocator.offset_step,
            "allocated_offsets": sorted(self.allocator.allocated),
            "max_instances": self.allocator.max_instances,
            "env_mapping": dict(self.allocator.env_mapping),
        }

    # -- Subscriptions -------------------------------------------------------

    def subscribe(self, listener: WorktreeListener) -> Callable[[], None]:
        """Register for full worktree-list snapshots. Returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def subscribe_hook_updates(self, listener: HookUpdateListener) -> Callable[[], None]:
        self._hook_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._hook_listeners:
                self._hook_listeners.remove(listener)

        return unsubscribe

    def notify_listeners(self) -> None:
        if not self._listeners:
            return
        worktrees = self.list_worktrees()
        for listener in list(self._listeners):
            try:
                listener(worktrees)
            except Exception as e:
                log_and_ignore(e, "Worktree listener failed", logger_instance=logger)

    def emit_hook_update(self, worktree_id: str) -> None:
        for listener in list(self._hook_listeners):
            try:
                listener(worktree_id)
            except Exception as e:
                log_and_ignore(e, "Hook update listener failed", logger_instance=logger)

    # -- Start / stop --------------------------------------------------------

    async def start_worktree(self, worktree_id: str) -> OperationResult:
        """Spawn the dev server for a worktree with a freshly allocated port offset."""
        try:
            rp = await self._start(worktree_id)
        except DevtreeError as e:
            logger.warning(f"Start failed: {e.message}", extra={"worktree_id": worktree_id})
            return OperationResult.fail(e)
        return OperationResult.ok(ports=list(rp.ports), pid=rp.pid)

    async def _start(self, worktree_id: str) -> RunningProcess:
        validate_worktree_id(worktree_id)

        running = self.supervisor.get(worktree_id)
        if running is not None:
            return running
        if worktree_id in self._creating:
            raise ConflictError(f"Worktree '{worktree_id}' is still being created")
        if worktree_id in self._transitions:
            raise ConflictError(
                f"Worktree '{worktree_id}' is {self._transitions[worktree_id].value}"
            )

        path = self.worktrees_root / worktree_id
        if not path.is_dir():
            raise NotFoundError(f"Worktree '{worktree_id}' not found")
        cwd = path / self.config.project_dir
        if not cwd.is_dir():
            raise NotFoundError(
                f"Project directory '{self.config.project_dir}' not found in worktree '{worktree_id}'"
            )

        offset = self.allocator.allocate()
        self._transitions[worktree_id] = WorktreeStatus.STARTING
        try:
            env = {**os.environ, **self.allocator.env_for(offset), "FORCE_COLOR": "1"}
            rp = await self.supervisor.spawn(
                worktree_id, cwd, self.config.start_command, offset, env,
            )
        except BaseException:
            self.allocator.release(offset)
            raise
        finally:
            if self._transitions.get(worktree_id) == WorktreeStatus.STARTING:
                del self._transitions[worktree_id]

        self.notify_listeners()
        return rp

    async def stop_worktree(self, worktree_id: str) -> OperationResult:
        """Stop a worktree's dev server. Not running is success."""
        try:
            validate_worktree_id(worktree_id)
            if self._transitions.get(worktree_id) == WorktreeStatus.STARTING:
                raise ConflictError(f"Worktree '{worktree_id}' is still starting")
            await self._stop(worktree_id)
        except DevtreeError as e:
            return OperationResult.fail(e)
        return OperationResult.ok()

    async def _stop(self, worktree_id: str) -> None:
        rp = self.supervisor.detach(worktree_id)
        if rp is None:
            return

        previous = self._transitions.get(worktree_id)
        if previous is None:
            self._transitions[worktree_id] = WorktreeStatus.STOPPING
        self.notify_listeners()
        try:
            await self.supervisor.terminate(rp, self.config.stop_timeout)
        finally:
            if previous is None:
                self._transitions.pop(worktree_id, None)
        self.notify_listeners()

    async def stop_all(self) -> List[str]:
        ids = list(self.supervisor.processes)
        if ids:
            logger.info(f"Stopping {len(ids)} running worktree(s)")
        await asyncio.gather(*(self._stop(worktree_id) for worktree_id in ids))
        return ids

    async def close(self) -> None:
        await self.stop_all()
        await self.supervisor.close()

    # -- Create --------------------------------------------------------------

    async def create_worktree(self, branch: str, name: Optional[str] = None) -> OperationResult:
        """Check out branch into a new worktree and install its dependencies.

        Returns the new worktree on success. A failure after the checkout
        exists leaves the directory in place for manual cleanup.
        """
        try:
            worktree = await self._create(branch, name)
        except DevtreeError as e:
            logger.warning(f"Create failed for branch '{branch}': {e.message}")
            return OperationResult.fail(e)
        return OperationResult.ok(worktree=worktree)

    async def _create(self, branch: str, name: Optional[str]) -> Worktree:
        validate_branch_name(branch)
        worktree_id = validate_worktree_id(derive_worktree_id(branch, name))

        if worktree_id in self._creating:
            raise ConflictError(f"Worktree '{worktree_id}' is already being created")
        path = self.worktrees_root / worktree_id
        if path.exists():
            raise AlreadyExistsError(f"Worktree '{worktree_id}' already exists", worktree_id)

        self._creating[worktree_id] = Worktree(
            id=worktree_id,
            path=str(path),
            branch=branch,
            status=WorktreeStatus.CREATING,
            status_message="Checking repository...",
        )
        self.notify_listeners()

        try:
            if str(path.resolve()) in await git.list_registered_worktrees(self.repo_root):
                raise AlreadyExistsError(
                    f"Worktree '{worktree_id}' is already registered with git", worktree_id,
                )
            if not await git.has_commits(self.repo_root):
                raise InvalidInputError(
                    "Repository has no commits. Create an initial commit before adding worktrees"
                )

            self._set_progress(worktree_id, "Fetching branch...")
            await git.fetch_branch(self.repo_root, branch)

            self._set_progress(worktree_id, "Creating worktree...")
            base_ref = await git.resolve_base_ref(self.repo_root, self.config.base_branch)
            await git.prune_worktrees(self.repo_root)
            self.worktrees_root.mkdir(parents=True, exist_ok=True)
            await git.add_worktree(self.repo_root, path, branch, base_ref)

            copy_env_files(self.repo_root, path, skip=[self.config_dir])

            if self.config.auto_install and self.config.install_command:
                self._set_progress(worktree_id, "Installing dependencies...")
                await run_shell_command(
                    self.config.install_command,
                    cwd=path / self.config.project_dir,
                    extra_env={"FORCE_COLOR": "0"},
                )
        finally:
            self._creating.pop(worktree_id, None)
            self.notify_listeners()

        logger.info(f"Created worktree for branch '{branch}'", extra={"worktree_id": worktree_id})
        worktree = self.get_worktree(worktree_id)
        if worktree is None:
            raise GitOperationFailedError(f"Worktree '{worktree_id}' missing after creation")
        return worktree

    def _set_progress(self, worktree_id: str, message: str) -> None:
        placeholder = self._creating.get(worktree_id)
        if placeholder is None:
            return
        placeholder.status_message = message
        logger.debug(message, extra={"worktree_id": worktree_id})
        self.notify_listeners()

    # -- Remove / rename -----------------------------------------------------

    async def remove_worktree(self, worktree_id: str) -> OperationResult:
        """Force-stop then delete a worktree. A missing directory is success."""
        try:
            await self._remove(worktree_id)
        except DevtreeError as e:
            logger.warning(f"Remove failed: {e.message}", extra={"worktree_id": worktree_id})
            return OperationResult.fail(e)
        return OperationResult.ok()

    async def _remove(self, worktree_id: str) -> None:
        validate_worktree_id(worktree_id)
        if worktree_id in self._creating:
            raise ConflictError(f"Worktree '{worktree_id}' is still being created")
        if worktree_id in self._transitions:
            raise ConflictError(
                f"Worktree '{worktree_id}' is {self._transitions[worktree_id].value}"
            )

        path = self.worktrees_root / worktree_id
        self._transitions[worktree_id] = WorktreeStatus.DELETING
        self.notify_listeners()
        try:
            await self._stop(worktree_id)

            if not path.exists():
                logger.info("Already removed", extra={"worktree_id": worktree_id})
                return

            try:
                await git.remove_worktree(self.repo_root, path)
            except CommandFailedError as e:
                log_and_ignore(e, "git worktree remove failed, deleting directory", logger_instance=logger)
                try:
                    await asyncio.to_thread(shutil.rmtree, path)
                except OSError as rm_error:
                    raise GitOperationFailedError(
                        f"Failed to remove worktree '{worktree_id}': {rm_error}",
                        attempts=[f"git worktree remove: {e.output or e.message}", f"rmtree: {rm_error}"],
                    ) from rm_error
                await git.prune_worktrees(self.repo_root)
            logger.info("Removed worktree", extra={"worktree_id": worktree_id})
        finally:
            self._transitions.pop(worktree_id, None)
            self.notify_listeners()

    async def rename_worktree(
        self,
        worktree_id: str,
        name: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> OperationResult:
        """Rename a stopped worktree's directory and/or branch."""
        try:
            worktree = await self._rename(worktree_id, name, branch)
        except DevtreeError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(worktree=worktree)

    async def _rename(self, worktree_id: str, name: Optional[str], branch: Optional[str]) -> Worktree:
        validate_worktree_id(worktree_id)
        if name:
            validate_worktree_id(name)
        if branch:
            validate_branch_name(branch)

        if self.supervisor.is_running(worktree_id) or worktree_id in self._transitions:
            raise ConflictError(f"Stop worktree '{worktree_id}' before renaming it")
        if worktree_id in self._creating:
            raise ConflictError(f"Worktree '{worktree_id}' is still being created")

        path = self.worktrees_root / worktree_id
        if not path.is_dir():
            raise NotFoundError(f"Worktree '{worktree_id}' not found")

        new_id = worktree_id
        if name and name != worktree_id:
            new_path = self.worktrees_root / name
            if new_path.exists():
                raise AlreadyExistsError(f"Worktree '{name}' already exists", name)
            await git.move_worktree(self.repo_root, path, new_path)
            path, new_id = new_path, name

        if branch:
            current = get_worktree_branch(path)
            if current != branch:
                await git.rename_branch(path, current, branch)

        self.notify_listeners()
        worktree = self.get_worktree(new_id)
        if worktree is None:
            raise NotFoundError(f"Worktree '{new_id}' not found after rename")
        return worktree

    # -- Configuration helpers ----------------------------------------------

    def detect_env_mapping(self, save: bool = False) -> Dict[str, str]:
        """Scan the project's .env files for base ports; optionally persist the result."""
        mapping = detect_env_mapping(self.project_dir, self.allocator.base_ports)
        if save and mapping:
            self.config = update_config(self.config_dir, {"env_mapping": mapping})
            self.allocator.env_mapping = dict(self.config.env_mapping)
        return mapping
