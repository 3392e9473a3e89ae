"""Tests for WorktreeManager lifecycle operations (git mocked, real dev-server processes)."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import asyncio

import pytest

from devtree.errors import CommandFailedError, GitOperationFailedError
from devtree.workspace import git as git_ops
from devtree.workspace import manager as manager_module
from devtree.workspace.manager import WorktreeManager, overlay_runtime
from devtree.workspace.models import ScannedWorktree, WorktreeStatus
from devtree.workspace.supervisor import LogBuffer, RunningProcess
from tests.unit.helpers import make_linked_worktree, wait_for


@pytest.fixture
def git_mocks():
    """Patch every git call the manager makes; add_worktree lays out a fake checkout."""

    async def fake_add(repo, path, branch, base_ref):
        make_linked_worktree(path, branch=branch)
        return "create branch"

    with patch.object(git_ops, "list_registered_worktrees", AsyncMock(return_value=set())) as listed, \
            patch.object(git_ops, "has_commits", AsyncMock(return_value=True)) as has_commits, \
            patch.object(git_ops, "fetch_branch", AsyncMock()) as fetch, \
            patch.object(git_ops, "resolve_base_ref", AsyncMock(return_value="main")) as base_ref, \
            patch.object(git_ops, "prune_worktrees", AsyncMock()) as prune, \
            patch.object(git_ops, "add_worktree", AsyncMock(side_effect=fake_add)) as add, \
            patch.object(git_ops, "remove_worktree", AsyncMock()) as remove:
        yield MagicMock(
            list_registered_worktrees=listed,
            has_commits=has_commits,
            fetch_branch=fetch,
            resolve_base_ref=base_ref,
            prune_worktrees=prune,
            add_worktree=add,
            remove_worktree=remove,
        )


def _add_worktree(manager: WorktreeManager, worktree_id: str, branch: str = "main"):
    return make_linked_worktree(manager.worktrees_root / worktree_id, branch=branch)


class TestOverlayRuntime:
    """Joining the filesystem scan with the process table."""

    def _process(self, worktree_id, ready=True):
        logs = LogBuffer()
        logs.append_text("hello")
        return RunningProcess(
            worktree_id=worktree_id,
            pid=4242,
            offset=1,
            ports=[3010],
            process=MagicMock(),
            logs=logs,
            ready=ready,
            last_activity=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )

    def test_process_table_wins_runtime_fields(self):
        scanned = [ScannedWorktree(id="a", path="/w/a", branch="main")]

        [worktree] = overlay_runtime(scanned, {"a": self._process("a")})

        assert worktree.status == WorktreeStatus.RUNNING
        assert worktree.ports == [3010]
        assert worktree.offset == 1
        assert worktree.pid == 4242
        assert worktree.logs == ["hello"]

    def test_filesystem_wins_existence(self):
        scanned = [ScannedWorktree(id="a", path="/w/a", branch="main")]

        result = overlay_runtime(scanned, {"ghost": self._process("ghost")})

        assert [w.id for w in result] == ["a"]
        assert result[0].status == WorktreeStatus.STOPPED
        assert result[0].ports == []
        assert result[0].pid is None
        assert result[0].offset is None

    def test_transitions_apply_without_process(self):
        scanned = [
            ScannedWorktree(id="a", path="/w/a", branch="main"),
            ScannedWorktree(id="b", path="/w/b", branch="main"),
        ]

        result = overlay_runtime(
            scanned, {}, {"a": WorktreeStatus.STOPPING, "b": WorktreeStatus.STARTING},
        )

        assert result[0].status == WorktreeStatus.STOPPING
        assert result[1].status == WorktreeStatus.STOPPED

    def test_not_ready_process_is_starting(self):
        scanned = [ScannedWorktree(id="a", path="/w/a", branch="main")]
        [worktree] = overlay_runtime(scanned, {"a": self._process("a", ready=False)})
        assert worktree.status == WorktreeStatus.STARTING


class TestStartStop:
    """Starting and stopping dev servers."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, manager):
        _add_worktree(manager, "login")

        result = await manager.start_worktree("login")

        assert result.success
        assert result.ports == [3000, 4000]
        assert result.pid
        worktree = manager.get_worktree("login")
        assert worktree.status in (WorktreeStatus.STARTING, WorktreeStatus.RUNNING)
        assert worktree.offset == 0

        stop = await manager.stop_worktree("login")

        assert stop.success
        assert manager.allocator.allocated == frozenset()
        worktree = manager.get_worktree("login")
        assert worktree.status == WorktreeStatus.STOPPED
        assert worktree.pid is None

    @pytest.mark.asyncio
    async def test_start_twice_returns_existing(self, manager):
        _add_worktree(manager, "login")

        first = await manager.start_worktree("login")
        second = await manager.start_worktree("login")

        assert second.success
        assert second.pid == first.pid
        assert second.ports == first.ports
        assert manager.allocator.allocated == frozenset({0})

        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_start_missing_worktree(self, manager):
        result = await manager.start_worktree("nope")

        assert not result.success
        assert result.code == "NOT_FOUND"
        assert manager.allocator.allocated == frozenset()

    @pytest.mark.asyncio
    async def test_start_missing_project_dir(self, config_dir, test_config):
        test_config.project_dir = "web"
        manager = WorktreeManager(config_dir, config=test_config)
        _add_worktree(manager, "login")

        result = await manager.start_worktree("login")

        assert result.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_start_at_capacity_does_not_mutate(self, manager):
        for worktree_id in ("a", "b", "c"):
            _add_worktree(manager, worktree_id)
        assert (await manager.start_worktree("a")).success
        assert (await manager.start_worktree("b")).success
        allocated = manager.allocator.allocated
        processes = set(manager.supervisor.processes)

        result = await manager.start_worktree("c")

        assert not result.success
        assert result.code == "CAPACITY_EXCEEDED"
        assert manager.allocator.allocated == allocated
        assert set(manager.supervisor.processes) == processes

        await manager.stop_all()
        assert manager.allocator.allocated == frozenset()

    @pytest.mark.asyncio
    async def test_stop_not_running_is_success(self, manager):
        result = await manager.stop_worktree("idle")
        assert result.success

    @pytest.mark.asyncio
    async def test_crashed_server_releases_offset(self, config_dir, test_config):
        test_config.start_command = "exit 3"
        manager = WorktreeManager(config_dir, config=test_config)
        _add_worktree(manager, "crash")

        result = await manager.start_worktree("crash")
        assert result.success

        assert await wait_for(lambda: not manager.supervisor.is_running("crash"))
        assert manager.allocator.allocated == frozenset()
        assert manager.get_worktree("crash").status == WorktreeStatus.STOPPED

    @pytest.mark.asyncio
    async def test_stop_while_starting_is_conflict(self, manager):
        _add_worktree(manager, "login")

        start = asyncio.ensure_future(manager.start_worktree("login"))
        await asyncio.sleep(0)
        stop = await manager.stop_worktree("login")
        started = await start

        assert stop.code == "CONFLICT"
        assert started.success
        assert manager.supervisor.is_running("login")
        assert manager._transitions == {}

        await manager.stop_all()
        assert manager.allocator.allocated == frozenset()

    @pytest.mark.asyncio
    async def test_invalid_id(self, manager):
        result = await manager.start_worktree("../etc")
        assert result.code == "INVALID_INPUT"


class TestCreate:
    """Creating worktrees."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("branch", ["-oops", "feature/../escape", "", ".hidden", "a b"])
    async def test_invalid_branch_has_no_side_effects(self, manager, git_mocks, branch):
        result = await manager.create_worktree(branch)

        assert not result.success
        assert result.code == "INVALID_INPUT"
        git_mocks.add_worktree.assert_not_called()
        git_mocks.fetch_branch.assert_not_called()
        assert not manager.worktrees_root.exists()

    @pytest.mark.asyncio
    async def test_create_success(self, manager, git_mocks):
        snapshots = []
        manager.subscribe(lambda worktrees: snapshots.append(worktrees))

        result = await manager.create_worktree("feature/login-page")

        assert result.success
        assert result.worktree.id == "login-page"
        assert result.worktree.branch == "feature/login-page"
        assert result.worktree.status == WorktreeStatus.STOPPED
        git_mocks.fetch_branch.assert_awaited_once()
        git_mocks.prune_worktrees.assert_awaited_once()
        args = git_mocks.add_worktree.await_args.args
        assert args[1] == manager.worktrees_root / "login-page"
        assert args[2:] == ("feature/login-page", "main")

        creating = [
            w for snapshot in snapshots for w in snapshot if w.status == WorktreeStatus.CREATING
        ]
        assert creating
        assert {w.status_message for w in creating} >= {"Fetching branch...", "Creating worktree..."}
        assert [w.id for w in manager.list_worktrees()] == ["login-page"]

    @pytest.mark.asyncio
    async def test_explicit_name(self, manager, git_mocks):
        result = await manager.create_worktree("fix/crash", name="hotfix")
        assert result.worktree.id == "hotfix"

    @pytest.mark.asyncio
    async def test_existing_path(self, manager, git_mocks):
        _add_worktree(manager, "login")

        result = await manager.create_worktree("login")

        assert result.code == "WORKTREE_EXISTS"
        git_mocks.add_worktree.assert_not_called()

    @pytest.mark.asyncio
    async def test_registered_with_git(self, manager, git_mocks):
        path = manager.worktrees_root / "login"
        git_mocks.list_registered_worktrees.return_value = {str(path.resolve())}

        result = await manager.create_worktree("login")

        assert result.code == "WORKTREE_EXISTS"
        assert manager.list_worktrees() == []

    @pytest.mark.asyncio
    async def test_no_commits(self, manager, git_mocks):
        git_mocks.has_commits.return_value = False

        result = await manager.create_worktree("login")

        assert result.code == "INVALID_INPUT"
        assert "no commits" in result.error

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, manager, git_mocks):
        git_mocks.add_worktree.side_effect = GitOperationFailedError(
            "Checking out 'login' failed after 3 attempts: fatal", attempts=["a", "b", "c"],
        )

        result = await manager.create_worktree("login")

        assert result.code == "GIT_OPERATION_FAILED"
        assert manager.list_worktrees() == []

    @pytest.mark.asyncio
    async def test_install_failure_fails_create(self, config_dir, test_config, git_mocks):
        test_config.auto_install = True
        test_config.install_command = "exit 1"
        manager = WorktreeManager(config_dir, config=test_config)

        result = await manager.create_worktree("login")

        assert not result.success
        assert result.code == "COMMAND_FAILED"
        # Partial checkout is left behind for manual cleanup
        assert (manager.worktrees_root / "login").exists()
        assert all(w.status != WorktreeStatus.CREATING for w in manager.list_worktrees())

    @pytest.mark.asyncio
    async def test_install_runs_in_worktree(self, config_dir, test_config, git_mocks):
        test_config.auto_install = True
        test_config.install_command = "touch installed.txt"
        manager = WorktreeManager(config_dir, config=test_config)

        result = await manager.create_worktree("login")

        assert result.success
        assert (manager.worktrees_root / "login" / "installed.txt").exists()

    @pytest.mark.asyncio
    async def test_copies_env_files(self, manager, git_mocks):
        (manager.repo_root / ".env").write_text("A=1\n")

        await manager.create_worktree("login")

        assert (manager.worktrees_root / "login" / ".env").read_text() == "A=1\n"


class TestRemove:
    """Removing worktrees."""

    @pytest.mark.asyncio
    async def test_missing_directory_is_success(self, manager, git_mocks):
        result = await manager.remove_worktree("gone")

        assert result.success
        git_mocks.remove_worktree.assert_not_called()

    @pytest.mark.asyncio
    async def test_stops_then_removes(self, manager, git_mocks):
        _add_worktree(manager, "login")
        await manager.start_worktree("login")

        result = await manager.remove_worktree("login")

        assert result.success
        assert not manager.supervisor.is_running("login")
        assert manager.allocator.allocated == frozenset()
        git_mocks.remove_worktree.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remove_while_starting_is_conflict(self, manager, git_mocks):
        path = _add_worktree(manager, "login")

        start = asyncio.ensure_future(manager.start_worktree("login"))
        await asyncio.sleep(0)
        removed = await manager.remove_worktree("login")
        started = await start

        assert removed.code == "CONFLICT"
        assert started.success
        assert path.exists()
        git_mocks.remove_worktree.assert_not_called()
        # The starting marker was not clobbered, so the server stays visible
        assert manager.get_worktree("login").pid == started.pid
        assert manager._transitions == {}

        assert (await manager.remove_worktree("login")).success
        assert not manager.supervisor.is_running("login")
        assert manager.allocator.allocated == frozenset()

    @pytest.mark.asyncio
    async def test_falls_back_to_deleting_directory(self, manager, git_mocks):
        path = _add_worktree(manager, "login")
        git_mocks.remove_worktree.side_effect = CommandFailedError("git worktree remove", 128, "fatal")

        with patch.object(manager_module.asyncio, "to_thread", wraps=asyncio.to_thread) as to_thread:
            result = await manager.remove_worktree("login")

        to_thread.assert_awaited_once()

        assert result.success
        assert not path.exists()
        git_mocks.prune_worktrees.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_id(self, manager, git_mocks):
        result = await manager.remove_worktree("../../home")
        assert result.code == "INVALID_INPUT"


class TestRename:
    """Renaming worktrees."""

    @pytest.mark.asyncio
    async def test_refuses_while_running(self, manager):
        _add_worktree(manager, "login")
        await manager.start_worktree("login")

        result = await manager.rename_worktree("login", name="signin")

        assert result.code == "CONFLICT"
        await manager.stop_all()

    @pytest.mark.asyncio
    async def test_moves_and_renames_branch(self, manager):
        _add_worktree(manager, "login", branch="login")

        async def fake_move(repo, old_path, new_path):
            old_path.rename(new_path)

        with patch.object(git_ops, "move_worktree", AsyncMock(side_effect=fake_move)) as move, \
                patch.object(git_ops, "rename_branch", AsyncMock()) as rename:
            result = await manager.rename_worktree("login", name="signin", branch="signin")

        assert result.success
        assert result.worktree.id == "signin"
        move.assert_awaited_once()
        rename.assert_awaited_once_with(manager.worktrees_root / "signin", "login", "signin")

    @pytest.mark.asyncio
    async def test_missing(self, manager):
        result = await manager.rename_worktree("nope", name="other")
        assert result.code == "NOT_FOUND"


class TestSubscriptions:
    """Listener fan-out."""

    @pytest.mark.asyncio
    async def test_unsubscribe(self, manager):
        _add_worktree(manager, "login")
        received = []
        unsubscribe = manager.subscribe(received.append)

        manager.notify_listeners()
        unsubscribe()
        manager.notify_listeners()

        assert len(received) == 1
        assert [w.id for w in received[0]] == ["login"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, manager):
        received = []
        manager.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        manager.subscribe(received.append)

        manager.notify_listeners()

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_hook_updates(self, manager):
        received = []
        unsubscribe = manager.subscribe_hook_updates(received.append)

        manager.emit_hook_update("login")
        unsubscribe()
        manager.emit_hook_update("login")

        assert received == ["login"]
