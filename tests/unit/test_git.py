"""Tests for git helpers (strategy chain and porcelain parsing)."""

from unittest.mock import AsyncMock, patch

import pytest

from devtree.errors import CommandFailedError, GitOperationFailedError
from devtree.utils.subprocess_utils import CommandResult
from devtree.workspace import git


class TestTryStrategies:
    """Ordered fallback attempts."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        second = AsyncMock(return_value="ok")
        third = AsyncMock()

        description, result = await git.try_strategies(
            "checkout",
            [
                ("first", AsyncMock(side_effect=CommandFailedError("git a", 1, "nope"))),
                ("second", second),
                ("third", third),
            ],
        )

        assert (description, result) == ("second", "ok")
        third.assert_not_called()

    @pytest.mark.asyncio
    async def test_exhaustion_lists_attempts(self):
        with pytest.raises(GitOperationFailedError) as exc_info:
            await git.try_strategies(
                "checkout",
                [
                    ("first", AsyncMock(side_effect=CommandFailedError("git a", 1, "bad a"))),
                    ("second", AsyncMock(side_effect=CommandFailedError("git b", 128, "bad b"))),
                ],
            )

        error = exc_info.value
        assert error.code == "GIT_OPERATION_FAILED"
        assert error.attempts == ["first: bad a", "second: bad b"]
        assert "bad b" in error.message


class TestGitHelpers:
    """Command construction and output parsing with git mocked."""

    @pytest.mark.asyncio
    async def test_list_registered_worktrees(self, tmp_path):
        porcelain = (
            f"worktree {tmp_path}\nHEAD abc\nbranch refs/heads/main\n\n"
            f"worktree {tmp_path / 'wt'}\nHEAD def\ndetached\n"
        )
        ok = CommandResult(cmd="git worktree list", returncode=0, stdout=porcelain, stderr="")

        with patch.object(git, "run_git_command", AsyncMock(return_value=ok)):
            paths = await git.list_registered_worktrees(tmp_path)

        assert paths == {str(tmp_path.resolve()), str((tmp_path / "wt").resolve())}

    @pytest.mark.asyncio
    async def test_resolve_base_ref_falls_back(self, tmp_path):
        with patch.object(git, "ref_exists", AsyncMock(side_effect=[False, False, True])):
            assert await git.resolve_base_ref(tmp_path, "origin/main") == "master"

    @pytest.mark.asyncio
    async def test_resolve_base_ref_none_usable(self, tmp_path):
        with patch.object(git, "ref_exists", AsyncMock(return_value=False)):
            with pytest.raises(GitOperationFailedError):
                await git.resolve_base_ref(tmp_path, "origin/main")

    @pytest.mark.asyncio
    async def test_add_worktree_falls_back_to_existing_branch(self, tmp_path):
        run = AsyncMock(side_effect=[CommandFailedError("git worktree add", 128, "already exists"), None])

        with patch.object(git, "run_git_command", run):
            description = await git.add_worktree(tmp_path, tmp_path / "wt", "login", "main")

        assert description == "check out existing local branch"
        assert run.await_args_list[0].args[0] == ["worktree", "add", str(tmp_path / "wt"), "-b", "login", "main"]
        assert run.await_args_list[1].args[0] == ["worktree", "add", str(tmp_path / "wt"), "login"]

    @pytest.mark.asyncio
    async def test_fetch_and_prune_failures_are_ignored(self, tmp_path):
        failing = AsyncMock(side_effect=CommandFailedError("git", 1, "offline"))
        with patch.object(git, "run_git_command", failing):
            await git.fetch_branch(tmp_path, "login")
            await git.prune_worktrees(tmp_path)
        assert failing.await_count == 2
