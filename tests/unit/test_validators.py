"""Tests for branch name and worktree id validation."""

import pytest

from devtree.errors import InvalidInputError
from devtree.utils.validators import (
    derive_worktree_id,
    validate_branch_name,
    validate_worktree_id,
)


class TestValidateBranchName:
    @pytest.mark.parametrize("branch", ["main", "feature/login-page", "fix/JIRA_12.3", "1.2-release"])
    def test_accepts_valid_names(self, branch):
        assert validate_branch_name(branch) == branch

    @pytest.mark.parametrize(
        "branch",
        ["", "-rf", "/abs", ".hidden", "a..b", "has space", "semi;colon", "tick`", "x" * 256],
    )
    def test_rejects_invalid_names(self, branch):
        with pytest.raises(InvalidInputError) as exc_info:
            validate_branch_name(branch)
        assert exc_info.value.code == "INVALID_INPUT"


class TestValidateWorktreeId:
    def test_accepts_valid_id(self):
        assert validate_worktree_id("login-page-2") == "login-page-2"

    @pytest.mark.parametrize("worktree_id", ["", "..", "a/b", "a_b", "a.b", "x" * 129])
    def test_rejects_invalid_id(self, worktree_id):
        with pytest.raises(InvalidInputError):
            validate_worktree_id(worktree_id)


class TestDeriveWorktreeId:
    @pytest.mark.parametrize(
        "branch,expected",
        [
            ("feature/login-page", "login-page"),
            ("fix/crash", "crash"),
            ("chore/deps", "deps"),
            ("user/topic", "user-topic"),
            ("release_1.2", "release-1-2"),
        ],
    )
    def test_derives_from_branch(self, branch, expected):
        assert derive_worktree_id(branch) == expected

    def test_explicit_name_wins(self):
        assert derive_worktree_id("feature/x", "custom") == "custom"
