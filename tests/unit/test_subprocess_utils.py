"""Tests for async subprocess helpers."""

import pytest

from devtree.errors import CommandFailedError
from devtree.utils.subprocess_utils import run_command, run_shell_command


class TestRunCommand:
    """Capturing output, exit codes and timeouts."""

    @pytest.mark.asyncio
    async def test_captures_stdout_and_stderr(self, tmp_path):
        result = await run_shell_command("echo out; echo err >&2", cwd=tmp_path)

        assert result.ok
        assert result.stdout == "out"
        assert result.stderr == "err"
        assert result.output == "out\nerr"

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_output(self, tmp_path):
        with pytest.raises(CommandFailedError) as exc_info:
            await run_shell_command("echo broken; exit 3", cwd=tmp_path)

        assert exc_info.value.returncode == 3
        assert "broken" in exc_info.value.output
        assert exc_info.value.code == "COMMAND_FAILED"

    @pytest.mark.asyncio
    async def test_check_false_returns_result(self, tmp_path):
        result = await run_shell_command("exit 2", cwd=tmp_path, check=False)
        assert not result.ok
        assert result.returncode == 2

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        result = await run_shell_command("sleep 30", cwd=tmp_path, timeout=0.2, check=False)

        assert result.timed_out
        assert not result.ok

    @pytest.mark.asyncio
    async def test_timeout_raises_when_checked(self, tmp_path):
        with pytest.raises(CommandFailedError) as exc_info:
            await run_shell_command("sleep 30", cwd=tmp_path, timeout=0.2)
        assert exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_extra_env(self, tmp_path):
        result = await run_shell_command('echo "$FORCE_COLOR"', cwd=tmp_path, extra_env={"FORCE_COLOR": "0"})
        assert result.stdout == "0"

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path):
        with pytest.raises(CommandFailedError) as exc_info:
            await run_command(["devtree-definitely-not-a-binary"], cwd=tmp_path)
        assert exc_info.value.returncode is None

    @pytest.mark.asyncio
    async def test_timeout_keeps_output_printed_before_kill(self, tmp_path):
        result = await run_shell_command(
            "echo before-timeout; echo warn >&2; sleep 30", cwd=tmp_path, timeout=0.5, check=False,
        )

        assert result.timed_out
        assert result.stdout == "before-timeout"
        assert result.stderr == "warn"
