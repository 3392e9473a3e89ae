"""Async subprocess helpers for git, install and hook-step commands."""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import CommandFailedError
from .process_utils import kill_process_tree

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
PIPE_DRAIN_TIMEOUT = 1.0


@dataclass
class CommandResult:
    """Outcome of a finished command."""
    cmd: str
    returncode: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, blank parts omitted."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


async def _drain(stream: asyncio.StreamReader, chunks: List[bytes]) -> None:
    """Collect a pipe until EOF. Whatever arrived before a kill is kept."""
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)


async def run_command(
    cmd: Union[str, List[str]],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[float] = None,
    env: Optional[Dict[str, str]] = None,
    shell: bool = False,
) -> CommandResult:
    """
    Run a command to completion and capture its output.

    Shell commands get their own session so a timeout can kill the whole
    process group rather than just the shell.

    Args:
        cmd: Command to run (string for shell, list for exec)
        cwd: Working directory
        check: Raise CommandFailedError on non-zero exit or timeout
        timeout: Timeout in seconds (None waits forever)
        env: Full environment for the child (defaults to inherited)
        shell: Run through the shell

    Returns:
        CommandResult with stdout, stderr, returncode

    Raises:
        CommandFailedError: If check=True and the command fails or times out,
            or if the executable cannot be started at all
    """
    cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)

    try:
        if shell:
            process = await asyncio.create_subprocess_shell(
                cmd_str,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=env,
                start_new_session=True,
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=env,
            )
    except OSError as e:
        # Missing executable or bad cwd never produces a returncode
        raise CommandFailedError(cmd_str, None, str(e)) from e

    stdout_chunks: List[bytes] = []
    stderr_chunks: List[bytes] = []
    readers = [
        asyncio.ensure_future(_drain(process.stdout, stdout_chunks)),
        asyncio.ensure_future(_drain(process.stderr, stderr_chunks)),
    ]

    timed_out = False
    try:
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.error(f"Command timed out after {timeout}s: {cmd_str}")
            if shell:
                kill_process_tree(process.pid, signal.SIGKILL)
            else:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            await process.wait()
        # Grandchildren may hold the pipes open after the command exits
        await asyncio.wait(readers, timeout=PIPE_DRAIN_TIMEOUT)
    finally:
        for task in readers:
            if not task.done():
                task.cancel()

    result = CommandResult(
        cmd=cmd_str,
        returncode=process.returncode,
        stdout=b"".join(stdout_chunks).decode(errors="replace").strip(),
        stderr=b"".join(stderr_chunks).decode(errors="replace").strip(),
        timed_out=timed_out,
    )

    if check and not result.ok:
        raise CommandFailedError(
            cmd_str, result.returncode, result.output, timed_out=timed_out,
        )

    return result


async def run_git_command(
    args: List[str],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: float = 60,
) -> CommandResult:
    """
    Run a git command with standardized error handling.

    Args:
        args: Git command arguments (without 'git' prefix)
        cwd: Working directory (git repo)
        check: Raise exception on non-zero exit
        timeout: Timeout in seconds (default: 60)

    Raises:
        CommandFailedError: If check=True and command fails
    """
    try:
        return await run_command(["git"] + args, cwd=cwd, check=check, timeout=timeout)
    except CommandFailedError:
        logger.debug(f"Git command failed in {cwd}: {' '.join(args)}")
        raise


async def run_shell_command(
    command: str,
    *,
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
    extra_env: Optional[Dict[str, str]] = None,
    check: bool = True,
) -> CommandResult:
    """Run a user-configured shell command with the inherited environment plus extra_env."""
    env = {**os.environ, **(extra_env or {})}
    return await run_command(
        command, cwd=cwd, check=check, timeout=timeout, env=env, shell=True,
    )
