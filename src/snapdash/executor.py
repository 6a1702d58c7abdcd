"""Command execution for the local machine or a remote host."""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Sequence
from typing import Protocol

import asyncssh

from snapdash.models import CommandResult

__all__ = [
    "Executor",
    "LocalExecutor",
    "RemoteExecutor",
]


class Executor(Protocol):
    """Protocol for command execution on local or remote machines.

    Both LocalExecutor and RemoteExecutor implement this protocol,
    allowing the gateway to work with either without knowing which one it is.
    Commands are argument vectors; no shell is involved locally.
    """

    async def run_command(
        self,
        argv: Sequence[str],
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and wait for completion."""
        ...


class LocalExecutor:
    """Executes commands on this machine via async subprocess.

    Raises OSError when the program cannot be launched (e.g. not installed).
    """

    async def run_command(
        self,
        argv: Sequence[str],
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and wait for completion.

        Args:
            argv: Program and arguments
            timeout: Optional timeout in seconds

        Returns:
            CommandResult with exit code, stdout, and stderr
        """
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(),
                timeout=timeout,
            )
        except TimeoutError:
            proc.terminate()
            await proc.wait()
            raise
        return CommandResult(
            exit_code=proc.returncode or 0,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
        )


class RemoteExecutor:
    """Executes commands on a remote host via an SSH connection.

    The argument vector is quoted into a single command line because SSH
    executes commands through the remote user's shell.
    """

    def __init__(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn

    async def run_command(
        self,
        argv: Sequence[str],
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command on the remote host and wait for completion.

        Args:
            argv: Program and arguments
            timeout: Optional timeout in seconds

        Returns:
            CommandResult with exit code, stdout, and stderr
        """
        process = await self._conn.create_process(shlex.join(argv))
        try:
            result = await asyncio.wait_for(process.wait(), timeout=timeout)
        except TimeoutError:
            process.terminate()
            raise
        return CommandResult(
            # returncode is -signal when the remote process was killed
            exit_code=result.returncode if result.returncode is not None else -1,
            stdout=str(result.stdout) if result.stdout else "",
            stderr=str(result.stderr) if result.stderr else "",
        )
