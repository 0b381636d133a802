# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
hostdump Executors - Run commands on the target host.

An executor runs an argument vector either on this machine or on a remote
host through ssh. It either buffers the output or streams it into a sink,
so multi-gigabyte archive streams never have to fit in memory.

Timeouts and retries are not handled here; configure them in ssh itself
(ConnectTimeout, ServerAliveInterval) through ssh_command.
"""

import asyncio
import io
import shlex
from typing import BinaryIO, List, Protocol, Sequence

import structlog

from hostdump.config import DumpConfig
from hostdump.exceptions import ExecutorError

logger = structlog.get_logger()

# Failure reasons reported in ExecutorError.details["reason"]
UNREACHABLE = "unreachable"
NONZERO_EXIT = "nonzero_exit"
LAUNCH_FAILED = "launch_failed"

# ssh reports its own connection failures with this exit status
SSH_ERROR_STATUS = 255

_CHUNK_SIZE = 1024 * 1024
_STDERR_TAIL = 2000


class RemoteExecutor(Protocol):
    """Protocol for running commands on a backup target."""

    host: str

    async def run(
        self,
        command: Sequence[str],
        *,
        stdin: bytes | None = None,
    ) -> bytes:
        """Run a command and return its complete stdout."""
        ...

    async def stream(
        self,
        command: Sequence[str],
        sink: BinaryIO,
        *,
        stdin: bytes | None = None,
        ok_returncodes: Sequence[int] = (0,),
    ) -> int:
        """Run a command, writing stdout to sink as it arrives."""
        ...


class _SubprocessExecutor:
    """Shared subprocess plumbing for local and ssh execution."""

    host: str = "localhost"

    def _argv(self, command: Sequence[str]) -> List[str]:
        raise NotImplementedError

    def _classify_failure(self, returncode: int) -> str:
        return NONZERO_EXIT

    async def run(
        self,
        command: Sequence[str],
        *,
        stdin: bytes | None = None,
    ) -> bytes:
        buffer = io.BytesIO()
        await self.stream(command, buffer, stdin=stdin)
        return buffer.getvalue()

    async def stream(
        self,
        command: Sequence[str],
        sink: BinaryIO,
        *,
        stdin: bytes | None = None,
        ok_returncodes: Sequence[int] = (0,),
    ) -> int:
        """
        Run a command and copy its stdout into sink.

        stdin is fed concurrently with reading stdout so large inputs
        cannot deadlock on full pipes. A cancelled call kills the process.

        Returns:
            The process exit status (one of ok_returncodes)

        Raises:
            ExecutorError: If the command cannot start or exits with a
                status outside ok_returncodes
        """
        argv = self._argv(command)
        logger.debug("command_started", host=self.host, argv=argv)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExecutorError(
                f"Failed to launch {argv[0]}: {e}",
                details={"host": self.host, "reason": LAUNCH_FAILED, "argv": argv},
            ) from e

        stderr_chunks: List[bytes] = []

        async def feed_stdin() -> None:
            if stdin is None or process.stdin is None:
                return
            try:
                process.stdin.write(stdin)
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # The process exited early; its status tells us why
                pass
            finally:
                process.stdin.close()

        async def drain_stderr() -> None:
            assert process.stderr is not None
            while chunk := await process.stderr.read(_CHUNK_SIZE):
                stderr_chunks.append(chunk)

        async def copy_stdout() -> None:
            assert process.stdout is not None
            while chunk := await process.stdout.read(_CHUNK_SIZE):
                sink.write(chunk)

        try:
            await asyncio.gather(feed_stdin(), drain_stderr(), copy_stdout())
            returncode = await process.wait()
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        stderr_text = b"".join(stderr_chunks).decode(errors="replace")[-_STDERR_TAIL:]

        if returncode not in ok_returncodes:
            reason = self._classify_failure(returncode)
            logger.error(
                "command_failed",
                host=self.host,
                argv=argv,
                returncode=returncode,
                reason=reason,
            )
            raise ExecutorError(
                f"Command failed on {self.host} with exit status {returncode}",
                details={
                    "host": self.host,
                    "reason": reason,
                    "returncode": returncode,
                    "stderr": stderr_text.strip(),
                },
            )

        if returncode != 0 or stderr_text.strip():
            logger.warning(
                "command_warnings",
                host=self.host,
                returncode=returncode,
                stderr=stderr_text.strip(),
            )

        return returncode


class LocalExecutor(_SubprocessExecutor):
    """Run commands on this machine."""

    def __init__(self) -> None:
        self.host = "localhost"

    def _argv(self, command: Sequence[str]) -> List[str]:
        return list(command)


class SSHExecutor(_SubprocessExecutor):
    """Run commands on a remote host through ssh."""

    def __init__(self, host: str, ssh_command: Sequence[str] = ("ssh", "-o", "BatchMode=yes")):
        self.host = host
        self.ssh_command = list(ssh_command)

    def _argv(self, command: Sequence[str]) -> List[str]:
        # ssh hands the remote side a single shell string
        return [*self.ssh_command, self.host, "--", shlex.join(command)]

    def _classify_failure(self, returncode: int) -> str:
        return UNREACHABLE if returncode == SSH_ERROR_STATUS else NONZERO_EXIT


def get_executor(config: DumpConfig) -> RemoteExecutor | None:
    """
    Return the executor for a configuration's host.

    Local hosts return None: they are walked and archived in-process.
    """
    if config.is_local:
        return None
    return SSHExecutor(config.host, config.ssh_command)
