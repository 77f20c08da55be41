"""Child process abstraction used by the assistant executor.

The executor only needs to spawn a program, feed its stdin, collect its
output and kill it. Keeping that behind ProcessRunner/ProcessHandle lets
the retry and timeout logic run against scripted fakes in tests.
"""

import asyncio
import os
import signal
from abc import ABC, abstractmethod
from typing import Mapping, Optional, Sequence

from codegate.app.core.logging import get_logger

logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024

# Seconds between exit checks while waiting for a child
EXIT_POLL_INTERVAL = 0.02


class ProcessHandle(ABC):
    """A running child process."""

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        """Exit code, or None while the process is running."""

    @abstractmethod
    async def write_stdin(self, data: bytes) -> None:
        """Write data to stdin, then close it."""

    @abstractmethod
    async def read_stdout(self) -> bytes:
        """Accumulate stdout until EOF."""

    @abstractmethod
    async def read_stderr(self) -> bytes:
        """Accumulate stderr until EOF."""

    @abstractmethod
    async def wait(self) -> int:
        """Wait for exit and return the exit code."""

    @abstractmethod
    def terminate(self) -> None:
        """Forcibly stop the process. No-op once it has exited."""


class ProcessRunner(ABC):
    """Spawns child processes."""

    @abstractmethod
    async def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        """Start argv with piped stdio.

        Raises:
            OSError: If the program cannot be started
        """


async def _drain(stream: Optional[asyncio.StreamReader]) -> bytes:
    if stream is None:
        return b""
    chunks = []
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


class AsyncioProcessHandle(ProcessHandle):
    """ProcessHandle over asyncio.subprocess.Process.

    The child leads its own process group (see SubprocessRunner), so killing
    the handle also kills any helpers it started. Once the child has exited,
    whatever is left of its group is killed as well: those helpers inherit
    the output pipes and would otherwise keep them open past the exit.
    """

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def write_stdin(self, data: bytes) -> None:
        stdin = self._process.stdin
        if stdin is None:
            return
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # The child exited or closed stdin early; its exit code decides
            # the outcome.
            logger.debug(f"Process {self._process.pid} closed stdin before reading the prompt")
        finally:
            stdin.close()

    async def read_stdout(self) -> bytes:
        return await _drain(self._process.stdout)

    async def read_stderr(self) -> bytes:
        return await _drain(self._process.stderr)

    async def wait(self) -> int:
        # Process.wait() also waits for the pipes to close, which a leftover
        # helper can postpone indefinitely. returncode is set on exit alone.
        while self._process.returncode is None:
            await asyncio.sleep(EXIT_POLL_INTERVAL)
        self._kill_group()
        return self._process.returncode

    def terminate(self) -> None:
        self._kill_group()

    def _kill_group(self) -> None:
        if os.name == "nt":
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            return
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            # Group already gone
            pass


class SubprocessRunner(ProcessRunner):
    """Runs real programs with asyncio.create_subprocess_exec."""

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        kwargs = {}
        if os.name != "nt":
            kwargs["start_new_session"] = True
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
            cwd=cwd,
            **kwargs,
        )
        logger.debug(f"Spawned {argv[0]} (pid {process.pid}, own process group)")
        return AsyncioProcessHandle(process)
