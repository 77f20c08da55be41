"""Shared fixtures and process fakes for the gateway tests."""

import asyncio
from typing import Mapping, Optional, Sequence

import pytest

from codegate.app.middleware.auth import AuthGate
from codegate.app.middleware.rate_limit import RateLimiter
from codegate.app.providers.assistant import AssistantExecutor
from codegate.app.providers.process import ProcessHandle, ProcessRunner
from codegate.app.providers.retry import RetryPolicy

TEST_SECRET = "test-secret"
ALLOWED_ORIGIN = "https://script.google.com"


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, now_ms: float = 1_000_000.0):
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


class FakeProcessHandle(ProcessHandle):
    """Scripted child process.

    stdout/stderr/returncode are delivered as soon as the prompt is written,
    unless hang is set, in which case the process only ends when terminated.
    stdin_error, when given, is raised from write_stdin and the process keeps
    running until terminated.
    """

    def __init__(
        self,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        hang: bool = False,
        stdin_error: Optional[Exception] = None,
    ):
        self._stdout = stdout
        self._stderr = stderr
        self._exit_code = returncode
        self._hang = hang
        self._stdin_error = stdin_error
        self._returncode: Optional[int] = None
        self._exited = asyncio.Event()
        self.stdin = b""
        self.terminated = False

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    async def write_stdin(self, data: bytes) -> None:
        if self._stdin_error is not None:
            raise self._stdin_error
        self.stdin = data
        if not self._hang:
            self._returncode = self._exit_code
            self._exited.set()

    async def read_stdout(self) -> bytes:
        await self._exited.wait()
        return self._stdout

    async def read_stderr(self) -> bytes:
        await self._exited.wait()
        return self._stderr

    async def wait(self) -> int:
        await self._exited.wait()
        return self._returncode

    def terminate(self) -> None:
        self.terminated = True
        if self._returncode is None:
            self._returncode = -9
        self._exited.set()


class FakeProcessRunner(ProcessRunner):
    """Hands out scripted handles in order.

    Each script entry is a dict of FakeProcessHandle arguments or an
    OSError to raise from spawn. The last entry repeats once the script runs out.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.spawned: list[dict] = []
        self.handles: list[FakeProcessHandle] = []

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        index = min(len(self.spawned), len(self.script) - 1)
        self.spawned.append({"argv": list(argv), "env": dict(env or {}), "cwd": cwd})
        entry = self.script[index]
        if isinstance(entry, OSError):
            raise entry
        handle = FakeProcessHandle(**entry)
        self.handles.append(handle)
        return handle


def ok(stdout: str, stderr: str = "") -> dict:
    return {"stdout": stdout.encode(), "stderr": stderr.encode()}


def failing(returncode: int = 1, stderr: str = "boom") -> dict:
    return {"returncode": returncode, "stderr": stderr.encode()}


def hanging() -> dict:
    return {"hang": True}


def make_executor(runner: ProcessRunner, workspace_root, **overrides) -> AssistantExecutor:
    options = {
        "command": "assistant",
        "args": ["--print"],
        "timeout": 5.0,
        "retry_policy": RetryPolicy(max_attempts=3, base_delay_ms=1, max_delay_ms=5),
        "auth_env_var": "ASSISTANT_AUTH",
        "auth_method": "oauth",
        "workspace_root": str(workspace_root),
        "base_env": {"PATH": "/usr/bin"},
    }
    options.update(overrides)
    return AssistantExecutor(runner=runner, **options)


def auth_headers(**extra: str) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {TEST_SECRET}",
        "User-Agent": "Mozilla/5.0 (compatible; Google-Apps-Script; GoogleAppsScript)",
    }
    headers.update(extra)
    return headers


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth_gate():
    return AuthGate(api_secret=TEST_SECRET, allowed_origins=[ALLOWED_ORIGIN])


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(window_ms=60_000, max_requests=10, skip_successful_requests=False, clock=clock)
