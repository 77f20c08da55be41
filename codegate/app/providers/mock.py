"""Mock assistant runner for development without the CLI installed.

Answers every prompt with canned, action-shaped text instead of spawning a
process, so the whole pipeline (parsing included) can be exercised locally.

Enable by setting environment variable:
    ASSISTANT_MOCK=true
"""

import asyncio
from typing import Mapping, Optional, Sequence

from codegate.app.providers.assistant import ACTION_INSTRUCTIONS
from codegate.app.providers.process import ProcessHandle, ProcessRunner

MOCK_RESPONSES = {
    "generate": (
        "Here is a mock implementation.\n"
        "\n"
        "```\n"
        "function example() {\n"
        "  return 'Hello from the mock assistant';\n"
        "}\n"
        "```\n"
        "\n"
        "This is a mock response. Set ASSISTANT_MOCK=false to use the real assistant."
    ),
    "analyze": (
        "Mock analysis:\n"
        "- Code structure looks good\n"
        "- Consider adding error handling\n"
        "- Overall quality: Good"
    ),
    "optimize": (
        "```\n"
        "function optimized() {\n"
        "  return 'faster code';\n"
        "}\n"
        "```\n"
        "\n"
        "- Use caching\n"
        "- Optimize loops\n"
        "- Reduce complexity"
    ),
    "review": (
        "Mock review feedback:\n"
        "- Add type annotations\n"
        "- Improve error handling\n"
        "- Add documentation"
    ),
}


def _detect_action(prompt: str) -> str:
    first_line = prompt.split("\n", 1)[0]
    for action, instruction in ACTION_INSTRUCTIONS.items():
        prefix = instruction.split("{", 1)[0]
        if first_line.startswith(prefix):
            return action
    return "generate"


class MockProcessHandle(ProcessHandle):
    """Completes as soon as the prompt has been written."""

    def __init__(self, delay: float = 0.0):
        self._delay = delay
        self._prompt = b""
        self._written = asyncio.Event()
        self._returncode: Optional[int] = None

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    async def write_stdin(self, data: bytes) -> None:
        self._prompt = data
        self._written.set()

    async def read_stdout(self) -> bytes:
        await self._written.wait()
        if self._delay:
            await asyncio.sleep(self._delay)
        action = _detect_action(self._prompt.decode("utf-8", errors="replace"))
        return MOCK_RESPONSES[action].encode("utf-8")

    async def read_stderr(self) -> bytes:
        return b""

    async def wait(self) -> int:
        await self._written.wait()
        self._returncode = 0
        return 0

    def terminate(self) -> None:
        self._returncode = -9
        self._written.set()


class MockProcessRunner(ProcessRunner):
    """ProcessRunner that never spawns anything."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        return MockProcessHandle(delay=self.delay)
