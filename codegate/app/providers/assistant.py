"""Code assistant executor.

Runs the external code-assistant CLI once per request: the prompt goes in on
stdin, the completion comes back on stdout. Each call gets its own scratch
workspace (also used as HOME for the child), a hard timeout per attempt and
exponential-backoff retries.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Mapping, Optional, Sequence

from codegate.app.core.config import settings
from codegate.app.core.logging import get_log_context, get_logger
from codegate.app.exceptions import AssistantTimeoutError, ExecutionError
from codegate.app.models import ExecutionRequest
from codegate.app.providers.process import ProcessHandle, ProcessRunner, SubprocessRunner
from codegate.app.providers.retry import RetryPolicy, run_with_retry

logger = get_logger(__name__)

ACTION_INSTRUCTIONS = {
    "generate": "You are a code generator. Generate {language} based on the following requirements:",
    "analyze": "Analyze the following code and provide insights:",
    "optimize": "Optimize the following code for better performance:",
    "review": "Review the following code and suggest improvements:",
}

PROMPT_FILENAME = "prompt.txt"

# Seconds to wait for a killed process to be reaped
KILL_GRACE_SECONDS = 5.0


def build_prompt(request: ExecutionRequest) -> str:
    """Assemble the single prompt text sent to the assistant on stdin."""
    instruction = ACTION_INSTRUCTIONS[request.action].format(
        language=request.language or "code"
    )
    lines = [instruction]
    if request.language:
        lines.append(f"Language: {request.language}")
    if request.framework:
        lines.append(f"Framework: {request.framework}")
    lines.append("")
    lines.append(request.prompt)

    options = request.options
    trailing = []
    if options.include_tests:
        trailing.append("Include unit tests.")
    if options.include_comments:
        trailing.append("Include helpful comments in the code.")
    if options.code_style == "modern":
        trailing.append("Prefer modern language features and idioms.")
    if options.max_tokens:
        trailing.append(f"Keep the response within about {options.max_tokens} tokens.")
    if trailing:
        lines.append("")
        lines.extend(trailing)

    return "\n".join(lines)


class AssistantExecutor:
    """Executes code-assistance requests through the assistant CLI.

    Usage:
        executor = AssistantExecutor()
        raw_text = await executor.execute(request)
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        command: Optional[str] = None,
        args: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        auth_env_var: Optional[str] = None,
        auth_method: Optional[str] = None,
        workspace_root: Optional[str] = None,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the executor.

        Args:
            runner: Process runner (defaults to real subprocesses)
            command: Assistant program name or path
            args: Fixed arguments, including the non-interactive output flag
            timeout: Wall-clock seconds allowed per attempt
            retry_policy: Attempt budget and backoff
            auth_env_var: Environment variable carrying the auth method
            auth_method: Value for auth_env_var
            workspace_root: Directory for scratch workspaces (system temp if None)
            base_env: Environment inherited by the child (os.environ if None)
        """
        self.runner = runner or SubprocessRunner()
        self.command = command or settings.assistant_command
        self.args = list(settings.assistant_args if args is None else args)
        self.timeout = timeout if timeout is not None else settings.assistant_timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.auth_env_var = auth_env_var or settings.assistant_auth_env_var
        self.auth_method = auth_method or settings.assistant_auth_method
        self.workspace_root = workspace_root or settings.assistant_workspace_root
        self._base_env = base_env

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def build_env(self, workspace: Path) -> dict[str, str]:
        env = dict(os.environ if self._base_env is None else self._base_env)
        env["HOME"] = str(workspace)
        env[self.auth_env_var] = self.auth_method
        return env

    async def execute(
        self,
        request: ExecutionRequest,
        session_id: Optional[str] = None,
    ) -> str:
        """Run the assistant for request and return its raw stdout.

        Raises:
            AssistantTimeoutError: The last attempt exceeded the timeout
            ExecutionError: The last attempt failed, or the workspace could
                not be prepared
        """
        prompt = build_prompt(request)
        log_context = get_log_context(session_id=session_id, action=request.action)

        workspace = await self._prepare_workspace(prompt)
        try:
            env = self.build_env(workspace)
            prompt_bytes = prompt.encode("utf-8")

            async def attempt(number: int) -> str:
                return await self._run_once(prompt_bytes, env, workspace, number, log_context)

            return await run_with_retry(
                attempt,
                self.retry_policy,
                description=f"{self.command} {request.action}",
            )
        except ExecutionError as e:
            e.attempts = self.retry_policy.max_attempts
            raise
        finally:
            await asyncio.to_thread(self._remove_workspace, workspace)

    async def _prepare_workspace(self, prompt: str) -> Path:
        """Create the scratch workspace and stage the prompt file in it."""
        try:
            workspace = await asyncio.to_thread(self._create_workspace)
        except OSError as e:
            raise ExecutionError(f"Could not prepare assistant workspace: {e}") from e
        try:
            await asyncio.to_thread(self._stage_prompt, workspace, prompt)
        except OSError as e:
            await asyncio.to_thread(self._remove_workspace, workspace)
            raise ExecutionError(f"Could not stage assistant prompt: {e}") from e
        return workspace

    def _create_workspace(self) -> Path:
        if self.workspace_root:
            Path(self.workspace_root).mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="codegate-", dir=self.workspace_root))

    def _stage_prompt(self, workspace: Path, prompt: str) -> None:
        (workspace / PROMPT_FILENAME).write_text(prompt, encoding="utf-8")

    def _remove_workspace(self, workspace: Path) -> None:
        try:
            shutil.rmtree(workspace)
        except OSError as e:
            logger.warning(f"Failed to remove assistant workspace {workspace}: {e}")

    async def _run_once(
        self,
        prompt: bytes,
        env: Mapping[str, str],
        workspace: Path,
        attempt: int,
        log_context: dict,
    ) -> str:
        try:
            handle = await self.runner.spawn(self.argv, env=env, cwd=str(workspace))
        except OSError as e:
            raise ExecutionError(f"Failed to start {self.command}: {e}") from e

        try:
            _, stdout, stderr, returncode = await asyncio.wait_for(
                asyncio.gather(
                    handle.write_stdin(prompt),
                    handle.read_stdout(),
                    handle.read_stderr(),
                    handle.wait(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            await self._kill(handle)
            raise AssistantTimeoutError(self.timeout) from None
        except Exception as e:
            await self._kill(handle)
            raise ExecutionError(f"{self.command} I/O failed: {e}") from e
        except BaseException:
            await self._kill(handle)
            raise

        stderr_text = stderr.decode("utf-8", errors="replace").strip()
        if returncode != 0:
            raise ExecutionError(
                f"{self.command} exited with code {returncode}: {stderr_text[:500] or 'no error output'}"
            )
        if stderr_text:
            logger.warning(
                f"{self.command} wrote to stderr: {stderr_text[:500]}",
                extra={**log_context, "attempt": attempt},
            )

        return stdout.decode("utf-8", errors="replace")

    async def _kill(self, handle: ProcessHandle) -> None:
        handle.terminate()
        try:
            await asyncio.wait_for(handle.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.error(f"{self.command} did not exit after being killed")
