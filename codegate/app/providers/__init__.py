"""Code assistant execution: process runners, retry policy and executor."""

from codegate.app.providers.assistant import AssistantExecutor, build_prompt
from codegate.app.providers.process import (
    ProcessHandle,
    ProcessRunner,
    SubprocessRunner,
)
from codegate.app.providers.retry import RetryPolicy, run_with_retry

__all__ = [
    "AssistantExecutor",
    "build_prompt",
    "ProcessHandle",
    "ProcessRunner",
    "SubprocessRunner",
    "RetryPolicy",
    "run_with_retry",
]
