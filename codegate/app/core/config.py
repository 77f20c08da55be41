import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list(raw: Any) -> list[str]:
    """Parse a list setting given as a JSON array or a comma/space separated string."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate plain strings so a misconfigured deployment
    # does not crash at startup.
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    return [p for p in re.split(r"[,\s]+", raw) if p]


def _parse_origins(raw: Any) -> list[str]:
    origins: list[str] = []
    for part in _parse_list(raw):
        if part == "*":
            return ["*"]
        if "://" in part:
            origins.append(part.rstrip("/"))
            continue
        # A bare host admits both schemes; browsers always send one.
        origins.append(f"http://{part}")
        origins.append(f"https://{part}")

    # Deduplicate while preserving order.
    seen: set[str] = set()
    result: list[str] = []
    for origin in origins:
        if origin in seen:
            continue
        seen.add(origin)
        result.append(origin)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - exposes underlying error details in responses
    debug: bool = False
    environment: str = "production"  # production | development
    app_version: str = "1.0.0"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Authentication
    api_secret: str = ""
    allowed_origins: Annotated[list[str], NoDecode] = ["https://script.google.com"]
    caller_marker: str = "GoogleAppsScript"

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["https://script.google.com"]

    # Rate limiting settings
    rate_limit_window_ms: int = 60_000
    rate_limit_max_requests: int = 10
    rate_limit_skip_successful: bool = False

    # Request limits
    max_prompt_length: int = 10_000
    max_body_size: int = 1024 * 1024

    # Code assistant subprocess
    assistant_command: str = "claude"
    assistant_args: Annotated[list[str], NoDecode] = ["--print"]
    assistant_timeout_seconds: float = 120.0
    assistant_max_retries: int = 3
    assistant_retry_base_ms: int = 1000
    assistant_retry_max_delay_ms: int = 10_000
    assistant_auth_env_var: str = "CLAUDE_AUTH_METHOD"
    assistant_auth_method: str = "oauth"
    assistant_workspace_root: str | None = None
    assistant_mock: bool = False  # Answer with canned output instead of spawning the CLI

    @property
    def expose_error_details(self) -> bool:
        """Whether underlying failure details may be returned to callers."""
        return self.debug or self.environment.lower() == "development"

    @field_validator("allowed_origins", "cors_origins", mode="before")
    @classmethod
    def decode_origins(cls, v: Any) -> list[str]:
        return _parse_origins(v)

    @field_validator("assistant_args", mode="before")
    @classmethod
    def decode_args(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator(
        "rate_limit_window_ms",
        "rate_limit_max_requests",
        "max_prompt_length",
        "max_body_size",
        "assistant_max_retries",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limits are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("assistant_timeout_seconds")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("assistant_timeout_seconds must be positive")
        return v

    @field_validator("assistant_retry_base_ms", "assistant_retry_max_delay_ms")
    @classmethod
    def validate_delay_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retry delays cannot be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
