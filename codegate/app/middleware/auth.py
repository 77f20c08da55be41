import hmac
import zlib
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence
from urllib.parse import urlsplit

from fastapi import Request

from codegate.app.core.config import settings
from codegate.app.core.logging import get_logger

logger = get_logger(__name__)

MAX_TOKEN_LENGTH = 512

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass
class AuthDecision:
    """Verdict of a single authentication attempt."""
    valid: bool
    client_id: Optional[str] = None
    reason: Optional[str] = None


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def get_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Extract Bearer token from the Authorization header.

    Args:
        headers: Request headers (any case)

    Returns:
        The token string if present, None otherwise
    """
    auth = _lower_keys(headers).get("authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth[len("Bearer "):].strip()


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def derive_client_id(source_address: str, user_agent: str, session_token: str) -> str:
    """Derive a throttling bucket key from request metadata.

    CRC-32 is not a security primitive; collisions only merge two callers
    into one rate limit bucket.
    """
    raw = f"{source_address}-{user_agent}-{session_token}"
    return f"client_{_to_base36(zlib.crc32(raw.encode('utf-8')))}"


def get_source_address(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """Return the first X-Forwarded-For hop, else the socket peer address."""
    forwarded = _lower_keys(headers).get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return peer or "unknown"


_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_origin(url: str) -> str | None:
    """Reduce a URL to its ``scheme://host[:port]`` origin.

    Scheme and host are lowercased, userinfo is dropped and the port is kept
    only when it is not the scheme's default. Returns None when the URL has
    no scheme or host, or an invalid port.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = parts.hostname
    if not scheme or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def _origin_allowed(origin: str, allowed: Sequence[str]) -> bool:
    return "*" in allowed or origin in allowed


class AuthGate:
    """Validates the shared-secret bearer credential and the request origin.

    Usage:
        gate = AuthGate(api_secret="s3cret", allowed_origins=["https://script.google.com"])
        decision = gate.authenticate(request.headers, source_address="10.0.0.1")
        if not decision.valid:
            ...
    """

    def __init__(
        self,
        api_secret: Optional[str] = None,
        allowed_origins: Optional[Sequence[str]] = None,
        caller_marker: Optional[str] = None,
    ):
        self._api_secret = settings.api_secret if api_secret is None else api_secret
        self._allowed_origins = [
            normalize_origin(o) or o
            for o in (settings.allowed_origins if allowed_origins is None else allowed_origins)
        ]
        self._caller_marker = settings.caller_marker if caller_marker is None else caller_marker

    def authenticate(
        self,
        headers: Mapping[str, str],
        source_address: Optional[str] = None,
    ) -> AuthDecision:
        """Authenticate a request from its headers.

        Args:
            headers: Request headers (lookup is case-insensitive)
            source_address: Socket peer address, used when no X-Forwarded-For

        Returns:
            AuthDecision with client_id on success, reason on failure
        """
        lowered = _lower_keys(headers)

        token = get_bearer_token(lowered)
        if not token or len(token) > MAX_TOKEN_LENGTH:
            return AuthDecision(valid=False, reason="missing_or_malformed")

        # Always compare, even when no secret is configured, so the
        # response time does not reveal whether the secret is set
        expected = self._api_secret or ""
        matches = hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
        if not matches or not expected:
            return AuthDecision(valid=False, reason="invalid_key")

        origin = lowered.get("origin")
        referer = lowered.get("referer")
        if origin:
            if not _origin_allowed(normalize_origin(origin) or origin, self._allowed_origins):
                logger.warning(f"Rejected request from origin {origin!r}")
                return AuthDecision(valid=False, reason="origin_not_allowed")
        elif referer:
            referer_origin = normalize_origin(referer)
            if referer_origin is None or not _origin_allowed(referer_origin, self._allowed_origins):
                logger.warning(f"Rejected request with referer {referer!r}")
                return AuthDecision(valid=False, reason="origin_not_allowed")

        user_agent = lowered.get("user-agent", "")
        if self._caller_marker and (
            lowered.get("x-requested-with") != self._caller_marker
            and self._caller_marker not in user_agent
        ):
            logger.warning(f"Request not identified as coming from {self._caller_marker}")

        client_id = derive_client_id(
            get_source_address(lowered, source_address),
            user_agent or "unknown",
            lowered.get("x-session-id", ""),
        )
        return AuthDecision(valid=True, client_id=client_id)


AUTH_FAILURE_MESSAGES = {
    "missing_or_malformed": "Missing or invalid Authorization header",
    "invalid_key": "Invalid API key",
    "origin_not_allowed": "Origin not allowed",
}


def request_peer(request: Request) -> str | None:
    """Socket peer address of a Starlette request, if known."""
    return request.client.host if request.client else None
