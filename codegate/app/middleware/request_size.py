"""Request body size limit middleware.

This middleware limits the size of incoming request bodies to prevent
memory exhaustion and answers oversized requests with the regular error
envelope (INVALID_REQUEST, HTTP 413).

Enforces size limits for both Content-Length and chunked transfer encoding.
"""

import json
import time

from starlette.types import Message, Receive, Scope, Send

from codegate.app.core.logging import get_logger
from codegate.app.core.utils import elapsed_ms, generate_session_id, utc_timestamp
from codegate.app.exceptions import InvalidRequestError

logger = get_logger(__name__)


class SizeExceededError(Exception):
    """Raised when request body exceeds size limit."""


class SizeLimitedStream:
    """A receive wrapper that counts body bytes as they are read.

    This prevents chunked transfer encoding from bypassing the limit.
    """

    def __init__(self, receive: Receive, max_size: int):
        self._receive = receive
        self._max_size = max_size
        self._bytes_read = 0

    async def receive(self) -> Message:
        message = await self._receive()

        if message["type"] == "http.request":
            self._bytes_read += len(message.get("body", b""))
            if self._bytes_read > self._max_size:
                raise SizeExceededError(
                    f"Request body too large. Maximum allowed: {self._max_size} bytes"
                )

        return message


class RequestSizeLimitMiddleware:
    """ASGI middleware to limit request body size.

    Returns HTTP 413 (Payload Too Large) if the limit is exceeded. Raw ASGI
    so the receive callable is wrapped before Starlette builds a Request.

    Usage:
        app.add_middleware(RequestSizeLimitMiddleware, max_body_size=1024 * 1024)
    """

    def __init__(self, app, max_body_size: int = 1024 * 1024):
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        session_id = None
        content_length = None
        for name, value in scope.get("headers", []):
            lowered = name.lower()
            if lowered == b"content-length":
                content_length = value.decode("latin-1")
            elif lowered == b"x-session-id":
                session_id = value.decode("latin-1")

        if content_length:
            try:
                if int(content_length) > self.max_body_size:
                    # Reject without reading the body
                    await self._send_413_response(send, started, session_id)
                    return
            except ValueError:
                # Invalid Content-Length, fall through to the streaming check
                pass

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        size_limited_receive = SizeLimitedStream(receive, self.max_body_size).receive

        try:
            await self.app(scope, size_limited_receive, tracking_send)
        except SizeExceededError as exc:
            if response_started:
                raise
            await self._send_413_response(send, started, session_id, detail=str(exc))

    async def _send_413_response(
        self,
        send: Send,
        started: float,
        session_id: str | None,
        detail: str | None = None,
    ) -> None:
        if detail is None:
            detail = f"Request body too large. Maximum allowed: {self.max_body_size} bytes"
        logger.warning(detail, extra={"session_id": session_id})

        body = json.dumps({
            "success": False,
            "error": {"code": InvalidRequestError.code, "message": detail},
            "metadata": {
                "timestamp": utc_timestamp(),
                "executionTime": elapsed_ms(started),
                "sessionId": session_id or generate_session_id(),
            },
        }).encode("utf-8")

        await send(
            {
                "type": "http.response.start",
                "status": 413,
                "headers": [
                    [b"content-type", b"application/json"],
                    [b"content-length", str(len(body)).encode()],
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})
