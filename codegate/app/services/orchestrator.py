"""Request pipeline for the code-assist endpoint.

Auth -> rate limit -> validation -> assistant execution -> parsing, with
every outcome (success or failure) wrapped in the same response envelope.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from codegate.app.core.config import settings
from codegate.app.core.logging import get_log_context, get_logger
from codegate.app.core.utils import elapsed_ms, generate_session_id, utc_timestamp
from codegate.app.exceptions import (
    AssistantTimeoutError,
    ExecutionError,
    GatewayException,
    InternalError,
    InvalidRequestError,
    RateLimitExceededError,
    UnauthorizedError,
)
from codegate.app.middleware.auth import AUTH_FAILURE_MESSAGES, AuthGate
from codegate.app.middleware.rate_limit import RateDecision, RateLimiter
from codegate.app.models import (
    CodeAssistResponse,
    ErrorDetail,
    ExecutionRequest,
    ExecutionResult,
    ResponseMetadata,
)
from codegate.app.providers.assistant import AssistantExecutor
from codegate.app.services.response_parser import parse_response

logger = get_logger(__name__)

SESSION_HEADER = "x-session-id"

GENERIC_MESSAGES = {
    AssistantTimeoutError: "The code assistant did not respond in time",
    ExecutionError: "The code assistant failed to process the request",
    InternalError: "An unexpected error occurred",
}


def describe_validation_error(exc: ValidationError) -> str:
    """First validation problem as 'field: message'."""
    errors = exc.errors()
    if not errors:
        return "Invalid request format"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{location}: {message}" if location else message


def validate_payload(payload: Any) -> ExecutionRequest:
    """Validate a decoded JSON body into an ExecutionRequest.

    Raises:
        InvalidRequestError: If the body is not an object or a field is invalid
    """
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return ExecutionRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidRequestError(describe_validation_error(e)) from e


@dataclass
class AssistOutcome:
    """Everything the HTTP layer needs to answer one request."""
    status_code: int
    envelope: CodeAssistResponse
    headers: dict[str, str] = field(default_factory=dict)


def _rate_limit_headers(decision: RateDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.retry_after),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


class RequestOrchestrator:
    """Sequences the pipeline stages for one request at a time.

    Instances are shared across concurrent requests; all per-request state
    lives in local variables.
    """

    def __init__(
        self,
        auth_gate: AuthGate,
        rate_limiter: RateLimiter,
        executor: AssistantExecutor,
        expose_error_details: Optional[bool] = None,
    ):
        self.auth_gate = auth_gate
        self.rate_limiter = rate_limiter
        self.executor = executor
        self.expose_error_details = (
            settings.expose_error_details if expose_error_details is None else expose_error_details
        )

    async def handle(
        self,
        payload: Any,
        headers: Mapping[str, str],
        source_address: Optional[str] = None,
    ) -> AssistOutcome:
        """Process one code-assist request.

        Args:
            payload: Decoded JSON body (None if the body was not valid JSON)
            headers: Request headers
            source_address: Socket peer address

        Returns:
            AssistOutcome with status code, envelope and extra headers
        """
        started = time.perf_counter()
        lowered = {k.lower(): v for k, v in headers.items()}
        session_id = lowered.get(SESSION_HEADER) or generate_session_id()
        log_context = get_log_context(session_id=session_id)
        response_headers: dict[str, str] = {}

        logger.info("Code assist request started", extra=log_context)

        try:
            decision = self.auth_gate.authenticate(lowered, source_address)
            if not decision.valid:
                raise UnauthorizedError(
                    reason=decision.reason or "missing_or_malformed",
                    detail=AUTH_FAILURE_MESSAGES.get(decision.reason or ""),
                )
            client_id = decision.client_id or "anonymous"
            log_context = get_log_context(session_id=session_id, client_id=client_id)

            rate = await self.rate_limiter.check(client_id)
            response_headers.update(_rate_limit_headers(rate))
            if not rate.allowed:
                raise RateLimitExceededError(remaining=rate.remaining, reset_ms=rate.reset_ms)

            request = validate_payload(payload)
            log_context = get_log_context(
                session_id=session_id, client_id=client_id, action=request.action
            )
            logger.info(
                f"Processing {request.action} request for language: "
                f"{request.language or 'auto-detect'}",
                extra=log_context,
            )

            raw_text = await self.executor.execute(request, session_id=session_id)
            result = parse_response(raw_text, request.action)

            await self.rate_limiter.record_success(client_id, rate.token)

        except GatewayException as e:
            return self._failure(e, started, session_id, response_headers, log_context)
        except Exception as e:
            logger.exception(f"Unhandled error in code assist pipeline: {e}", extra=log_context)
            detail = str(e) if self.expose_error_details else GENERIC_MESSAGES[InternalError]
            return self._failure(
                InternalError(detail), started, session_id, response_headers, log_context
            )

        envelope = self._envelope(started, session_id, data=result)
        logger.info(
            f"Request completed successfully in {envelope.metadata.execution_time}ms",
            extra={**log_context, "duration_ms": envelope.metadata.execution_time},
        )
        return AssistOutcome(status_code=200, envelope=envelope, headers=response_headers)

    def _failure(
        self,
        exc: GatewayException,
        started: float,
        session_id: str,
        headers: dict[str, str],
        log_context: dict,
    ) -> AssistOutcome:
        message = exc.message
        if isinstance(exc, (AssistantTimeoutError, ExecutionError)):
            logger.error(f"Code assistant failed: {exc.message}", extra=log_context)
            if not self.expose_error_details:
                message = GENERIC_MESSAGES.get(type(exc), exc.message)
        elif not isinstance(exc, InternalError):
            logger.warning(f"Request rejected ({exc.code}): {exc.message}", extra=log_context)

        envelope = self._envelope(
            started, session_id, error=ErrorDetail(code=exc.code, message=message)
        )
        return AssistOutcome(status_code=exc.status_code, envelope=envelope, headers=headers)

    @staticmethod
    def _envelope(
        started: float,
        session_id: str,
        data: Optional[ExecutionResult] = None,
        error: Optional[ErrorDetail] = None,
    ) -> CodeAssistResponse:
        return CodeAssistResponse(
            success=error is None,
            data=data,
            error=error,
            metadata=ResponseMetadata(
                timestamp=utc_timestamp(),
                execution_time=elapsed_ms(started),
                session_id=session_id,
            ),
        )
