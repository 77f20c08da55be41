"""Code-assist API endpoint."""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from codegate.app.core.logging import get_logger
from codegate.app.middleware.auth import request_peer
from codegate.app.services.orchestrator import RequestOrchestrator

router = APIRouter()
logger = get_logger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def get_orchestrator(request: Request) -> RequestOrchestrator:
    """Get the orchestrator built during application startup."""
    return request.app.state.orchestrator


@router.post("/api/code-assist", response_model=None)
async def code_assist(
    request: Request,
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Run a generate/analyze/optimize/review request through the assistant.

    The body is decoded here but validated by the orchestrator, after
    authentication and rate limiting, so unauthenticated callers never get
    schema feedback.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    outcome = await orchestrator.handle(payload, request.headers, request_peer(request))

    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.envelope.to_payload(),
        headers={**NO_CACHE_HEADERS, **outcome.headers},
    )
