"""Health check endpoint."""

import shutil
import time
from typing import Any

from fastapi import APIRouter, Request

from codegate.app.core.config import settings
from codegate.app.core.utils import utc_timestamp

router = APIRouter()

_started = time.monotonic()


def assistant_cli_status() -> str:
    """'available' when the assistant command resolves on PATH."""
    if settings.assistant_mock:
        return "mock"
    return "available" if shutil.which(settings.assistant_command) else "unavailable"


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Report service status, assistant availability and limiter load."""
    rate_limiter = request.app.state.rate_limiter
    cli_status = assistant_cli_status()

    return {
        "status": "healthy" if cli_status != "unavailable" else "degraded",
        "timestamp": utc_timestamp(),
        "version": settings.app_version,
        "environment": settings.environment,
        "uptime": round(time.monotonic() - _started, 3),
        "services": {
            "assistant_cli": cli_status,
            "rate_limiter": {
                "status": "operational",
                "sweeper_running": rate_limiter.running,
                **(await rate_limiter.stats()),
            },
        },
    }
