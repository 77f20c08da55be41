"""API endpoints package for the gateway."""

from codegate.app.api.code_assist import router as code_assist_router
from codegate.app.api.health import router as health_router

__all__ = [
    "code_assist_router",
    "health_router",
]
