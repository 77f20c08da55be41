"""Middleware package for the gateway."""

from codegate.app.middleware.auth import AuthDecision, AuthGate
from codegate.app.middleware.rate_limit import RateLimiter
from codegate.app.middleware.request_size import RequestSizeLimitMiddleware

__all__ = [
    "AuthDecision",
    "AuthGate",
    "RateLimiter",
    "RequestSizeLimitMiddleware",
]
