"""Services package for the gateway."""

from codegate.app.services.orchestrator import AssistOutcome, RequestOrchestrator
from codegate.app.services.response_parser import parse_response

__all__ = [
    "AssistOutcome",
    "RequestOrchestrator",
    "parse_response",
]
