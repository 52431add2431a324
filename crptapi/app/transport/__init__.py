"""HTTP transport: one POST exchange per call, raw status and body out."""

from crptapi.app.transport.executor import RequestExecutor
from crptapi.app.transport.models import InboundResponse, OutboundRequest

__all__ = [
    "InboundResponse",
    "OutboundRequest",
    "RequestExecutor",
]
