"""
Correlation ID middleware for webhook tracing.

Reads X-Correlation-ID from the incoming request or generates a UUID, and keeps it
in request.state and a contextvar so system events logged deep inside a
conversation turn carry the id of the webhook that triggered it.
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

HEADER_CORRELATION_ID = "X-Correlation-ID"
MAX_CORRELATION_ID_LENGTH = 128

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id(request: Request | None = None) -> str | None:
    """
    Correlation ID for the current request: request.state first, then the contextvar.
    """
    if request is not None and getattr(request.state, "correlation_id", None):
        return request.state.correlation_id
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID in contextvar (sweep runs and background tasks)."""
    _correlation_id_var.set(correlation_id)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Sets correlation_id on every request and echoes it on the response."""

    async def dispatch(self, request: Request, call_next: Callable):
        incoming = (request.headers.get(HEADER_CORRELATION_ID) or "").strip()
        cid = incoming if incoming and len(incoming) <= MAX_CORRELATION_ID_LENGTH else str(uuid.uuid4())
        request.state.correlation_id = cid
        token = _correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            _correlation_id_var.reset(token)
        response.headers[HEADER_CORRELATION_ID] = cid
        return response
