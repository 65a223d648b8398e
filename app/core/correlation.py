"""
Correlation id handling shared by the HTTP layer, the logs and the broker.

The id is accepted from the inbound ``X-Correlation-Id`` header (or minted),
kept in a context variable for the rest of the request, stored on the outbox
row and finally sent as a header on the broker message.
"""
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request

CORRELATION_HEADER = "X-Correlation-Id"
MAX_CORRELATION_ID_LENGTH = 64

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(value: Optional[str]):
    """Sets the current correlation id and returns the token for reset()."""
    return _correlation_id.set(value)


def reset_correlation_id(token) -> None:
    _correlation_id.reset(token)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value[:MAX_CORRELATION_ID_LENGTH]


async def correlation_id_middleware(request: Request, call_next):
    """Propagates the correlation id for the lifetime of one request."""
    correlation_id = _clean(request.headers.get(CORRELATION_HEADER)) or uuid.uuid4().hex
    token = set_correlation_id(correlation_id)
    try:
        response = await call_next(request)
    finally:
        reset_correlation_id(token)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response
