"""Request and trace identifiers carried through the current context."""

from __future__ import annotations

import secrets
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Mapping, Optional

REQUEST_ID_HEADER = "X-Request-ID"
TRACE_ID_HEADER = "X-Trace-ID"
DEFAULT_REQUEST_ID_LENGTH = 16

_request_id: ContextVar[str] = ContextVar("wanzhi_request_id", default="")
_trace_id: ContextVar[str] = ContextVar("wanzhi_trace_id", default="")


def generate_request_id() -> str:
    """Return a random hex identifier of DEFAULT_REQUEST_ID_LENGTH characters."""
    return secrets.token_hex(DEFAULT_REQUEST_ID_LENGTH // 2)


def current_request_id() -> str:
    """The request id of the current context, or ``"unknown"``."""
    return _request_id.get() or "unknown"


def current_trace_id() -> str:
    """The trace id of the current context, falling back to the request id."""
    return _trace_id.get() or current_request_id()


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    return next((v for k, v in headers.items() if k.lower() == lowered), "")


def resolve_request_ids(headers: Mapping[str, str]) -> tuple[str, str]:
    """Take request and trace ids from the headers, generating what is missing."""
    request_id = _header(headers, REQUEST_ID_HEADER) or generate_request_id()
    request_id = request_id.strip()
    trace_id = _header(headers, TRACE_ID_HEADER) or request_id
    return request_id, trace_id.strip()


@contextmanager
def request_scope(request_id: str, trace_id: Optional[str] = None) -> Iterator[None]:
    """Make the ids visible to current_request_id/current_trace_id inside the block."""
    tokens = [(_request_id, _request_id.set(request_id))]
    if trace_id is not None:
        tokens.append((_trace_id, _trace_id.set(trace_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)