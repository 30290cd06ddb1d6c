"""Request-scoped logging context.

The API middleware opens a request scope (request id plus the caller's
masked API key); the tier & quota guard narrows it to the organization and
operation it is running. ``log_event`` stamps every payload with whatever
scope is active, so domain code only passes the fields that are its own.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogContext:
    request_id: Optional[str] = None
    api_key: Optional[str] = None
    org_id: Optional[str] = None
    operation: Optional[str] = None

    def fields(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"request_id": self.request_id}
        for name in ("api_key", "org_id", "operation"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


_context: ContextVar[LogContext] = ContextVar("tradescope_log_context", default=LogContext())


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def mask_api_key(raw: Optional[str]) -> str:
    """First four characters only; never log a full key."""
    if not raw:
        return "<missing>"
    return "***" if len(raw) <= 3 else raw[:4] + "***"


def current_context() -> LogContext:
    return _context.get()


@contextmanager
def request_scope(request_id: Optional[str] = None, api_key: Optional[str] = None) -> Iterator[LogContext]:
    """Fresh context for one request or background job."""
    scope = LogContext(
        request_id=request_id or new_request_id(),
        api_key=mask_api_key(api_key) if api_key is not None else None,
    )
    token = _context.set(scope)
    try:
        yield scope
    finally:
        _context.reset(token)


@contextmanager
def operation_scope(org_id: str, operation: str) -> Iterator[LogContext]:
    """Narrow the active context to one organization's guarded operation."""
    scope = replace(_context.get(), org_id=org_id, operation=operation)
    token = _context.set(scope)
    try:
        yield scope
    finally:
        _context.reset(token)


def log_event(message: str, **fields: Any) -> None:
    logger.info(message, extra={"payload": {**current_context().fields(), **fields}})
