"""Error taxonomy shared by the query, tariff and quota core.

The API layer maps each class onto an HTTP status in
``tradescope.api.app``; domain code only ever raises these.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TradeScopeError(Exception):
    """Base class for all domain errors."""

    code = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class ValidationError(TradeScopeError):
    """Malformed or out-of-range input, reported with the offending field."""

    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "field": self.field, "message": self.message}


class InsufficientTier(TradeScopeError):
    """The caller's subscription tier is below the operation's minimum."""

    code = "insufficient_tier"

    def __init__(self, operation: str, required_tier: str, actual_tier: Optional[str]) -> None:
        super().__init__(
            f"Operation {operation!r} requires tier {required_tier} (current: {actual_tier or 'unknown'})"
        )
        self.operation = operation
        self.required_tier = required_tier
        self.actual_tier = actual_tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": str(self),
            "operation": self.operation,
            "required_tier": self.required_tier,
            "current_tier": self.actual_tier,
        }


class QuotaExceeded(TradeScopeError):
    """A credit reservation would drive the balance below zero."""

    code = "quota_exceeded"

    def __init__(self, credit_type: str, requested: int, remaining: int) -> None:
        super().__init__(
            f"Insufficient {credit_type} credits: requested {requested}, remaining {remaining}"
        )
        self.credit_type = credit_type
        self.requested = requested
        self.remaining = remaining

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": str(self),
            "credit_type": self.credit_type,
            "requested": self.requested,
            "remaining": self.remaining,
        }


class UpstreamUnavailable(TradeScopeError):
    """The search index or an external provider could not be reached."""

    code = "upstream_unavailable"

    def __init__(self, service: str, attempts: int = 1, reason: str = "") -> None:
        detail = f" ({reason})" if reason else ""
        super().__init__(f"{service} unavailable after {attempts} attempt(s){detail}")
        self.service = service
        self.attempts = attempts
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": str(self),
            "service": self.service,
            "attempts": self.attempts,
        }


class NotFound(TradeScopeError):
    """A malformed identifier, or a record that does not exist."""

    code = "not_found"

    def __init__(self, resource: str, identifier: str, message: str = "") -> None:
        super().__init__(message or f"{resource} {identifier!r} not found")
        self.resource = resource
        self.identifier = identifier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": str(self),
            "resource": self.resource,
            "identifier": self.identifier,
        }
