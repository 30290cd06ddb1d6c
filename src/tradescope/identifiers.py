"""Identifier and code-prefix checks shared by the services."""

from __future__ import annotations

import re
from typing import Any

from tradescope.errors import NotFound, ValidationError

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-:.]{0,63}$")
_HS_PREFIX_RE = re.compile(r"^\d{2,10}$")


def validate_identifier(value: Any, resource: str) -> str:
    """Malformed identifiers are reported as ``NotFound``."""
    text = "" if value is None else str(value).strip()
    if not _ID_RE.match(text):
        raise NotFound(resource, text, f"Malformed {resource} id {text!r}")
    return text


def hs_prefix(value: Any, field: str = "hsCode") -> str:
    """2-10 digit HS prefix; separators and a trailing '*' are ignored."""
    digits = re.sub(r"[\s.\-*]", "", "" if value is None else str(value))
    if not _HS_PREFIX_RE.match(digits):
        raise ValidationError(field, "must be 2-10 digits")
    return digits
