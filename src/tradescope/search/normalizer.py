"""Turn raw, partially specified search filters into a canonical SearchQuery.

Raw filters use the public camelCase field names of the search request.
Normalization is deterministic: the same raw mapping always yields an equal
``SearchQuery`` (set filters are de-duplicated and sorted), which is what the
result cache keys on.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from tradescope.errors import ValidationError
from tradescope.search.models import SORT_FIELDS, SORT_ORDERS, TRANSPORT_MODES, SearchQuery

MAX_COUNTRY_CODES = 50
MAX_PORT_CODES = 50
MAX_EXCLUDED_COMPANIES = 100
MAX_PAGE_SIZE = 100

MAX_HS_DIGITS = 10
MIN_HS_PREFIX_DIGITS = 2
MIN_HS_EXACT_DIGITS = 6

_TEXT_LIMITS = {
    "productKeyword": 200,
    "shipperName": 200,
    "consigneeName": 200,
    "carrier": 100,
}

_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")
_PORT_RE = re.compile(r"^[A-Z0-9]{2,10}$")
_WHITESPACE_RE = re.compile(r"\s+")
_HS_SEPARATORS_RE = re.compile(r"[\s.\-]")

KNOWN_FIELDS = frozenset(
    {
        "hsCode",
        "productKeyword",
        "shipperName",
        "consigneeName",
        "shipperId",
        "consigneeId",
        "originCountries",
        "destinationCountries",
        "portsOfLoading",
        "portsOfDischarge",
        "dateFrom",
        "dateTo",
        "minQuantity",
        "maxQuantity",
        "minValueUsd",
        "maxValueUsd",
        "minUnitPrice",
        "maxUnitPrice",
        "transportMode",
        "carrier",
        "page",
        "pageSize",
        "sortBy",
        "sortOrder",
        "includeAggregations",
        "excludeCompanyIds",
    }
)

_RANGE_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("minQuantity", "maxQuantity"),
    ("minValueUsd", "maxValueUsd"),
    ("minUnitPrice", "maxUnitPrice"),
)


def normalize_query(raw: Optional[Mapping[str, Any]]) -> SearchQuery:
    """Validate ``raw`` and return the canonical query.

    Raises ``ValidationError`` naming the first offending field.
    """
    raw = dict(raw or {})
    unknown = sorted(set(raw) - KNOWN_FIELDS)
    if unknown:
        raise ValidationError(unknown[0], "unknown search filter")

    hs_code, hs_is_prefix = normalize_hs_pattern(raw.get("hsCode"))

    numbers: Dict[str, Optional[float]] = {}
    for low, high in _RANGE_PAIRS:
        numbers[low] = _non_negative_number(raw, low)
        numbers[high] = _non_negative_number(raw, high)
        if numbers[low] is not None and numbers[high] is not None and numbers[low] > numbers[high]:
            raise ValidationError(low, f"must be less than or equal to {high}")

    date_from = _date(raw, "dateFrom")
    date_to = _date(raw, "dateTo")
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError("dateFrom", "must be on or before dateTo")

    transport_mode = _text(raw, "transportMode", limit=None)
    if transport_mode is not None:
        transport_mode = transport_mode.upper()
        if transport_mode not in TRANSPORT_MODES:
            raise ValidationError("transportMode", f"must be one of {', '.join(TRANSPORT_MODES)}")

    page = _integer(raw, "page", default=1)
    if page < 1:
        raise ValidationError("page", "must be >= 1")
    page_size = _integer(raw, "pageSize", default=20)
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError("pageSize", f"must be between 1 and {MAX_PAGE_SIZE}")

    sort_by = _text(raw, "sortBy", limit=None, lower=False) or "shipmentDate"
    if sort_by not in SORT_FIELDS:
        raise ValidationError("sortBy", f"must be one of {', '.join(SORT_FIELDS)}")
    sort_order = (_text(raw, "sortOrder", limit=None) or "desc").lower()
    if sort_order not in SORT_ORDERS:
        raise ValidationError("sortOrder", "must be 'asc' or 'desc'")

    return SearchQuery(
        hs_code=hs_code,
        hs_code_is_prefix=hs_is_prefix,
        product_keyword=_search_text(raw, "productKeyword"),
        shipper_name=_search_text(raw, "shipperName"),
        consignee_name=_search_text(raw, "consigneeName"),
        shipper_id=_identifier(raw, "shipperId"),
        consignee_id=_identifier(raw, "consigneeId"),
        origin_countries=_code_set(raw, "originCountries", _COUNTRY_RE, MAX_COUNTRY_CODES),
        destination_countries=_code_set(raw, "destinationCountries", _COUNTRY_RE, MAX_COUNTRY_CODES),
        ports_of_loading=_code_set(raw, "portsOfLoading", _PORT_RE, MAX_PORT_CODES),
        ports_of_discharge=_code_set(raw, "portsOfDischarge", _PORT_RE, MAX_PORT_CODES),
        date_from=date_from,
        date_to=date_to,
        min_quantity=numbers["minQuantity"],
        max_quantity=numbers["maxQuantity"],
        min_value_usd=numbers["minValueUsd"],
        max_value_usd=numbers["maxValueUsd"],
        min_unit_price=numbers["minUnitPrice"],
        max_unit_price=numbers["maxUnitPrice"],
        transport_mode=transport_mode,
        carrier=_search_text(raw, "carrier"),
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_order=sort_order,
        include_aggregations=_boolean(raw, "includeAggregations", default=True),
        exclude_company_ids=_id_set(raw, "excludeCompanyIds", MAX_EXCLUDED_COMPANIES),
    )


def normalize_hs_pattern(value: Any, field: str = "hsCode") -> Tuple[Optional[str], bool]:
    """Return ``(digits, is_prefix)`` for an HS code filter.

    ``"7308*"`` -> ``("7308", True)``; ``"7308.90"`` -> ``("730890", False)``.
    Only one wildcard is allowed and it must be the last character.
    """
    if value is None:
        return None, False
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    cleaned = _HS_SEPARATORS_RE.sub("", value)
    if not cleaned:
        return None, False

    wildcards = cleaned.count("*")
    if wildcards > 1:
        raise ValidationError(field, "only one wildcard '*' is allowed")
    if wildcards == 1 and not cleaned.endswith("*"):
        raise ValidationError(field, "wildcard '*' must be the last character")

    digits = cleaned.rstrip("*")
    if not digits.isdigit():
        raise ValidationError(field, "must contain digits only (optionally ending in '*')")
    if len(digits) > MAX_HS_DIGITS:
        raise ValidationError(field, f"must have at most {MAX_HS_DIGITS} digits")
    if wildcards:
        if len(digits) < MIN_HS_PREFIX_DIGITS:
            raise ValidationError(field, f"wildcard needs at least {MIN_HS_PREFIX_DIGITS} leading digits")
        return digits, True
    if len(digits) < MIN_HS_EXACT_DIGITS:
        raise ValidationError(field, f"must have at least {MIN_HS_EXACT_DIGITS} digits, or end in '*'")
    return digits, False


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------
def _text(raw: Mapping[str, Any], field: str, *, limit: Optional[int], lower: bool = False) -> Optional[str]:
    value = raw.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    value = _WHITESPACE_RE.sub(" ", value).strip()
    if not value:
        return None
    if limit is not None and len(value) > limit:
        raise ValidationError(field, f"must be at most {limit} characters")
    return value.lower() if lower else value


def _search_text(raw: Mapping[str, Any], field: str) -> Optional[str]:
    return _text(raw, field, limit=_TEXT_LIMITS[field], lower=True)


def _identifier(raw: Mapping[str, Any], field: str) -> Optional[str]:
    return _text(raw, field, limit=64)


def _as_list(raw: Mapping[str, Any], field: str) -> list:
    value = raw.get(field)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    raise ValidationError(field, "must be a string or a list of strings")


def _code_set(raw: Mapping[str, Any], field: str, pattern: re.Pattern, cap: int) -> Tuple[str, ...]:
    items = _as_list(raw, field)
    if len(items) > cap:
        raise ValidationError(field, f"must contain at most {cap} entries")
    codes = set()
    for item in items:
        if not isinstance(item, str):
            raise ValidationError(field, "entries must be strings")
        code = item.strip().upper()
        if not code:
            continue
        if not pattern.match(code):
            raise ValidationError(field, f"invalid code {item!r}")
        codes.add(code)
    return tuple(sorted(codes))


def _id_set(raw: Mapping[str, Any], field: str, cap: int) -> Tuple[str, ...]:
    items = _as_list(raw, field)
    if len(items) > cap:
        raise ValidationError(field, f"must contain at most {cap} entries")
    ids = set()
    for item in items:
        if not isinstance(item, str):
            raise ValidationError(field, "entries must be strings")
        if item.strip():
            ids.add(item.strip())
    return tuple(sorted(ids))


def _non_negative_number(raw: Mapping[str, Any], field: str) -> Optional[float]:
    value = raw.get(field)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(field, "must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(field, "must be a number") from None
    if number != number or number in (float("inf"), float("-inf")):
        raise ValidationError(field, "must be a finite number")
    if number < 0:
        raise ValidationError(field, "must be >= 0")
    return number


def _integer(raw: Mapping[str, Any], field: str, *, default: int) -> int:
    value = raw.get(field)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(field, "must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(field, "must be an integer")
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(field, "must be an integer") from None


def _boolean(raw: Mapping[str, Any], field: str, *, default: bool) -> bool:
    value = raw.get(field)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
        return False
    raise ValidationError(field, "must be a boolean")


def _date(raw: Mapping[str, Any], field: str) -> Optional[date]:
    value = raw.get(field)
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(field, "must be an ISO 8601 date")
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError(field, "must be an ISO 8601 date") from None


def iter_filter_fields(query: SearchQuery) -> Iterable[str]:
    """Names of the filters actually set on ``query`` (for logging)."""
    defaults = SearchQuery()
    for name, value in query.to_canonical_dict().items():
        if name in {"page", "page_size", "sort_by", "sort_order", "include_aggregations"}:
            continue
        if value != getattr(defaults, name) and value not in ([], None):
            yield name


def parse_date(value: Any, field: str) -> Optional[date]:
    """Parse one ISO 8601 date filter; None or empty means absent."""
    return _date({field: value}, field)
