"""Shipment records, canonical search queries and search results."""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TRANSPORT_MODES: Tuple[str, ...] = ("SEA", "AIR", "RAIL", "ROAD", "MULTIMODAL")

# Public sort field -> Shipment attribute.
SORT_FIELDS: Dict[str, str] = {
    "shipmentDate": "shipment_date",
    "declaredValueUsd": "declared_value_usd",
    "quantity": "quantity",
    "unitPriceUsd": "unit_price_usd",
    "shipperName": "shipper_name",
    "consigneeName": "consignee_name",
}

SORT_ORDERS: Tuple[str, ...] = ("asc", "desc")


@dataclass(frozen=True)
class Shipment:
    """Single customs declaration / bill of lading record."""

    id: str
    shipper_id: str
    shipper_name: str
    consignee_id: str
    consignee_name: str
    hs_code: str
    product_description: str
    shipment_date: date
    origin_country: Optional[str] = None
    destination_country: Optional[str] = None
    shipper_country: Optional[str] = None
    consignee_country: Optional[str] = None
    port_of_loading: Optional[str] = None
    port_of_loading_name: Optional[str] = None
    port_of_discharge: Optional[str] = None
    port_of_discharge_name: Optional[str] = None
    quantity: Optional[float] = None
    quantity_unit: Optional[str] = None
    declared_value_usd: Optional[float] = None
    unit_price_usd: Optional[float] = None
    transport_mode: Optional[str] = None
    carrier: Optional[str] = None

    @property
    def hs_chapter(self) -> Optional[str]:
        digits = "".join(ch for ch in self.hs_code if ch.isdigit())
        return digits[:2] if len(digits) >= 2 else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shipperId": self.shipper_id,
            "shipperName": self.shipper_name,
            "shipperCountryCode": self.shipper_country,
            "consigneeId": self.consignee_id,
            "consigneeName": self.consignee_name,
            "consigneeCountryCode": self.consignee_country,
            "originCountryCode": self.origin_country,
            "destinationCountryCode": self.destination_country,
            "hsCode": self.hs_code,
            "productDescription": self.product_description,
            "quantity": self.quantity,
            "quantityUnit": self.quantity_unit,
            "declaredValueUsd": self.declared_value_usd,
            "unitPriceUsd": self.unit_price_usd,
            "portOfLoading": self.port_of_loading,
            "portOfLoadingName": self.port_of_loading_name,
            "portOfDischarge": self.port_of_discharge,
            "portOfDischargeName": self.port_of_discharge_name,
            "transportMode": self.transport_mode,
            "carrier": self.carrier,
            "shipmentDate": self.shipment_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Shipment":
        """Build a record from either camelCase (API) or snake_case keys."""
        def pick(snake: str, camel: str) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel)

        raw_date = pick("shipment_date", "shipmentDate")
        shipment_date = raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date)[:10])
        return cls(
            id=str(data["id"]),
            shipper_id=str(pick("shipper_id", "shipperId")),
            shipper_name=str(pick("shipper_name", "shipperName")),
            consignee_id=str(pick("consignee_id", "consigneeId")),
            consignee_name=str(pick("consignee_name", "consigneeName")),
            hs_code=str(pick("hs_code", "hsCode")),
            product_description=str(pick("product_description", "productDescription") or ""),
            shipment_date=shipment_date,
            origin_country=pick("origin_country", "originCountryCode"),
            destination_country=pick("destination_country", "destinationCountryCode"),
            shipper_country=pick("shipper_country", "shipperCountryCode"),
            consignee_country=pick("consignee_country", "consigneeCountryCode"),
            port_of_loading=pick("port_of_loading", "portOfLoading"),
            port_of_loading_name=pick("port_of_loading_name", "portOfLoadingName"),
            port_of_discharge=pick("port_of_discharge", "portOfDischarge"),
            port_of_discharge_name=pick("port_of_discharge_name", "portOfDischargeName"),
            quantity=_opt_float(pick("quantity", "quantity")),
            quantity_unit=pick("quantity_unit", "quantityUnit"),
            declared_value_usd=_opt_float(pick("declared_value_usd", "declaredValueUsd")),
            unit_price_usd=_opt_float(pick("unit_price_usd", "unitPriceUsd")),
            transport_mode=pick("transport_mode", "transportMode"),
            carrier=pick("carrier", "carrier"),
        )


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass(frozen=True)
class SearchQuery:
    """Canonical, validated search descriptor produced by the normalizer.

    Set-valued filters are stored as sorted tuples so that equal inputs give
    equal queries (and equal cache keys).
    """

    hs_code: Optional[str] = None
    hs_code_is_prefix: bool = False
    product_keyword: Optional[str] = None
    shipper_name: Optional[str] = None
    consignee_name: Optional[str] = None
    shipper_id: Optional[str] = None
    consignee_id: Optional[str] = None
    origin_countries: Tuple[str, ...] = ()
    destination_countries: Tuple[str, ...] = ()
    ports_of_loading: Tuple[str, ...] = ()
    ports_of_discharge: Tuple[str, ...] = ()
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_quantity: Optional[float] = None
    max_quantity: Optional[float] = None
    min_value_usd: Optional[float] = None
    max_value_usd: Optional[float] = None
    min_unit_price: Optional[float] = None
    max_unit_price: Optional[float] = None
    transport_mode: Optional[str] = None
    carrier: Optional[str] = None
    page: int = 1
    page_size: int = 20
    sort_by: str = "shipmentDate"
    sort_order: str = "desc"
    include_aggregations: bool = True
    exclude_company_ids: Tuple[str, ...] = ()

    def to_canonical_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        for key in ("date_from", "date_to"):
            if payload[key] is not None:
                payload[key] = payload[key].isoformat()
        for key, value in payload.items():
            if isinstance(value, tuple):
                payload[key] = list(value)
        return payload

    def cache_key(self) -> str:
        """Stable hash of the canonical query, used for result caching."""
        canonical = json.dumps(self.to_canonical_dict(), sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FacetBucket:
    key: str
    label: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "label": self.label, "count": self.count}


@dataclass(frozen=True)
class RangeSummary:
    """min/max/avg over present values; ``sample_size`` of 0 means no data."""

    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    sample_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"min": self.min, "max": self.max, "avg": self.avg, "sampleSize": self.sample_size}


@dataclass(frozen=True)
class Aggregations:
    facets: Dict[str, Tuple[FacetBucket, ...]] = field(default_factory=dict)
    ranges: Dict[str, RangeSummary] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            name: [bucket.to_dict() for bucket in buckets] for name, buckets in self.facets.items()
        }
        for name, summary in self.ranges.items():
            payload[name] = summary.to_dict()
        return payload


@dataclass(frozen=True)
class SearchResult:
    items: Tuple[Shipment, ...]
    total: int
    page: int
    page_size: int
    aggregations: Optional[Aggregations] = None

    @property
    def total_pages(self) -> int:
        return total_pages(self.total, self.page_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
            "aggregations": self.aggregations.to_dict() if self.aggregations is not None else None,
        }


def total_pages(total: int, page_size: int) -> int:
    if total <= 0:
        return 0
    return math.ceil(total / page_size)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------
class SearchShipmentsRequestModel(BaseModel):
    """Shipment search body. Only loose typing here; the normalizer validates."""

    hs_code: Optional[str] = None
    product_keyword: Optional[str] = None
    shipper_name: Optional[str] = None
    consignee_name: Optional[str] = None
    shipper_id: Optional[str] = None
    consignee_id: Optional[str] = None
    origin_countries: Optional[Union[str, List[str]]] = None
    destination_countries: Optional[Union[str, List[str]]] = None
    ports_of_loading: Optional[Union[str, List[str]]] = None
    ports_of_discharge: Optional[Union[str, List[str]]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    min_quantity: Optional[float] = None
    max_quantity: Optional[float] = None
    min_value_usd: Optional[float] = None
    max_value_usd: Optional[float] = None
    min_unit_price: Optional[float] = None
    max_unit_price: Optional[float] = None
    transport_mode: Optional[str] = None
    carrier: Optional[str] = None
    page: int = Field(default=1)
    page_size: int = Field(default=20)
    sort_by: str = Field(default="shipmentDate")
    sort_order: str = Field(default="desc")
    include_aggregations: bool = True
    exclude_company_ids: Optional[Union[str, List[str]]] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_raw_filters(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def aggregations_from_dict(payload: Dict[str, Any]) -> Aggregations:
    facets: Dict[str, Tuple[FacetBucket, ...]] = {}
    ranges: Dict[str, RangeSummary] = {}
    for name, value in payload.items():
        if isinstance(value, list):
            facets[name] = tuple(
                FacetBucket(key=b["key"], label=b["label"], count=int(b["count"])) for b in value
            )
        elif isinstance(value, dict):
            ranges[name] = RangeSummary(
                min=value["min"], max=value["max"], avg=value["avg"], sample_size=int(value["sampleSize"])
            )
    return Aggregations(facets=facets, ranges=ranges)


def search_result_from_dict(payload: Dict[str, Any]) -> SearchResult:
    """Inverse of ``SearchResult.to_dict`` (used by the result cache)."""
    aggregations = payload.get("aggregations")
    return SearchResult(
        items=tuple(Shipment.from_dict(item) for item in payload.get("items", [])),
        total=int(payload["total"]),
        page=int(payload["page"]),
        page_size=int(payload["pageSize"]),
        aggregations=aggregations_from_dict(aggregations) if aggregations is not None else None,
    )
