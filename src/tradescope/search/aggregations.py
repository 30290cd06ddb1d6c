"""Facet buckets and numeric range summaries over a full match set."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional, Tuple

from tradescope.search.index import FieldStats, IndexQuery, ShipmentIndex
from tradescope.search.models import Aggregations, FacetBucket, RangeSummary

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 20

COUNTRY_NAMES: Dict[str, str] = {
    "AE": "United Arab Emirates",
    "AR": "Argentina",
    "AT": "Austria",
    "AU": "Australia",
    "BD": "Bangladesh",
    "BE": "Belgium",
    "BR": "Brazil",
    "CA": "Canada",
    "CH": "Switzerland",
    "CL": "Chile",
    "CN": "China",
    "CO": "Colombia",
    "CZ": "Czechia",
    "DE": "Germany",
    "DK": "Denmark",
    "EG": "Egypt",
    "ES": "Spain",
    "FI": "Finland",
    "FR": "France",
    "GB": "United Kingdom",
    "GR": "Greece",
    "HK": "Hong Kong",
    "HU": "Hungary",
    "ID": "Indonesia",
    "IE": "Ireland",
    "IL": "Israel",
    "IN": "India",
    "IT": "Italy",
    "JP": "Japan",
    "KE": "Kenya",
    "KR": "South Korea",
    "MA": "Morocco",
    "MX": "Mexico",
    "MY": "Malaysia",
    "NG": "Nigeria",
    "NL": "Netherlands",
    "NO": "Norway",
    "NZ": "New Zealand",
    "PE": "Peru",
    "PH": "Philippines",
    "PK": "Pakistan",
    "PL": "Poland",
    "PT": "Portugal",
    "RO": "Romania",
    "RU": "Russia",
    "SA": "Saudi Arabia",
    "SE": "Sweden",
    "SG": "Singapore",
    "TH": "Thailand",
    "TR": "Turkey",
    "TW": "Taiwan",
    "UA": "Ukraine",
    "US": "United States",
    "VN": "Vietnam",
    "ZA": "South Africa",
}


def country_label(code: str) -> str:
    return COUNTRY_NAMES.get(code.upper(), code)


def chapter_label(chapter: str) -> str:
    return f"Chapter {chapter}"


def mode_label(mode: str) -> str:
    return mode.replace("_", " ").title()


def identity_label(key: str) -> str:
    return key


# facet name -> (Shipment field, label function)
FACETS: Dict[str, Tuple[str, Callable[[str], str]]] = {
    "byOriginCountry": ("origin_country", country_label),
    "byDestinationCountry": ("destination_country", country_label),
    "byShipperCountry": ("shipper_country", country_label),
    "byHsChapter": ("hs_chapter", chapter_label),
    "byTransportMode": ("transport_mode", mode_label),
    "byCarrier": ("carrier", identity_label),
}

# range summary name -> Shipment field
RANGES: Dict[str, str] = {
    "valueRange": "declared_value_usd",
    "quantityRange": "quantity",
}


def top_buckets(
    counts: Mapping[str, int],
    label: Callable[[str], str] = identity_label,
    top_n: int = DEFAULT_TOP_N,
) -> Tuple[FacetBucket, ...]:
    """Highest counts first; ties broken by key ascending."""
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return tuple(FacetBucket(key=key, label=label(key), count=count) for key, count in ordered[:top_n])


def range_summary(stats: FieldStats) -> RangeSummary:
    if stats.count == 0:
        return RangeSummary()
    return RangeSummary(
        min=float(stats.min),
        max=float(stats.max),
        avg=round(float(stats.avg), 2),
        sample_size=stats.count,
    )


class AggregationEngine:
    """Computes all facets and ranges for an index query.

    ``call`` wraps each index call; the search service passes the executor's
    retrying ``call`` so aggregation reads get the same timeout semantics.
    """

    def __init__(
        self,
        index: ShipmentIndex,
        *,
        top_n: int = DEFAULT_TOP_N,
        call: Optional[Callable] = None,
    ) -> None:
        self.index = index
        self.top_n = top_n
        self._call = call or (lambda fn, *args: fn(*args))

    def aggregate(self, query: IndexQuery) -> Aggregations:
        facets = {
            name: top_buckets(self._call(self.index.terms, query, field), label, self.top_n)
            for name, (field, label) in FACETS.items()
        }
        ranges = {
            name: range_summary(self._call(self.index.stats, query, field))
            for name, field in RANGES.items()
        }
        logger.debug("Computed %d facets and %d ranges", len(facets), len(ranges))
        return Aggregations(facets=facets, ranges=ranges)
