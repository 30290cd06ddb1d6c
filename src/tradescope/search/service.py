"""Shipment search operations behind the tier & quota guard."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from tradescope.errors import NotFound, TradeScopeError, ValidationError
from tradescope.identifiers import hs_prefix, validate_identifier
from tradescope.observability import log_event
from tradescope.quota.guard import TierQuotaGuard
from tradescope.quota.organizations import Organization
from tradescope.search.aggregations import AggregationEngine
from tradescope.search.cache import SearchCache
from tradescope.search.executor import SearchExecutor, build_index_query, with_window
from tradescope.search.export import DutyLookup, ExportResult, ExportThrottler
from tradescope.search.index import AnyOf, IndexQuery, Prefix, Range, Term
from tradescope.search.models import SearchQuery, SearchResult
from tradescope.search.normalizer import iter_filter_fields, normalize_query, parse_date
from tradescope.tariff.resolver import TariffResolver, normalize_country

logger = logging.getLogger(__name__)

COMPANY_ROLES = ("shipper", "consignee", "both")
TOP_PARTIES = 5


class ShipmentSearchService:
    def __init__(
        self,
        guard: TierQuotaGuard,
        executor: SearchExecutor,
        *,
        aggregations: Optional[AggregationEngine] = None,
        cache: Optional[SearchCache] = None,
        resolver: Optional[TariffResolver] = None,
    ) -> None:
        self.guard = guard
        self.executor = executor
        self.aggregations = aggregations or AggregationEngine(executor.index, call=executor.call)
        self.cache = cache or SearchCache()
        self.throttler = ExportThrottler(executor)
        self.resolver = resolver

    # ------------------------------------------------------------------
    # Search & export
    # ------------------------------------------------------------------
    def search(self, org: Organization, raw: Mapping[str, Any]) -> SearchResult:
        with self.guard.guarded(org, "shipments.search"):
            query = normalize_query(raw)
            cached = self.cache.get(query)
            if cached is not None:
                log_event("search.cache_hit")
                return cached
            result = self.run_query(query)
            self.cache.set(query, result)
            log_event(
                "search.executed",
                filters=sorted(iter_filter_fields(query)),
                total=result.total,
                page=result.page,
            )
            return result

    def run_query(self, query: SearchQuery) -> SearchResult:
        page = self.executor.execute(query)
        aggregations = None
        if query.include_aggregations:
            aggregations = self.aggregations.aggregate(build_index_query(query))
        return SearchResult(
            items=page.items,
            total=page.total,
            page=query.page,
            page_size=query.page_size,
            aggregations=aggregations,
        )

    def export(self, org: Organization, raw: Mapping[str, Any]) -> ExportResult:
        filters = dict(raw)
        # Pagination does not apply to exports.
        for key in ("page", "pageSize", "includeAggregations"):
            filters.pop(key, None)
        with self.guard.guarded(org, "shipments.export") as ticket:
            query = normalize_query(filters)
            result = self.throttler.collect(query, ticket.tier)
            log_event(
                "export.collected",
                rows=result.row_count,
                total=result.total,
                truncated=result.truncated,
            )
            return result

    def duty_lookup(self) -> Optional[DutyLookup]:
        """Effective-rate column for exports, when a resolver is configured."""
        if self.resolver is None:
            return None
        resolver = self.resolver

        def lookup(hs_code: str, origin: Optional[str], destination: Optional[str]) -> Optional[float]:
            if not destination:
                return None
            try:
                return resolver.effective_rate(hs_code, origin, destination)
            except TradeScopeError:
                return None

        return lookup

    # ------------------------------------------------------------------
    # Record lookups
    # ------------------------------------------------------------------
    def find_by_id(self, org: Organization, shipment_id: str):
        with self.guard.guarded(org, "shipments.get"):
            shipment_id = validate_identifier(shipment_id, "shipment")
            shipment = self.executor.call(self.executor.index.get, shipment_id)
            if shipment is None:
                raise NotFound("shipment", shipment_id)
            return shipment

    def find_by_company(
        self,
        org: Organization,
        company_id: str,
        role: str = "both",
        page: int = 1,
        page_size: int = 20,
    ) -> SearchResult:
        with self.guard.guarded(org, "shipments.by_company"):
            company_id = validate_identifier(company_id, "company")
            role = (role or "both").lower()
            if role not in COMPANY_ROLES:
                raise ValidationError("role", f"must be one of {', '.join(COMPANY_ROLES)}")
            query = normalize_query({"page": page, "pageSize": page_size})
            if role == "shipper":
                clause = Term("shipper_id", (company_id,))
            elif role == "consignee":
                clause = Term("consignee_id", (company_id,))
            else:
                clause = AnyOf((Term("shipper_id", (company_id,)), Term("consignee_id", (company_id,))))
            index_query = with_window(
                IndexQuery(must=(clause,)), (query.page - 1) * query.page_size, query.page_size
            )
            result = self.executor.call(self.executor.index.search, index_query)
            return SearchResult(
                items=result.items, total=result.total, page=query.page, page_size=query.page_size
            )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------
    def route_analytics(
        self,
        org: Organization,
        hs_code: str,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Per (port of loading, port of discharge) route totals, by value desc."""
        with self.guard.guarded(org, "shipments.route_analytics"):
            prefix = hs_prefix(hs_code)
            start = parse_date(date_from, "dateFrom")
            end = parse_date(date_to, "dateTo")
            if start is not None and end is not None and start > end:
                raise ValidationError("dateFrom", "must be on or before dateTo")
            must: List = [Prefix("hs_code", prefix)]
            if start is not None or end is not None:
                must.append(Range("shipment_date", gte=start, lte=end))
            shipments = self._scan(IndexQuery(must=tuple(must)))

            routes: Dict[Tuple[str, str], Dict[str, Any]] = {}
            for s in shipments:
                key = (s.port_of_loading or "UNKNOWN", s.port_of_discharge or "UNKNOWN")
                route = routes.get(key)
                if route is None:
                    route = routes[key] = {
                        "portOfLoading": key[0],
                        "portOfLoadingName": s.port_of_loading_name,
                        "portOfDischarge": key[1],
                        "portOfDischargeName": s.port_of_discharge_name,
                        "shipmentCount": 0,
                        "totalQuantity": 0.0,
                        "totalValueUsd": 0.0,
                        "_shippers": {},
                        "_consignees": {},
                    }
                route["shipmentCount"] += 1
                route["totalQuantity"] += s.quantity or 0.0
                route["totalValueUsd"] += s.declared_value_usd or 0.0
                route["_shippers"][s.shipper_name] = route["_shippers"].get(s.shipper_name, 0) + 1
                route["_consignees"][s.consignee_name] = route["_consignees"].get(s.consignee_name, 0) + 1

            payload = []
            for route in routes.values():
                shippers = route.pop("_shippers")
                consignees = route.pop("_consignees")
                route["totalQuantity"] = round(route["totalQuantity"], 2)
                route["totalValueUsd"] = round(route["totalValueUsd"], 2)
                route["topShippers"] = _top_names(shippers)
                route["topConsignees"] = _top_names(consignees)
                payload.append(route)
            payload.sort(key=lambda r: (-r["totalValueUsd"], r["portOfLoading"], r["portOfDischarge"]))
            return payload

    def price_distribution(
        self,
        org: Organization,
        hs_code: str,
        origin_country: Optional[str] = None,
        destination_country: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Unit-price distribution statistics for an HS code."""
        with self.guard.guarded(org, "shipments.price_distribution"):
            prefix = hs_prefix(hs_code)
            must: List = [Prefix("hs_code", prefix)]
            origin = normalize_country(origin_country, "originCountry", required=False)
            destination = normalize_country(destination_country, "destinationCountry", required=False)
            if origin:
                must.append(Term("origin_country", (origin,)))
            if destination:
                must.append(Term("destination_country", (destination,)))
            values = self.executor.call(self.executor.index.values, IndexQuery(must=tuple(must)), "unit_price_usd")
            stats = unit_price_stats(values)
            stats.update({"hsCode": prefix, "originCountry": origin, "destinationCountry": destination})
            return stats

    def _scan(self, query: IndexQuery):
        return self.executor.call(lambda: list(self.executor.index.scan(query)))


def _top_names(counts: Dict[str, int]) -> List[Dict[str, Any]]:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:TOP_PARTIES]
    return [{"name": name, "shipmentCount": count} for name, count in ordered]


def unit_price_stats(values: List[float]) -> Dict[str, Any]:
    if not values:
        return {
            "min": 0.0,
            "max": 0.0,
            "mean": 0.0,
            "median": 0.0,
            "p25": 0.0,
            "p75": 0.0,
            "p90": 0.0,
            "sampleSize": 0,
        }
    arr = np.asarray(values, dtype=float)
    p25, median, p75, p90 = np.percentile(arr, [25, 50, 75, 90])
    return {
        "min": round(float(arr.min()), 4),
        "max": round(float(arr.max()), 4),
        "mean": round(float(arr.mean()), 4),
        "median": round(float(median), 4),
        "p25": round(float(p25), 4),
        "p75": round(float(p75), 4),
        "p90": round(float(p90), 4),
        "sampleSize": int(arr.size),
    }
