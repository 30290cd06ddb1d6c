"""Counterparty profiles, search and activity derived from shipment records."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from tradescope.compliance.store import ComplianceCheckStore
from tradescope.errors import NotFound, ValidationError
from tradescope.identifiers import hs_prefix, validate_identifier
from tradescope.quota.guard import TierQuotaGuard
from tradescope.quota.organizations import Organization
from tradescope.search.executor import SearchExecutor
from tradescope.search.index import AnyOf, IndexQuery, Match, Prefix, Range, Term
from tradescope.search.models import Shipment, total_pages
from tradescope.tariff.policy import months_ago
from tradescope.tariff.resolver import normalize_country

logger = logging.getLogger(__name__)

PARTNER_ROLES = ("buyers", "suppliers", "both")
COMPANY_ROLES = ("importer", "exporter", "both")
PROFILE_TOP_N = 5
MAX_QUERY_LENGTH = 200
MAX_TIMELINE_MONTHS = 36
MAX_PAGE_SIZE = 100


def _check_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page", "must be >= 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError("pageSize", f"must be between 1 and {MAX_PAGE_SIZE}")


def _tally(table: Dict[str, Dict[str, Any]], key: str, seed: Dict[str, Any], shipment: Shipment) -> Dict[str, Any]:
    entry = table.setdefault(key, {**seed, "shipmentCount": 0, "totalValueUsd": 0.0})
    entry["shipmentCount"] += 1
    entry["totalValueUsd"] += shipment.declared_value_usd or 0.0
    return entry


def _top(table: Dict[str, Dict[str, Any]], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Most shipments first, then highest value, then key."""
    ordered = sorted(table.items(), key=lambda item: (-item[1]["shipmentCount"], -item[1]["totalValueUsd"], item[0]))
    rows = [entry for _, entry in ordered]
    return rows if limit is None else rows[:limit]


def _side_totals(shipments: List[Shipment]) -> Dict[str, Any]:
    return {
        "shipmentCount": len(shipments),
        "totalValueUsd": round(sum(s.declared_value_usd or 0.0 for s in shipments), 2),
        "totalQuantity": round(sum(s.quantity or 0.0 for s in shipments), 3),
    }


class CompanyActivityService:
    def __init__(
        self,
        guard: TierQuotaGuard,
        executor: SearchExecutor,
        *,
        today: Callable[[], date] = date.today,
        check_store: Optional[ComplianceCheckStore] = None,
    ) -> None:
        self.guard = guard
        self.executor = executor
        self.check_store = check_store
        self._today = today

    def _scan(self, query: IndexQuery):
        return self.executor.call(lambda: list(self.executor.index.scan(query)))

    def trade_partners(
        self,
        org: Organization,
        company_id: str,
        role: str = "both",
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """Buyers (consignees of its shipments) and/or suppliers (its shippers)."""
        with self.guard.guarded(org, "companies.trade_partners"):
            company_id = validate_identifier(company_id, "company")
            role = (role or "both").lower()
            if role not in PARTNER_ROLES:
                raise ValidationError("role", f"must be one of {', '.join(PARTNER_ROLES)}")
            _check_paging(page, page_size)

            clauses = []
            if role in ("buyers", "both"):
                clauses.append(Term("shipper_id", (company_id,)))
            if role in ("suppliers", "both"):
                clauses.append(Term("consignee_id", (company_id,)))
            shipments = self._scan(IndexQuery(must=(AnyOf(tuple(clauses)),)))

            partners: Dict[Tuple[str, str], Dict[str, Any]] = {}
            for s in shipments:
                sides = []
                if s.shipper_id == company_id and role in ("buyers", "both"):
                    sides.append(("buyer", s.consignee_id, s.consignee_name, s.consignee_country))
                if s.consignee_id == company_id and role in ("suppliers", "both"):
                    sides.append(("supplier", s.shipper_id, s.shipper_name, s.shipper_country))
                for relationship, partner_id, name, country in sides:
                    entry = partners.setdefault(
                        (relationship, partner_id),
                        {
                            "companyId": partner_id,
                            "name": name,
                            "countryCode": country,
                            "relationship": relationship,
                            "shipmentCount": 0,
                            "totalValueUsd": 0.0,
                            "firstShipmentDate": s.shipment_date,
                            "lastShipmentDate": s.shipment_date,
                        },
                    )
                    entry["shipmentCount"] += 1
                    entry["totalValueUsd"] += s.declared_value_usd or 0.0
                    entry["firstShipmentDate"] = min(entry["firstShipmentDate"], s.shipment_date)
                    entry["lastShipmentDate"] = max(entry["lastShipmentDate"], s.shipment_date)

            ordered = sorted(
                partners.values(),
                key=lambda p: (-p["shipmentCount"], -p["totalValueUsd"], p["companyId"], p["relationship"]),
            )
            total = len(ordered)
            window = ordered[(page - 1) * page_size: page * page_size]
            for entry in window:
                entry["totalValueUsd"] = round(entry["totalValueUsd"], 2)
                entry["firstShipmentDate"] = entry["firstShipmentDate"].isoformat()
                entry["lastShipmentDate"] = entry["lastShipmentDate"].isoformat()
            return {
                "companyId": company_id,
                "role": role,
                "partners": window,
                "total": total,
                "page": page,
                "pageSize": page_size,
                "totalPages": total_pages(total, page_size),
            }

    def trade_timeline(self, org: Organization, company_id: str, months: int = 12) -> Dict[str, Any]:
        """Monthly shipment count and value over the last ``months`` months."""
        with self.guard.guarded(org, "companies.timeline"):
            company_id = validate_identifier(company_id, "company")
            if isinstance(months, bool) or not 1 <= int(months) <= MAX_TIMELINE_MONTHS:
                raise ValidationError("months", f"must be between 1 and {MAX_TIMELINE_MONTHS}")
            months = int(months)
            today = self._today()
            start = months_ago(today, months - 1).replace(day=1)

            buckets: Dict[str, Dict[str, Any]] = {}
            cursor: Optional[date] = start
            while cursor is not None and cursor <= today:
                key = cursor.strftime("%Y-%m")
                buckets[key] = {
                    "month": key,
                    "shipmentCount": 0,
                    "asShipper": 0,
                    "asConsignee": 0,
                    "totalValueUsd": 0.0,
                }
                cursor = date(cursor.year + (cursor.month // 12), cursor.month % 12 + 1, 1)

            query = IndexQuery(
                must=(
                    AnyOf((Term("shipper_id", (company_id,)), Term("consignee_id", (company_id,)))),
                    Range("shipment_date", gte=start, lte=today),
                )
            )
            for s in self._scan(query):
                bucket = buckets.get(s.shipment_date.strftime("%Y-%m"))
                if bucket is None:
                    continue
                bucket["shipmentCount"] += 1
                bucket["totalValueUsd"] += s.declared_value_usd or 0.0
                if s.shipper_id == company_id:
                    bucket["asShipper"] += 1
                if s.consignee_id == company_id:
                    bucket["asConsignee"] += 1

            timeline: List[Dict[str, Any]] = []
            for bucket in buckets.values():
                bucket["totalValueUsd"] = round(bucket["totalValueUsd"], 2)
                timeline.append(bucket)
            return {"companyId": company_id, "months": months, "timeline": timeline}

    def company_profile(self, org: Organization, company_id: str) -> Dict[str, Any]:
        """Trade profile: import and export totals, top HS codes and partners."""
        with self.guard.guarded(org, "companies.profile"):
            company_id = validate_identifier(company_id, "company")
            shipments = self._scan(
                IndexQuery(must=(AnyOf((Term("shipper_id", (company_id,)), Term("consignee_id", (company_id,)))),))
            )
            if not shipments:
                raise NotFound("company", company_id)

            exports = [s for s in shipments if s.shipper_id == company_id]
            imports = [s for s in shipments if s.consignee_id == company_id]
            hs_codes: Dict[str, Dict[str, Any]] = {}
            partners: Dict[str, Dict[str, Any]] = {}
            for s in shipments:
                _tally(hs_codes, s.hs_code, {"hsCode": s.hs_code}, s)
            for s in exports:
                _tally(partners, s.consignee_id, {"companyId": s.consignee_id, "name": s.consignee_name,
                                                  "countryCode": s.consignee_country}, s)
            for s in imports:
                _tally(partners, s.shipper_id, {"companyId": s.shipper_id, "name": s.shipper_name,
                                                "countryCode": s.shipper_country}, s)

            latest = max(shipments, key=lambda s: (s.shipment_date, s.id))
            if latest.shipper_id == company_id:
                name, country = latest.shipper_name, latest.shipper_country
            else:
                name, country = latest.consignee_name, latest.consignee_country

            last_check = None
            if self.check_store is not None:
                last_check = self.check_store.latest_for_company(org.org_id, company_id)

            top_codes = _top(hs_codes, PROFILE_TOP_N)
            top_partners = _top(partners, PROFILE_TOP_N)
            for entry in top_codes + top_partners:
                entry["totalValueUsd"] = round(entry["totalValueUsd"], 2)
            return {
                "companyId": company_id,
                "name": name,
                "countryCode": country,
                "exports": _side_totals(exports),
                "imports": _side_totals(imports),
                "firstShipmentDate": min(s.shipment_date for s in shipments).isoformat(),
                "lastShipmentDate": latest.shipment_date.isoformat(),
                "topHsCodes": top_codes,
                "topPartners": top_partners,
                "lastComplianceCheck": (
                    {"id": last_check.check_id, "status": last_check.status.value,
                     "checkedAt": last_check.checked_at.isoformat()}
                    if last_check is not None
                    else None
                ),
            }

    def search_companies(
        self,
        org: Organization,
        query: Optional[str] = None,
        country: Optional[str] = None,
        hs_code: Optional[str] = None,
        role: str = "both",
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """Companies seen as shipper (exporter) or consignee (importer) matching every given filter."""
        with self.guard.guarded(org, "companies.search"):
            role = (role or "both").lower()
            if role not in COMPANY_ROLES:
                raise ValidationError("role", f"must be one of {', '.join(COMPANY_ROLES)}")
            text = (query or "").strip() or None
            if text is not None and len(text) > MAX_QUERY_LENGTH:
                raise ValidationError("q", f"must be at most {MAX_QUERY_LENGTH} characters")
            country = normalize_country(country, "country", required=False)
            prefix = hs_prefix(hs_code) if hs_code not in (None, "") else None
            _check_paging(page, page_size)

            sides = []
            if role in ("exporter", "both"):
                sides.append(("exporter", "shipper"))
            if role in ("importer", "both"):
                sides.append(("importer", "consignee"))

            companies: Dict[str, Dict[str, Any]] = {}
            for label, side in sides:
                must: List = []
                if text:
                    must.append(Match(f"{side}_name", text))
                if country:
                    must.append(Term(f"{side}_country", (country,)))
                if prefix:
                    must.append(Prefix("hs_code", prefix))
                for s in self._scan(IndexQuery(must=tuple(must))):
                    company_id = getattr(s, f"{side}_id")
                    entry = _tally(companies, company_id, {"companyId": company_id, "roles": []}, s)
                    if label not in entry["roles"]:
                        entry["roles"].append(label)
                    if s.shipment_date >= entry.get("lastShipmentDate", s.shipment_date):
                        entry["name"] = getattr(s, f"{side}_name")
                        entry["countryCode"] = getattr(s, f"{side}_country")
                        entry["lastShipmentDate"] = s.shipment_date

            ordered = _top(companies)
            total = len(ordered)
            window = ordered[(page - 1) * page_size: page * page_size]
            items = [
                {
                    "companyId": entry["companyId"],
                    "name": entry["name"],
                    "countryCode": entry["countryCode"],
                    "roles": entry["roles"],
                    "shipmentCount": entry["shipmentCount"],
                    "totalValueUsd": round(entry["totalValueUsd"], 2),
                    "lastShipmentDate": entry["lastShipmentDate"].isoformat(),
                }
                for entry in window
            ]
            return {
                "items": items,
                "total": total,
                "page": page,
                "pageSize": page_size,
                "totalPages": total_pages(total, page_size),
            }
