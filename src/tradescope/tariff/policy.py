"""Duty policy impact simulation over historical shipments.

Volume response uses a constant price elasticity of import demand
(``TS_POLICY_ELASTICITY``, default -1.0) applied to the change in the
duty-inclusive price.
"""

from __future__ import annotations

import calendar
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from tradescope.errors import ValidationError
from tradescope.search.executor import SearchExecutor
from tradescope.search.index import IndexQuery, Prefix, Range, Term
from tradescope.tariff.hs_codes import normalize_hs_code
from tradescope.tariff.resolver import TariffResolver, normalize_country

logger = logging.getLogger(__name__)

MAX_LOOKBACK_MONTHS = 60
TOP_ORIGINS = 5


def months_ago(day: date, months: int) -> date:
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def policy_elasticity() -> float:
    return float(os.getenv("TS_POLICY_ELASTICITY", "-1.0"))


@dataclass(frozen=True)
class PolicyImpact:
    hs_code: str
    destination: str
    origin: Optional[str]
    lookback_months: int
    current_rate: float
    proposed_rate: float
    shipment_count: int
    historical_import_value: float
    current_duty_revenue: float
    projected_duty_revenue: float
    projected_revenue_change: float
    projected_volume_change_pct: float
    affected_consignees: int
    top_affected_origins: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)
    elasticity: float = -1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hsCode": self.hs_code,
            "destination": self.destination,
            "origin": self.origin,
            "lookbackMonths": self.lookback_months,
            "currentRate": self.current_rate,
            "proposedRate": self.proposed_rate,
            "shipmentCount": self.shipment_count,
            "historicalImportValue": self.historical_import_value,
            "currentDutyRevenue": self.current_duty_revenue,
            "projectedDutyRevenue": self.projected_duty_revenue,
            "projectedRevenueChange": self.projected_revenue_change,
            "projectedVolumeChangePct": self.projected_volume_change_pct,
            "affectedConsignees": self.affected_consignees,
            "topAffectedOrigins": list(self.top_affected_origins),
            "elasticity": self.elasticity,
        }


def simulate_policy_impact(
    executor: SearchExecutor,
    resolver: TariffResolver,
    hs_code: str,
    destination: str,
    new_duty_rate: float,
    origin: Optional[str] = None,
    lookback_months: int = 12,
    *,
    today: Optional[Callable[[], date]] = None,
    elasticity: Optional[float] = None,
) -> PolicyImpact:
    digits = normalize_hs_code(hs_code)
    destination = normalize_country(destination, "destinationCountry")
    origin = normalize_country(origin, "originCountry", required=False)
    if isinstance(new_duty_rate, bool) or new_duty_rate is None:
        raise ValidationError("newDutyRate", "must be a number >= 0")
    try:
        proposed = float(new_duty_rate)
    except (TypeError, ValueError):
        raise ValidationError("newDutyRate", "must be a number >= 0") from None
    if not math.isfinite(proposed) or proposed < 0:
        raise ValidationError("newDutyRate", "must be a finite number >= 0")
    if not 1 <= int(lookback_months) <= MAX_LOOKBACK_MONTHS:
        raise ValidationError("lookbackMonths", f"must be between 1 and {MAX_LOOKBACK_MONTHS}")
    elasticity = policy_elasticity() if elasticity is None else float(elasticity)
    as_of = (today or resolver.today)()

    current = resolver.quote(digits, origin, destination).effective_total_rate

    must: List = [
        Prefix("hs_code", digits),
        Term("destination_country", (destination,)),
        Range("shipment_date", gte=months_ago(as_of, int(lookback_months)), lte=as_of),
    ]
    if origin:
        must.append(Term("origin_country", (origin,)))
    shipments = executor.call(lambda: list(executor.index.scan(IndexQuery(must=tuple(must)))))

    total_value = 0.0
    consignees = set()
    by_origin: Dict[str, float] = {}
    for shipment in shipments:
        value = shipment.declared_value_usd or 0.0
        total_value += value
        consignees.add(shipment.consignee_id)
        key = shipment.origin_country or "UNKNOWN"
        by_origin[key] = by_origin.get(key, 0.0) + value

    price_change = (1 + proposed / 100) / (1 + current / 100) - 1
    volume_change = elasticity * price_change
    projected_value = max(0.0, total_value * (1 + volume_change))
    current_revenue = total_value * current / 100
    projected_revenue = projected_value * proposed / 100

    top = sorted(by_origin.items(), key=lambda item: (-item[1], item[0]))[:TOP_ORIGINS]
    logger.info(
        "Policy simulation %s -> %s: %d shipments, rate %.2f -> %.2f",
        digits,
        destination,
        len(shipments),
        current,
        proposed,
    )
    return PolicyImpact(
        hs_code=digits,
        destination=destination,
        origin=origin,
        lookback_months=int(lookback_months),
        current_rate=current,
        proposed_rate=proposed,
        shipment_count=len(shipments),
        historical_import_value=round(total_value, 2),
        current_duty_revenue=round(current_revenue, 2),
        projected_duty_revenue=round(projected_revenue, 2),
        projected_revenue_change=round(projected_revenue - current_revenue, 2),
        projected_volume_change_pct=round(volume_change * 100, 2),
        affected_consignees=len(consignees),
        top_affected_origins=tuple(
            {"countryCode": code, "importValue": round(value, 2)} for code, value in top
        ),
        elasticity=elasticity,
    )
