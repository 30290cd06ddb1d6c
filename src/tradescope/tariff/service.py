"""Tariff operations behind the tier & quota guard."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from tradescope.errors import ValidationError
from tradescope.quota.guard import TierQuotaGuard
from tradescope.quota.organizations import Organization
from tradescope.search.executor import SearchExecutor
from tradescope.tariff.landed_cost import LandedCostCalculator
from tradescope.tariff.models import LandedCostEstimate, TariffQuote
from tradescope.tariff.policy import PolicyImpact, simulate_policy_impact
from tradescope.tariff.resolver import TariffResolver

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 100


class TariffService:
    def __init__(
        self,
        guard: TierQuotaGuard,
        resolver: TariffResolver,
        landed_cost: LandedCostCalculator,
        executor: Optional[SearchExecutor] = None,
    ) -> None:
        self.guard = guard
        self.resolver = resolver
        self.landed_cost = landed_cost
        self.executor = executor

    def duty_rate(
        self,
        org: Organization,
        hs_code: str,
        origin: Optional[str],
        destination: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> TariffQuote:
        with self.guard.guarded(org, "tariffs.rates"):
            return self.resolver.quote(hs_code, origin, destination, context)

    def trade_measures(
        self,
        org: Organization,
        destination: str,
        hs_code: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with self.guard.guarded(org, "tariffs.measures"):
            return [m.to_dict() for m in self.resolver.trade_measures(destination, hs_code, origin)]

    def hs_code_details(self, org: Organization, code: str) -> Dict[str, Any]:
        with self.guard.guarded(org, "tariffs.hs_code_details"):
            return self.resolver.nomenclature.details(code).to_dict()

    def search_hs_codes(self, org: Organization, query: str, limit: int = 20) -> List[Dict[str, str]]:
        with self.guard.guarded(org, "tariffs.hs_code_search"):
            query = " ".join(str(query or "").split())
            if not query:
                raise ValidationError("q", "is required")
            if not 1 <= int(limit) <= MAX_SEARCH_RESULTS:
                raise ValidationError("limit", f"must be between 1 and {MAX_SEARCH_RESULTS}")
            return self.resolver.nomenclature.search(query, int(limit))

    def ftas(self, org: Organization, origin: str, destination: str) -> List[Dict[str, Any]]:
        with self.guard.guarded(org, "tariffs.ftas"):
            return [program.to_dict() for program in self.resolver.ftas_for_route(origin, destination)]

    def landed_cost_estimate(
        self,
        org: Organization,
        hs_code: str,
        origin: Optional[str],
        destination: str,
        cif_value: Any,
        vat_rate: Optional[Any] = None,
    ) -> LandedCostEstimate:
        with self.guard.guarded(org, "tariffs.landed_cost"):
            return self.landed_cost.estimate(hs_code, origin, destination, cif_value, vat_rate)

    def simulate_policy(
        self,
        org: Organization,
        hs_code: str,
        destination: str,
        new_duty_rate: float,
        origin: Optional[str] = None,
        lookback_months: int = 12,
    ) -> PolicyImpact:
        with self.guard.guarded(org, "tariffs.simulate_policy"):
            if self.executor is None:
                raise ValidationError("hsCode", "policy simulation requires a shipment index")
            return simulate_policy_impact(
                self.executor,
                self.resolver,
                hs_code,
                destination,
                new_duty_rate,
                origin=origin,
                lookback_months=lookback_months,
            )
