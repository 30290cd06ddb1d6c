"""Declarative operation table consumed by the tier & quota guard.

Each entry names the minimum tier for an operation and, for metered
operations, the credit type charged per unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from tradescope.quota.ledger import CreditType
from tradescope.tiers import Tier


@dataclass(frozen=True)
class OperationSpec:
    name: str
    min_tier: Tier
    credit_type: Optional[CreditType] = None
    credits_per_unit: int = 1

    @property
    def metered(self) -> bool:
        return self.credit_type is not None


def _spec(name: str, min_tier: Tier, credit_type: Optional[CreditType] = None) -> OperationSpec:
    return OperationSpec(name=name, min_tier=min_tier, credit_type=credit_type)


OPERATIONS: Dict[str, OperationSpec] = {
    spec.name: spec
    for spec in (
        # shipments
        _spec("shipments.search", Tier.STARTER),
        _spec("shipments.get", Tier.STARTER),
        _spec("shipments.by_company", Tier.STARTER),
        _spec("shipments.export", Tier.STARTER),
        _spec("shipments.route_analytics", Tier.PRO),
        _spec("shipments.price_distribution", Tier.PRO),
        # tariffs
        _spec("tariffs.rates", Tier.STARTER),
        _spec("tariffs.measures", Tier.STARTER),
        _spec("tariffs.hs_code_details", Tier.STARTER),
        _spec("tariffs.hs_code_search", Tier.STARTER),
        _spec("tariffs.ftas", Tier.STARTER),
        _spec("tariffs.landed_cost", Tier.PRO),
        _spec("tariffs.simulate_policy", Tier.GOV),
        # compliance
        _spec("compliance.check", Tier.STARTER, CreditType.COMPLIANCE_CHECK),
        _spec("compliance.check_batch", Tier.PRO, CreditType.COMPLIANCE_CHECK_BATCH),
        _spec("compliance.pep_check", Tier.PRO, CreditType.PEP_CHECK),
        _spec("compliance.adverse_media_check", Tier.ENTERPRISE, CreditType.ADVERSE_MEDIA_CHECK),
        _spec("compliance.history", Tier.STARTER),
        _spec("compliance.check_result", Tier.STARTER),
        _spec("compliance.check_pdf", Tier.STARTER),
        _spec("compliance.credits", Tier.STARTER),
        # companies
        _spec("companies.search", Tier.STARTER),
        _spec("companies.profile", Tier.STARTER),
        _spec("companies.trade_partners", Tier.STARTER),
        _spec("companies.timeline", Tier.PRO),
    )
}


def get_operation(name: str) -> OperationSpec:
    try:
        return OPERATIONS[name]
    except KeyError:
        raise KeyError(f"Unknown operation: {name}") from None
