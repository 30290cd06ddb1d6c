"""Tariff quote and landed-cost value objects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

LANDED_COST_DISCLAIMER = (
    "Estimate only. Duty and tax figures are indicative and may differ from the "
    "amounts assessed by customs; consult a licensed customs broker before relying on them."
)


class MeasureType(str, Enum):
    ANTIDUMPING = "ANTIDUMPING"
    COUNTERVAILING = "COUNTERVAILING"
    SAFEGUARD = "SAFEGUARD"
    QUOTA = "QUOTA"


class DataQuality(str, Enum):
    HIGH = "HIGH"
    LOW = "LOW"


@dataclass(frozen=True)
class PreferentialRate:
    program_id: str
    fta_name: str
    rate: float
    conditions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "programId": self.program_id,
            "ftaName": self.fta_name,
            "rate": self.rate,
            "conditions": list(self.conditions),
        }


@dataclass(frozen=True)
class TradeMeasure:
    """Trade remedy or quota scoped by destination, HS prefixes and origins.

    ``hs_prefixes`` containing ``"*"`` covers every code; empty ``origins``
    covers every origin. ``effective_to`` of None means open-ended.
    """

    measure_id: str
    type: MeasureType
    destination: str
    hs_prefixes: Tuple[str, ...]
    effective_from: date
    effective_to: Optional[date] = None
    origins: Tuple[str, ...] = ()
    rate: Optional[float] = None
    quota_volume: Optional[float] = None
    quota_unit: Optional[str] = None
    description: str = ""

    def covers_code(self, digits: Optional[str]) -> bool:
        if digits is None:
            return True
        return any(prefix == "*" or digits.startswith(prefix) for prefix in self.hs_prefixes)

    def covers_origin(self, origin: Optional[str]) -> bool:
        if not self.origins:
            return True
        return origin is not None and origin.upper() in self.origins

    def active_on(self, day: date) -> bool:
        if day < self.effective_from:
            return False
        return self.effective_to is None or day <= self.effective_to

    def to_dict(self) -> Dict[str, Any]:
        return {
            "measureId": self.measure_id,
            "type": self.type.value,
            "destination": self.destination,
            "hsPrefixes": list(self.hs_prefixes),
            "origins": list(self.origins),
            "rate": self.rate,
            "quotaVolume": self.quota_volume,
            "quotaUnit": self.quota_unit,
            "effectiveFrom": self.effective_from.isoformat(),
            "effectiveTo": self.effective_to.isoformat() if self.effective_to else None,
            "description": self.description,
        }


@dataclass(frozen=True)
class TariffQuote:
    hs_code: str
    origin: Optional[str]
    destination: str
    mfn_rate: float
    preferential_rates: Tuple[PreferentialRate, ...]
    measures: Tuple[TradeMeasure, ...]
    effective_total_rate: float
    data_quality: DataQuality = DataQuality.HIGH
    binding_quotas: Tuple[TradeMeasure, ...] = ()
    mfn_matched_code: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hsCode": self.hs_code,
            "description": self.description,
            "origin": self.origin,
            "destination": self.destination,
            "mfnRate": self.mfn_rate,
            "mfnMatchedCode": self.mfn_matched_code,
            "preferentialRates": [rate.to_dict() for rate in self.preferential_rates],
            "tradeMeasures": [measure.to_dict() for measure in self.measures],
            "bindingQuotas": [measure.to_dict() for measure in self.binding_quotas],
            "effectiveTotalRate": self.effective_total_rate,
            "dataQuality": self.data_quality.value,
        }


@dataclass(frozen=True)
class LandedCostEstimate:
    cif_value: Decimal
    duty_rate: Decimal
    duty_amount: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total: Decimal
    disclaimer: str = LANDED_COST_DISCLAIMER
    hs_code: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hsCode": self.hs_code,
            "origin": self.origin,
            "destination": self.destination,
            "cifValue": float(self.cif_value),
            "dutyRate": float(self.duty_rate),
            "dutyAmount": float(self.duty_amount),
            "vatRate": float(self.vat_rate),
            "vatAmount": float(self.vat_amount),
            "total": float(self.total),
            "disclaimer": self.disclaimer,
        }
