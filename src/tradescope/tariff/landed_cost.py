"""Landed cost: CIF value plus duty plus import VAT.

    dutyAmount = cif * rate / 100
    vatAmount  = (cif + dutyAmount) * vatRate
    total      = cif + dutyAmount + vatAmount

Monetary amounts are rounded to cents (ROUND_HALF_UP); ``vat_rate`` is a
fraction (0.20 == 20%).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

from tradescope.errors import ValidationError
from tradescope.tariff.models import LandedCostEstimate
from tradescope.tariff.resolver import TariffResolver
from tradescope.tariff.vat import VatTable

Number = Union[int, float, str, Decimal]

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")


def _decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(field, "must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(field, "must be a number") from None
    if not number.is_finite():
        raise ValidationError(field, "must be a finite number")
    return number


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_landed_cost(cif_value: Number, duty_rate: Number, vat_rate: Number) -> LandedCostEstimate:
    """Pure landed-cost arithmetic; raises ``ValidationError`` if cif < 0."""
    cif = _decimal(cif_value, "cifValue")
    if cif < 0:
        raise ValidationError("cifValue", "must be >= 0")
    rate = _decimal(duty_rate, "dutyRate")
    if rate < 0:
        raise ValidationError("dutyRate", "must be >= 0")
    vat = _decimal(vat_rate, "vatRate")
    if vat < 0:
        raise ValidationError("vatRate", "must be >= 0")

    duty_amount = _money(cif * rate / HUNDRED)
    vat_amount = _money((cif + duty_amount) * vat)
    return LandedCostEstimate(
        cif_value=_money(cif),
        duty_rate=rate,
        duty_amount=duty_amount,
        vat_rate=vat,
        vat_amount=vat_amount,
        total=_money(cif + duty_amount + vat_amount),
    )


class LandedCostCalculator:
    """Resolves the duty rate and destination VAT, then applies the arithmetic."""

    def __init__(self, resolver: TariffResolver, vat_table: VatTable) -> None:
        self.resolver = resolver
        self.vat_table = vat_table

    def estimate(
        self,
        hs_code: str,
        origin: Optional[str],
        destination: str,
        cif_value: Number,
        vat_rate: Optional[Number] = None,
    ) -> LandedCostEstimate:
        cif = _decimal(cif_value, "cifValue")
        if cif < 0:
            raise ValidationError("cifValue", "must be >= 0")
        quote = self.resolver.quote(hs_code, origin, destination)
        vat = self.vat_table.rate_for(quote.destination) if vat_rate is None else vat_rate
        estimate = calculate_landed_cost(cif, Decimal(str(quote.effective_total_rate)), vat)
        return LandedCostEstimate(
            cif_value=estimate.cif_value,
            duty_rate=estimate.duty_rate,
            duty_amount=estimate.duty_amount,
            vat_rate=estimate.vat_rate,
            vat_amount=estimate.vat_amount,
            total=estimate.total,
            hs_code=quote.hs_code,
            origin=quote.origin,
            destination=quote.destination,
        )
