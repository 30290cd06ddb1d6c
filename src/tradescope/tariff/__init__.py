"""Tariff domain: MFN rates, preferential programs, trade measures, landed cost."""

from .landed_cost import LandedCostCalculator, calculate_landed_cost
from .models import LandedCostEstimate, TariffQuote, TradeMeasure
from .resolver import TariffResolver

__all__ = [
    "LandedCostCalculator",
    "LandedCostEstimate",
    "TariffQuote",
    "TariffResolver",
    "TradeMeasure",
    "calculate_landed_cost",
]
