"""Destination import VAT / GST rates."""

from __future__ import annotations

import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

_DATA_DIR = Path(__file__).resolve().parent / "data"

DEFAULT_VAT_RATE = "0.20"


def default_vat_rate() -> Decimal:
    return Decimal(os.getenv("TS_DEFAULT_VAT_RATE", DEFAULT_VAT_RATE))


class VatTable:
    """Country -> VAT rate as a fraction (0.20 == 20%)."""

    def __init__(self, rates: Optional[Dict[str, float]] = None) -> None:
        self._rates: Dict[str, Decimal] = {
            country.upper(): Decimal(str(rate)) for country, rate in (rates or {}).items()
        }

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "VatTable":
        path = path or _DATA_DIR / "vat_rates.json"
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(payload.get("rates", {}))

    def rate_for(self, destination: Optional[str]) -> Decimal:
        if destination and destination.upper() in self._rates:
            return self._rates[destination.upper()]
        return default_vat_rate()
