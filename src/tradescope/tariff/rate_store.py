"""MFN rate lookup with hierarchical HS code resolution.

Rates are stored per destination country. Lookup falls back from the exact
code to its 8-, 6- and 4-digit ancestors and reports the level that matched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from tradescope.tariff.hs_codes import fallback_chain

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).resolve().parent / "data"


@dataclass(frozen=True)
class MfnMatch:
    rate: float
    matched_code: str
    match_level: str  # exact | 8-digit | 6-digit | 4-digit


class MfnRateStore:
    def __init__(self, rates: Optional[Dict[str, Dict[str, float]]] = None) -> None:
        self._rates: Dict[str, Dict[str, float]] = {
            country.upper(): {str(code): float(rate) for code, rate in table.items()}
            for country, table in (rates or {}).items()
        }

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "MfnRateStore":
        path = path or _DATA_DIR / "mfn_rates.json"
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        store = cls(payload.get("rates", {}))
        logger.debug("Loaded MFN rates for %d destinations", len(store._rates))
        return store

    def destinations(self) -> tuple:
        return tuple(sorted(self._rates))

    def lookup(self, destination: str, digits: str) -> Optional[MfnMatch]:
        table = self._rates.get(destination.upper())
        if not table:
            return None
        for candidate in fallback_chain(digits):
            if candidate in table:
                level = "exact" if candidate == digits else f"{len(candidate)}-digit"
                return MfnMatch(rate=table[candidate], matched_code=candidate, match_level=level)
        return None
