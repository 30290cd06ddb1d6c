"""Registry of trade remedies (AD/CVD, safeguards) and tariff-rate quotas."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from tradescope.tariff.models import MeasureType, TradeMeasure

_DATA_DIR = Path(__file__).resolve().parent / "data"


class MeasureRegistry:
    def __init__(self, measures: Iterable[TradeMeasure] = ()) -> None:
        self._measures: Tuple[TradeMeasure, ...] = tuple(measures)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "MeasureRegistry":
        path = path or _DATA_DIR / "trade_measures.json"
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(parse_measure(entry) for entry in payload.get("measures", []))

    @property
    def measures(self) -> Tuple[TradeMeasure, ...]:
        return self._measures

    def matching(
        self,
        destination: str,
        digits: Optional[str] = None,
        origin: Optional[str] = None,
        on: Optional[date] = None,
        *,
        any_origin: bool = False,
    ) -> List[TradeMeasure]:
        """Measures active on ``on`` for the destination, code and origin.

        ``digits`` of None matches every code. With ``any_origin`` set,
        origin-scoped measures are included regardless of ``origin``.
        """
        day = on or date.today()
        destination = destination.upper()
        found = [
            m
            for m in self._measures
            if m.destination == destination
            and m.covers_code(digits)
            and (any_origin or m.covers_origin(origin))
            and m.active_on(day)
        ]
        return sorted(found, key=lambda m: (m.type.value, m.measure_id))


def parse_measure(entry: Mapping[str, Any]) -> TradeMeasure:
    effective_to = entry.get("effective_to")
    return TradeMeasure(
        measure_id=str(entry["measure_id"]),
        type=MeasureType(str(entry["type"]).upper()),
        destination=str(entry["destination"]).upper(),
        hs_prefixes=tuple(str(p) for p in entry.get("hs_prefixes", ["*"])),
        origins=tuple(str(o).upper() for o in entry.get("origins", [])),
        rate=float(entry["rate"]) if entry.get("rate") is not None else None,
        quota_volume=float(entry["quota_volume"]) if entry.get("quota_volume") is not None else None,
        quota_unit=entry.get("quota_unit"),
        effective_from=date.fromisoformat(str(entry["effective_from"])),
        effective_to=date.fromisoformat(str(effective_to)) if effective_to else None,
        description=str(entry.get("description", "")),
    )
