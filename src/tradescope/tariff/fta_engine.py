"""Preferential (FTA) rate engine.

A program grants its rate when origin and destination are both members, the
HS code is covered and not excluded, and every eligibility condition is
satisfiable. Conditions are static boolean predicates over the request
context: a condition whose key is explicitly ``False`` blocks the program;
a missing key is treated as satisfiable and reported as a condition to meet.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from tradescope.tariff.models import PreferentialRate

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).resolve().parent / "data"


@dataclass(frozen=True)
class EligibilityCondition:
    key: str
    description: str

    def blocks(self, context: Mapping[str, Any]) -> bool:
        return context.get(self.key) is False


@dataclass(frozen=True)
class FtaProgram:
    program_id: str
    name: str
    members: Tuple[str, ...]
    default_rate: float = 0.0
    covered_prefixes: Tuple[str, ...] = ()  # empty = all covered
    excluded_prefixes: Tuple[str, ...] = ()
    rate_overrides: Tuple[Tuple[str, float], ...] = ()
    conditions: Tuple[EligibilityCondition, ...] = ()

    def covers_route(self, origin: str, destination: str) -> bool:
        return origin != destination and origin in self.members and destination in self.members

    def covers_code(self, digits: str) -> bool:
        if any(digits.startswith(prefix) for prefix in self.excluded_prefixes):
            return False
        if not self.covered_prefixes:
            return True
        return any(digits.startswith(prefix) for prefix in self.covered_prefixes)

    def rate_for(self, digits: str) -> float:
        """Most specific matching override, else the default rate."""
        best: Optional[Tuple[int, float]] = None
        for prefix, rate in self.rate_overrides:
            if digits.startswith(prefix) and (best is None or len(prefix) > best[0]):
                best = (len(prefix), rate)
        return best[1] if best is not None else self.default_rate

    def to_dict(self) -> dict:
        return {
            "programId": self.program_id,
            "name": self.name,
            "members": list(self.members),
            "defaultRate": self.default_rate,
            "coveredPrefixes": list(self.covered_prefixes),
            "excludedPrefixes": list(self.excluded_prefixes),
            "conditions": [c.description for c in self.conditions],
        }


class FtaEngine:
    def __init__(self, programs: Tuple[FtaProgram, ...] = ()) -> None:
        self._programs = tuple(programs)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "FtaEngine":
        path = path or _DATA_DIR / "fta_programs.json"
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(tuple(_parse_program(entry) for entry in payload.get("programs", [])))

    @property
    def programs(self) -> Tuple[FtaProgram, ...]:
        return self._programs

    def programs_for_route(self, origin: str, destination: str) -> List[FtaProgram]:
        origin, destination = origin.upper(), destination.upper()
        return [p for p in self._programs if p.covers_route(origin, destination)]

    def preferential_rates(
        self,
        digits: str,
        origin: Optional[str],
        destination: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[PreferentialRate, ...]:
        """Applicable preferential rates, lowest rate first (ties by name)."""
        if not origin:
            return ()
        context = context or {}
        rates: List[PreferentialRate] = []
        for program in self.programs_for_route(origin, destination):
            if not program.covers_code(digits):
                continue
            blocking = [c for c in program.conditions if c.blocks(context)]
            if blocking:
                logger.debug(
                    "Program %s blocked for %s by %s", program.program_id, digits, [c.key for c in blocking]
                )
                continue
            pending = tuple(c.description for c in program.conditions if context.get(c.key) is not True)
            rates.append(
                PreferentialRate(
                    program_id=program.program_id,
                    fta_name=program.name,
                    rate=program.rate_for(digits),
                    conditions=pending,
                )
            )
        rates.sort(key=lambda r: (r.rate, r.fta_name))
        return tuple(rates)


def _parse_program(entry: Mapping[str, Any]) -> FtaProgram:
    return FtaProgram(
        program_id=str(entry["program_id"]),
        name=str(entry.get("name", entry["program_id"])),
        members=tuple(str(c).upper() for c in entry.get("members", [])),
        default_rate=float(entry.get("default_rate", 0.0)),
        covered_prefixes=tuple(str(p) for p in entry.get("covered_prefixes", [])),
        excluded_prefixes=tuple(str(p) for p in entry.get("excluded_prefixes", [])),
        rate_overrides=tuple(
            (str(o["prefix"]), float(o["rate"])) for o in entry.get("rate_overrides", [])
        ),
        conditions=tuple(
            EligibilityCondition(key=str(c["key"]), description=str(c.get("description", c["key"])))
            for c in entry.get("conditions", [])
        ),
    )
