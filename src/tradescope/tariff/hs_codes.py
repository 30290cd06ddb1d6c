"""HS code validation and nomenclature lookups."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tradescope.errors import NotFound

_SEPARATORS_RE = re.compile(r"[\s.\-]")
_DATA_DIR = Path(__file__).resolve().parent / "data"

MIN_DIGITS = 6
MAX_DIGITS = 10


def normalize_hs_code(code: object) -> str:
    """Strip separators and require 6-10 digits.

    Anything else raises ``NotFound``: a malformed code cannot identify a
    tariff line.
    """
    raw = "" if code is None else str(code)
    digits = _SEPARATORS_RE.sub("", raw)
    if not digits.isdigit() or not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        raise NotFound("hs code", raw, f"HS code {raw!r} must be {MIN_DIGITS}-{MAX_DIGITS} digits")
    return digits


def fallback_chain(digits: str) -> Tuple[str, ...]:
    """Lookup order: exact, then 8, 6 and 4 digit ancestors."""
    chain = [digits]
    for width in (8, 6, 4):
        if len(digits) > width:
            chain.append(digits[:width])
    return tuple(chain)


@dataclass(frozen=True)
class HsCodeDetails:
    code: str
    chapter: str
    heading: str
    subheading: Optional[str]
    description: Optional[str]
    chapter_description: Optional[str]
    heading_description: Optional[str]
    children: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "chapter": self.chapter,
            "heading": self.heading,
            "subheading": self.subheading,
            "description": self.description,
            "chapterDescription": self.chapter_description,
            "headingDescription": self.heading_description,
            "children": [{"code": code, "description": desc} for code, desc in self.children],
        }


class HsNomenclature:
    """Code -> description table at chapter, heading and subheading levels."""

    def __init__(self, codes: Optional[Dict[str, str]] = None) -> None:
        self._codes: Dict[str, str] = dict(codes or {})

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "HsNomenclature":
        path = path or _DATA_DIR / "hs_nomenclature.json"
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls({str(k): str(v) for k, v in payload.get("codes", {}).items()})

    def describe(self, digits: str) -> Optional[str]:
        for candidate in fallback_chain(digits):
            if candidate in self._codes:
                return self._codes[candidate]
        return None

    def details(self, code: str) -> HsCodeDetails:
        """Chapter, heading and subheading breakdown for a 4-10 digit code."""
        raw = str(code)
        digits = _SEPARATORS_RE.sub("", raw)
        if not digits.isdigit() or not 4 <= len(digits) <= MAX_DIGITS:
            raise NotFound("hs code", raw, f"HS code {raw!r} must be 4-{MAX_DIGITS} digits")
        if digits not in self._codes and self.describe(digits) is None:
            raise NotFound("hs code", raw)
        children = tuple(
            sorted(
                (child, desc)
                for child, desc in self._codes.items()
                if child.startswith(digits) and len(child) > len(digits)
                and not any(
                    child.startswith(mid) and len(digits) < len(mid) < len(child)
                    for mid in self._codes
                )
            )
        )
        return HsCodeDetails(
            code=digits,
            chapter=digits[:2],
            heading=digits[:4],
            subheading=digits[:6] if len(digits) >= 6 else None,
            description=self._codes.get(digits) or self.describe(digits),
            chapter_description=self._codes.get(digits[:2]),
            heading_description=self._codes.get(digits[:4]),
            children=children,
        )

    def search(self, query: str, limit: int = 20) -> List[Dict[str, str]]:
        """Keyword search over descriptions; more matching tokens rank higher."""
        tokens = [token for token in query.lower().split() if token]
        if not tokens:
            return []
        scored = []
        for code, description in self._codes.items():
            haystack = description.lower()
            hits = sum(1 for token in tokens if token in haystack)
            if hits or code.startswith(query.strip()):
                scored.append((-hits, len(code), code, description))
        scored.sort()
        return [{"code": code, "description": desc} for _, _, code, desc in scored[: max(1, limit)]]
