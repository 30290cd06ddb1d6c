"""Screening outcomes and stored compliance check records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

DEFAULT_LISTS: Dict[str, Tuple[str, ...]] = {
    "SANCTIONS": ("OFAC_SDN", "EU_CONSOLIDATED", "UN_SC", "UK_SANCTIONS"),
    "PEP": ("PEP_GLOBAL",),
    "ADVERSE_MEDIA": ("ADVERSE_MEDIA_NEWS",),
}


class CheckKind(str, Enum):
    SANCTIONS = "SANCTIONS"
    PEP = "PEP"
    ADVERSE_MEDIA = "ADVERSE_MEDIA"


class CheckStatus(str, Enum):
    CLEAR = "CLEAR"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    MATCH = "MATCH"


@dataclass(frozen=True)
class ScreeningHit:
    list_name: str
    matched_name: str
    score: float
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listName": self.list_name,
            "matchedName": self.matched_name,
            "score": self.score,
            "reference": self.reference,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScreeningHit":
        return cls(
            list_name=str(data.get("listName") or data.get("list_name") or ""),
            matched_name=str(data.get("matchedName") or data.get("matched_name") or ""),
            score=float(data.get("score", 0.0)),
            reference=data.get("reference"),
        )


@dataclass(frozen=True)
class ScreeningOutcome:
    status: CheckStatus
    hits: Tuple[ScreeningHit, ...] = ()
    lists_checked: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ComplianceCheck:
    check_id: str
    org_id: str
    kind: CheckKind
    company_id: str
    company_name: Optional[str]
    status: CheckStatus
    checked_at: datetime
    checked_by: Optional[str] = None
    hits: Tuple[ScreeningHit, ...] = field(default_factory=tuple)
    lists_checked: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.check_id,
            "kind": self.kind.value,
            "companyId": self.company_id,
            "companyName": self.company_name or "Unknown",
            "status": self.status.value,
            "checkedAt": self.checked_at.isoformat(),
            "checkedBy": self.checked_by,
            "hits": [hit.to_dict() for hit in self.hits],
            "listsChecked": list(self.lists_checked),
        }
