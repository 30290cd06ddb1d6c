"""Subscription tiers and their fixed entitlements.

Tiers are compared by integer rank, never by name. ENTERPRISE and CHAMBER
share a rank; an unrecognized tier string is rejected rather than mapped to a
default rank.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict


class Tier(str, Enum):
    STARTER = "STARTER"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"
    CHAMBER = "CHAMBER"
    GOV = "GOV"

    @property
    def rank(self) -> int:
        return TIER_RANKS[self]

    def satisfies(self, required: "Tier") -> bool:
        """Return True when this tier grants access to ``required``-level features."""
        return self.rank >= required.rank

    @classmethod
    def parse(cls, raw: object) -> "Tier":
        """Parse a tier name case-insensitively; raises ``ValueError`` if unknown."""
        if isinstance(raw, Tier):
            return raw
        if not isinstance(raw, str):
            raise ValueError(f"Unknown tier: {raw!r}")
        try:
            return cls(raw.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown tier: {raw!r}") from None


TIER_RANKS: Dict[Tier, int] = {
    Tier.STARTER: 1,
    Tier.PRO: 2,
    Tier.ENTERPRISE: 3,
    Tier.CHAMBER: 3,
    Tier.GOV: 4,
}

EXPORT_ROW_CAPS: Dict[Tier, int] = {
    Tier.STARTER: 500,
    Tier.PRO: 5_000,
    Tier.ENTERPRISE: 50_000,
    Tier.CHAMBER: 50_000,
    Tier.GOV: 100_000,
}

# Seats and per-minute API request quota per tier.
TIER_LIMITS: Dict[Tier, Dict[str, int]] = {
    Tier.STARTER: {"seat_limit": 1, "api_requests_per_minute": 30},
    Tier.PRO: {"seat_limit": 5, "api_requests_per_minute": 120},
    Tier.ENTERPRISE: {"seat_limit": 50, "api_requests_per_minute": 600},
    Tier.CHAMBER: {"seat_limit": 50, "api_requests_per_minute": 600},
    Tier.GOV: {"seat_limit": 200, "api_requests_per_minute": 1200},
}
