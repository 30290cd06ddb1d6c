"""Tier & quota guard wrapped around every metered or tier-gated operation.

State machine per call::

    CHECK_TIER -> RESERVE_CREDIT (metered only) -> INVOKE -> COMMIT
                                                        \\-> RELEASE (any failure)

Reservation is the only path that decrements a balance. A reservation is
released on *any* exception raised inside the guarded block, including
``KeyboardInterrupt``/``asyncio.CancelledError`` (``BaseException``), so no
error path leaves credit dangling.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, TypeVar

from tradescope.errors import InsufficientTier, ValidationError
from tradescope.observability import log_event, operation_scope
from tradescope.quota.ledger import CreditLedger, CreditLedgerEntry
from tradescope.quota.operations import OperationSpec, get_operation
from tradescope.quota.organizations import Organization
from tradescope.tiers import Tier

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHECK_TIER = "CHECK_TIER"
RESERVE_CREDIT = "RESERVE_CREDIT"
INVOKE = "INVOKE"
COMMIT = "COMMIT"
RELEASE = "RELEASE"


@dataclass
class GuardTicket:
    """What the guarded block sees: the verdict and, if metered, the reservation."""

    org_id: str
    operation: OperationSpec
    tier: Tier
    units: int
    entry: Optional[CreditLedgerEntry] = None
    trace: List[str] = field(default_factory=list)

    @property
    def credits(self) -> int:
        return self.entry.amount if self.entry is not None else 0


class TierQuotaGuard:
    def __init__(self, ledger: CreditLedger) -> None:
        self.ledger = ledger

    def check_tier(self, org: Organization, operation: str) -> Tier:
        """Return the organization's parsed tier, or raise ``InsufficientTier``.

        An unrecognized tier string fails closed.
        """
        spec = get_operation(operation)
        try:
            tier = Tier.parse(org.tier)
        except ValueError:
            logger.warning("Organization %s has unrecognized tier %r", org.org_id, org.tier)
            raise InsufficientTier(spec.name, spec.min_tier.value, str(org.tier)) from None
        if not tier.satisfies(spec.min_tier):
            raise InsufficientTier(spec.name, spec.min_tier.value, tier.value)
        return tier

    @contextmanager
    def guarded(self, org: Organization, operation: str, units: int = 1) -> Iterator[GuardTicket]:
        """Check tier, reserve credit, and settle the reservation on exit.

        Usage:
            with guard.guarded(org, "compliance.check") as ticket:
                outcome = provider.screen(...)
        """
        spec = get_operation(operation)
        if isinstance(units, bool) or not isinstance(units, int) or units < 1:
            raise ValidationError("units", "must be a positive integer")

        with operation_scope(org.org_id, spec.name):
            trace: List[str] = [CHECK_TIER]
            tier = self.check_tier(org, operation)
            ticket = GuardTicket(org_id=org.org_id, operation=spec, tier=tier, units=units, trace=trace)

            if spec.metered:
                trace.append(RESERVE_CREDIT)
                ticket.entry = self.ledger.reserve(
                    org.org_id, spec.credit_type, units * spec.credits_per_unit, operation=spec.name
                )

            trace.append(INVOKE)
            try:
                yield ticket
            except BaseException as exc:
                if ticket.entry is not None:
                    trace.append(RELEASE)
                    self.ledger.release(ticket.entry.entry_id)
                    logger.info(
                        "Released %d %s credits for %s after %s",
                        ticket.entry.amount,
                        ticket.entry.credit_type.value,
                        spec.name,
                        type(exc).__name__,
                    )
                raise
            if ticket.entry is not None:
                trace.append(COMMIT)
                self.ledger.commit(ticket.entry.entry_id)
                log_event(
                    "guard.commit",
                    credit_type=ticket.entry.credit_type.value,
                    amount=ticket.entry.amount,
                )

    def run(self, org: Organization, operation: str, fn: Callable[..., T], *args: Any, units: int = 1, **kwargs: Any) -> T:
        """Invoke ``fn(*args, **kwargs)`` inside ``guarded``."""
        with self.guarded(org, operation, units=units):
            return fn(*args, **kwargs)
