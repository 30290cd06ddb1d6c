"""Subscription tiers, organizations and the credit ledger.

The guard in :mod:`tradescope.quota.guard` is the single entry point every
operation passes through: tier check, credit reservation, then commit or
release.
"""

from .guard import GuardTicket, TierQuotaGuard
from .ledger import CreditLedger, CreditType, InMemoryCreditLedger, SqlCreditLedger
from .operations import OPERATIONS, OperationSpec, get_operation

__all__ = [
    "CreditLedger",
    "CreditType",
    "GuardTicket",
    "InMemoryCreditLedger",
    "OPERATIONS",
    "OperationSpec",
    "SqlCreditLedger",
    "TierQuotaGuard",
    "get_operation",
]
