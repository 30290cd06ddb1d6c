"""Metered compliance screening.

Every check runs inside the tier & quota guard: credit is reserved before the
provider is called and released if the provider (or anything after it)
fails. A batch reserves its whole cost once and either stores every result
or none.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from tradescope.compliance.models import CheckKind, ComplianceCheck
from tradescope.compliance.provider import ScreeningProvider
from tradescope.compliance.report import render_check_pdf
from tradescope.compliance.store import ComplianceCheckStore
from tradescope.errors import NotFound, ValidationError
from tradescope.identifiers import validate_identifier
from tradescope.observability import log_event
from tradescope.quota.guard import TierQuotaGuard
from tradescope.quota.organizations import Organization

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
MAX_NAME_LENGTH = 200
MAX_HISTORY = 200


class ComplianceService:
    def __init__(self, guard: TierQuotaGuard, provider: ScreeningProvider, store: ComplianceCheckStore) -> None:
        self.guard = guard
        self.provider = provider
        self.store = store

    def _screen(
        self,
        org: Organization,
        kind: CheckKind,
        company_id: str,
        company_name: Optional[str],
        checked_by: Optional[str],
    ) -> ComplianceCheck:
        outcome = self.provider.screen(kind, company_id, company_name)
        return ComplianceCheck(
            check_id=str(uuid.uuid4()),
            org_id=org.org_id,
            kind=kind,
            company_id=company_id,
            company_name=company_name,
            status=outcome.status,
            checked_at=datetime.now(timezone.utc),
            checked_by=checked_by,
            hits=outcome.hits,
            lists_checked=outcome.lists_checked,
        )

    def _single(
        self,
        org: Organization,
        operation: str,
        kind: CheckKind,
        company_id: str,
        company_name: Optional[str],
        checked_by: Optional[str],
    ) -> ComplianceCheck:
        with self.guard.guarded(org, operation):
            company_id = validate_identifier(company_id, "company")
            company_name = _clean_name(company_name)
            check = self._screen(org, kind, company_id, company_name, checked_by)
            self.store.save(check)
            log_event("compliance.check", kind=kind.value, status=check.status.value)
        return check

    def run_check(
        self,
        org: Organization,
        company_id: str,
        company_name: Optional[str] = None,
        checked_by: Optional[str] = None,
    ) -> ComplianceCheck:
        """Sanctions screening; 1 COMPLIANCE_CHECK credit."""
        return self._single(org, "compliance.check", CheckKind.SANCTIONS, company_id, company_name, checked_by)

    def run_pep_check(self, org: Organization, company_id: str, checked_by: Optional[str] = None) -> ComplianceCheck:
        return self._single(org, "compliance.pep_check", CheckKind.PEP, company_id, None, checked_by)

    def run_adverse_media_check(
        self, org: Organization, company_id: str, checked_by: Optional[str] = None
    ) -> ComplianceCheck:
        return self._single(
            org, "compliance.adverse_media_check", CheckKind.ADVERSE_MEDIA, company_id, None, checked_by
        )

    def run_batch_check(
        self, org: Organization, company_ids: Sequence[str], checked_by: Optional[str] = None
    ) -> List[ComplianceCheck]:
        """Screen 1-100 companies under one reservation of ``len(company_ids)`` credits."""
        self.guard.check_tier(org, "compliance.check_batch")
        if isinstance(company_ids, str) or not isinstance(company_ids, (list, tuple)):
            raise ValidationError("companyIds", "must be a list of company ids")
        if not 1 <= len(company_ids) <= MAX_BATCH_SIZE:
            raise ValidationError("companyIds", f"must contain between 1 and {MAX_BATCH_SIZE} ids")
        ids = [validate_identifier(company_id, "company") for company_id in company_ids]

        with self.guard.guarded(org, "compliance.check_batch", units=len(ids)) as ticket:
            checks = [self._screen(org, CheckKind.SANCTIONS, company_id, None, checked_by) for company_id in ids]
            self.store.save_all(checks)
            log_event("compliance.batch", size=len(checks), credits=ticket.credits)
        return checks

    def history(self, org: Organization, limit: int = 50) -> List[ComplianceCheck]:
        with self.guard.guarded(org, "compliance.history"):
            if not 1 <= int(limit) <= MAX_HISTORY:
                raise ValidationError("limit", f"must be between 1 and {MAX_HISTORY}")
            return self.store.history(org.org_id, int(limit))

    def get_check_result(self, org: Organization, check_id: str) -> ComplianceCheck:
        with self.guard.guarded(org, "compliance.check_result"):
            return self._owned(org, check_id)

    def export_pdf(self, org: Organization, check_id: str) -> bytes:
        with self.guard.guarded(org, "compliance.check_pdf"):
            return render_check_pdf(self._owned(org, check_id))

    def credits_balance(self, org: Organization) -> Dict[str, Any]:
        with self.guard.guarded(org, "compliance.credits"):
            return {"organizationId": org.org_id, "balances": self.guard.ledger.balances(org.org_id)}

    def _owned(self, org: Organization, check_id: str) -> ComplianceCheck:
        check_id = validate_identifier(check_id, "compliance check")
        check = self.store.get(check_id, org.org_id)
        if check is None:
            raise NotFound("compliance check", check_id)
        return check


def _clean_name(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    name = " ".join(str(name).split())
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("companyName", f"must be at most {MAX_NAME_LENGTH} characters")
    return name or None
