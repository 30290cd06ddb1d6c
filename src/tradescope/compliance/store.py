"""Persistence for compliance check results."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

from tradescope.compliance.models import CheckKind, CheckStatus, ComplianceCheck, ScreeningHit
from tradescope.db.models import ComplianceCheckRecord


class ComplianceCheckStore(ABC):
    @abstractmethod
    def save_all(self, checks: Iterable[ComplianceCheck]) -> None:
        """Persist checks atomically: all or none."""

    @abstractmethod
    def get(self, check_id: str, org_id: str) -> Optional[ComplianceCheck]:
        """Return the check only if it belongs to ``org_id``."""

    @abstractmethod
    def history(self, org_id: str, limit: int = 50) -> List[ComplianceCheck]:
        """Most recent first."""

    @abstractmethod
    def latest_for_company(self, org_id: str, company_id: str) -> Optional[ComplianceCheck]:
        """The organization's most recent check of ``company_id``."""

    def save(self, check: ComplianceCheck) -> None:
        self.save_all([check])


class InMemoryComplianceCheckStore(ComplianceCheckStore):
    def __init__(self) -> None:
        self._checks: Dict[str, ComplianceCheck] = {}
        self._lock = threading.Lock()

    def save_all(self, checks: Iterable[ComplianceCheck]) -> None:
        checks = list(checks)
        with self._lock:
            for check in checks:
                self._checks[check.check_id] = check

    def get(self, check_id: str, org_id: str) -> Optional[ComplianceCheck]:
        check = self._checks.get(check_id)
        if check is None or check.org_id != org_id:
            return None
        return check

    def history(self, org_id: str, limit: int = 50) -> List[ComplianceCheck]:
        with self._lock:
            mine = [c for c in self._checks.values() if c.org_id == org_id]
        mine.sort(key=lambda c: (c.checked_at, c.check_id), reverse=True)
        return mine[:limit]

    def latest_for_company(self, org_id: str, company_id: str) -> Optional[ComplianceCheck]:
        with self._lock:
            matching = [c for c in self._checks.values() if c.org_id == org_id and c.company_id == company_id]
        return max(matching, key=lambda c: (c.checked_at, c.check_id), default=None)


def _to_record(check: ComplianceCheck) -> ComplianceCheckRecord:
    return ComplianceCheckRecord(
        check_id=check.check_id,
        org_id=check.org_id,
        kind=check.kind.value,
        company_id=check.company_id,
        company_name=check.company_name,
        status=check.status.value,
        hits=[hit.to_dict() for hit in check.hits],
        lists_checked=list(check.lists_checked),
        checked_by=check.checked_by,
        checked_at=check.checked_at,
    )


def _from_record(record: ComplianceCheckRecord) -> ComplianceCheck:
    return ComplianceCheck(
        check_id=record.check_id,
        org_id=record.org_id,
        kind=CheckKind(record.kind),
        company_id=record.company_id,
        company_name=record.company_name,
        status=CheckStatus(record.status),
        checked_at=record.checked_at,
        checked_by=record.checked_by,
        hits=tuple(ScreeningHit.from_dict(hit) for hit in record.hits or []),
        lists_checked=tuple(record.lists_checked or []),
    )


class SqlComplianceCheckStore(ComplianceCheckStore):
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def save_all(self, checks: Iterable[ComplianceCheck]) -> None:
        session = self._session_factory()
        try:
            session.add_all([_to_record(check) for check in checks])
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, check_id: str, org_id: str) -> Optional[ComplianceCheck]:
        session = self._session_factory()
        try:
            record = session.query(ComplianceCheckRecord).filter_by(check_id=check_id, org_id=org_id).first()
            return _from_record(record) if record is not None else None
        finally:
            session.close()

    def history(self, org_id: str, limit: int = 50) -> List[ComplianceCheck]:
        session = self._session_factory()
        try:
            records = (
                session.query(ComplianceCheckRecord)
                .filter_by(org_id=org_id)
                .order_by(ComplianceCheckRecord.checked_at.desc(), ComplianceCheckRecord.check_id.desc())
                .limit(limit)
                .all()
            )
            return [_from_record(record) for record in records]
        finally:
            session.close()

    def latest_for_company(self, org_id: str, company_id: str) -> Optional[ComplianceCheck]:
        session = self._session_factory()
        try:
            record = (
                session.query(ComplianceCheckRecord)
                .filter_by(org_id=org_id, company_id=company_id)
                .order_by(ComplianceCheckRecord.checked_at.desc(), ComplianceCheckRecord.check_id.desc())
                .first()
            )
            return _from_record(record) if record is not None else None
        finally:
            session.close()
