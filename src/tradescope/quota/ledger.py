"""Append-only credit ledger with atomic reservation.

Balances are never read and written back in separate steps. The in-memory
ledger derives the balance from its entries while holding a lock for the
(organization, credit type) pair; the SQL ledger decrements with a single
conditional UPDATE in the same transaction as the ledger insert.

Entry lifecycle: RESERVED -> COMMITTED on success, RESERVED -> RELEASED on
failure. COMMITTED and RELEASED entries never change again.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from tradescope.db.models import CreditAccountRecord, CreditLedgerRecord
from tradescope.errors import NotFound, QuotaExceeded

logger = logging.getLogger(__name__)


class CreditType(str, Enum):
    COMPLIANCE_CHECK = "COMPLIANCE_CHECK"
    COMPLIANCE_CHECK_BATCH = "COMPLIANCE_CHECK_BATCH"
    PEP_CHECK = "PEP_CHECK"
    ADVERSE_MEDIA_CHECK = "ADVERSE_MEDIA_CHECK"


class LedgerState(str, Enum):
    RESERVED = "RESERVED"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"


class LedgerStateError(RuntimeError):
    """Attempted transition out of a terminal (COMMITTED/RELEASED) state."""


@dataclass(frozen=True)
class CreditLedgerEntry:
    entry_id: str
    org_id: str
    credit_type: CreditType
    amount: int
    state: LedgerState
    created_at: datetime
    operation: str = ""
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["credit_type"] = self.credit_type.value
        payload["state"] = self.state.value
        payload["created_at"] = self.created_at.isoformat()
        payload["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "CreditLedgerEntry":
        updated = data.get("updated_at")
        return cls(
            entry_id=str(data["entry_id"]),
            org_id=str(data["org_id"]),
            credit_type=CreditType(data["credit_type"]),
            amount=int(data["amount"]),
            state=LedgerState(data["state"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            operation=str(data.get("operation") or ""),
            updated_at=datetime.fromisoformat(str(updated)) if updated else None,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def write_json_atomic(path: Path, data: Dict) -> None:
    """Write ``data`` beside ``path`` and swap it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp, path)


def _check_amount(amount: int) -> int:
    if isinstance(amount, bool) or int(amount) != amount or amount <= 0:
        raise ValueError(f"Credit amount must be a positive integer, got {amount!r}")
    return int(amount)


class CreditLedger(ABC):
    """Metered credit accounts for organizations."""

    @abstractmethod
    def allocate(self, org_id: str, credit_type: CreditType, amount: int) -> int:
        """Grant ``amount`` credits; returns the new balance."""

    @abstractmethod
    def reserve(self, org_id: str, credit_type: CreditType, amount: int, operation: str = "") -> CreditLedgerEntry:
        """Atomically reserve ``amount`` credits or raise ``QuotaExceeded``."""

    @abstractmethod
    def commit(self, entry_id: str) -> CreditLedgerEntry:
        ...

    @abstractmethod
    def release(self, entry_id: str) -> CreditLedgerEntry:
        ...

    @abstractmethod
    def balance(self, org_id: str, credit_type: CreditType) -> int:
        ...

    @abstractmethod
    def entries(self, org_id: str, credit_type: Optional[CreditType] = None) -> List[CreditLedgerEntry]:
        ...

    def balances(self, org_id: str) -> Dict[str, int]:
        return {credit_type.value: self.balance(org_id, credit_type) for credit_type in CreditType}


# ---------------------------------------------------------------------------
# In-process ledger
# ---------------------------------------------------------------------------
class InMemoryCreditLedger(CreditLedger):
    """Process-local ledger; optionally persisted to a JSON file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._allocations: Dict[Tuple[str, CreditType], int] = {}
        self._entries: Dict[str, CreditLedgerEntry] = {}
        self._by_pair: Dict[Tuple[str, CreditType], List[str]] = {}
        self._pair_locks: Dict[Tuple[str, CreditType], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._load()

    @classmethod
    def from_env(cls) -> "InMemoryCreditLedger":
        root = Path(os.getenv("TS_DATA_ROOT", "."))
        return cls(path=root / "data" / "credit_ledger.json")

    def _pair_lock(self, pair: Tuple[str, CreditType]) -> threading.Lock:
        with self._registry_lock:
            lock = self._pair_locks.get(pair)
            if lock is None:
                lock = threading.Lock()
                self._pair_locks[pair] = lock
            return lock

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        for item in data.get("allocations", []):
            pair = (item["org_id"], CreditType(item["credit_type"]))
            self._allocations[pair] = int(item["amount"])
        for item in data.get("entries", []):
            entry = CreditLedgerEntry.from_dict(item)
            self._entries[entry.entry_id] = entry
            self._by_pair.setdefault((entry.org_id, entry.credit_type), []).append(entry.entry_id)

    def _persist(self) -> None:
        if self.path is None:
            return
        with self._persist_lock:
            data = {
                "allocations": [
                    {"org_id": org_id, "credit_type": credit_type.value, "amount": amount}
                    for (org_id, credit_type), amount in list(self._allocations.items())
                ],
                "entries": [entry.to_dict() for entry in list(self._entries.values())],
            }
            write_json_atomic(self.path, data)

    def _derived_balance(self, pair: Tuple[str, CreditType]) -> int:
        held = sum(
            self._entries[entry_id].amount
            for entry_id in self._by_pair.get(pair, [])
            if self._entries[entry_id].state in (LedgerState.RESERVED, LedgerState.COMMITTED)
        )
        return self._allocations.get(pair, 0) - held

    def allocate(self, org_id: str, credit_type: CreditType, amount: int) -> int:
        pair = (org_id, CreditType(credit_type))
        amount = _check_amount(amount)
        with self._pair_lock(pair):
            self._allocations[pair] = self._allocations.get(pair, 0) + amount
            balance = self._derived_balance(pair)
        self._persist()
        logger.info("Allocated %d %s credits to %s (balance %d)", amount, pair[1].value, org_id, balance)
        return balance

    def reserve(self, org_id: str, credit_type: CreditType, amount: int, operation: str = "") -> CreditLedgerEntry:
        pair = (org_id, CreditType(credit_type))
        amount = _check_amount(amount)
        with self._pair_lock(pair):
            remaining = self._derived_balance(pair)
            if amount > remaining:
                raise QuotaExceeded(pair[1].value, amount, remaining)
            entry = CreditLedgerEntry(
                entry_id=str(uuid.uuid4()),
                org_id=org_id,
                credit_type=pair[1],
                amount=amount,
                state=LedgerState.RESERVED,
                created_at=_now(),
                operation=operation,
            )
            self._entries[entry.entry_id] = entry
            self._by_pair.setdefault(pair, []).append(entry.entry_id)
        self._persist()
        return entry

    def _transition(self, entry_id: str, target: LedgerState) -> CreditLedgerEntry:
        current = self._entries.get(entry_id)
        if current is None:
            raise NotFound("ledger entry", entry_id)
        with self._pair_lock((current.org_id, current.credit_type)):
            current = self._entries[entry_id]
            if current.state is not LedgerState.RESERVED:
                raise LedgerStateError(
                    f"Ledger entry {entry_id} is {current.state.value}; cannot move to {target.value}"
                )
            updated = replace(current, state=target, updated_at=_now())
            self._entries[entry_id] = updated
        self._persist()
        return updated

    def commit(self, entry_id: str) -> CreditLedgerEntry:
        return self._transition(entry_id, LedgerState.COMMITTED)

    def release(self, entry_id: str) -> CreditLedgerEntry:
        return self._transition(entry_id, LedgerState.RELEASED)

    def balance(self, org_id: str, credit_type: CreditType) -> int:
        pair = (org_id, CreditType(credit_type))
        with self._pair_lock(pair):
            return self._derived_balance(pair)

    def entries(self, org_id: str, credit_type: Optional[CreditType] = None) -> List[CreditLedgerEntry]:
        items = [
            entry
            for entry in list(self._entries.values())
            if entry.org_id == org_id and (credit_type is None or entry.credit_type == CreditType(credit_type))
        ]
        return sorted(items, key=lambda entry: entry.created_at)


# ---------------------------------------------------------------------------
# SQL ledger
# ---------------------------------------------------------------------------
def _record_to_entry(record: CreditLedgerRecord) -> CreditLedgerEntry:
    return CreditLedgerEntry(
        entry_id=record.entry_id,
        org_id=record.org_id,
        credit_type=CreditType(record.credit_type),
        amount=int(record.amount),
        state=LedgerState(record.state),
        created_at=record.created_at,
        operation=record.operation or "",
        updated_at=record.updated_at,
    )


class SqlCreditLedger(CreditLedger):
    """Ledger backed by ``credit_accounts`` and ``credit_ledger`` tables."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def allocate(self, org_id: str, credit_type: CreditType, amount: int) -> int:
        credit_type = CreditType(credit_type)
        amount = _check_amount(amount)
        session = self._session_factory()
        try:
            updated = (
                session.query(CreditAccountRecord)
                .filter_by(org_id=org_id, credit_type=credit_type.value)
                .update(
                    {
                        CreditAccountRecord.allocated: CreditAccountRecord.allocated + amount,
                        CreditAccountRecord.balance: CreditAccountRecord.balance + amount,
                    },
                    synchronize_session=False,
                )
            )
            if not updated:
                session.add(
                    CreditAccountRecord(
                        org_id=org_id, credit_type=credit_type.value, allocated=amount, balance=amount
                    )
                )
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
        balance = self.balance(org_id, credit_type)
        logger.info("Allocated %d %s credits to %s (balance %d)", amount, credit_type.value, org_id, balance)
        return balance

    def reserve(self, org_id: str, credit_type: CreditType, amount: int, operation: str = "") -> CreditLedgerEntry:
        credit_type = CreditType(credit_type)
        amount = _check_amount(amount)
        session = self._session_factory()
        try:
            # UPDATE credit_accounts SET balance = balance - :n WHERE ... AND balance >= :n
            updated = (
                session.query(CreditAccountRecord)
                .filter(
                    CreditAccountRecord.org_id == org_id,
                    CreditAccountRecord.credit_type == credit_type.value,
                    CreditAccountRecord.balance >= amount,
                )
                .update(
                    {CreditAccountRecord.balance: CreditAccountRecord.balance - amount},
                    synchronize_session=False,
                )
            )
            if not updated:
                session.rollback()
                raise QuotaExceeded(credit_type.value, amount, self.balance(org_id, credit_type))
            record = CreditLedgerRecord(
                entry_id=str(uuid.uuid4()),
                org_id=org_id,
                credit_type=credit_type.value,
                amount=amount,
                state=LedgerState.RESERVED.value,
                operation=operation,
                created_at=_now(),
            )
            session.add(record)
            session.commit()
            return _record_to_entry(record)
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def _transition(self, entry_id: str, target: LedgerState) -> CreditLedgerEntry:
        session = self._session_factory()
        try:
            record = session.query(CreditLedgerRecord).filter_by(entry_id=entry_id).first()
            if record is None:
                raise NotFound("ledger entry", entry_id)
            updated = (
                session.query(CreditLedgerRecord)
                .filter_by(entry_id=entry_id, state=LedgerState.RESERVED.value)
                .update(
                    {CreditLedgerRecord.state: target.value, CreditLedgerRecord.updated_at: _now()},
                    synchronize_session=False,
                )
            )
            if not updated:
                raise LedgerStateError(
                    f"Ledger entry {entry_id} is {record.state}; cannot move to {target.value}"
                )
            if target is LedgerState.RELEASED:
                session.query(CreditAccountRecord).filter_by(
                    org_id=record.org_id, credit_type=record.credit_type
                ).update(
                    {CreditAccountRecord.balance: CreditAccountRecord.balance + record.amount},
                    synchronize_session=False,
                )
            session.commit()
            session.refresh(record)
            return _record_to_entry(record)
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def commit(self, entry_id: str) -> CreditLedgerEntry:
        return self._transition(entry_id, LedgerState.COMMITTED)

    def release(self, entry_id: str) -> CreditLedgerEntry:
        return self._transition(entry_id, LedgerState.RELEASED)

    def balance(self, org_id: str, credit_type: CreditType) -> int:
        session = self._session_factory()
        try:
            account = (
                session.query(CreditAccountRecord)
                .filter_by(org_id=org_id, credit_type=CreditType(credit_type).value)
                .first()
            )
            return int(account.balance) if account is not None else 0
        finally:
            session.close()

    def entries(self, org_id: str, credit_type: Optional[CreditType] = None) -> List[CreditLedgerEntry]:
        session = self._session_factory()
        try:
            query = session.query(CreditLedgerRecord).filter_by(org_id=org_id)
            if credit_type is not None:
                query = query.filter_by(credit_type=CreditType(credit_type).value)
            return [_record_to_entry(r) for r in query.order_by(CreditLedgerRecord.created_at).all()]
        finally:
            session.close()
