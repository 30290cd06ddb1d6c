"""Organizations (subscribers) and API-key resolution.

Each API key maps to exactly one organization. Keys are stored as SHA-256
hashes, never in clear. The in-process registry persists to a JSON file; the
SQL registry uses the ``organizations`` and ``api_keys`` tables.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.orm import sessionmaker

from tradescope.db.models import ApiKeyRecord, OrganizationRecord
from tradescope.errors import NotFound
from tradescope.quota.ledger import CreditLedger, CreditType, write_json_atomic
from tradescope.tiers import TIER_LIMITS, Tier

logger = logging.getLogger(__name__)

# Credits granted when an organization is provisioned.
DEFAULT_CREDITS: Dict[Tier, Dict[CreditType, int]] = {
    Tier.STARTER: {CreditType.COMPLIANCE_CHECK: 100},
    Tier.PRO: {
        CreditType.COMPLIANCE_CHECK: 500,
        CreditType.COMPLIANCE_CHECK_BATCH: 1_000,
        CreditType.PEP_CHECK: 100,
    },
    Tier.ENTERPRISE: {
        CreditType.COMPLIANCE_CHECK: 5_000,
        CreditType.COMPLIANCE_CHECK_BATCH: 10_000,
        CreditType.PEP_CHECK: 1_000,
        CreditType.ADVERSE_MEDIA_CHECK: 500,
    },
    Tier.CHAMBER: {
        CreditType.COMPLIANCE_CHECK: 5_000,
        CreditType.COMPLIANCE_CHECK_BATCH: 10_000,
        CreditType.PEP_CHECK: 1_000,
        CreditType.ADVERSE_MEDIA_CHECK: 500,
    },
    Tier.GOV: {
        CreditType.COMPLIANCE_CHECK: 20_000,
        CreditType.COMPLIANCE_CHECK_BATCH: 50_000,
        CreditType.PEP_CHECK: 5_000,
        CreditType.ADVERSE_MEDIA_CHECK: 2_000,
    },
}


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


@dataclass
class Organization:
    """A subscriber account.

    ``tier`` is kept as the stored string; the guard parses it and fails
    closed if it is not a known tier.
    """

    org_id: str
    name: str
    tier: str = Tier.STARTER.value
    seat_limit: int = 1
    api_requests_per_minute: int = 30
    key_hashes: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Organization":
        return cls(**data)

    def public_dict(self) -> Dict[str, Any]:
        payload = self.to_dict()
        payload.pop("key_hashes")
        return payload


class OrganizationStore(Protocol):
    def register(self, org_id: str, name: str, tier: str, api_key: Optional[str] = None) -> Organization: ...

    def add_api_key(self, org_id: str, api_key: str) -> None: ...

    def resolve(self, api_key: str) -> Optional[Organization]: ...

    def get(self, org_id: str) -> Optional[Organization]: ...

    def set_tier(self, org_id: str, tier: str) -> Organization: ...

    def list(self) -> List[Organization]: ...


def _limits_for(tier: str) -> Dict[str, int]:
    return TIER_LIMITS[Tier.parse(tier)]


class OrganizationRegistry:
    """In-process registry persisted to ``$TS_DATA_ROOT/data/organizations.json``."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._orgs: Dict[str, Organization] = {}
        self._key_to_org: Dict[str, str] = {}
        self.path = path
        self._lock = threading.Lock()
        self._load()

    @classmethod
    def from_env(cls) -> "OrganizationRegistry":
        return cls(path=Path(os.getenv("TS_DATA_ROOT", ".")) / "data" / "organizations.json")

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        for item in data.get("organizations", []):
            org = Organization.from_dict(item)
            self._orgs[org.org_id] = org
            for key_hash in org.key_hashes:
                self._key_to_org[key_hash] = org.org_id

    def _persist(self) -> None:
        if self.path is None:
            return
        data = {"organizations": [org.to_dict() for org in self._orgs.values()]}
        write_json_atomic(self.path, data)

    def register(self, org_id: str, name: str, tier: str = Tier.STARTER.value, api_key: Optional[str] = None) -> Organization:
        tier_value = Tier.parse(tier).value
        limits = _limits_for(tier_value)
        org = Organization(
            org_id=org_id,
            name=name,
            tier=tier_value,
            seat_limit=limits["seat_limit"],
            api_requests_per_minute=limits["api_requests_per_minute"],
        )
        with self._lock:
            existing = self._orgs.get(org_id)
            if existing is not None:
                org.key_hashes = list(existing.key_hashes)
                org.created_at = existing.created_at
            if api_key:
                key_hash = hash_api_key(api_key)
                if key_hash not in org.key_hashes:
                    org.key_hashes.append(key_hash)
                self._key_to_org[key_hash] = org_id
            self._orgs[org_id] = org
            self._persist()
        logger.info("Registered organization %s (%s)", org_id, tier_value)
        return org

    def add_api_key(self, org_id: str, api_key: str) -> None:
        with self._lock:
            org = self._orgs.get(org_id)
            if org is None:
                raise NotFound("organization", org_id)
            key_hash = hash_api_key(api_key)
            if key_hash not in org.key_hashes:
                org.key_hashes.append(key_hash)
            self._key_to_org[key_hash] = org_id
            self._persist()

    def resolve(self, api_key: str) -> Optional[Organization]:
        org_id = self._key_to_org.get(hash_api_key(api_key))
        return self._orgs.get(org_id) if org_id is not None else None

    def get(self, org_id: str) -> Optional[Organization]:
        return self._orgs.get(org_id)

    def set_tier(self, org_id: str, tier: str) -> Organization:
        tier_value = Tier.parse(tier).value
        limits = _limits_for(tier_value)
        with self._lock:
            org = self._orgs.get(org_id)
            if org is None:
                raise NotFound("organization", org_id)
            org.tier = tier_value
            org.seat_limit = limits["seat_limit"]
            org.api_requests_per_minute = limits["api_requests_per_minute"]
            self._persist()
        return org

    def list(self) -> List[Organization]:
        return sorted(self._orgs.values(), key=lambda org: org.org_id)


class SqlOrganizationRegistry:
    """Organization registry backed by PostgreSQL."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _to_org(self, session, record: OrganizationRecord) -> Organization:
        key_hashes = [
            row.key_hash for row in session.query(ApiKeyRecord).filter_by(org_id=record.org_id).all()
        ]
        return Organization(
            org_id=record.org_id,
            name=record.name,
            tier=record.tier,
            seat_limit=record.seat_limit,
            api_requests_per_minute=record.api_requests_per_minute,
            key_hashes=key_hashes,
            created_at=record.created_at.isoformat() if record.created_at else "",
        )

    def register(self, org_id: str, name: str, tier: str = Tier.STARTER.value, api_key: Optional[str] = None) -> Organization:
        tier_value = Tier.parse(tier).value
        limits = _limits_for(tier_value)
        session = self._session_factory()
        try:
            record = session.query(OrganizationRecord).filter_by(org_id=org_id).first()
            if record is None:
                record = OrganizationRecord(org_id=org_id)
                session.add(record)
            record.name = name
            record.tier = tier_value
            record.seat_limit = limits["seat_limit"]
            record.api_requests_per_minute = limits["api_requests_per_minute"]
            session.flush()
            if api_key:
                key_hash = hash_api_key(api_key)
                if session.query(ApiKeyRecord).filter_by(key_hash=key_hash).first() is None:
                    session.add(ApiKeyRecord(key_hash=key_hash, org_id=org_id))
            session.commit()
            return self._to_org(session, record)
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def add_api_key(self, org_id: str, api_key: str) -> None:
        session = self._session_factory()
        try:
            if session.query(OrganizationRecord).filter_by(org_id=org_id).first() is None:
                raise NotFound("organization", org_id)
            key_hash = hash_api_key(api_key)
            if session.query(ApiKeyRecord).filter_by(key_hash=key_hash).first() is None:
                session.add(ApiKeyRecord(key_hash=key_hash, org_id=org_id))
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def resolve(self, api_key: str) -> Optional[Organization]:
        session = self._session_factory()
        try:
            key = session.query(ApiKeyRecord).filter_by(key_hash=hash_api_key(api_key)).first()
            if key is None:
                return None
            record = session.query(OrganizationRecord).filter_by(org_id=key.org_id).first()
            return self._to_org(session, record) if record is not None else None
        finally:
            session.close()

    def get(self, org_id: str) -> Optional[Organization]:
        session = self._session_factory()
        try:
            record = session.query(OrganizationRecord).filter_by(org_id=org_id).first()
            return self._to_org(session, record) if record is not None else None
        finally:
            session.close()

    def set_tier(self, org_id: str, tier: str) -> Organization:
        tier_value = Tier.parse(tier).value
        limits = _limits_for(tier_value)
        session = self._session_factory()
        try:
            record = session.query(OrganizationRecord).filter_by(org_id=org_id).first()
            if record is None:
                raise NotFound("organization", org_id)
            record.tier = tier_value
            record.seat_limit = limits["seat_limit"]
            record.api_requests_per_minute = limits["api_requests_per_minute"]
            session.commit()
            return self._to_org(session, record)
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def list(self) -> List[Organization]:
        session = self._session_factory()
        try:
            records = session.query(OrganizationRecord).order_by(OrganizationRecord.org_id).all()
            return [self._to_org(session, record) for record in records]
        finally:
            session.close()


def provision_organization(
    registry: OrganizationStore,
    ledger: CreditLedger,
    *,
    org_id: str,
    name: str,
    tier: str,
    api_key: Optional[str] = None,
    credits: Optional[Dict[CreditType, int]] = None,
) -> Organization:
    """Register an organization and grant its starting credits.

    ``credits`` defaults to the tier's standard allowance.
    """
    org = registry.register(org_id, name, tier, api_key=api_key)
    grants = credits if credits is not None else DEFAULT_CREDITS[Tier.parse(tier)]
    for credit_type, amount in grants.items():
        if amount > 0:
            ledger.allocate(org_id, CreditType(credit_type), amount)
    return org
