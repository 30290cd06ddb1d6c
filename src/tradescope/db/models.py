"""SQLAlchemy models for the PostgreSQL backend.

Tables:
- shipments: the indexed shipment corpus (read-only from this service)
- organizations / api_keys: subscribers, their tier and credentials
- credit_accounts: current balance per (organization, credit type)
- credit_ledger: append-only reservation log (RESERVED -> COMMITTED | RELEASED)
- compliance_checks: stored screening results
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB, "postgresql")


class ShipmentRecord(Base):
    """One customs declaration / bill of lading."""

    __tablename__ = "shipments"

    id = Column(String(64), primary_key=True)
    shipper_id = Column(String(64), nullable=False, index=True)
    shipper_name = Column(String(255), nullable=False)
    shipper_country = Column(String(2))
    consignee_id = Column(String(64), nullable=False, index=True)
    consignee_name = Column(String(255), nullable=False)
    consignee_country = Column(String(2))
    origin_country = Column(String(2), index=True)
    destination_country = Column(String(2), index=True)
    port_of_loading = Column(String(10))
    port_of_loading_name = Column(String(255))
    port_of_discharge = Column(String(10))
    port_of_discharge_name = Column(String(255))
    hs_code = Column(String(10), nullable=False, index=True)
    hs_chapter = Column(String(2), index=True)
    product_description = Column(Text, nullable=False, default="")
    quantity = Column(Float)
    quantity_unit = Column(String(20))
    declared_value_usd = Column(Float)
    unit_price_usd = Column(Float)
    transport_mode = Column(String(20))
    carrier = Column(String(100))
    shipment_date = Column(Date, nullable=False, index=True)

    __table_args__ = (
        Index("idx_shipments_route", "origin_country", "destination_country"),
    )


class OrganizationRecord(Base):
    __tablename__ = "organizations"

    org_id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    tier = Column(String(20), nullable=False, default="STARTER")
    seat_limit = Column(Integer, nullable=False, default=1)
    api_requests_per_minute = Column(Integer, nullable=False, default=30)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class ApiKeyRecord(Base):
    """API key hash -> organization."""

    __tablename__ = "api_keys"

    key_hash = Column(String(64), primary_key=True)
    org_id = Column(
        String(64), ForeignKey("organizations.org_id", ondelete="CASCADE"), nullable=False, index=True
    )
    label = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CreditAccountRecord(Base):
    """Running balance per (organization, credit type).

    Only the ledger's conditional decrement and its release path write
    ``balance``; ``allocated`` accumulates grants.
    """

    __tablename__ = "credit_accounts"

    org_id = Column(
        String(64), ForeignKey("organizations.org_id", ondelete="CASCADE"), primary_key=True
    )
    credit_type = Column(String(40), primary_key=True)
    allocated = Column(Integer, nullable=False, default=0)
    balance = Column(Integer, nullable=False, default=0)

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),)


class CreditLedgerRecord(Base):
    __tablename__ = "credit_ledger"

    entry_id = Column(String(36), primary_key=True)
    org_id = Column(String(64), nullable=False, index=True)
    credit_type = Column(String(40), nullable=False)
    amount = Column(Integer, nullable=False)
    state = Column(String(20), nullable=False, default="RESERVED")
    operation = Column(String(100))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_credit_ledger_org_type", "org_id", "credit_type"),
        CheckConstraint("amount > 0", name="ck_credit_ledger_amount_positive"),
    )


class ComplianceCheckRecord(Base):
    __tablename__ = "compliance_checks"

    check_id = Column(String(36), primary_key=True)
    org_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    company_id = Column(String(64), nullable=False)
    company_name = Column(String(255))
    status = Column(String(20), nullable=False)
    hits = Column(JSONType, nullable=False, default=list)
    lists_checked = Column(JSONType, nullable=False, default=list)
    checked_by = Column(String(64))
    checked_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("check_id", "org_id", name="uq_compliance_check_org"),
        Index("idx_compliance_checks_org_time", "org_id", "checked_at"),
    )
