"""Shared fixtures: a small shipment corpus, per-tier organizations and an API client."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tradescope.api.app import create_app
from tradescope.api.security import set_rate_limit
from tradescope.compliance.models import ScreeningHit
from tradescope.compliance.provider import StaticScreeningProvider
from tradescope.compliance.store import InMemoryComplianceCheckStore
from tradescope.db.session import init_db
from tradescope.quota.guard import TierQuotaGuard
from tradescope.quota.ledger import CreditType, InMemoryCreditLedger
from tradescope.quota.organizations import Organization, OrganizationRegistry, provision_organization
from tradescope.search.cache import SearchCache
from tradescope.search.executor import SearchExecutor
from tradescope.search.index import InMemoryShipmentIndex
from tradescope.search.models import Shipment
from tradescope.search.service import ShipmentSearchService
from tradescope.services import build_services
from tradescope.tariff.resolver import TariffResolver
from tradescope.tiers import TIER_LIMITS, Tier

FIXED_DAY = date(2026, 1, 15)

API_KEYS = {
    Tier.STARTER: "starter-key",
    Tier.PRO: "pro-key",
    Tier.ENTERPRISE: "enterprise-key",
    Tier.GOV: "gov-key",
}


def _shipment(
    shipment_id: str,
    shipper: tuple,
    consignee: tuple,
    hs_code: str,
    description: str,
    shipped: date,
    origin: str,
    destination: str,
    route: tuple = (None, None),
    quantity: Optional[float] = None,
    value: Optional[float] = None,
    mode: Optional[str] = "SEA",
    carrier: Optional[str] = None,
) -> Shipment:
    unit_price = round(value / quantity, 2) if value is not None and quantity else None
    return Shipment(
        id=shipment_id,
        shipper_id=shipper[0],
        shipper_name=shipper[1],
        shipper_country=shipper[2],
        consignee_id=consignee[0],
        consignee_name=consignee[1],
        consignee_country=consignee[2],
        hs_code=hs_code,
        product_description=description,
        shipment_date=shipped,
        origin_country=origin,
        destination_country=destination,
        port_of_loading=route[0],
        port_of_discharge=route[1],
        quantity=quantity,
        quantity_unit="KG" if quantity is not None else None,
        declared_value_usd=value,
        unit_price_usd=unit_price,
        transport_mode=mode,
        carrier=carrier,
    )


ACME = ("C-ACME", "Acme Steel Works", "CN")
BOLT = ("C-BOLT", "Bolt Builders Inc", "US")
GLOBEX = ("C-GLOBEX", "Globex Trading GmbH", "DE")
HANSEO = ("C-HANSEO", "Hanseo Metals", "KR")
TECHNOVA = ("C-TECHNO", "Technova Ltd", "GB")
MAPLE = ("C-MAPLE", "Maple Construction", "CA")


def sample_shipments() -> List[Shipment]:
    """Seven shipments; five fall under HS heading 7308."""
    return [
        _shipment("SHP-001", ACME, BOLT, "730890", "steel beam structures", date(2025, 3, 10), "CN", "US",
                  ("CNSHA", "USLAX"), 100, 10000.0, carrier="COSCO"),
        _shipment("SHP-002", ACME, BOLT, "73089095", "fabricated steel trusses", date(2025, 6, 2), "CN", "US",
                  ("CNSHA", "USLAX"), 50, 6000.0, carrier="COSCO"),
        _shipment("SHP-003", ACME, GLOBEX, "730820", "steel lattice towers", date(2025, 9, 20), "CN", "DE",
                  ("CNNGB", "DEHAM"), 20, 15000.0, carrier="Maersk Line"),
        _shipment("SHP-004", HANSEO, BOLT, "730630", "welded steel pipe", date(2025, 11, 5), "KR", "US",
                  ("KRPUS", "USLAX"), 200, 8000.0, carrier="HMM"),
        _shipment("SHP-005", TECHNOVA, GLOBEX, "847130", "laptop computers", date(2025, 12, 1), "GB", "DE",
                  ("GBLHR", "DEFRA"), 10, 9000.0, mode="AIR", carrier="Lufthansa Cargo"),
        _shipment("SHP-006", BOLT, MAPLE, "730890", "steel beam structures resale", date(2025, 12, 15), "US", "CA",
                  ("USSEA", "CAVAN"), 30, 4500.0, mode="ROAD"),
        _shipment("SHP-007", ACME, BOLT, "730890", "steel beam structures", date(2026, 1, 5), "CN", "US",
                  ("CNSHA", "USLAX")),
    ]


def bulk_shipments(count: int) -> List[Shipment]:
    """``count`` near-identical 7308 shipments for cap and paging tests."""
    start = date(2024, 1, 1)
    return [
        _shipment(f"BULK-{i:05d}", ACME, BOLT, "730890", "steel beam structures", start + timedelta(days=i % 500),
                  "CN", "US", ("CNSHA", "USLAX"), 10, float(100 + i))
        for i in range(count)
    ]


def make_org(tier: Tier, org_id: Optional[str] = None) -> Organization:
    limits = TIER_LIMITS[tier]
    return Organization(
        org_id=org_id or f"org-{tier.value.lower()}",
        name=f"{tier.value.title()} Org",
        tier=tier.value,
        seat_limit=limits["seat_limit"],
        api_requests_per_minute=limits["api_requests_per_minute"],
    )


def sqlite_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def shipment_index() -> InMemoryShipmentIndex:
    return InMemoryShipmentIndex(sample_shipments())


@pytest.fixture()
def executor(shipment_index) -> Iterator[SearchExecutor]:
    runner = SearchExecutor(
        shipment_index, timeout_sec=5, max_attempts=1, backoff_sec=0, sleep=lambda _: None
    )
    yield runner
    runner.shutdown()


@pytest.fixture()
def ledger() -> InMemoryCreditLedger:
    return InMemoryCreditLedger()


@pytest.fixture()
def guard(ledger) -> TierQuotaGuard:
    return TierQuotaGuard(ledger)


@pytest.fixture()
def resolver() -> TariffResolver:
    return TariffResolver.default(clock=lambda: FIXED_DAY)


@pytest.fixture()
def search_service(guard, executor, resolver) -> ShipmentSearchService:
    return ShipmentSearchService(guard, executor, resolver=resolver)


@pytest.fixture()
def orgs() -> Dict[Tier, Organization]:
    return {tier: make_org(tier) for tier in Tier}


@pytest.fixture()
def watchlist() -> Dict[str, List[ScreeningHit]]:
    return {
        "C-SHADY": [ScreeningHit("OFAC_SDN", "Shady Freight LLC", 0.97, "SDN-1234")],
        "Almost Shady Co": [ScreeningHit("EU_CONSOLIDATED", "Almost Shady Company", 0.72)],
    }


@pytest.fixture()
def services(monkeypatch, watchlist, resolver):
    monkeypatch.delenv("TS_API_KEY", raising=False)
    monkeypatch.delenv("TS_SCREENING_URL", raising=False)
    index = InMemoryShipmentIndex(sample_shipments())
    built = build_services(
        "memory",
        index=index,
        ledger=InMemoryCreditLedger(),
        organizations=OrganizationRegistry(path=None),
        check_store=InMemoryComplianceCheckStore(),
        provider=StaticScreeningProvider(watchlist),
        cache=SearchCache(),
        resolver=resolver,
        executor=SearchExecutor(index, timeout_sec=5, max_attempts=1, backoff_sec=0, sleep=lambda _: None),
    )
    for tier, key in API_KEYS.items():
        provision_organization(
            built.organizations,
            built.ledger,
            org_id=f"org-{tier.value.lower()}",
            name=f"{tier.value.title()} Org",
            tier=tier.value,
            api_key=key,
        )
    provision_organization(
        built.organizations,
        built.ledger,
        org_id="org-broke",
        name="Broke Org",
        tier=Tier.STARTER.value,
        api_key="broke-key",
        credits={CreditType.COMPLIANCE_CHECK: 0},
    )
    yield built
    built.shutdown()


@pytest.fixture()
def api_client(services) -> Iterator[TestClient]:
    set_rate_limit(100)
    with TestClient(create_app(services)) as client:
        yield client


@pytest.fixture()
def auth_headers():
    """Headers for the organization of the given tier."""

    def _headers(tier: Tier) -> Dict[str, str]:
        return {"X-API-Key": API_KEYS[tier]}

    return _headers
