"""Service wiring for the API and CLI.

``TS_STORAGE_BACKEND`` selects the persistence layer:

* ``memory`` (default): in-process index, ledger and registry. The index is
  seeded from ``$TS_DATA_ROOT/data/shipments.jsonl`` when that file exists;
  the ledger and registry persist to JSON files under the same directory.
* ``postgres``: SQLAlchemy-backed index, ledger, registry and check store
  bound to ``DATABASE_URL``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from tradescope.companies.service import CompanyActivityService
from tradescope.compliance.provider import ScreeningProvider, provider_from_env
from tradescope.compliance.service import ComplianceService
from tradescope.compliance.store import (
    ComplianceCheckStore,
    InMemoryComplianceCheckStore,
    SqlComplianceCheckStore,
)
from tradescope.db.session import get_session_factory
from tradescope.quota.guard import TierQuotaGuard
from tradescope.quota.ledger import CreditLedger, InMemoryCreditLedger, SqlCreditLedger
from tradescope.quota.organizations import (
    OrganizationRegistry,
    OrganizationStore,
    SqlOrganizationRegistry,
    provision_organization,
)
from tradescope.search.cache import SearchCache, cache_from_env
from tradescope.search.executor import SearchExecutor
from tradescope.search.index import InMemoryShipmentIndex, ShipmentIndex, SqlShipmentIndex
from tradescope.search.service import ShipmentSearchService
from tradescope.tariff.landed_cost import LandedCostCalculator
from tradescope.tariff.resolver import TariffResolver
from tradescope.tariff.service import TariffService
from tradescope.tariff.vat import VatTable
from tradescope.tiers import Tier

logger = logging.getLogger(__name__)

DEV_ORG_ID = "dev"
BACKENDS = ("memory", "postgres")


@dataclass
class TradeScopeServices:
    organizations: OrganizationStore
    ledger: CreditLedger
    guard: TierQuotaGuard
    index: ShipmentIndex
    executor: SearchExecutor
    cache: SearchCache
    resolver: TariffResolver
    shipments: ShipmentSearchService
    tariffs: TariffService
    compliance: ComplianceService
    companies: CompanyActivityService

    def shutdown(self) -> None:
        self.executor.shutdown()


def storage_backend() -> str:
    return os.getenv("TS_STORAGE_BACKEND", "memory").strip().lower()


def _memory_index() -> InMemoryShipmentIndex:
    path = Path(os.getenv("TS_DATA_ROOT", ".")) / "data" / "shipments.jsonl"
    if path.exists():
        return InMemoryShipmentIndex.from_jsonl(path)
    return InMemoryShipmentIndex()


def build_account_stores(backend: Optional[str] = None) -> Tuple[OrganizationStore, CreditLedger]:
    """Organization registry and credit ledger for the configured backend."""
    if backend is None:
        backend = storage_backend()
    if backend == "postgres":
        factory = get_session_factory()
        return SqlOrganizationRegistry(factory), SqlCreditLedger(factory)
    if backend == "memory":
        return OrganizationRegistry.from_env(), InMemoryCreditLedger.from_env()
    raise ValueError(f"Unknown TS_STORAGE_BACKEND: {backend!r}")


def build_services(
    backend: Optional[str] = None,
    *,
    index: Optional[ShipmentIndex] = None,
    ledger: Optional[CreditLedger] = None,
    organizations: Optional[OrganizationStore] = None,
    check_store: Optional[ComplianceCheckStore] = None,
    provider: Optional[ScreeningProvider] = None,
    cache: Optional[SearchCache] = None,
    resolver: Optional[TariffResolver] = None,
    executor: Optional[SearchExecutor] = None,
) -> TradeScopeServices:
    """Assemble every service; explicit arguments override the backend defaults."""
    if backend is None:
        backend = storage_backend()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown TS_STORAGE_BACKEND: {backend!r}")
    if organizations is None or ledger is None:
        default_orgs, default_ledger = build_account_stores(backend)
        if organizations is None:
            organizations = default_orgs
        if ledger is None:
            ledger = default_ledger
    if backend == "postgres":
        factory = get_session_factory()
        if index is None:
            index = SqlShipmentIndex(factory)
        if check_store is None:
            check_store = SqlComplianceCheckStore(factory)
    else:
        if index is None:
            index = _memory_index()
        if check_store is None:
            check_store = InMemoryComplianceCheckStore()

    if provider is None:
        provider = provider_from_env()
    if cache is None:
        cache = cache_from_env()
    if resolver is None:
        resolver = TariffResolver.default()
    if executor is None:
        executor = SearchExecutor(index)
    guard = TierQuotaGuard(ledger)

    services = TradeScopeServices(
        organizations=organizations,
        ledger=ledger,
        guard=guard,
        index=index,
        executor=executor,
        cache=cache,
        resolver=resolver,
        shipments=ShipmentSearchService(guard, executor, cache=cache, resolver=resolver),
        tariffs=TariffService(guard, resolver, LandedCostCalculator(resolver, VatTable.load()), executor),
        compliance=ComplianceService(guard, provider, check_store),
        companies=CompanyActivityService(guard, executor, today=resolver.today, check_store=check_store),
    )
    _ensure_dev_organization(services)
    logger.info("Services ready (backend=%s)", backend)
    return services


def _ensure_dev_organization(services: TradeScopeServices) -> None:
    """Provision a GOV-tier organization for ``TS_API_KEY`` if it resolves to nothing."""
    api_key = os.getenv("TS_API_KEY")
    if not api_key or services.organizations.resolve(api_key) is not None:
        return
    provision_organization(
        services.organizations,
        services.ledger,
        org_id=DEV_ORG_ID,
        name="Development",
        tier=Tier.GOV.value,
        api_key=api_key,
    )
    logger.info("Provisioned development organization %s", DEV_ORG_ID)
