from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from tradescope.api.dependencies import get_services
from tradescope.api.security import require_organization
from tradescope.quota.organizations import Organization
from tradescope.services import TradeScopeServices

router = APIRouter(prefix="/api/v1/companies", tags=["companies"])


@router.get("")
def search_companies(
    q: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    hs_code: Optional[str] = Query(None, alias="hsCode"),
    role: str = Query("both"),
    page: int = Query(1),
    page_size: int = Query(20, alias="pageSize"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.companies.search_companies(org, q, country, hs_code, role, page, page_size)


@router.get("/{company_id}")
def company_profile(
    company_id: str,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.companies.company_profile(org, company_id)


@router.get("/{company_id}/trade-partners")
def trade_partners(
    company_id: str,
    role: str = Query("both"),
    page: int = Query(1),
    page_size: int = Query(20, alias="pageSize"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.companies.trade_partners(org, company_id, role, page, page_size)


@router.get("/{company_id}/timeline")
def trade_timeline(
    company_id: str,
    months: int = Query(12),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.companies.trade_timeline(org, company_id, months)
