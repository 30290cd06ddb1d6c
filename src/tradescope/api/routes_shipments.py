from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from tradescope.api.dependencies import get_services
from tradescope.api.security import require_organization
from tradescope.quota.organizations import Organization
from tradescope.search.export import render
from tradescope.search.models import SearchShipmentsRequestModel
from tradescope.services import TradeScopeServices

router = APIRouter(prefix="/api/v1/shipments", tags=["shipments"])


@router.post("/search")
def search_shipments(
    request: SearchShipmentsRequestModel,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    """Filtered, sorted, paginated shipment search with optional facets."""

    return services.shipments.search(org, request.to_raw_filters()).to_dict()


@router.post("/export")
def export_shipments(
    request: SearchShipmentsRequestModel,
    format: str = Query("csv"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Response:
    """Export matching shipments, capped at the organization's tier row limit."""

    result = services.shipments.export(org, request.to_raw_filters())
    body, media_type = render(result, format, services.shipments.duty_lookup())
    headers = result.headers()
    headers["Content-Disposition"] = f'attachment; filename="shipments.{format.lower()}"'
    return Response(content=body, media_type=media_type, headers=headers)


@router.get("/analytics/routes")
def route_analytics(
    hs_code: str = Query(..., alias="hsCode"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    return services.shipments.route_analytics(org, hs_code, date_from, date_to)


@router.get("/analytics/price-distribution")
def price_distribution(
    hs_code: str = Query(..., alias="hsCode"),
    origin_country: Optional[str] = Query(None, alias="originCountry"),
    destination_country: Optional[str] = Query(None, alias="destinationCountry"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.shipments.price_distribution(org, hs_code, origin_country, destination_country)


@router.get("/by-company/{company_id}")
def shipments_by_company(
    company_id: str,
    role: str = Query("both"),
    page: int = Query(1),
    page_size: int = Query(20, alias="pageSize"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.shipments.find_by_company(org, company_id, role, page, page_size).to_dict()


@router.get("/{shipment_id}")
def get_shipment(
    shipment_id: str,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.shipments.find_by_id(org, shipment_id).to_dict()
