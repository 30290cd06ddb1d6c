from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from tradescope.api.dependencies import get_services
from tradescope.api.security import require_organization
from tradescope.quota.organizations import Organization
from tradescope.services import TradeScopeServices

router = APIRouter(prefix="/api/v1/tariffs", tags=["tariffs"])


@router.get("/rates")
def duty_rates(
    hs_code: str = Query(..., alias="hsCode"),
    origin_country: Optional[str] = Query(None, alias="originCountry"),
    destination_country: str = Query(..., alias="destinationCountry"),
    rules_of_origin_met: Optional[bool] = Query(None, alias="rulesOfOriginMet"),
    certification_of_origin: Optional[bool] = Query(None, alias="certificationOfOrigin"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    """MFN, preferential and trade-measure layers with the effective total rate."""

    context = {}
    if rules_of_origin_met is not None:
        context["rules_of_origin_met"] = rules_of_origin_met
    if certification_of_origin is not None:
        context["certification_of_origin"] = certification_of_origin
    quote = services.tariffs.duty_rate(org, hs_code, origin_country, destination_country, context)
    return quote.to_dict()


@router.get("/measures")
def trade_measures(
    destination_country: str = Query(..., alias="destinationCountry"),
    hs_code: Optional[str] = Query(None, alias="hsCode"),
    origin_country: Optional[str] = Query(None, alias="originCountry"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    return services.tariffs.trade_measures(org, destination_country, hs_code, origin_country)


@router.get("/hs-codes")
def search_hs_codes(
    q: str = Query(...),
    limit: int = Query(20),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> List[Dict[str, str]]:
    return services.tariffs.search_hs_codes(org, q, limit)


@router.get("/hs-codes/{code}")
def hs_code_details(
    code: str,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.tariffs.hs_code_details(org, code)


@router.get("/ftas")
def ftas_for_route(
    origin_country: str = Query(..., alias="originCountry"),
    destination_country: str = Query(..., alias="destinationCountry"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    return services.tariffs.ftas(org, origin_country, destination_country)


@router.get("/landed-cost")
def landed_cost(
    hs_code: str = Query(..., alias="hsCode"),
    origin_country: Optional[str] = Query(None, alias="originCountry"),
    destination_country: str = Query(..., alias="destinationCountry"),
    cif_value: str = Query(..., alias="cifValue"),
    vat_rate: Optional[str] = Query(None, alias="vatRate"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    """CIF + duty + VAT estimate, amounts rounded to cents."""

    estimate = services.tariffs.landed_cost_estimate(
        org, hs_code, origin_country, destination_country, cif_value, vat_rate
    )
    return estimate.to_dict()


@router.get("/simulate-policy")
def simulate_policy(
    hs_code: str = Query(..., alias="hsCode"),
    destination_country: str = Query(..., alias="destinationCountry"),
    new_duty_rate: float = Query(..., alias="newDutyRate"),
    origin_country: Optional[str] = Query(None, alias="originCountry"),
    lookback_months: int = Query(12, alias="lookbackMonths"),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    impact = services.tariffs.simulate_policy(
        org, hs_code, destination_country, new_duty_rate, origin_country, lookback_months
    )
    return impact.to_dict()
