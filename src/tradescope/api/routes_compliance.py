from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tradescope.api.dependencies import get_services
from tradescope.api.security import require_organization
from tradescope.quota.organizations import Organization
from tradescope.services import TradeScopeServices

router = APIRouter(prefix="/api/v1/compliance", tags=["compliance"])


class ComplianceCheckRequestModel(BaseModel):
    company_id: str
    company_name: Optional[str] = None
    checked_by: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class BatchCheckRequestModel(BaseModel):
    company_ids: List[str] = Field(default_factory=list)
    checked_by: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


@router.post("/check")
def run_check(
    request: ComplianceCheckRequestModel,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    """Sanctions screening for one company (1 COMPLIANCE_CHECK credit)."""

    check = services.compliance.run_check(org, request.company_id, request.company_name, request.checked_by)
    return check.to_dict()


@router.post("/check/batch")
def run_batch_check(
    request: BatchCheckRequestModel,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    checks = services.compliance.run_batch_check(org, request.company_ids, request.checked_by)
    return {"results": [check.to_dict() for check in checks], "count": len(checks)}


@router.post("/pep-check")
def run_pep_check(
    request: ComplianceCheckRequestModel,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.compliance.run_pep_check(org, request.company_id, request.checked_by).to_dict()


@router.post("/adverse-media-check")
def run_adverse_media_check(
    request: ComplianceCheckRequestModel,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.compliance.run_adverse_media_check(org, request.company_id, request.checked_by).to_dict()


@router.get("/history")
def check_history(
    limit: int = Query(50),
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    return [check.to_dict() for check in services.compliance.history(org, limit)]


@router.get("/credits")
def credits_balance(
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.compliance.credits_balance(org)


@router.get("/check/{check_id}")
def get_check_result(
    check_id: str,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Dict[str, Any]:
    return services.compliance.get_check_result(org, check_id).to_dict()


@router.get("/check/{check_id}/pdf")
def export_check_pdf(
    check_id: str,
    org: Organization = Depends(require_organization),
    services: TradeScopeServices = Depends(get_services),
) -> Response:
    body = services.compliance.export_pdf(org, check_id)
    return Response(
        content=body,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="compliance-check-{check_id}.pdf"'},
    )
