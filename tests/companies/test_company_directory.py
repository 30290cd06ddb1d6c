from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import FIXED_DAY
from tradescope.companies.service import CompanyActivityService
from tradescope.compliance.models import CheckKind, CheckStatus, ComplianceCheck
from tradescope.compliance.store import InMemoryComplianceCheckStore
from tradescope.errors import NotFound, ValidationError
from tradescope.tiers import Tier


@pytest.fixture()
def check_store():
    return InMemoryComplianceCheckStore()


@pytest.fixture()
def companies(guard, executor, check_store):
    return CompanyActivityService(guard, executor, today=lambda: FIXED_DAY, check_store=check_store)


def _check(check_id, org_id, company_id, hour, status=CheckStatus.CLEAR):
    return ComplianceCheck(
        check_id=check_id,
        org_id=org_id,
        kind=CheckKind.SANCTIONS,
        company_id=company_id,
        company_name=None,
        status=status,
        checked_at=datetime(2026, 1, 10, hour, tzinfo=timezone.utc),
    )


class TestProfile:
    def test_exporter_profile(self, companies, orgs):
        profile = companies.company_profile(orgs[Tier.STARTER], "C-ACME")

        assert (profile["name"], profile["countryCode"]) == ("Acme Steel Works", "CN")
        assert profile["exports"] == {"shipmentCount": 4, "totalValueUsd": 31000.0, "totalQuantity": 170.0}
        assert profile["imports"] == {"shipmentCount": 0, "totalValueUsd": 0.0, "totalQuantity": 0.0}
        assert (profile["firstShipmentDate"], profile["lastShipmentDate"]) == ("2025-03-10", "2026-01-05")
        assert [(c["hsCode"], c["shipmentCount"]) for c in profile["topHsCodes"]] == [
            ("730890", 2),
            ("730820", 1),
            ("73089095", 1),
        ]
        assert profile["topPartners"] == [
            {"companyId": "C-BOLT", "name": "Bolt Builders Inc", "countryCode": "US",
             "shipmentCount": 3, "totalValueUsd": 16000.0},
            {"companyId": "C-GLOBEX", "name": "Globex Trading GmbH", "countryCode": "DE",
             "shipmentCount": 1, "totalValueUsd": 15000.0},
        ]
        assert profile["lastComplianceCheck"] is None

    def test_importer_and_exporter_sides(self, companies, orgs):
        profile = companies.company_profile(orgs[Tier.STARTER], "C-BOLT")

        assert profile["imports"] == {"shipmentCount": 4, "totalValueUsd": 24000.0, "totalQuantity": 350.0}
        assert profile["exports"] == {"shipmentCount": 1, "totalValueUsd": 4500.0, "totalQuantity": 30.0}
        assert [p["companyId"] for p in profile["topPartners"]] == ["C-ACME", "C-HANSEO", "C-MAPLE"]
        assert [c["hsCode"] for c in profile["topHsCodes"]] == ["730890", "730630", "73089095"]
        assert profile["topHsCodes"][0]["totalValueUsd"] == 14500.0

    def test_last_compliance_check_is_per_organization(self, companies, orgs, check_store):
        check_store.save_all(
            [
                _check("chk-1", "org-starter", "C-ACME", 9),
                _check("chk-2", "org-starter", "C-ACME", 11, CheckStatus.REVIEW_REQUIRED),
                _check("chk-3", "org-pro", "C-ACME", 12, CheckStatus.MATCH),
            ]
        )

        last = companies.company_profile(orgs[Tier.STARTER], "C-ACME")["lastComplianceCheck"]

        assert last == {"id": "chk-2", "status": "REVIEW_REQUIRED", "checkedAt": "2026-01-10T11:00:00+00:00"}

    def test_without_a_check_store(self, guard, executor, orgs):
        service = CompanyActivityService(guard, executor)

        assert service.company_profile(orgs[Tier.STARTER], "C-MAPLE")["lastComplianceCheck"] is None

    @pytest.mark.parametrize("company_id", ["C-NOBODY", "C NOBODY"])
    def test_unknown_company(self, companies, orgs, company_id):
        with pytest.raises(NotFound):
            companies.company_profile(orgs[Tier.STARTER], company_id)


class TestSearch:
    def test_by_name(self, companies, orgs):
        result = companies.search_companies(orgs[Tier.STARTER], query="steel")

        assert result["total"] == 1
        assert result["items"] == [
            {
                "companyId": "C-ACME",
                "name": "Acme Steel Works",
                "countryCode": "CN",
                "roles": ["exporter"],
                "shipmentCount": 4,
                "totalValueUsd": 31000.0,
                "lastShipmentDate": "2026-01-05",
            }
        ]

    @pytest.mark.parametrize(
        "role, roles, count",
        [("importer", ["importer"], 4), ("exporter", ["exporter"], 1), ("both", ["exporter", "importer"], 5)],
    )
    def test_country_and_role(self, companies, orgs, role, roles, count):
        result = companies.search_companies(orgs[Tier.STARTER], country="us", role=role)

        assert [item["companyId"] for item in result["items"]] == ["C-BOLT"]
        assert result["items"][0]["roles"] == roles
        assert result["items"][0]["shipmentCount"] == count

    def test_hs_code_prefix(self, companies, orgs):
        result = companies.search_companies(orgs[Tier.STARTER], hs_code="7308*", role="EXPORTER")

        assert [(i["companyId"], i["shipmentCount"]) for i in result["items"]] == [("C-ACME", 4), ("C-BOLT", 1)]

    def test_no_filters_lists_every_company(self, companies, orgs):
        result = companies.search_companies(orgs[Tier.STARTER], page=2, page_size=4)

        assert result["total"] == 6
        assert result["totalPages"] == 2
        assert len(result["items"]) == 2

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"role": "broker"}, "role"),
            ({"country": "USA"}, "country"),
            ({"hs_code": "7"}, "hsCode"),
            ({"query": "x" * 201}, "q"),
            ({"page_size": 0}, "pageSize"),
        ],
    )
    def test_validation(self, companies, orgs, kwargs, field):
        with pytest.raises(ValidationError) as excinfo:
            companies.search_companies(orgs[Tier.STARTER], **kwargs)
        assert excinfo.value.field == field
