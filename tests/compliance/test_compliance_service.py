from __future__ import annotations

import pytest

from tradescope.compliance.models import CheckKind, CheckStatus
from tradescope.compliance.provider import ScreeningProvider, StaticScreeningProvider
from tradescope.compliance.service import ComplianceService
from tradescope.compliance.store import InMemoryComplianceCheckStore
from tradescope.errors import InsufficientTier, NotFound, QuotaExceeded, UpstreamUnavailable, ValidationError
from tradescope.quota.ledger import CreditType, LedgerState
from tradescope.tiers import Tier


class DownProvider(ScreeningProvider):
    def screen(self, kind, company_id, company_name=None):
        raise UpstreamUnavailable("screening-provider", attempts=3, reason="HTTP 503")


@pytest.fixture()
def store():
    return InMemoryComplianceCheckStore()


@pytest.fixture()
def compliance(guard, watchlist, store):
    return ComplianceService(guard, StaticScreeningProvider(watchlist), store)


@pytest.fixture()
def funded(orgs, ledger):
    """Organizations with a small allowance of every credit type."""
    for org in orgs.values():
        for credit_type in CreditType:
            ledger.allocate(org.org_id, credit_type, 5)
    return orgs


class TestScreeningOutcome:
    def test_clear_company(self, compliance, funded):
        check = compliance.run_check(funded[Tier.STARTER], "C-ACME", "Acme Steel Works", checked_by="analyst@acme")

        assert check.status is CheckStatus.CLEAR
        assert check.kind is CheckKind.SANCTIONS
        assert check.hits == ()
        assert "OFAC_SDN" in check.lists_checked
        assert check.to_dict()["checkedBy"] == "analyst@acme"

    def test_strong_hit_is_a_match(self, compliance, funded):
        check = compliance.run_check(funded[Tier.STARTER], "C-SHADY")

        assert check.status is CheckStatus.MATCH
        assert check.hits[0].reference == "SDN-1234"
        assert check.to_dict()["companyName"] == "Unknown"

    def test_weak_hit_by_name_needs_review(self, compliance, funded):
        check = compliance.run_check(funded[Tier.STARTER], "C-UNKNOWN", "  Almost   Shady Co ")

        assert check.status is CheckStatus.REVIEW_REQUIRED
        assert check.company_name == "Almost Shady Co"


class TestMetering:
    def test_single_check_costs_one_credit(self, compliance, funded, ledger):
        org = funded[Tier.STARTER]

        compliance.run_check(org, "C-ACME")

        assert ledger.balance(org.org_id, CreditType.COMPLIANCE_CHECK) == 4
        assert [e.state for e in ledger.entries(org.org_id)] == [LedgerState.COMMITTED]

    def test_provider_failure_releases_credit(self, guard, funded, ledger, store):
        org = funded[Tier.STARTER]
        service = ComplianceService(guard, DownProvider(), store)

        with pytest.raises(UpstreamUnavailable):
            service.run_check(org, "C-ACME")

        assert ledger.balance(org.org_id, CreditType.COMPLIANCE_CHECK) == 5
        assert [e.state for e in ledger.entries(org.org_id)] == [LedgerState.RELEASED]
        assert store.history(org.org_id) == []

    def test_invalid_name_releases_credit(self, compliance, funded, ledger):
        org = funded[Tier.STARTER]

        with pytest.raises(ValidationError) as excinfo:
            compliance.run_check(org, "C-ACME", "x" * 201)

        assert excinfo.value.field == "companyName"
        assert ledger.balance(org.org_id, CreditType.COMPLIANCE_CHECK) == 5

    def test_malformed_company_id(self, compliance, funded):
        with pytest.raises(NotFound):
            compliance.run_check(funded[Tier.STARTER], "../../etc")

    def test_out_of_credits(self, compliance, orgs, store):
        with pytest.raises(QuotaExceeded):
            compliance.run_check(orgs[Tier.STARTER], "C-ACME")
        assert store.history(orgs[Tier.STARTER].org_id) == []


class TestTierGates:
    def test_pep_check_requires_pro(self, compliance, funded, ledger):
        with pytest.raises(InsufficientTier):
            compliance.run_pep_check(funded[Tier.STARTER], "C-ACME")
        assert ledger.balance(funded[Tier.STARTER].org_id, CreditType.PEP_CHECK) == 5

        check = compliance.run_pep_check(funded[Tier.PRO], "C-ACME")
        assert check.kind is CheckKind.PEP
        assert check.lists_checked == ("PEP_GLOBAL",)
        assert ledger.balance(funded[Tier.PRO].org_id, CreditType.PEP_CHECK) == 4

    def test_adverse_media_requires_enterprise(self, compliance, funded, ledger):
        with pytest.raises(InsufficientTier):
            compliance.run_adverse_media_check(funded[Tier.PRO], "C-ACME")

        check = compliance.run_adverse_media_check(funded[Tier.CHAMBER], "C-ACME")
        assert check.kind is CheckKind.ADVERSE_MEDIA
        assert ledger.balance(funded[Tier.CHAMBER].org_id, CreditType.ADVERSE_MEDIA_CHECK) == 4


class TestBatch:
    def test_batch_reserves_one_credit_per_company(self, compliance, funded, ledger, store):
        org = funded[Tier.PRO]

        checks = compliance.run_batch_check(org, ["C-ACME", "C-SHADY", "C-BOLT"], checked_by="ops")

        assert [c.status for c in checks] == [CheckStatus.CLEAR, CheckStatus.MATCH, CheckStatus.CLEAR]
        assert ledger.balance(org.org_id, CreditType.COMPLIANCE_CHECK_BATCH) == 2
        assert [e.amount for e in ledger.entries(org.org_id)] == [3]
        assert len(store.history(org.org_id)) == 3

    def test_batch_beyond_balance_screens_nothing(self, compliance, funded, ledger, store):
        org = funded[Tier.PRO]

        with pytest.raises(QuotaExceeded) as excinfo:
            compliance.run_batch_check(org, [f"C-{i}" for i in range(6)])

        assert excinfo.value.requested == 6
        assert ledger.balance(org.org_id, CreditType.COMPLIANCE_CHECK_BATCH) == 5
        assert store.history(org.org_id) == []

    @pytest.mark.parametrize("ids", [[], "C-ACME", [f"C-{i}" for i in range(101)]])
    def test_batch_size_is_validated_before_reserving(self, compliance, funded, ledger, ids):
        org = funded[Tier.PRO]

        with pytest.raises(ValidationError) as excinfo:
            compliance.run_batch_check(org, ids)

        assert excinfo.value.field == "companyIds"
        assert ledger.entries(org.org_id) == []

    def test_malformed_id_in_batch_reserves_nothing(self, compliance, funded, ledger):
        org = funded[Tier.PRO]

        with pytest.raises(NotFound):
            compliance.run_batch_check(org, ["C-ACME", "not valid!"])
        assert ledger.entries(org.org_id) == []

    def test_batch_requires_pro(self, compliance, funded):
        with pytest.raises(InsufficientTier):
            compliance.run_batch_check(funded[Tier.STARTER], ["C-ACME"])

    def test_batch_failure_releases_whole_reservation(self, guard, funded, ledger, store):
        org = funded[Tier.PRO]
        service = ComplianceService(guard, DownProvider(), store)

        with pytest.raises(UpstreamUnavailable):
            service.run_batch_check(org, ["C-ACME", "C-BOLT"])

        assert ledger.balance(org.org_id, CreditType.COMPLIANCE_CHECK_BATCH) == 5
        assert store.history(org.org_id) == []


class TestRetrieval:
    def test_history_is_most_recent_first(self, compliance, funded):
        org = funded[Tier.STARTER]
        first = compliance.run_check(org, "C-ACME")
        second = compliance.run_check(org, "C-BOLT")

        history = compliance.history(org)

        assert {c.check_id for c in history} == {first.check_id, second.check_id}
        assert history[0].checked_at >= history[1].checked_at
        assert len(compliance.history(org, limit=1)) == 1

    @pytest.mark.parametrize("limit", [0, 201])
    def test_history_limit_bounds(self, compliance, funded, limit):
        with pytest.raises(ValidationError):
            compliance.history(funded[Tier.STARTER], limit=limit)

    def test_checks_are_private_to_their_org(self, compliance, funded):
        check = compliance.run_check(funded[Tier.STARTER], "C-ACME")

        assert compliance.get_check_result(funded[Tier.STARTER], check.check_id) == check
        with pytest.raises(NotFound):
            compliance.get_check_result(funded[Tier.PRO], check.check_id)
        with pytest.raises(NotFound):
            compliance.export_pdf(funded[Tier.PRO], check.check_id)

    def test_pdf_report(self, compliance, funded):
        check = compliance.run_check(funded[Tier.STARTER], "C-SHADY")

        pdf = compliance.export_pdf(funded[Tier.STARTER], check.check_id)

        assert pdf.startswith(b"%PDF")

    def test_credits_balance(self, compliance, funded):
        org = funded[Tier.STARTER]
        compliance.run_check(org, "C-ACME")

        payload = compliance.credits_balance(org)

        assert payload["organizationId"] == org.org_id
        assert payload["balances"]["COMPLIANCE_CHECK"] == 4
        assert payload["balances"]["PEP_CHECK"] == 5
