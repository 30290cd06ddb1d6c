from __future__ import annotations

import pytest

from tradescope.errors import InsufficientTier, NotFound, ValidationError
from tradescope.tariff.landed_cost import LandedCostCalculator
from tradescope.tariff.service import TariffService
from tradescope.tariff.vat import VatTable
from tradescope.tiers import Tier


@pytest.fixture()
def tariffs(guard, resolver, executor):
    return TariffService(guard, resolver, LandedCostCalculator(resolver, VatTable.load()), executor)


def test_duty_rate_available_to_starter(tariffs, orgs):
    quote = tariffs.duty_rate(orgs[Tier.STARTER], "730890", "CN", "US")

    assert quote.effective_total_rate == 41.2


def test_preference_conditions_pass_through(tariffs, orgs):
    quote = tariffs.duty_rate(orgs[Tier.STARTER], "730890", "MX", "US", {"rules_of_origin_met": False})

    assert quote.effective_total_rate == 5.7


def test_trade_measures_are_serialized(tariffs, orgs):
    measures = tariffs.trade_measures(orgs[Tier.STARTER], "US", hs_code="730890", origin="CN")

    assert [m["type"] for m in measures] == ["ANTIDUMPING", "COUNTERVAILING"]


def test_hs_code_details_and_search(tariffs, orgs):
    starter = orgs[Tier.STARTER]

    assert tariffs.hs_code_details(starter, "7308")["heading"] == "7308"
    assert tariffs.search_hs_codes(starter, "  cane   sugar ", limit=1)[0]["code"] in {"1701", "170114"}
    with pytest.raises(NotFound):
        tariffs.hs_code_details(starter, "0000")


@pytest.mark.parametrize("query, limit, field", [("", 20, "q"), ("steel", 0, "limit"), ("steel", 101, "limit")])
def test_search_validation(tariffs, orgs, query, limit, field):
    with pytest.raises(ValidationError) as excinfo:
        tariffs.search_hs_codes(orgs[Tier.STARTER], query, limit)
    assert excinfo.value.field == field


def test_ftas(tariffs, orgs):
    programs = tariffs.ftas(orgs[Tier.STARTER], "MX", "CA")

    assert {p["programId"] for p in programs} == {"USMCA", "CPTPP"}


def test_landed_cost_requires_pro(tariffs, orgs):
    with pytest.raises(InsufficientTier):
        tariffs.landed_cost_estimate(orgs[Tier.STARTER], "730890", "CN", "US", 1000)

    estimate = tariffs.landed_cost_estimate(orgs[Tier.PRO], "730890", "CN", "US", 1000)
    assert float(estimate.total) == 1412.0


def test_policy_simulation_is_gov_only(tariffs, orgs):
    for tier in (Tier.STARTER, Tier.PRO, Tier.ENTERPRISE, Tier.CHAMBER):
        with pytest.raises(InsufficientTier) as excinfo:
            tariffs.simulate_policy(orgs[tier], "730890", "US", 10)
        assert excinfo.value.required_tier == "GOV"

    impact = tariffs.simulate_policy(orgs[Tier.GOV], "730890", "US", 10)
    assert impact.shipment_count == 3
    assert impact.current_duty_revenue == 912.0


def test_policy_simulation_without_index(guard, resolver, orgs):
    service = TariffService(guard, resolver, LandedCostCalculator(resolver, VatTable.load()))

    with pytest.raises(ValidationError):
        service.simulate_policy(orgs[Tier.GOV], "730890", "US", 10)


def test_tariff_reads_consume_no_credits(tariffs, orgs, ledger):
    tariffs.duty_rate(orgs[Tier.PRO], "730890", "CN", "US")
    tariffs.landed_cost_estimate(orgs[Tier.PRO], "730890", "CN", "US", 1000)

    assert ledger.entries(orgs[Tier.PRO].org_id) == []
