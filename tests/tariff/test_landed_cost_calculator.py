from __future__ import annotations

from decimal import Decimal

import pytest

from tradescope.errors import ValidationError
from tradescope.tariff.landed_cost import LandedCostCalculator, calculate_landed_cost
from tradescope.tariff.models import LANDED_COST_DISCLAIMER
from tradescope.tariff.vat import VatTable


@pytest.fixture()
def calculator(resolver):
    return LandedCostCalculator(resolver, VatTable.load())


def test_worked_example():
    estimate = calculate_landed_cost(10000, 5, "0.2")

    assert estimate.duty_amount == Decimal("500.00")
    assert estimate.vat_amount == Decimal("2100.00")
    assert estimate.total == Decimal("12600.00")


def test_amounts_round_half_up_to_cents():
    estimate = calculate_landed_cost("0.10", "5", "0")

    assert estimate.duty_amount == Decimal("0.01")
    assert estimate.total == Decimal("0.11")


def test_zero_value_is_allowed():
    assert calculate_landed_cost(0, 41.2, "0.2").total == Decimal("0.00")


@pytest.mark.parametrize("cif", [-1, "abc", True, float("nan"), None])
def test_invalid_cif_value(cif):
    with pytest.raises(ValidationError) as excinfo:
        calculate_landed_cost(cif, 5, "0.2")
    assert excinfo.value.field == "cifValue"


def test_negative_vat_rate():
    with pytest.raises(ValidationError) as excinfo:
        calculate_landed_cost(100, 5, "-0.1")
    assert excinfo.value.field == "vatRate"


def test_estimate_uses_destination_vat(calculator):
    estimate = calculator.estimate("730890", "CN", "GB", 1000)

    assert estimate.duty_amount == Decimal("0.00")
    assert estimate.vat_rate == Decimal("0.2")
    assert estimate.total == Decimal("1200.00")
    assert estimate.destination == "GB"


def test_estimate_includes_trade_measures(calculator):
    estimate = calculator.estimate("730890", "CN", "US", 1000)

    assert estimate.duty_amount == Decimal("412.00")
    assert estimate.total == Decimal("1412.00")


def test_explicit_vat_overrides_table(calculator):
    estimate = calculator.estimate("730890", "DE", "US", 10000, vat_rate="0.1")

    assert estimate.duty_amount == Decimal("570.00")
    assert estimate.vat_amount == Decimal("1057.00")
    assert estimate.total == Decimal("11627.00")


def test_unknown_destination_uses_default_vat(monkeypatch, calculator):
    monkeypatch.setenv("TS_DEFAULT_VAT_RATE", "0.15")

    assert calculator.estimate("999999", None, "ZZ", 100).total == Decimal("115.00")


def test_validation_happens_before_lookup(calculator):
    with pytest.raises(ValidationError) as excinfo:
        calculator.estimate("not-a-code", "CN", "US", -5)
    assert excinfo.value.field == "cifValue"


def test_serialized_estimate(calculator):
    payload = calculator.estimate("730890", "CN", "US", 1000).to_dict()

    assert payload["hsCode"] == "730890"
    assert payload["dutyRate"] == pytest.approx(41.2)
    assert payload["total"] == 1412.0
    assert payload["disclaimer"] == LANDED_COST_DISCLAIMER
