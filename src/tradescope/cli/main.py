"""Command-line interface for tradescope."""

from __future__ import annotations

import json
from typing import Any, Optional

import click

from tradescope.errors import TradeScopeError
from tradescope.quota.ledger import CreditType
from tradescope.quota.organizations import provision_organization
from tradescope.services import build_account_stores
from tradescope.tariff.landed_cost import LandedCostCalculator
from tradescope.tariff.resolver import TariffResolver
from tradescope.tariff.vat import VatTable
from tradescope.tiers import Tier


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _fail(exc: TradeScopeError) -> None:
    click.echo(json.dumps(exc.to_dict(), indent=2), err=True)
    raise SystemExit(1)


@click.group()
def cli() -> None:
    """tradescope command suite."""


@cli.group()
def tariff() -> None:
    """Tariff lookups against the bundled reference data."""


@tariff.command("quote")
@click.argument("hs_code")
@click.option("--destination", "-d", required=True, help="Destination country (ISO alpha-2).")
@click.option("--origin", "-o", default=None, help="Origin country (ISO alpha-2).")
@click.option(
    "--rules-of-origin-met/--rules-of-origin-not-met",
    default=None,
    help="Whether the product satisfies the program's rules of origin.",
)
def tariff_quote(hs_code: str, destination: str, origin: Optional[str], rules_of_origin_met: Optional[bool]) -> None:
    """Resolve MFN, preferential and trade-measure layers for HS_CODE."""

    context = {} if rules_of_origin_met is None else {"rules_of_origin_met": rules_of_origin_met}
    try:
        quote = TariffResolver.default().quote(hs_code, origin, destination, context)
    except TradeScopeError as exc:
        _fail(exc)
    _emit(quote.to_dict())


@tariff.command("landed-cost")
@click.argument("hs_code")
@click.option("--destination", "-d", required=True, help="Destination country (ISO alpha-2).")
@click.option("--origin", "-o", default=None, help="Origin country (ISO alpha-2).")
@click.option("--cif", "cif_value", required=True, help="CIF value in USD.")
@click.option("--vat", "vat_rate", default=None, help="VAT fraction override (0.2 == 20%).")
def tariff_landed_cost(
    hs_code: str, destination: str, origin: Optional[str], cif_value: str, vat_rate: Optional[str]
) -> None:
    """Estimate CIF + duty + VAT for HS_CODE."""

    calculator = LandedCostCalculator(TariffResolver.default(), VatTable.load())
    try:
        estimate = calculator.estimate(hs_code, origin, destination, cif_value, vat_rate)
    except TradeScopeError as exc:
        _fail(exc)
    _emit(estimate.to_dict())


@cli.group()
def org() -> None:
    """Organization and credit administration."""


@org.command("provision")
@click.option("--org-id", required=True)
@click.option("--name", required=True)
@click.option(
    "--tier",
    type=click.Choice([tier.value for tier in Tier], case_sensitive=False),
    default=Tier.STARTER.value,
    show_default=True,
)
@click.option("--api-key", default=None, help="API key to bind to the organization.")
def org_provision(org_id: str, name: str, tier: str, api_key: Optional[str]) -> None:
    """Register an organization and grant its tier's starting credits."""

    registry, ledger = build_account_stores()
    organization = provision_organization(
        registry, ledger, org_id=org_id, name=name, tier=tier, api_key=api_key
    )
    _emit({"organization": organization.public_dict(), "balances": ledger.balances(org_id)})


@org.command("grant")
@click.argument("org_id")
@click.option(
    "--credit-type",
    type=click.Choice([credit.value for credit in CreditType], case_sensitive=False),
    required=True,
)
@click.option("--amount", type=int, required=True)
def org_grant(org_id: str, credit_type: str, amount: int) -> None:
    """Add credits of one type to ORG_ID."""

    registry, ledger = build_account_stores()
    if registry.get(org_id) is None:
        raise click.ClickException(f"Unknown organization: {org_id}")
    ledger.allocate(org_id, CreditType(credit_type.upper()), amount)
    _emit({"organizationId": org_id, "balances": ledger.balances(org_id)})


@org.command("credits")
@click.argument("org_id")
def org_credits(org_id: str) -> None:
    """Show remaining credits for ORG_ID."""

    registry, ledger = build_account_stores()
    if registry.get(org_id) is None:
        raise click.ClickException(f"Unknown organization: {org_id}")
    _emit({"organizationId": org_id, "balances": ledger.balances(org_id)})


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the HTTP API with uvicorn."""

    import uvicorn

    uvicorn.run("tradescope.api.app:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    cli()
