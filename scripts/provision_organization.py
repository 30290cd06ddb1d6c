#!/usr/bin/env python3
"""Provision a tradescope organization with an API key and starting credits.

Usage:
    python scripts/provision_organization.py --name "Acme Imports" --tier PRO
    python scripts/provision_organization.py --name "Ministry of Trade" --tier GOV --org-id mot

Creates the organization in the active backend (``TS_STORAGE_BACKEND``),
binds a generated API key, grants the tier's default credits and prints the
key once. Only the key's hash is stored.
"""

from __future__ import annotations

import argparse
import os
import secrets
import sys

# Ensure project root is on path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


def main() -> None:
    from tradescope.tiers import Tier

    parser = argparse.ArgumentParser(description="Provision a tradescope organization")
    parser.add_argument("--name", required=True, help="Organization display name")
    parser.add_argument(
        "--tier",
        default=Tier.STARTER.value,
        type=str.upper,
        choices=[tier.value for tier in Tier],
        help="Subscription tier (default: STARTER)",
    )
    parser.add_argument("--org-id", default=None, help="Custom organization ID (auto-generated if omitted)")
    parser.add_argument("--api-key", default=None, help="Custom API key (auto-generated if omitted)")
    args = parser.parse_args()

    from tradescope.quota.organizations import provision_organization
    from tradescope.services import build_account_stores

    org_id = args.org_id or f"org_{secrets.token_hex(6)}"
    api_key = args.api_key or f"ts_{secrets.token_urlsafe(32)}"

    registry, ledger = build_account_stores()
    org = provision_organization(
        registry, ledger, org_id=org_id, name=args.name, tier=args.tier, api_key=api_key
    )

    print("=" * 60)
    print("Organization Provisioned Successfully")
    print("=" * 60)
    print(f"  Organization ID: {org.org_id}")
    print(f"  Name:            {org.name}")
    print(f"  Tier:            {org.tier}")
    print(f"  Seat Limit:      {org.seat_limit}")
    print(f"  Requests/min:    {org.api_requests_per_minute}")
    for credit_type, balance in ledger.balances(org.org_id).items():
        print(f"  {credit_type:<24} {balance}")
    print(f"  API Key:         {api_key}")
    print("=" * 60)
    print()
    print("Usage:")
    print(f'  curl -H "X-API-Key: {api_key}" http://localhost:8000/api/v1/compliance/credits')
    print()
    print("To start the server:")
    print("  uvicorn tradescope.api.app:app --host 0.0.0.0 --port 8000")
    print()


if __name__ == "__main__":
    main()
