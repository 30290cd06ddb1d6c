"""Metered counterparty screening (sanctions, PEP, adverse media)."""
