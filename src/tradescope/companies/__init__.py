"""Counterparty trade activity."""
