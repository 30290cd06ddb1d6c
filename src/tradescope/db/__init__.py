"""Relational persistence (SQLAlchemy models and sessions)."""
