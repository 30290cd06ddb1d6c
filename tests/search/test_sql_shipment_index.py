"""SqlShipmentIndex against an in-memory SQLite database.

The in-memory index is the reference: both backends must agree on totals,
ordering and null handling.
"""

from __future__ import annotations

import pytest

from conftest import sample_shipments, sqlite_session_factory
from tradescope.db.session import session_scope
from tradescope.search.executor import build_index_query, with_window
from tradescope.search.index import (
    AnyOf,
    IndexQuery,
    InMemoryShipmentIndex,
    SqlShipmentIndex,
    Term,
    shipment_to_record,
)
from tradescope.search.normalizer import normalize_query


@pytest.fixture()
def sql_index():
    factory = sqlite_session_factory()
    with session_scope(factory) as session:
        session.add_all([shipment_to_record(s) for s in sample_shipments()])
    return SqlShipmentIndex(factory)


@pytest.fixture()
def memory_index():
    return InMemoryShipmentIndex(sample_shipments())


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"hsCode": "7308*"},
        {"hsCode": "730890"},
        {"productKeyword": "steel beam"},
        {"hsCode": "73*", "excludeCompanyIds": ["C-BOLT"]},
        {"minValueUsd": 5000, "maxValueUsd": 10000},
        {"dateFrom": "2025-06-01", "dateTo": "2025-12-01", "transportMode": "SEA"},
        {"sortBy": "declaredValueUsd", "sortOrder": "asc"},
        {"sortBy": "quantity", "sortOrder": "desc"},
    ],
)
def test_backends_agree(sql_index, memory_index, raw):
    query = with_window(build_index_query(normalize_query(raw)), 0, 100)

    sql_page = sql_index.search(query)
    memory_page = memory_index.search(query)

    assert sql_page.total == memory_page.total
    assert [s.id for s in sql_page.items] == [s.id for s in memory_page.items]


def test_window_and_total(sql_index):
    query = with_window(build_index_query(normalize_query({"sortOrder": "asc"})), 2, 2)
    page = sql_index.search(query)

    assert page.total == 7
    assert [s.id for s in page.items] == ["SHP-003", "SHP-004"]


def test_terms_and_stats(sql_index, memory_index):
    query = build_index_query(normalize_query({"hsCode": "73*"}))

    assert sql_index.terms(query, "origin_country") == memory_index.terms(query, "origin_country")
    assert sql_index.terms(query, "hs_chapter") == {"73": 6}
    stats = sql_index.stats(query, "declared_value_usd")
    assert stats.count == 5
    assert stats.min == 4500.0
    assert stats.max == 15000.0
    assert sorted(sql_index.values(query, "unit_price_usd")) == sorted(memory_index.values(query, "unit_price_usd"))


def test_stats_on_empty_match(sql_index):
    stats = sql_index.stats(IndexQuery(must=(Term("hs_code", ("000000",)),)), "quantity")

    assert stats.count == 0
    assert stats.min is None


def test_any_of_and_scan(sql_index):
    query = IndexQuery(must=(AnyOf((Term("shipper_id", ("C-BOLT",)), Term("consignee_id", ("C-BOLT",)))),))

    assert [s.id for s in sql_index.scan(query)] == [s.id for s in InMemoryShipmentIndex(sample_shipments()).scan(query)]


def test_get_round_trips_record(sql_index):
    shipment = sql_index.get("SHP-003")

    assert shipment == next(s for s in sample_shipments() if s.id == "SHP-003")
    assert sql_index.get("SHP-404") is None
    assert sql_index.ping() is True
