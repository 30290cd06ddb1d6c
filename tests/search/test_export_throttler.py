from __future__ import annotations

import csv
import io

import openpyxl
import pytest

from conftest import bulk_shipments, make_org
from tradescope.errors import ValidationError
from tradescope.quota.guard import TierQuotaGuard
from tradescope.quota.ledger import InMemoryCreditLedger
from tradescope.search.executor import SearchExecutor
from tradescope.search.export import DUTY_COLUMN, ExportThrottler, render, row_cap
from tradescope.search.index import InMemoryShipmentIndex
from tradescope.search.normalizer import normalize_query
from tradescope.search.service import ShipmentSearchService
from tradescope.tiers import EXPORT_ROW_CAPS, Tier


@pytest.fixture(scope="module")
def bulk_executor():
    executor = SearchExecutor(
        InMemoryShipmentIndex(bulk_shipments(10_000)), timeout_sec=30, max_attempts=1, backoff_sec=0
    )
    yield executor
    executor.shutdown()


def test_row_caps_follow_tier():
    assert row_cap(Tier.STARTER) == 500
    assert row_cap(Tier.PRO) == 5_000
    assert row_cap(Tier.ENTERPRISE) == row_cap(Tier.CHAMBER) == 50_000
    assert row_cap(Tier.GOV) == 100_000
    assert set(EXPORT_ROW_CAPS) == set(Tier)


def test_starter_export_is_truncated(bulk_executor):
    result = ExportThrottler(bulk_executor).collect(normalize_query({"hsCode": "7308*"}), Tier.STARTER)

    assert result.row_count == 500
    assert result.total == 10_000
    assert result.truncated is True
    assert result.headers() == {
        "X-Export-Truncated": "true",
        "X-Export-Rows": "500",
        "X-Export-Total": "10000",
    }


def test_export_keeps_sort_order(bulk_executor):
    query = normalize_query({"sortBy": "declaredValueUsd", "sortOrder": "desc"})
    result = ExportThrottler(bulk_executor).collect(query, Tier.STARTER)

    values = [row.declared_value_usd for row in result.rows]
    assert values == sorted(values, reverse=True)
    assert values[0] == 100.0 + 9_999


def test_export_under_cap_is_complete(bulk_executor):
    result = ExportThrottler(bulk_executor).collect(normalize_query({}), Tier.ENTERPRISE)

    assert result.row_count == 10_000
    assert result.truncated is False


def test_service_export_ignores_paging(search_service, orgs):
    result = search_service.export(orgs[Tier.STARTER], {"hsCode": "7308*", "page": 3, "pageSize": 1})

    assert result.row_count == 5
    assert result.truncated is False


def test_service_export_uses_org_tier():
    executor = SearchExecutor(InMemoryShipmentIndex(bulk_shipments(600)), max_attempts=1, backoff_sec=0)
    service = ShipmentSearchService(TierQuotaGuard(InMemoryCreditLedger()), executor)
    try:
        starter = service.export(make_org(Tier.STARTER), {})
        pro = service.export(make_org(Tier.PRO), {})
    finally:
        executor.shutdown()

    assert (starter.row_count, starter.truncated) == (500, True)
    assert (pro.row_count, pro.truncated) == (600, False)


def test_csv_render(search_service, orgs):
    result = search_service.export(orgs[Tier.STARTER], {"hsCode": "730890", "sortOrder": "asc"})
    body, media_type = render(result, "CSV")

    rows = list(csv.reader(io.StringIO(body.decode("utf-8"))))
    assert media_type == "text/csv"
    assert rows[0][:3] == ["ID", "Shipment Date", "HS Code"]
    assert [row[0] for row in rows[1:]] == ["SHP-001", "SHP-006", "SHP-007"]
    assert DUTY_COLUMN not in rows[0]


def test_csv_render_with_duty_column(search_service, orgs):
    result = search_service.export(orgs[Tier.STARTER], {"hsCode": "730890", "sortOrder": "asc"})
    body, _ = render(result, "csv", search_service.duty_lookup())

    rows = list(csv.reader(io.StringIO(body.decode("utf-8"))))
    assert rows[0][-1] == DUTY_COLUMN
    # CN -> US carries AD and CVD on heading 7308
    assert float(rows[1][-1]) == pytest.approx(41.2)


def test_xlsx_render_notes_truncation(bulk_executor):
    result = ExportThrottler(bulk_executor).collect(normalize_query({}), Tier.STARTER)
    body, media_type = render(result, "xlsx")

    workbook = openpyxl.load_workbook(io.BytesIO(body))
    sheet = workbook["Shipments"]
    assert media_type.endswith("spreadsheetml.sheet")
    assert sheet.max_row == 501
    assert sheet.cell(row=1, column=1).value == "ID"
    assert "Notes" in workbook.sheetnames


def test_unknown_format_is_rejected(search_service, orgs):
    result = search_service.export(orgs[Tier.STARTER], {})
    with pytest.raises(ValidationError) as excinfo:
        render(result, "pdf")
    assert excinfo.value.field == "format"
