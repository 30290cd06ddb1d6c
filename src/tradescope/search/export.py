"""Tier-capped shipment exports rendered as CSV or XLSX.

An export contains the first ``cap`` rows of the match set in the requested
sort order, where ``cap`` depends only on the organization's tier. When the
match set is larger than the cap the export is flagged as truncated.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from tradescope.errors import ValidationError
from tradescope.search.executor import SearchExecutor
from tradescope.search.models import SearchQuery, Shipment
from tradescope.tiers import EXPORT_ROW_CAPS, Tier

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "xlsx")

CSV_MEDIA_TYPE = "text/csv"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, Shipment.to_dict key)
EXPORT_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("ID", "id"),
    ("Shipment Date", "shipmentDate"),
    ("HS Code", "hsCode"),
    ("Product Description", "productDescription"),
    ("Shipper", "shipperName"),
    ("Shipper Country", "shipperCountryCode"),
    ("Consignee", "consigneeName"),
    ("Consignee Country", "consigneeCountryCode"),
    ("Origin", "originCountryCode"),
    ("Destination", "destinationCountryCode"),
    ("Port of Loading", "portOfLoading"),
    ("Port of Discharge", "portOfDischarge"),
    ("Quantity", "quantity"),
    ("Unit", "quantityUnit"),
    ("Declared Value (USD)", "declaredValueUsd"),
    ("Unit Price (USD)", "unitPriceUsd"),
    ("Transport Mode", "transportMode"),
    ("Carrier", "carrier"),
)
DUTY_COLUMN = "Estimated Duty Rate (%)"

# (hs_code, origin, destination) -> effective total rate, or None if unknown
DutyLookup = Callable[[str, Optional[str], Optional[str]], Optional[float]]

_HEADER_FILL = PatternFill(start_color="1A237E", end_color="1A237E", fill_type="solid")
_HEADER_FONT = Font(bold=True, color="FFFFFF", size=10)


def row_cap(tier: Tier) -> int:
    return EXPORT_ROW_CAPS[Tier.parse(tier)]


@dataclass(frozen=True)
class ExportResult:
    rows: Tuple[Shipment, ...]
    total: int
    cap: int

    @property
    def truncated(self) -> bool:
        return self.total > self.cap

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def headers(self) -> Dict[str, str]:
        return {
            "X-Export-Truncated": "true" if self.truncated else "false",
            "X-Export-Rows": str(self.row_count),
            "X-Export-Total": str(self.total),
        }


class ExportThrottler:
    def __init__(self, executor: SearchExecutor) -> None:
        self.executor = executor

    def collect(self, query: SearchQuery, tier: Tier) -> ExportResult:
        cap = row_cap(tier)
        page = self.executor.fetch_first(query, cap)
        result = ExportResult(rows=tuple(page.items[:cap]), total=page.total, cap=cap)
        if result.truncated:
            logger.info("Export truncated to %d of %d rows for tier %s", cap, page.total, Tier.parse(tier).value)
        return result


def _memoized(lookup: DutyLookup) -> DutyLookup:
    cache: Dict[Tuple[str, Optional[str], Optional[str]], Optional[float]] = {}

    def wrapped(hs_code: str, origin: Optional[str], destination: Optional[str]) -> Optional[float]:
        key = (hs_code, origin, destination)
        if key not in cache:
            cache[key] = lookup(hs_code, origin, destination)
        return cache[key]

    return wrapped


def _table(rows: Sequence[Shipment], duty_lookup: Optional[DutyLookup]) -> Tuple[List[str], List[List[object]]]:
    headers = [header for header, _ in EXPORT_COLUMNS]
    lookup = _memoized(duty_lookup) if duty_lookup is not None else None
    if lookup is not None:
        headers.append(DUTY_COLUMN)
    body: List[List[object]] = []
    for shipment in rows:
        data = shipment.to_dict()
        line: List[object] = [data[key] for _, key in EXPORT_COLUMNS]
        if lookup is not None:
            line.append(lookup(shipment.hs_code, shipment.origin_country, shipment.destination_country))
        body.append(line)
    return headers, body


def render_csv(result: ExportResult, duty_lookup: Optional[DutyLookup] = None) -> bytes:
    headers, body = _table(result.rows, duty_lookup)
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for line in body:
        writer.writerow(["" if value is None else value for value in line])
    return buffer.getvalue().encode("utf-8")


def render_xlsx(result: ExportResult, duty_lookup: Optional[DutyLookup] = None) -> bytes:
    headers, body = _table(result.rows, duty_lookup)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Shipments"
    ws.append(headers)
    for col_idx in range(1, len(headers) + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.fill = _HEADER_FILL
        cell.font = _HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        ws.column_dimensions[get_column_letter(col_idx)].width = 18
    ws.freeze_panes = "A2"
    for line in body:
        ws.append(line)
    if result.truncated:
        notes = wb.create_sheet("Notes")
        notes.append(["Truncated", f"Export limited to {result.cap} of {result.total} matching rows"])
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def render(result: ExportResult, fmt: str, duty_lookup: Optional[DutyLookup] = None) -> Tuple[bytes, str]:
    """Render ``result`` as ``fmt``; returns ``(content, media_type)``."""
    fmt = (fmt or "csv").lower()
    if fmt == "csv":
        return render_csv(result, duty_lookup), CSV_MEDIA_TYPE
    if fmt == "xlsx":
        return render_xlsx(result, duty_lookup), XLSX_MEDIA_TYPE
    raise ValidationError("format", f"must be one of {', '.join(EXPORT_FORMATS)}")
