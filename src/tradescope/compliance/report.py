"""PDF rendering of a single compliance check."""

from __future__ import annotations

from io import BytesIO
from typing import List

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from tradescope.compliance.models import ComplianceCheck

REPORT_TITLE = "Compliance Screening Report"


def _draw_lines(c: canvas.Canvas, lines: List[str], *, start_y: int = 760, step: int = 14) -> int:
    y = start_y
    for line in lines:
        c.drawString(40, y, line)
        y -= step
        if y < 60:
            c.showPage()
            c.setFont("Helvetica", 11)
            y = 760
    return y


def _hit_lines(check: ComplianceCheck) -> List[str]:
    if not check.hits:
        return ["- no potential matches"]
    lines = []
    for hit in check.hits[:50]:
        reference = f" [{hit.reference}]" if hit.reference else ""
        lines.append(f"- {hit.list_name}: {hit.matched_name} (score {hit.score:.2f}){reference}")
    return lines


def render_check_pdf(check: ComplianceCheck) -> bytes:
    output = BytesIO()
    c = canvas.Canvas(output, pagesize=letter)
    c.setTitle(f"{REPORT_TITLE} {check.check_id}")

    c.setFont("Helvetica-Bold", 14)
    c.drawString(40, 760, REPORT_TITLE)
    c.setFont("Helvetica", 11)
    meta = [
        f"Check ID: {check.check_id}",
        f"Check type: {check.kind.value}",
        f"Company: {check.company_name or 'Unknown'} ({check.company_id})",
        f"Result: {check.status.value}",
        f"Checked at: {check.checked_at.isoformat()}",
        f"Checked by: {check.checked_by or 'n/a'}",
        f"Lists checked: {', '.join(check.lists_checked) or 'n/a'}",
        "",
        "Potential matches:",
    ]
    y = _draw_lines(c, meta + _hit_lines(check), start_y=730)
    _draw_lines(
        c,
        ["", "This report reflects screening data at the time of the check and is not legal advice."],
        start_y=y - 14,
    )

    c.showPage()
    c.save()
    return output.getvalue()
