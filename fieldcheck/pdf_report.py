"""
SAS Field Network Check - PDF Report Generator
Renders a completed run (findings, verdict, discovered hosts) as a branded
PDF using ReportLab.
"""

import logging
import os
from datetime import datetime
from typing import Iterable, List, Optional
from xml.sax.saxutils import escape

from fieldcheck.models import HostRecord
from fieldcheck.report import RunSummary, Verdict
from fieldcheck.store import LogEntry, Severity

logger = logging.getLogger(__name__)

# ── SAS Brand Constants ──────────────────────────────────────────────────────
SAS_BLUE_HEX = "#0070BB"
ROW_ALT_HEX = "#F0F5FA"
BORDER_HEX = "#CCCCCC"
TEXT_DARK_HEX = "#1A1A2E"
TEXT_SECONDARY_HEX = "#4A5568"

SEVERITY_COLORS = {
    Severity.INFO: "#4A5568",
    Severity.SUCCESS: "#16A34A",
    Severity.WARN: "#F59E0B",
    Severity.ERROR: "#EF4444",
}

VERDICT_COLORS = {
    Verdict.CLEAN: "#16A34A",
    Verdict.MINOR_ISSUES: "#F59E0B",
    Verdict.CRITICAL_ISSUES: "#EF4444",
}


def default_report_path(suffix: str = "pdf") -> str:
    timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    docs_dir = os.path.join(os.path.expanduser("~"), "Documents")
    os.makedirs(docs_dir, exist_ok=True)
    return os.path.join(docs_dir, f"Field_Network_Check_{timestamp}.{suffix}")


def generate_run_report(
    entries: List[LogEntry],
    summary: RunSummary,
    hosts: Optional[Iterable[HostRecord]] = None,
    output_path: str = "",
) -> str:
    """
    Generate a PDF report of one diagnostic run.

    Args:
        entries: Store entries in insertion order
        summary: Result of the report aggregator
        hosts: Discovered hosts (optional)
        output_path: Where to save the PDF (auto-generated if empty)

    Returns:
        Path to the generated PDF file
    """
    from reportlab.lib.colors import HexColor, white
    from reportlab.lib.pagesizes import letter
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.lib.units import inch
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

    if not output_path:
        output_path = default_report_path()

    sas_blue = HexColor(SAS_BLUE_HEX)
    border_color = HexColor(BORDER_HEX)
    row_alt = HexColor(ROW_ALT_HEX)

    page_w, page_h = letter
    doc = SimpleDocTemplate(
        output_path,
        pagesize=letter,
        leftMargin=0.5 * inch,
        rightMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.6 * inch,
    )
    avail_w = page_w - 1.0 * inch

    # ── Styles ────────────────────────────────────────────────────────────
    styles = getSampleStyleSheet()
    style_title = ParagraphStyle(
        "SASTitle", parent=styles["Title"],
        fontName="Helvetica-Bold", fontSize=18,
        textColor=sas_blue, spaceAfter=4,
    )
    style_heading = ParagraphStyle(
        "SASHeading", parent=styles["Heading2"],
        fontName="Helvetica-Bold", fontSize=12,
        textColor=sas_blue, spaceBefore=12, spaceAfter=6,
    )
    style_body = ParagraphStyle(
        "SASBody", parent=styles["Normal"],
        fontName="Helvetica", fontSize=9,
        textColor=HexColor(TEXT_DARK_HEX),
    )
    style_cell = ParagraphStyle(
        "SASCell", parent=styles["Normal"],
        fontName="Helvetica", fontSize=8,
        textColor=HexColor(TEXT_DARK_HEX), leading=10,
    )
    style_header_cell = ParagraphStyle(
        "SASHeaderCell", parent=styles["Normal"],
        fontName="Helvetica-Bold", fontSize=8,
        textColor=white, leading=10,
    )

    now = datetime.now()
    story = []

    # ── Title & Verdict ───────────────────────────────────────────────────
    story.append(Paragraph("Field Network Check Report", style_title))
    story.append(Paragraph(f"<b>Generated:</b> {now.strftime('%Y-%m-%d %H:%M:%S')}", style_body))
    verdict_color = VERDICT_COLORS[summary.verdict]
    story.append(Paragraph(
        f'<b>Verdict:</b> <font color="{verdict_color}"><b>{summary.verdict.value}</b></font>'
        f"  ({summary.errors} errors, {summary.warnings} warnings)",
        style_body,
    ))
    story.append(Spacer(1, 10))

    def _styled_table(data, col_widths, extra_cmds):
        table = Table(data, colWidths=col_widths, repeatRows=1)
        cmds = [
            ("BACKGROUND", (0, 0), (-1, 0), sas_blue),
            ("BOX", (0, 0), (-1, -1), 0.75, sas_blue),
            ("INNERGRID", (0, 1), (-1, -1), 0.25, border_color),
            ("TOPPADDING", (0, 0), (-1, -1), 3),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
            ("LEFTPADDING", (0, 0), (-1, -1), 4),
            ("RIGHTPADDING", (0, 0), (-1, -1), 4),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]
        for i in range(2, len(data), 2):
            cmds.append(("BACKGROUND", (0, i), (-1, i), row_alt))
        table.setStyle(TableStyle(cmds + extra_cmds))
        return table

    # ── Findings ──────────────────────────────────────────────────────────
    story.append(Paragraph("Findings", style_heading))
    rows = [[Paragraph(h, style_header_cell) for h in ("Time", "Level", "Message")]]
    color_cmds = []
    for i, entry in enumerate(entries, 1):
        rows.append([
            Paragraph(entry.timestamp.strftime("%H:%M:%S"), style_cell),
            Paragraph(f"<b>{entry.severity.value}</b>", style_cell),
            Paragraph(escape(entry.message).replace("\n", "<br/>"), style_cell),
        ])
        color_cmds.append(("TEXTCOLOR", (1, i), (1, i), HexColor(SEVERITY_COLORS[entry.severity])))
    story.append(_styled_table(rows, [0.8 * inch, 0.8 * inch, avail_w - 1.6 * inch], color_cmds))

    # ── Hosts ─────────────────────────────────────────────────────────────
    host_list = sorted(hosts or [], key=lambda h: tuple(int(p) for p in h.address.split(".")))
    if host_list:
        story.append(Paragraph(f"Discovered Hosts ({len(host_list)})", style_heading))
        host_rows = [[Paragraph(h, style_header_cell) for h in ("#", "IP Address", "Name")]]
        for idx, host in enumerate(host_list, 1):
            host_rows.append([
                Paragraph(str(idx), style_cell),
                Paragraph(f"<b>{host.address}</b>", style_cell),
                Paragraph(escape(host.resolved_name or "-"), style_cell),
            ])
        story.append(_styled_table(host_rows, [0.4 * inch, 1.6 * inch, avail_w - 2.0 * inch], []))

    def _add_page_numbers(canvas_obj, doc_obj):
        """Add page numbers to the footer of every page."""
        canvas_obj.saveState()
        canvas_obj.setFont("Helvetica", 7)
        canvas_obj.setFillColor(HexColor(TEXT_SECONDARY_HEX))
        canvas_obj.drawString(0.5 * inch, 0.35 * inch,
                              "Generated by SAS Field Network Check")
        canvas_obj.drawRightString(page_w - 0.5 * inch, 0.35 * inch, f"Page {doc_obj.page}")
        canvas_obj.restoreState()

    doc.build(story, onFirstPage=_add_page_numbers, onLaterPages=_add_page_numbers)

    logger.info(f"PDF report generated: {output_path} ({len(entries)} entries)")
    return output_path
