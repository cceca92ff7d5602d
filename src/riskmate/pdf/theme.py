"""
Shared PDF layout building blocks (reportlab platypus)
"""
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from reportlab.platypus import (
    Flowable,
    KeepTogether,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from .normalize import format_datetime, format_filter_context, sanitize_text
from .styles import COLORS, FONT_BODY, FONT_BOLD, FOOTER_MARGIN, PAGE_MARGIN, PAGE_SIZE, STYLES

BRAND = "RiskMate"


def para(text: Any, style: Any = "body") -> Paragraph:
    """Paragraph from untrusted text (sanitized and markup-escaped); style is a name or a ParagraphStyle"""
    if isinstance(style, str):
        style = STYLES[style]
    return Paragraph(escape(sanitize_text("" if text is None else str(text))), style)


def make_numbered_canvas(document_id: str):
    """
    Canvas class that draws "RiskMate \u00b7 <id> \u00b7 Page X of Y" on every page

    Pages are buffered until save() so the total page count is known.
    """

    class NumberedCanvas(canvas.Canvas):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self._saved_page_states = []

        def showPage(self):
            self._saved_page_states.append(dict(self.__dict__))
            self._startPage()

        def save(self):
            total = len(self._saved_page_states)
            for state in self._saved_page_states:
                self.__dict__.update(state)
                self._draw_footer(total)
                super().showPage()
            super().save()

        def _draw_footer(self, total_pages: int):
            width, _ = self._pagesize
            self.saveState()
            self.setStrokeColor(COLORS["border"])
            self.line(PAGE_MARGIN, FOOTER_MARGIN - 10, width - PAGE_MARGIN, FOOTER_MARGIN - 10)
            self.setFont(FONT_BODY, 7.5)
            self.setFillColor(COLORS["secondary_text"])
            self.drawString(
                PAGE_MARGIN,
                FOOTER_MARGIN - 24,
                f"{BRAND} \u00b7 {document_id} \u00b7 Page {self._pageNumber} of {total_pages}",
            )
            self.drawRightString(width - PAGE_MARGIN, FOOTER_MARGIN - 24, "Confidential")
            self.restoreState()

    return NumberedCanvas


def render_pdf(story: List[Flowable], document_id: str, title: str) -> bytes:
    """Lay out a story on LETTER pages and return the PDF bytes"""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=PAGE_SIZE,
        leftMargin=PAGE_MARGIN,
        rightMargin=PAGE_MARGIN,
        topMargin=PAGE_MARGIN,
        bottomMargin=FOOTER_MARGIN,
        title=title,
        author=BRAND,
        subject=document_id,
    )
    doc.build(story, canvasmaker=make_numbered_canvas(document_id))
    return buffer.getvalue()


def content_width() -> float:
    return PAGE_SIZE[0] - 2 * PAGE_MARGIN


def header(
    title: str,
    pack_id: str,
    organization_name: str,
    generated_by: str,
    generated_by_role: str,
    generated_at: Any,
    time_range: str,
) -> List[Flowable]:
    """Title block with export metadata"""
    meta = [
        ["Export ID", pack_id, "Organization", organization_name],
        ["Generated By", f"{generated_by} ({generated_by_role})", "Generated At", format_datetime(generated_at)],
        ["Time Range", time_range, "", ""],
    ]
    rows = [[para(cell, "muted" if i % 2 == 0 else "body") for i, cell in enumerate(row)] for row in meta]
    width = content_width()
    table = Table(rows, colWidths=[width * 0.16, width * 0.34, width * 0.16, width * 0.34])
    table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("LINEBELOW", (0, -1), (-1, -1), 1, COLORS["accent"]),
    ]))
    return [
        Paragraph(escape(f"{BRAND} \u00b7 {sanitize_text(title)}"), STYLES["title"]),
        table,
        Spacer(1, 0.2 * inch),
    ]


def kpi_row(kpis: Sequence[Dict[str, Any]]) -> Table:
    """Row of KPI cards: [{"label": str, "value": any, "highlight": bool}]"""
    cells = [[para(kpi["value"], "kpi_value"), para(kpi["label"], "kpi_label")] for kpi in kpis]
    width = content_width() / max(1, len(kpis))
    table = Table([cells], colWidths=[width] * len(kpis))
    commands = [
        ("BOX", (0, 0), (-1, -1), 0.5, COLORS["border"]),
        ("INNERGRID", (0, 0), (-1, -1), 0.5, COLORS["border"]),
        ("BACKGROUND", (0, 0), (-1, -1), COLORS["card"]),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("TOPPADDING", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
    ]
    for index, kpi in enumerate(kpis):
        if kpi.get("highlight"):
            commands.append(("LINEABOVE", (index, 0), (index, 0), 2, COLORS["accent"]))
    table.setStyle(TableStyle(commands))
    return table


def section_title(text: str) -> Paragraph:
    return para(text, "section")


def data_table(
    columns: Sequence[Dict[str, Any]],
    rows: Sequence[Sequence[Any]],
    zebra: bool = True,
    mono_columns: Sequence[int] = (),
    cell_colors: Optional[Dict[tuple, Any]] = None,
) -> Table:
    """
    Zebra-striped table with a repeating header row

    columns: [{"header": str, "width": fraction of content width}]
    cell_colors: {(col, row_index): color} for status/severity text
    """
    width = content_width()
    cell_colors = cell_colors or {}
    header_row = [para(col["header"], "cell_header") for col in columns]
    body = []
    for row_index, row in enumerate(rows):
        cells = []
        for index, value in enumerate(row):
            style = STYLES["mono" if index in mono_columns else "cell"]
            color = cell_colors.get((index, row_index))
            if color is not None:
                # Paragraph cells ignore TEXTCOLOR, the color has to live on the style
                style = style.clone(f"{style.name}-c{index}r{row_index}", textColor=color, fontName=FONT_BOLD)
            cells.append(Paragraph(escape(sanitize_text("" if value is None else str(value))), style))
        body.append(cells)

    table = Table([header_row] + body, colWidths=[width * col["width"] for col in columns], repeatRows=1)
    commands = [
        ("BACKGROUND", (0, 0), (-1, 0), COLORS["table_header"]),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, COLORS["border"]),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]
    if zebra:
        for index in range(1, len(body) + 1):
            if index % 2 == 0:
                commands.append(("BACKGROUND", (0, index), (-1, index), COLORS["zebra"]))
    table.setStyle(TableStyle(commands))
    return table


def empty_state(title: str, message: str, filters: Optional[Dict[str, Any]] = None, action_hint: Optional[str] = None) -> KeepTogether:
    """Centered placeholder shown when a section has no rows"""
    parts: List[Flowable] = [
        Spacer(1, 0.3 * inch),
        para(title, "empty_title"),
        Spacer(1, 4),
        para(message, "empty_body"),
    ]
    if filters is not None:
        parts.append(para(f"Applied filters: {format_filter_context(filters)}", "empty_body"))
    if action_hint:
        parts.append(Spacer(1, 4))
        parts.append(para(action_hint, "empty_body"))
    parts.append(Spacer(1, 0.3 * inch))
    return KeepTogether(parts)
