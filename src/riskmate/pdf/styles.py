"""
Shared PDF styling: colors, fonts, sizes and paragraph styles
"""
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch

PAGE_SIZE = LETTER
PAGE_MARGIN = 0.6 * inch
FOOTER_MARGIN = 0.8 * inch

FONT_BODY = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_MONO = "Courier"

COLORS = {
    "primary_text": colors.HexColor("#111827"),
    "secondary_text": colors.HexColor("#6B7280"),
    "accent": colors.HexColor("#FF6B35"),
    "border": colors.HexColor("#E5E7EB"),
    "zebra": colors.HexColor("#F9FAFB"),
    "table_header": colors.HexColor("#111827"),
    "card": colors.HexColor("#F3F4F6"),
    "white": colors.white,
}

SEVERITY_COLORS = {
    "critical": colors.HexColor("#DC2626"),
    "high": colors.HexColor("#EA580C"),
    "medium": colors.HexColor("#CA8A04"),
    "low": colors.HexColor("#16A34A"),
    "info": colors.HexColor("#6B7280"),
}

STATUS_COLORS = {
    "completed": colors.HexColor("#16A34A"),
    "pending": colors.HexColor("#CA8A04"),
    "overdue": colors.HexColor("#DC2626"),
}


def get_severity_color(severity):
    from .normalize import normalize_severity
    return SEVERITY_COLORS[normalize_severity(severity)]


def get_risk_color(risk_level):
    """Risk levels share the severity palette"""
    return get_severity_color(risk_level)


def get_status_color(status):
    return STATUS_COLORS.get((status or "").lower(), COLORS["secondary_text"])


def _build_styles():
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "RMTitle", parent=base["Heading1"], fontName=FONT_BOLD, fontSize=20,
            textColor=COLORS["primary_text"], spaceAfter=6,
        ),
        "subtitle": ParagraphStyle(
            "RMSubtitle", parent=base["Normal"], fontName=FONT_BODY, fontSize=10,
            textColor=COLORS["secondary_text"], spaceAfter=2,
        ),
        "section": ParagraphStyle(
            "RMSection", parent=base["Heading2"], fontName=FONT_BOLD, fontSize=13,
            textColor=COLORS["primary_text"], spaceBefore=12, spaceAfter=6,
        ),
        "body": ParagraphStyle(
            "RMBody", parent=base["Normal"], fontName=FONT_BODY, fontSize=9.5,
            textColor=COLORS["primary_text"], leading=13,
        ),
        "muted": ParagraphStyle(
            "RMMuted", parent=base["Normal"], fontName=FONT_BODY, fontSize=8.5,
            textColor=COLORS["secondary_text"], leading=11,
        ),
        "cell": ParagraphStyle(
            "RMCell", parent=base["Normal"], fontName=FONT_BODY, fontSize=8, leading=10,
        ),
        "cell_header": ParagraphStyle(
            "RMCellHeader", parent=base["Normal"], fontName=FONT_BOLD, fontSize=8, leading=10,
            textColor=COLORS["white"],
        ),
        "mono": ParagraphStyle(
            "RMMono", parent=base["Normal"], fontName=FONT_MONO, fontSize=7.5, leading=10,
        ),
        "kpi_value": ParagraphStyle(
            "RMKpiValue", parent=base["Normal"], fontName=FONT_BOLD, fontSize=16, leading=19,
            alignment=TA_CENTER,
        ),
        "kpi_label": ParagraphStyle(
            "RMKpiLabel", parent=base["Normal"], fontName=FONT_BODY, fontSize=8, leading=10,
            textColor=COLORS["secondary_text"], alignment=TA_CENTER,
        ),
        "empty_title": ParagraphStyle(
            "RMEmptyTitle", parent=base["Heading3"], fontName=FONT_BOLD, fontSize=12,
            alignment=TA_CENTER, textColor=COLORS["primary_text"],
        ),
        "empty_body": ParagraphStyle(
            "RMEmptyBody", parent=base["Normal"], fontName=FONT_BODY, fontSize=9,
            alignment=TA_CENTER, textColor=COLORS["secondary_text"], leading=12,
        ),
    }


STYLES = _build_styles()
