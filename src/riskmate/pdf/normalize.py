"""
Shared normalization for PDF generators
Text cleanup, date formatting, status/severity ranking and KPI counts
"""
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3, "info": 4}

_SEVERITY_ALIASES = {
    "critical": "critical", "crit": "critical",
    "high": "high", "h": "high",
    "medium": "medium", "med": "medium", "m": "medium",
    "low": "low", "l": "low",
}

_DASHES = re.compile("[\u2010-\u2015\u2212]")
_WHITESPACE = re.compile(r"\s+")
_STRIPPED_CATEGORIES = {"Cc", "Cf", "Co", "Cs"}


def _is_noncharacter(cp: int) -> bool:
    return 0xFDD0 <= cp <= 0xFDEF or (cp & 0xFFFF) in (0xFFFE, 0xFFFF)


def sanitize_text(text: Optional[str]) -> str:
    """Strip control/format/private-use characters and fold typographic punctuation"""
    if not text:
        return ""

    value = unicodedata.normalize("NFKC", str(text))
    value = value.replace("\u2028", " ").replace("\u2029", " ")
    value = re.sub(r"[\t\r\n]", " ", value)
    value = "".join(
        ch for ch in value
        if unicodedata.category(ch) not in _STRIPPED_CATEGORIES and not _is_noncharacter(ord(ch))
    )
    value = _DASHES.sub("-", value)
    value = value.replace("\u2018", "'").replace("\u2019", "'")
    value = value.replace("\u201c", '"').replace("\u201d", '"')
    return _WHITESPACE.sub(" ", value).strip()


def truncate_text(text: Optional[str], max_length: int) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def format_hash_short(value: Optional[str], length: int = 16) -> str:
    if not value:
        return "N/A"
    return value[:length]


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes or ISO strings; aware values are converted to naive UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_date(value: Any, fmt: str = "short") -> str:
    parsed = parse_datetime(value)
    if parsed is None:
        return "N/A"
    if fmt == "iso":
        return parsed.isoformat() + "Z"
    if fmt == "long":
        return parsed.strftime("%b %d, %Y %H:%M UTC")
    return parsed.strftime("%b %d, %Y")


def format_datetime(value: Any) -> str:
    return format_date(value, "long")


def format_time(value: Any) -> str:
    parsed = parse_datetime(value)
    return parsed.strftime("%H:%M") if parsed else "N/A"


def normalize_control_status(status: Optional[str]) -> str:
    if (status or "").lower().strip() in ("completed", "done", "verified"):
        return "completed"
    return "pending"


def normalize_attestation_status(status: Optional[str]) -> str:
    if (status or "").lower().strip() in ("completed", "signed", "verified"):
        return "completed"
    return "pending"


def normalize_severity(severity: Optional[str]) -> str:
    return _SEVERITY_ALIASES.get((severity or "info").lower().strip(), "info")


def is_high_severity(severity: Optional[str]) -> bool:
    return normalize_severity(severity) in ("critical", "high")


def compare_severity(a: Optional[str], b: Optional[str]) -> int:
    return SEVERITY_ORDER[normalize_severity(a)] - SEVERITY_ORDER[normalize_severity(b)]


def is_control_overdue(status: Optional[str], due_date: Any, now: Optional[datetime] = None) -> bool:
    if normalize_control_status(status) == "completed":
        return False
    due = parse_datetime(due_date)
    if due is None:
        return False
    return due < (now or datetime.utcnow())


def sort_controls(controls: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Overdue first, then high severity, then by due date (undated last)"""
    now = now or datetime.utcnow()

    def key(control):
        due = parse_datetime(control.get("due_date"))
        overdue = is_control_overdue(control.get("status_at_export"), due, now)
        return (
            0 if overdue else 1,
            0 if is_high_severity(control.get("severity")) else 1,
            due is None,
            due or datetime.max,
        )

    return sorted(controls, key=key)


def sort_attestations(attestations: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Pending first, then most recent first"""
    def key(attestation):
        completed = normalize_attestation_status(attestation.get("status_at_export")) == "completed"
        attested = parse_datetime(attestation.get("attested_at"))
        return (completed, -(attested.timestamp() if attested else 0))

    return sorted(attestations, key=key)


def calculate_control_kpis(controls: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, int]:
    kpis = {"total": 0, "completed": 0, "pending": 0, "overdue": 0, "high_severity": 0}
    for control in controls:
        kpis["total"] += 1
        if normalize_control_status(control.get("status_at_export")) == "completed":
            kpis["completed"] += 1
        else:
            kpis["pending"] += 1
        if is_control_overdue(control.get("status_at_export"), control.get("due_date"), now):
            kpis["overdue"] += 1
        if is_high_severity(control.get("severity")):
            kpis["high_severity"] += 1
    return kpis


def calculate_attestation_kpis(attestations: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    kpis = {"total": 0, "completed": 0, "pending": 0}
    for attestation in attestations:
        kpis["total"] += 1
        if normalize_attestation_status(attestation.get("status_at_export")) == "completed":
            kpis["completed"] += 1
        else:
            kpis["pending"] += 1
    return kpis


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value != []


def count_active_filters(filters: Optional[Dict[str, Any]]) -> int:
    return sum(1 for value in (filters or {}).values() if _is_set(value))


def format_filter_context(filters: Optional[Dict[str, Any]]) -> str:
    active = [
        f"{key.replace('_', ' ')}: {', '.join(map(str, value)) if isinstance(value, list) else value}"
        for key, value in (filters or {}).items()
        if _is_set(value)
    ]
    return ", ".join(active) or "No filters applied"
