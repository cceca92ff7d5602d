"""
Compliance ledger export PDF
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from reportlab.platypus import Spacer

from .normalize import count_active_filters, format_datetime, sanitize_text
from .theme import data_table, empty_state, header, kpi_row, para, render_pdf, section_title

logger = logging.getLogger(__name__)

MAX_DISPLAYED_EVENTS = 1000
MAX_WORK_RECORDS = 50

LEDGER_COLUMNS = [
    {"header": "Timestamp", "width": 0.15},
    {"header": "Event", "width": 0.17},
    {"header": "Category", "width": 0.11},
    {"header": "Outcome", "width": 0.10},
    {"header": "Severity", "width": 0.09},
    {"header": "Actor", "width": 0.14},
    {"header": "Role", "width": 0.10},
    {"header": "Target", "width": 0.14},
]

EVIDENCE_NOTE = (
    "Note: Evidence files are auth-gated. Use the Work Record IDs below to retrieve "
    "evidence via the Compliance Ledger interface."
)


def ledger_row(event: Dict[str, Any]) -> List[str]:
    return [
        format_datetime(event.get("created_at")),
        event.get("event_name") or "unknown",
        event.get("category") or "operations",
        event.get("outcome") or "allowed",
        event.get("severity") or "info",
        event.get("actor_name") or "System",
        event.get("actor_role") or "",
        event.get("job_title") or event.get("target_type") or "",
    ]


def generate_ledger_export_pdf(
    events: Sequence[Dict[str, Any]],
    export_id: str,
    organization_name: str,
    generated_by: str,
    generated_by_role: str,
    time_range: str,
    filters: Optional[Dict[str, Any]] = None,
    generated_at: Optional[datetime] = None,
) -> bytes:
    """
    Render ledger events as a PDF

    Args:
        events: Serialized audit events, newest first
        export_id: Id printed in the header and every footer
        filters: Filters applied to the query (shown in KPIs and empty state)

    Returns:
        PDF bytes
    """
    displayed = list(events[:MAX_DISPLAYED_EVENTS])
    story = header(
        "Compliance Ledger Export",
        export_id,
        organization_name,
        generated_by,
        generated_by_role,
        generated_at or datetime.utcnow(),
        time_range,
    )
    story.append(kpi_row([
        {"label": "Total Events", "value": len(events), "highlight": True},
        {"label": "Displayed", "value": len(displayed)},
        {"label": "Active Filters", "value": count_active_filters(filters)},
        {"label": "Hash Verified", "value": "Yes"},
    ]))

    if not displayed:
        story.append(empty_state(
            "No Events Found",
            "No ledger events were found for this export with the applied filters.",
            filters=filters or {},
            action_hint="Try adjusting the time range or filters to see more events.",
        ))
    else:
        story.append(section_title("Event Data"))
        story.append(data_table(LEDGER_COLUMNS, [ledger_row(event) for event in displayed]))

        story.append(section_title("Evidence Reference"))
        story.append(para(EVIDENCE_NOTE, "muted"))
        story.append(Spacer(1, 6))

        job_titles: Dict[str, str] = {}
        for event in events:
            job_id = event.get("job_id")
            if job_id and job_id not in job_titles:
                job_titles[job_id] = event.get("job_title") or ""
        for job_id, title in list(job_titles.items())[:MAX_WORK_RECORDS]:
            suffix = f" ({sanitize_text(title)})" if title else ""
            story.append(para(f"\u2022 Work Record ID: {job_id}{suffix}"))

    logger.debug(f"Rendering ledger export {export_id} with {len(displayed)} of {len(events)} event(s)")
    return render_pdf(story, export_id, "Compliance Ledger Export")
