"""
Job risk report PDF

Cover, executive summary, hazard checklist, controls applied, timeline,
photo grid and signatures.
"""
import logging
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence

from PIL import Image as PILImage, UnidentifiedImageError
from reportlab.lib.units import inch
from reportlab.platypus import Image, PageBreak, Spacer, Table, TableStyle

from .normalize import (
    format_date,
    format_datetime,
    format_time,
    parse_datetime,
    truncate_text,
)
from .styles import COLORS, STYLES, get_risk_color, get_severity_color
from .theme import BRAND, content_width, data_table, empty_state, kpi_row, para, render_pdf, section_title

logger = logging.getLogger(__name__)

TIMELINE_EVENTS = {
    "job.created",
    "job.updated",
    "document.uploaded",
    "mitigation.completed",
    "mitigation.reopened",
    "report.generated",
}

UPLOAD_WINDOW_SECONDS = 5 * 60
DEFAULT_WINDOW_SECONDS = 10 * 60

PHOTO_COLUMNS = 3
PHOTO_THUMBNAIL_PX = (600, 600)


def _timeline_description(event_name: str, logs: List[Dict[str, Any]]) -> str:
    count = len(logs)
    if event_name == "job.created":
        return "Job created"
    if event_name == "job.updated":
        return f"Job details updated ({count} times)" if count > 1 else "Job details updated"
    if event_name == "document.uploaded":
        if count == 1:
            name = (logs[0].get("metadata") or {}).get("name") or "a file"
            return f"Document uploaded: {truncate_text(name, 40)}"
        return f"{count} documents uploaded"
    if event_name == "mitigation.completed":
        return f"Mitigations completed ({count} items)" if count > 1 else "Mitigation completed"
    if event_name == "mitigation.reopened":
        return f"Mitigations reopened ({count} items)" if count > 1 else "Mitigation reopened"
    if event_name == "report.generated":
        return f"{count} report versions generated" if count > 1 else "Report generated"
    return f"{event_name} ({count} times)" if count > 1 else event_name


def group_timeline_events(audit_logs: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Collapse raw audit events into readable timeline entries

    Uploads are bucketed into 5-minute windows, other events into 10-minute
    windows per event type, and every report.generated event lands in one
    entry. Entries are ordered by their earliest event.
    """
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for log in audit_logs:
        event_name = log.get("event_name")
        created_at = parse_datetime(log.get("created_at"))
        if event_name not in TIMELINE_EVENTS or created_at is None:
            continue

        epoch = int((created_at - datetime(1970, 1, 1)).total_seconds())
        if event_name == "document.uploaded":
            key = f"upload-{epoch // UPLOAD_WINDOW_SECONDS}"
        elif event_name == "report.generated":
            key = "report-generated"
        else:
            key = f"{event_name}-{epoch // DEFAULT_WINDOW_SECONDS}"
        groups.setdefault(key, []).append({**log, "_at": created_at})

    entries = []
    for logs in groups.values():
        logs.sort(key=lambda item: item["_at"])
        first, last = logs[0], logs[-1]
        count = len(logs)
        entries.append({
            "started_at": first["_at"],
            "time": format_time(first["_at"]),
            "time_end": format_time(last["_at"]) if count > 1 and first["_at"] < last["_at"] else None,
            "description": _timeline_description(first["event_name"], logs),
            "actor_name": first.get("actor_name") or "System",
            "count": count if count > 1 else None,
        })

    entries.sort(key=lambda entry: entry["started_at"])
    return entries


def _cover(job: Dict[str, Any], risk_score: Optional[Dict[str, Any]], organization_name: str, generated_at: datetime):
    score = (risk_score or {}).get("overall_score")
    level = (risk_score or {}).get("risk_level") or "low"
    level_style = STYLES["kpi_value"].clone("RMRiskLevel", textColor=get_risk_color(level))

    story = [
        para(f"{BRAND} \u00b7 Job Risk Report", "title"),
        para(organization_name, "subtitle"),
        Spacer(1, 0.25 * inch),
        para(job.get("client_name") or "Untitled Job", "section"),
        para(f"Job type: {job.get('job_type') or 'N/A'}"),
        para(f"Location: {job.get('location') or 'N/A'}"),
        para(f"Status: {job.get('status') or 'draft'}"),
        para(f"Job ID: {job.get('id')}", "muted"),
        para(f"Generated: {format_datetime(generated_at)}", "muted"),
        Spacer(1, 0.3 * inch),
    ]
    score_table = Table(
        [[para("N/A" if score is None else score, "kpi_value"),
          para(level.upper(), level_style)],
         [para("Risk Score", "kpi_label"), para("Risk Level", "kpi_label")]],
        colWidths=[content_width() / 2] * 2,
    )
    score_table.setStyle(TableStyle([
        ("BOX", (0, 0), (-1, -1), 0.5, COLORS["border"]),
        ("BACKGROUND", (0, 0), (-1, -1), COLORS["card"]),
        ("LINEABOVE", (0, 0), (-1, 0), 3, get_risk_color(level)),
        ("TOPPADDING", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
    ]))
    story.append(score_table)
    return story


def _executive_summary(risk_score, mitigations, photos, signoffs):
    completed = sum(1 for item in mitigations if item.get("done"))
    signed = sum(1 for s in signoffs if (s.get("status") or "").lower() == "signed")
    factors = (risk_score or {}).get("factors") or []
    return [
        section_title("Executive Summary"),
        kpi_row([
            {"label": "Hazards", "value": len(factors), "highlight": True},
            {"label": "Controls Completed", "value": f"{completed}/{len(mitigations)}"},
            {"label": "Photos", "value": len(photos)},
            {"label": "Sign-offs", "value": f"{signed}/{len(signoffs)}"},
        ]),
    ]


def _hazard_checklist(risk_score):
    factors = (risk_score or {}).get("factors") or []
    story = [section_title("Hazard Checklist")]
    if not factors:
        story.append(empty_state("No Hazards Identified", "No hazards were selected for this job."))
        return story
    rows = [[f.get("code") or "", f.get("name") or "", f.get("severity") or "info"] for f in factors]
    colors = {(2, index): get_severity_color(f.get("severity")) for index, f in enumerate(factors)}
    story.append(data_table(
        [{"header": "Code", "width": 0.2}, {"header": "Hazard", "width": 0.6}, {"header": "Severity", "width": 0.2}],
        rows,
        mono_columns=(0,),
        cell_colors=colors,
    ))
    return story


def _controls_applied(mitigations):
    story = [section_title("Controls Applied")]
    if not mitigations:
        story.append(empty_state("No Controls Recorded", "No mitigation items exist for this job."))
        return story
    rows = []
    for item in mitigations:
        rows.append([
            truncate_text(item.get("title") or "Untitled", 90),
            "Completed" if item.get("done") else "Open",
            format_date(item.get("completed_at")) if item.get("done") else "",
        ])
    story.append(data_table(
        [{"header": "Control", "width": 0.6}, {"header": "Status", "width": 0.15}, {"header": "Completed", "width": 0.25}],
        rows,
    ))
    return story


def _timeline(audit_logs):
    entries = group_timeline_events(audit_logs)
    story = [section_title("Timeline")]
    if not entries:
        story.append(para("No activity recorded.", "muted"))
        return story
    rows = []
    for entry in entries:
        time = entry["time"] if not entry["time_end"] else f"{entry['time']} - {entry['time_end']}"
        rows.append([time, entry["description"], entry["actor_name"]])
    story.append(data_table(
        [{"header": "Time", "width": 0.2}, {"header": "Activity", "width": 0.55}, {"header": "By", "width": 0.25}],
        rows,
    ))
    return story


def photo_flowable(data: bytes, max_width: float) -> Optional[Image]:
    """Decode and downscale a photo, None when Pillow cannot read it"""
    try:
        with PILImage.open(BytesIO(data)) as img:
            img = img.convert("RGB")
            img.thumbnail(PHOTO_THUMBNAIL_PX)
            out = BytesIO()
            img.save(out, format="JPEG", quality=80)
            width, height = img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Skipping undecodable photo: {e}")
        return None
    out.seek(0)
    scale = max_width / float(width)
    return Image(out, width=max_width, height=height * scale)


def _photos(photos):
    story = [section_title("Photos")]
    cell_width = content_width() / PHOTO_COLUMNS
    cells = []
    for photo in photos:
        image = photo_flowable(photo.get("data") or b"", cell_width - 12)
        if image is None:
            continue
        cells.append([image, para(truncate_text(photo.get("name") or "", 40), "muted")])

    if not cells:
        story.append(para("No photos attached.", "muted"))
        return story

    rows = [cells[i:i + PHOTO_COLUMNS] for i in range(0, len(cells), PHOTO_COLUMNS)]
    rows[-1] = rows[-1] + [""] * (PHOTO_COLUMNS - len(rows[-1]))
    grid = Table(rows, colWidths=[cell_width] * PHOTO_COLUMNS)
    grid.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
    ]))
    story.append(grid)
    return story


def _signatures(signoffs):
    story = [section_title("Signatures & Compliance")]
    if not signoffs:
        story.append(empty_state("No Sign-offs", "This job has not been signed off yet."))
        return story
    rows = [
        [
            s.get("signer_name") or "Pending signer",
            s.get("signer_role") or "",
            s.get("signoff_type") or "",
            s.get("status") or "pending",
            format_datetime(s.get("signed_at")) if s.get("signed_at") else "",
        ]
        for s in signoffs
    ]
    story.append(data_table(
        [
            {"header": "Signer", "width": 0.25},
            {"header": "Role", "width": 0.15},
            {"header": "Type", "width": 0.2},
            {"header": "Status", "width": 0.15},
            {"header": "Signed At", "width": 0.25},
        ],
        rows,
    ))
    return story


def generate_job_report_pdf(
    job: Dict[str, Any],
    risk_score: Optional[Dict[str, Any]],
    mitigations: Sequence[Dict[str, Any]],
    organization_name: str,
    photos: Sequence[Dict[str, Any]] = (),
    audit_logs: Sequence[Dict[str, Any]] = (),
    signoffs: Sequence[Dict[str, Any]] = (),
    generated_at: Optional[datetime] = None,
) -> bytes:
    """
    Render the full job report

    Args:
        job: Serialized job (id, client_name, job_type, location, status)
        risk_score: {"overall_score", "risk_level", "factors"} or None
        photos: [{"name", "data": bytes}]; undecodable images are skipped

    Returns:
        PDF bytes
    """
    generated_at = generated_at or datetime.utcnow()
    story = _cover(job, risk_score, organization_name, generated_at)
    story.append(PageBreak())
    story.extend(_executive_summary(risk_score, mitigations, photos, signoffs))
    story.extend(_hazard_checklist(risk_score))
    story.extend(_controls_applied(mitigations))
    story.extend(_timeline(audit_logs))
    story.extend(_photos(photos))
    story.extend(_signatures(signoffs))
    return render_pdf(story, job.get("id") or "job", f"Job Report {job.get('client_name') or ''}".strip())
