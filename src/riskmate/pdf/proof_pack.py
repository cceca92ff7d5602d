"""
Proof pack PDFs: controls, attestations and the evidence index
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Sequence

from reportlab.platypus import Spacer

from .normalize import (
    calculate_attestation_kpis,
    calculate_control_kpis,
    format_date,
    format_datetime,
    format_filter_context,
    format_hash_short,
    is_control_overdue,
    normalize_attestation_status,
    normalize_control_status,
    sort_attestations,
    sort_controls,
    truncate_text,
)
from .styles import get_severity_color, get_status_color
from .theme import data_table, empty_state, header, kpi_row, para, render_pdf, section_title

ID_DISPLAY_LENGTH = 16


@dataclass
class ProofPackMeta:
    """Header metadata shared by every PDF in a pack"""
    pack_id: str
    organization_name: str
    generated_by: str
    generated_by_role: str
    generated_at: datetime
    time_range: str

    def header(self, title: str):
        return header(
            title,
            self.pack_id,
            self.organization_name,
            self.generated_by,
            self.generated_by_role,
            self.generated_at,
            self.time_range,
        )


def generate_controls_pdf(controls: Sequence[Dict[str, Any]], meta: ProofPackMeta) -> bytes:
    story = meta.header("Controls Report")
    kpis = calculate_control_kpis(controls, now=meta.generated_at)
    story.append(kpi_row([
        {"label": "Total Controls", "value": kpis["total"], "highlight": True},
        {"label": "Completed", "value": kpis["completed"]},
        {"label": "Pending", "value": kpis["pending"]},
    ]))

    if not controls:
        story.append(empty_state(
            "No Controls Found",
            "No controls were found for this proof pack with the applied filters.",
            filters={"time_range": meta.time_range},
            action_hint="Try adjusting the time range or filters, or add controls to jobs in the system.",
        ))
        return render_pdf(story, meta.pack_id, "Controls Report")

    story.append(section_title("Controls Data"))
    rows = []
    cell_colors = {}
    for index, control in enumerate(sort_controls(controls, now=meta.generated_at)):
        status = normalize_control_status(control.get("status_at_export"))
        if is_control_overdue(status, control.get("due_date"), meta.generated_at):
            status_label = "overdue"
        else:
            status_label = status
        rows.append([
            (control.get("control_id") or "")[:ID_DISPLAY_LENGTH],
            truncate_text(control.get("title") or "Untitled", 80),
            status_label,
            control.get("severity") or "info",
            control.get("owner") or "Unassigned",
            format_date(control.get("due_date")),
        ])
        cell_colors[(2, index)] = get_status_color(status_label)
        cell_colors[(3, index)] = get_severity_color(control.get("severity"))

    story.append(data_table(
        [
            {"header": "Control ID", "width": 0.17},
            {"header": "Title", "width": 0.31},
            {"header": "Status", "width": 0.11},
            {"header": "Severity", "width": 0.11},
            {"header": "Owner", "width": 0.16},
            {"header": "Due Date", "width": 0.14},
        ],
        rows,
        mono_columns=(0,),
        cell_colors=cell_colors,
    ))
    return render_pdf(story, meta.pack_id, "Controls Report")


def generate_attestations_pdf(attestations: Sequence[Dict[str, Any]], meta: ProofPackMeta) -> bytes:
    story = meta.header("Attestations Report")
    kpis = calculate_attestation_kpis(attestations)
    story.append(kpi_row([
        {"label": "Total Attestations", "value": kpis["total"], "highlight": True},
        {"label": "Signed", "value": kpis["completed"]},
        {"label": "Pending", "value": kpis["pending"]},
    ]))

    if not attestations:
        story.append(empty_state(
            "No Attestations Found",
            "No attestations were found for this proof pack with the applied filters.",
            filters={"time_range": meta.time_range},
            action_hint="Try adjusting the time range or filters, or generate attestations in the system.",
        ))
        return render_pdf(story, meta.pack_id, "Attestations Report")

    story.append(section_title("Attestations Data"))
    rows = []
    cell_colors = {}
    for index, attestation in enumerate(sort_attestations(attestations)):
        status = normalize_attestation_status(attestation.get("status_at_export"))
        rows.append([
            (attestation.get("attestation_id") or "")[:ID_DISPLAY_LENGTH],
            truncate_text(attestation.get("title") or "Untitled", 80),
            status,
            attestation.get("attested_by") or "Unknown",
            format_datetime(attestation.get("attested_at")),
        ])
        cell_colors[(2, index)] = get_status_color(status)

    story.append(data_table(
        [
            {"header": "Attestation ID", "width": 0.18},
            {"header": "Title", "width": 0.30},
            {"header": "Status", "width": 0.12},
            {"header": "Attested By", "width": 0.20},
            {"header": "Attested At", "width": 0.20},
        ],
        rows,
        mono_columns=(0,),
        cell_colors=cell_colors,
    ))
    return render_pdf(story, meta.pack_id, "Attestations Report")


def generate_evidence_index_pdf(manifest: Dict[str, Any], meta: ProofPackMeta) -> bytes:
    """
    Index of the pack payload

    manifest["files"] lists the payload PDFs only; the index cannot hash itself.
    """
    files: List[Dict[str, Any]] = manifest.get("files") or []
    counts = manifest.get("counts") or {}
    total_pdfs = len(files) + 1

    story = meta.header("Proof Pack Index")
    story.append(kpi_row([
        {"label": "Ledger Events", "value": counts.get("ledger_events", 0)},
        {"label": "Controls", "value": counts.get("controls", 0)},
        {"label": "Attestations", "value": counts.get("attestations", 0)},
        {"label": "Total PDFs", "value": total_pdfs, "highlight": True},
    ]))

    story.append(section_title("Contents Summary"))
    story.append(para(f"This proof pack contains {total_pdfs} PDF file(s):", "muted"))
    story.append(para(f"\u2022 {len(files)} payload PDF(s) with integrity verification hashes"))
    story.append(para("\u2022 1 index PDF (this file)"))

    story.append(section_title("Payload PDFs (Integrity Verified)"))
    if not files:
        story.append(empty_state("No Payload Files in Pack", "This proof pack contains no payload PDFs."))
    else:
        story.append(data_table(
            [
                {"header": "File Name", "width": 0.45},
                {"header": "Size (bytes)", "width": 0.20},
                {"header": "SHA-256 Hash (short)", "width": 0.35},
            ],
            [
                [f.get("name") or "Unknown", f"{f.get('bytes') or 0:,}", format_hash_short(f.get("sha256"))]
                for f in files
            ],
            mono_columns=(2,),
        ))
        story.append(Spacer(1, 6))
        story.append(para(f"Index PDF: evidence-index.pdf for {meta.pack_id} (included, not self-hashed)", "muted"))

        story.append(section_title("Full SHA-256 Hashes (Payload Integrity Verification)"))
        story.append(para("Use these full hashes to verify payload PDF integrity.", "muted"))
        for f in files:
            if f.get("sha256"):
                story.append(para(f"{f.get('name') or 'Unknown'}:", "mono"))
                story.append(para(f["sha256"], "mono"))
                story.append(Spacer(1, 4))

    filters = manifest.get("filters") or {}
    if any(value not in (None, "", []) for value in filters.values()):
        story.append(section_title("Applied Filters"))
        story.append(para(format_filter_context(filters), "muted"))

    return render_pdf(story, meta.pack_id, "Proof Pack Index")
