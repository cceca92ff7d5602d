"""
PDF generation for reports, ledger exports and proof packs
"""
from .ledger_export import generate_ledger_export_pdf
from .proof_pack import (
    ProofPackMeta,
    generate_controls_pdf,
    generate_attestations_pdf,
    generate_evidence_index_pdf,
)
from .job_report import generate_job_report_pdf, group_timeline_events

__all__ = [
    "generate_ledger_export_pdf",
    "ProofPackMeta",
    "generate_controls_pdf",
    "generate_attestations_pdf",
    "generate_evidence_index_pdf",
    "generate_job_report_pdf",
    "group_timeline_events",
]
