"""
Proof Pack Service
Collects ledger events, controls and attestations for an organization and
assembles them into hashed PDFs plus a manifest
"""
import hashlib
import json
import logging
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..db.models.job import Job, JobDocument
from ..db.models.organization import Organization
from ..exceptions import ApiError
from ..pdf import (
    ProofPackMeta,
    generate_attestations_pdf,
    generate_controls_pdf,
    generate_evidence_index_pdf,
    generate_ledger_export_pdf,
)
from .audit_log_service import AuditEvent, AuditLogService, TIME_RANGES, serialize_event, time_range_start
from .entitlements import assert_plan_active, get_org_entitlements

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"
MAX_JOBS = 500
MAX_LEDGER_EVENTS = 10000

LEDGER_FILE = "ledger-export.pdf"
CONTROLS_FILE = "controls.pdf"
ATTESTATIONS_FILE = "attestations.pdf"
INDEX_FILE = "evidence-index.pdf"
MANIFEST_FILE = "manifest.json"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_entry(name: str, data: bytes) -> Dict[str, Any]:
    return {"name": name, "bytes": len(data), "sha256": sha256_hex(data)}


@dataclass
class ProofPackFilters:
    """Proof pack query filters"""
    time_range: str = "30d"
    job_id: Optional[str] = None
    site_ids: Optional[List[str]] = None
    include_controls: bool = True
    include_signoffs: bool = True
    include_evidence: bool = True

    def __post_init__(self):
        if self.time_range not in TIME_RANGES:
            raise ApiError(
                "VALIDATION_ERROR",
                f"Invalid time_range '{self.time_range}'",
                details={"allowed": list(TIME_RANGES)},
            )
        if self.site_ids is not None and not isinstance(self.site_ids, list):
            raise ApiError("VALIDATION_ERROR", "site_ids must be a list")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProofPackFilters":
        data = data or {}
        known = {key: data[key] for key in cls.__dataclass_fields__ if key in data and data[key] is not None}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_range": self.time_range,
            "job_id": self.job_id,
            "site_ids": self.site_ids,
            "include_controls": self.include_controls,
            "include_signoffs": self.include_signoffs,
            "include_evidence": self.include_evidence,
        }

    def query_filters(self) -> Dict[str, Any]:
        """Filters that narrow the data, as shown in PDFs"""
        return {"time_range": self.time_range, "job_id": self.job_id, "site_ids": self.site_ids}


@dataclass
class ProofPack:
    """Generated pack: payload PDFs, evidence index and manifest"""
    pack_id: str
    generated_at: datetime
    files: Dict[str, bytes] = field(default_factory=dict)
    manifest: Dict[str, Any] = field(default_factory=dict)

    @property
    def manifest_bytes(self) -> bytes:
        return json.dumps(self.manifest, indent=2, sort_keys=True).encode("utf-8")

    @property
    def manifest_hash(self) -> str:
        return sha256_hex(self.manifest_bytes)

    @property
    def filename(self) -> str:
        return f"proof-pack-{self.pack_id[:8]}.zip"

    def to_zip(self) -> bytes:
        """Zip every PDF plus manifest.json (deflate)"""
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, data in self.files.items():
                archive.writestr(name, data)
            archive.writestr(MANIFEST_FILE, self.manifest_bytes)
        return buffer.getvalue()


class ProofPackService:
    """Builds proof packs and the raw datasets behind them"""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogService(db)

    def _jobs(self, organization_id: str, filters: ProofPackFilters) -> List[Job]:
        query = self.db.query(Job).filter(Job.organization_id == organization_id)
        if filters.job_id:
            query = query.filter(Job.id == filters.job_id)
        if filters.site_ids:
            query = query.filter(Job.site_id.in_(filters.site_ids))
        since = time_range_start(filters.time_range)
        if since is not None:
            query = query.filter(Job.updated_at >= since)
        return query.order_by(Job.updated_at.desc()).limit(MAX_JOBS).all()

    def collect_controls(self, jobs: List[Job]) -> List[Dict[str, Any]]:
        controls = []
        for job in jobs:
            for item in job.mitigation_items:
                controls.append({
                    "control_id": item.id,
                    "work_record_id": job.id,
                    "site_id": job.site_id,
                    "title": item.title,
                    "status_at_export": "completed" if item.done else "pending",
                    "severity": item.severity or "info",
                    "owner": item.owner_name,
                    "due_date": item.due_date.isoformat() if item.due_date else None,
                    "completed_at": item.completed_at.isoformat() if item.completed_at else None,
                    "created_at": item.created_at.isoformat() if item.created_at else None,
                })
        return controls

    def collect_attestations(self, jobs: List[Job]) -> List[Dict[str, Any]]:
        attestations = []
        for job in jobs:
            for signoff in job.signoffs:
                kind = (signoff.signoff_type or "signoff").replace("_", " ").title()
                attestations.append({
                    "attestation_id": signoff.id,
                    "work_record_id": job.id,
                    "site_id": job.site_id,
                    "title": f"{kind} - {job.client_name}",
                    "status_at_export": signoff.status,
                    "attested_by": signoff.signer_name,
                    "attested_by_role": signoff.signer_role,
                    "attested_at": signoff.signed_at.isoformat() if signoff.signed_at else None,
                    "created_at": signoff.created_at.isoformat() if signoff.created_at else None,
                })
        return attestations

    def collect_evidence(self, jobs: List[Job]) -> List[Dict[str, Any]]:
        job_ids = [job.id for job in jobs]
        if not job_ids:
            return []
        documents = self.db.query(JobDocument).filter(JobDocument.job_id.in_(job_ids)).all()
        return [
            {
                "id": doc.id,
                "work_record_id": doc.job_id,
                "name": doc.name,
                "doc_type": doc.doc_type,
                "mime_type": doc.mime_type,
                "size_bytes": doc.size_bytes,
                "uploaded_at": doc.created_at.isoformat() if doc.created_at else None,
            }
            for doc in documents
        ]

    def collect_events(self, organization_id: str, filters: ProofPackFilters) -> List[Dict[str, Any]]:
        """Ledger events matching the filters, with job titles attached"""
        entries = self.audit.list_events(
            organization_id,
            time_range=filters.time_range,
            job_id=filters.job_id,
            site_ids=filters.site_ids,
            limit=MAX_LEDGER_EVENTS,
        )
        job_ids = {entry.job_id for entry in entries if entry.job_id}
        titles = {}
        if job_ids:
            titles = dict(self.db.query(Job.id, Job.client_name).filter(Job.id.in_(job_ids)).all())

        events = []
        for entry in entries:
            event = serialize_event(entry)
            event["job_title"] = titles.get(entry.job_id)
            events.append(event)
        return events

    def collect(self, organization_id: str, filters: ProofPackFilters) -> Dict[str, Any]:
        """Raw pack data (also served as the JSON proof pack format)"""
        jobs = self._jobs(organization_id, filters)
        return {
            "jobs": jobs,
            "events": self.collect_events(organization_id, filters),
            "controls": self.collect_controls(jobs) if filters.include_controls else [],
            "attestations": self.collect_attestations(jobs) if filters.include_signoffs else [],
            "evidence": self.collect_evidence(jobs) if filters.include_evidence else [],
        }

    def organization_name(self, organization_id: str) -> str:
        org = self.db.query(Organization).filter(Organization.id == organization_id).first()
        if org is None:
            raise ApiError("NOT_FOUND", "Organization not found")
        return org.name

    def build(
        self,
        organization_id: str,
        filters: Optional[ProofPackFilters] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        actor_role: Optional[str] = None,
        pack_id: Optional[str] = None,
        record_audit: bool = True,
    ) -> ProofPack:
        """
        Generate a proof pack

        Args:
            organization_id: Organization to export
            filters: Query filters (defaults to the last 30 days)
            actor_id / actor_name / actor_role: Who requested the pack
            pack_id: Fixed pack id (export worker passes the export id)
            record_audit: Append export.proof_pack.generated to the ledger

        Returns:
            ProofPack with ledger-export, controls, attestations and
            evidence-index PDFs and a manifest hashing all four

        Raises:
            ApiError: Plan past due or inactive, unknown organization
        """
        filters = filters or ProofPackFilters()
        assert_plan_active(get_org_entitlements(self.db, organization_id))

        pack_id = pack_id or str(uuid.uuid4())
        generated_at = datetime.utcnow()
        meta = ProofPackMeta(
            pack_id=pack_id,
            organization_name=self.organization_name(organization_id),
            generated_by=actor_name or "System",
            generated_by_role=actor_role or "system",
            generated_at=generated_at,
            time_range=filters.time_range,
        )

        data = self.collect(organization_id, filters)
        counts = {
            "work_records": len(data["jobs"]),
            "ledger_events": len(data["events"]),
            "controls": len(data["controls"]),
            "attestations": len(data["attestations"]),
            "evidence": len(data["evidence"]),
        }

        files: Dict[str, bytes] = {
            LEDGER_FILE: generate_ledger_export_pdf(
                data["events"],
                export_id=pack_id,
                organization_name=meta.organization_name,
                generated_by=meta.generated_by,
                generated_by_role=meta.generated_by_role,
                time_range=filters.time_range,
                filters=filters.query_filters(),
                generated_at=generated_at,
            ),
            CONTROLS_FILE: generate_controls_pdf(data["controls"], meta),
            ATTESTATIONS_FILE: generate_attestations_pdf(data["attestations"], meta),
        }
        payload_entries = [file_entry(name, content) for name, content in files.items()]

        files[INDEX_FILE] = generate_evidence_index_pdf(
            {"files": payload_entries, "counts": counts, "filters": filters.query_filters()},
            meta,
        )

        manifest = {
            "version": MANIFEST_VERSION,
            "pack_id": pack_id,
            "generated_at": generated_at.isoformat() + "Z",
            "organization_id": organization_id,
            "organization_name": meta.organization_name,
            "generated_by": {"user_id": actor_id, "name": meta.generated_by, "role": meta.generated_by_role},
            "filters": filters.to_dict(),
            "counts": counts,
            "files": payload_entries + [file_entry(INDEX_FILE, files[INDEX_FILE])],
        }
        pack = ProofPack(pack_id=pack_id, generated_at=generated_at, files=files, manifest=manifest)

        if record_audit:
            self.audit.record(
                organization_id,
                AuditEvent.PROOF_PACK_GENERATED,
                actor_id=actor_id,
                actor_name=actor_name,
                actor_role=actor_role,
                target_type="proof_pack",
                target_id=pack_id,
                category="governance",
                summary=f"Proof pack generated ({counts['work_records']} work records)",
                metadata={"pack_id": pack_id, "filters": filters.to_dict(), "counts": counts},
            )

        logger.info(
            f"Proof pack {pack_id} generated for org {organization_id}",
            extra={"organization_id": organization_id, "pack_id": pack_id},
        )
        return pack
