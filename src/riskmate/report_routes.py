"""
Job API routes - risk assessment, the job report PDF and report verification
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import hashlib
import logging
import re

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import OrganizationContext, get_current_context
from .db.engine import get_db
from .db.base import new_uuid
from .db.models.job import Job
from .db.models.report import SHORT_ID_PREFIX, ReportRun
from .exceptions import ApiError
from .pdf import generate_job_report_pdf
from .services.audit_log_service import AuditEvent, AuditLogService, serialize_event
from .services.proof_pack_service import ProofPackService
from .services.rate_limiter import FixedWindowRateLimiter, check_rate_limit, get_rate_limiter
from .services.risk_scoring import assess_job, calculate_risk_score
from .services.storage_provider import StorageProvider, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
verify_router = APIRouter(prefix="/api/verify", tags=["reports"])

PHOTO_DOC_TYPE = "photo"
SHORT_ID_PATTERN = re.compile(r"^[0-9a-f-]{1,36}$")


class RiskAssessmentRequest(BaseModel):
    """Hazard codes selected for a job"""
    risk_factor_codes: List[str] = Field(default_factory=list, description="Risk factor catalog codes")


def _get_job(db: Session, job_id: str, organization_id: str) -> Job:
    job = db.query(Job).filter(Job.id == job_id, Job.organization_id == organization_id).first()
    if job is None:
        raise ApiError("NOT_FOUND", "Job not found")
    return job


def _job_dict(job: Job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "client_name": job.client_name,
        "job_type": job.job_type,
        "location": job.location,
        "status": job.status,
        "description": job.description,
    }


def _mitigation_dicts(job: Job) -> List[Dict[str, Any]]:
    return [
        {
            "id": item.id,
            "title": item.title,
            "severity": item.severity,
            "done": item.done,
            "completed_at": item.completed_at,
        }
        for item in job.mitigation_items
    ]


def _signoff_dicts(job: Job) -> List[Dict[str, Any]]:
    return [
        {
            "signer_name": signoff.signer_name,
            "signer_role": signoff.signer_role,
            "signoff_type": signoff.signoff_type,
            "status": signoff.status,
            "signed_at": signoff.signed_at,
        }
        for signoff in job.signoffs
    ]


def _load_photos(job: Job, storage: StorageProvider) -> List[Dict[str, Any]]:
    """Photo bytes from storage; unreadable objects are left out of the report"""
    photos = []
    for document in job.documents:
        if document.doc_type != PHOTO_DOC_TYPE:
            continue
        try:
            data = storage.get(document.storage_path)
        except Exception as e:
            logger.warning(f"Could not read photo {document.id} for job {job.id}: {e}")
            continue
        if data is None:
            logger.warning(f"Photo {document.id} for job {job.id} missing at {document.storage_path}")
            continue
        photos.append({"name": document.name, "data": data})
    return photos


@router.post("/{job_id}/risk-assessment")
async def assess_job_risk(
    job_id: str,
    body: RiskAssessmentRequest,
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
):
    """
    Score a job from selected hazards and rebuild its mitigation checklist
    """
    job = _get_job(db, job_id, context.organization_id)
    result = assess_job(db, job, body.risk_factor_codes)

    AuditLogService(db).record(
        context.organization_id,
        AuditEvent.RISK_ASSESSED,
        actor_id=context.user_id,
        actor_name=context.display_name,
        actor_role=context.role,
        target_type="job",
        target_id=job.id,
        summary=f"Risk assessed: {result.overall_score} ({result.risk_level})",
        metadata={"risk_factor_codes": job.hazard_codes, "overall_score": result.overall_score},
        job_id=job.id,
        site_id=job.site_id,
        commit=False,
    )
    db.commit()

    return {
        "job_id": job.id,
        "risk_score": result.to_dict(),
        "mitigation_items": [
            {"id": item.id, "title": item.title, "severity": item.severity, "done": item.done}
            for item in job.mitigation_items
        ],
    }


@router.get("/{job_id}/report/pdf")
async def job_report_pdf(
    request: Request,
    job_id: str,
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    storage: StorageProvider = Depends(get_storage),
):
    """
    Render the job risk report

    The response carries the sha256 of the PDF in X-Report-Hash.
    """
    limit = check_rate_limit(limiter, "pdf", context.organization_id, context.user_id, request.url.path)
    job = _get_job(db, job_id, context.organization_id)
    audit = AuditLogService(db)

    risk = calculate_risk_score(db, job.hazard_codes or []).to_dict()
    if job.risk_score is not None:
        risk["overall_score"] = job.risk_score
        risk["risk_level"] = job.risk_level or risk["risk_level"]

    events = [serialize_event(entry) for entry in audit.list_events(context.organization_id, time_range="all", job_id=job.id)]

    try:
        pdf = generate_job_report_pdf(
            _job_dict(job),
            risk,
            _mitigation_dicts(job),
            organization_name=ProofPackService(db).organization_name(context.organization_id),
            photos=_load_photos(job, storage),
            audit_logs=events,
            signoffs=_signoff_dicts(job),
        )
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Report generation failed for job {job.id}: {e}", exc_info=True)
        raise ApiError("PDF_GENERATION_ERROR", "Failed to generate job report")

    report_hash = hashlib.sha256(pdf).hexdigest()
    run = ReportRun(
        id=new_uuid(),
        organization_id=context.organization_id,
        job_id=job.id,
        report_hash=report_hash,
        byte_size=len(pdf),
        generated_by=context.user_id,
        extra_metadata={"risk_score": risk.get("overall_score"), "risk_level": risk.get("risk_level")},
    )
    storage_key = f"reports/{context.organization_id}/{job.id}/{run.id}.pdf"
    try:
        storage.put(storage_key, pdf, "application/pdf")
        run.storage_path = storage_key
    except Exception as e:
        logger.warning(f"Could not store report {run.id} for job {job.id}: {e}")
    db.add(run)

    audit.record(
        context.organization_id,
        AuditEvent.REPORT_GENERATED,
        actor_id=context.user_id,
        actor_name=context.display_name,
        actor_role=context.role,
        target_type="job",
        target_id=job.id,
        summary="Job report generated",
        metadata={"report_hash": report_hash, "bytes": len(pdf), "report_run_id": run.id},
        job_id=job.id,
        site_id=job.site_id,
    )

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="riskmate-report-{job.id[:8]}.pdf"',
            "X-Report-Hash": report_hash,
            "X-Report-Id": run.short_id,
            **limit.headers(),
        },
    )


def _find_report_run(db: Session, report_id: str, organization_id: str) -> Optional[ReportRun]:
    """Resolve a full report id or its RM- short form"""
    query = db.query(ReportRun).filter(ReportRun.organization_id == organization_id)
    if report_id.startswith(SHORT_ID_PREFIX):
        short_id = report_id[len(SHORT_ID_PREFIX):].lower()
        if not SHORT_ID_PATTERN.match(short_id):
            return None
        return (
            query.filter(ReportRun.id.like(f"{short_id}%"))
            .order_by(ReportRun.generated_at.desc())
            .first()
        )
    return query.filter(ReportRun.id == report_id).first()


@verify_router.get("/{report_id}")
async def verify_report(
    report_id: str,
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
):
    """
    Look up a generated report by id

    stored_file_hash is recomputed from the archived PDF, so a match with
    report_hash shows the stored copy is unchanged.
    """
    run = _find_report_run(db, report_id, context.organization_id)
    if run is None:
        raise ApiError("NOT_FOUND", "Report not found")

    stored_file_hash = None
    if run.storage_path:
        try:
            data = storage.get(run.storage_path)
        except Exception as e:
            logger.warning(f"Could not read stored report {run.id}: {e}")
            data = None
        if data is not None:
            stored_file_hash = hashlib.sha256(data).hexdigest()

    return {
        "report_id": run.short_id,
        "id": run.id,
        "organization_id": run.organization_id,
        "organization_name": ProofPackService(db).organization_name(run.organization_id),
        "job_id": run.job_id,
        "packet_type": run.packet_type,
        "generated_at": run.generated_at.isoformat(),
        "report_hash": run.report_hash,
        "bytes": run.byte_size,
        "stored_file_hash": stored_file_hash,
        "matches_stored_file": stored_file_hash == run.report_hash if stored_file_hash else None,
        "metadata": run.extra_metadata or {},
        "verified_at": datetime.utcnow().isoformat(),
    }
