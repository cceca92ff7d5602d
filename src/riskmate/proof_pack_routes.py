"""
Proof pack and export API routes - synchronous packs, ledger CSV and queued exports
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import json
import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import OrganizationContext, get_current_context
from .db.engine import get_db
from .db.models.export import Export, ExportState
from .exceptions import ApiError
from .services.audit_log_service import AuditEvent, AuditLogService, ledger_csv
from .services.entitlements import assert_plan_active, get_org_entitlements
from .services.proof_pack_service import ProofPackFilters, ProofPackService
from .services.rate_limiter import FixedWindowRateLimiter, check_rate_limit, get_rate_limiter
from .services.storage_provider import StorageProvider, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["proof-packs"])

EXPORT_CONTENT_TYPES = {
    "zip": "application/zip",
    "pdf": "application/pdf",
}


class ProofPackRequest(BaseModel):
    """Request body for a proof pack"""
    time_range: str = Field("30d", description="24h, 7d, 30d or all")
    job_id: Optional[str] = None
    site_ids: Optional[List[str]] = None
    include_controls: bool = True
    include_signoffs: bool = True
    include_evidence: bool = True
    format: str = Field("zip", pattern="^(zip|json)$", description="zip or json")

    def filters(self) -> ProofPackFilters:
        return ProofPackFilters(
            time_range=self.time_range,
            job_id=self.job_id,
            site_ids=self.site_ids,
            include_controls=self.include_controls,
            include_signoffs=self.include_signoffs,
            include_evidence=self.include_evidence,
        )


class ExportRequest(BaseModel):
    """Request body for a queued export"""
    export_type: str = Field(..., pattern="^(proof_pack|ledger|controls|attestations)$")
    job_id: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)


def serialize_job(job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "client_name": job.client_name,
        "job_type": job.job_type,
        "location": job.location,
        "site_id": job.site_id,
        "status": job.status,
        "risk_score": job.risk_score,
        "risk_level": job.risk_level,
        "updated_at": job.updated_at.isoformat() if job.updated_at else None,
    }


def serialize_export(export: Export) -> Dict[str, Any]:
    return {
        "id": export.id,
        "export_type": export.export_type,
        "job_id": export.job_id,
        "state": export.state,
        "progress": export.progress,
        "filters": export.filters or {},
        "manifest_hash": export.manifest_hash,
        "checksum": export.checksum,
        "failure_count": export.failure_count,
        "error_code": export.error_code,
        "error_id": export.error_id,
        "error_message": export.error_message,
        "created_at": export.created_at.isoformat() if export.created_at else None,
        "started_at": export.started_at.isoformat() if export.started_at else None,
        "completed_at": export.completed_at.isoformat() if export.completed_at else None,
    }


def _get_export(db: Session, export_id: str, organization_id: str) -> Export:
    export = db.query(Export).filter(
        Export.id == export_id,
        Export.organization_id == organization_id,
    ).first()
    if export is None:
        raise ApiError("NOT_FOUND", "Export not found")
    return export


@router.post("/proof-packs")
async def create_proof_pack(
    request: Request,
    body: ProofPackRequest,
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """
    Generate a proof pack

    format=zip returns the ZIP (four PDFs plus manifest.json); format=json
    returns the raw data behind it.
    """
    limit = check_rate_limit(limiter, "export", context.organization_id, context.user_id, request.url.path)
    filters = body.filters()
    service = ProofPackService(db)

    if body.format == "json":
        assert_plan_active(get_org_entitlements(db, context.organization_id))
        data = service.collect(context.organization_id, filters)
        content = {
            "organization_id": context.organization_id,
            "generated_at": datetime.utcnow().isoformat() + "Z",
            "filters": filters.to_dict(),
            "work_records": [serialize_job(job) for job in data["jobs"]],
            "ledger_events": data["events"],
            "controls": data["controls"],
            "attestations": data["attestations"],
            "evidence": data["evidence"],
        }
        return JSONResponse(content=content, headers=limit.headers())

    try:
        pack = service.build(
            context.organization_id,
            filters,
            actor_id=context.user_id,
            actor_name=context.display_name,
            actor_role=context.role,
        )
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Proof pack generation failed for org {context.organization_id}: {e}", exc_info=True)
        raise ApiError("EXPORT_ERROR", "Failed to generate proof pack")

    return Response(
        content=pack.to_zip(),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{pack.filename}"',
            "X-Pack-Id": pack.pack_id,
            "X-Manifest-Hash": pack.manifest_hash,
            **limit.headers(),
        },
    )


@router.get("/audit/export.csv")
async def export_ledger_csv(
    request: Request,
    time_range: str = Query("30d", pattern="^(24h|7d|30d|all)$"),
    job_id: Optional[str] = Query(None),
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """
    Compliance ledger as CSV with a header block
    """
    limit = check_rate_limit(limiter, "export", context.organization_id, context.user_id, request.url.path)
    filters = ProofPackFilters(time_range=time_range, job_id=job_id)
    service = ProofPackService(db)
    events = service.collect_events(context.organization_id, filters)

    export_id = f"EXP-{uuid.uuid4().hex[:12].upper()}"
    header_lines = [
        "RiskMate Compliance Ledger Export",
        f"Export ID: {export_id}",
        f"Generated: {datetime.utcnow().isoformat()}Z",
        f"Generated By: {context.display_name} ({context.role})",
        f"Organization: {service.organization_name(context.organization_id)}",
        f"Time Range: {time_range}",
        f"Filters: {json.dumps(filters.query_filters(), sort_keys=True)}",
        f"Event Count: {len(events)}",
    ]
    content = ledger_csv(events, header_lines)

    AuditLogService(db).record(
        context.organization_id,
        AuditEvent.LEDGER_EXPORTED,
        actor_id=context.user_id,
        actor_name=context.display_name,
        actor_role=context.role,
        target_type="system",
        summary=f"Exported {len(events)} audit events as CSV",
        metadata={"format": "csv", "export_id": export_id, "filters": filters.query_filters()},
    )

    return Response(
        content=content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="audit-export-{export_id}.csv"',
            **limit.headers(),
        },
    )


@router.post("/exports", status_code=202)
async def enqueue_export(
    request: Request,
    body: ExportRequest,
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """
    Queue an export for the background worker
    """
    limit = check_rate_limit(limiter, "export", context.organization_id, context.user_id, request.url.path)
    filters = ProofPackFilters.from_dict({**body.filters, "job_id": body.job_id})
    assert_plan_active(get_org_entitlements(db, context.organization_id))

    export = Export(
        organization_id=context.organization_id,
        requested_by=context.user_id,
        export_type=body.export_type,
        job_id=body.job_id,
        filters=filters.to_dict(),
        state=ExportState.QUEUED.value,
        progress=0,
    )
    db.add(export)
    db.commit()
    logger.info(f"Queued {export.export_type} export {export.id} for org {context.organization_id}")

    return JSONResponse(
        status_code=202,
        content={"id": export.id, "state": export.state},
        headers=limit.headers(),
    )


@router.get("/exports/{export_id}")
async def get_export(
    export_id: str,
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
):
    """
    Export status and progress
    """
    return serialize_export(_get_export(db, export_id, context.organization_id))


@router.get("/exports/{export_id}/download")
async def download_export(
    export_id: str,
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
):
    """
    Download a ready export

    Returns 409 while the export is still queued, in progress or failed.
    """
    export = _get_export(db, export_id, context.organization_id)
    if export.state != ExportState.READY.value or not export.storage_path:
        raise ApiError(
            "CONFLICT",
            "Export is not ready for download",
            details={"state": export.state, "progress": export.progress},
        )

    data = storage.get(export.storage_path)
    if data is None:
        logger.error(f"Export {export.id} is ready but {export.storage_path} is missing from storage")
        raise ApiError("NOT_FOUND", "Export file not found in storage")

    extension = export.storage_path.rsplit(".", 1)[-1]
    filename = f"{export.export_type}-{export.id[:8]}.{extension}"
    return Response(
        content=data,
        media_type=EXPORT_CONTENT_TYPES.get(extension, "application/octet-stream"),
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Checksum-SHA256": export.checksum or "",
        },
    )
