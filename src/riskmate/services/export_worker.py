"""
Export Worker
Processes queued exports: generates PDFs/ZIPs plus a manifest, uploads them
to storage and moves the export row through its states
"""
import json
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..db.models.export import Export, ExportState, ExportType
from ..db.models.organization import User
from ..pdf import (
    ProofPackMeta,
    generate_attestations_pdf,
    generate_controls_pdf,
    generate_ledger_export_pdf,
)
from .audit_log_service import AuditLogService
from .entitlements import assert_plan_active, get_org_entitlements
from .proof_pack_service import MANIFEST_VERSION, ProofPackFilters, ProofPackService, file_entry, sha256_hex
from .storage_provider import StorageProvider

logger = logging.getLogger(__name__)

ERROR_CODE_GENERATION_FAILED = "EXPORT_GENERATION_FAILED"

IN_FLIGHT_STATES = (
    ExportState.PREPARING.value,
    ExportState.GENERATING.value,
    ExportState.UPLOADING.value,
)

PROGRESS_GENERATING = 10
PROGRESS_UPLOADING = 80
PROGRESS_READY = 100


def export_storage_base(organization_id: str, export_type: str, job_id: Optional[str], timestamp_ms: int) -> str:
    """Key prefix: {org}/{type}/{job_id or all}-{timestamp}"""
    return f"{organization_id}/{export_type}/{job_id or 'all'}-{timestamp_ms}"


class ExportWorker:
    """
    Claims queued exports and generates them

    Each export runs in its own session from session_factory. Failed exports
    go back to the queue until they have failed max_failures times.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        storage: StorageProvider,
        max_concurrent: int = 3,
        max_failures: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.max_concurrent = max_concurrent
        self.max_failures = max_failures
        self.clock = clock

    def _claim(self, db: Session, export_id: str) -> bool:
        """Move queued -> preparing; False when another worker got there first"""
        claimed = db.query(Export).filter(
            Export.id == export_id,
            Export.state == ExportState.QUEUED.value,
        ).update(
            {"state": ExportState.PREPARING.value, "started_at": datetime.utcnow()},
            synchronize_session=False,
        )
        db.commit()
        return claimed == 1

    def claim_pending(self) -> List[str]:
        """Claim up to the free concurrency slots, oldest first"""
        db = self.session_factory()
        try:
            in_flight = db.query(Export).filter(Export.state.in_(IN_FLIGHT_STATES)).count()
            slots = self.max_concurrent - in_flight
            if slots <= 0:
                logger.debug(f"Export worker at capacity ({in_flight}/{self.max_concurrent})")
                return []

            candidates = (
                db.query(Export.id)
                .filter(Export.state == ExportState.QUEUED.value)
                .order_by(Export.created_at.asc())
                .limit(slots)
                .all()
            )
            claimed = []
            for (export_id,) in candidates:
                if self._claim(db, export_id):
                    claimed.append(export_id)
                else:
                    logger.info(f"Export {export_id} already claimed, skipping")
            return claimed
        finally:
            db.close()

    def process_pending(self) -> Dict[str, int]:
        """
        Claim and process queued exports

        Returns:
            {"claimed", "ready", "failed", "requeued"}
        """
        stats = {"claimed": 0, "ready": 0, "failed": 0, "requeued": 0}
        for export_id in self.claim_pending():
            stats["claimed"] += 1
            state = self.process_export(export_id)
            if state == ExportState.READY.value:
                stats["ready"] += 1
            elif state == ExportState.FAILED.value:
                stats["failed"] += 1
            else:
                stats["requeued"] += 1
        return stats

    def _actor(self, db: Session, user_id: Optional[str]) -> Tuple[str, str]:
        if user_id:
            user = db.query(User).filter(User.id == user_id).first()
            if user is not None:
                return user.full_name or user.email, user.role
        return "System", "system"

    def _set_state(self, db: Session, export: Export, state: str, progress: int) -> None:
        export.state = state
        export.progress = progress
        db.commit()

    def process_export(self, export_id: str) -> Optional[str]:
        """Generate one claimed export; returns its final state"""
        db = self.session_factory()
        try:
            export = db.query(Export).filter(Export.id == export_id).first()
            if export is None:
                logger.warning(f"Export {export_id} disappeared before processing")
                return None

            audit = AuditLogService(db)
            logger.info(
                f"Processing export {export.id} ({export.export_type}) for org {export.organization_id}",
                extra={"export_id": export.id, "failure_count": export.failure_count},
            )

            try:
                self._set_state(db, export, ExportState.GENERATING.value, PROGRESS_GENERATING)
                audit.record(
                    export.organization_id,
                    f"export.{export.export_type}.started",
                    actor_id=export.requested_by,
                    target_type="export",
                    target_id=export.id,
                    category="governance",
                    metadata={"export_type": export.export_type, "job_id": export.job_id, "filters": export.filters},
                    job_id=export.job_id,
                )

                artifact, extension, content_type, manifest = self._generate(db, export)

                self._set_state(db, export, ExportState.UPLOADING.value, PROGRESS_UPLOADING)
                base_key = export_storage_base(
                    export.organization_id, export.export_type, export.job_id, int(self.clock() * 1000)
                )
                storage_path = self.storage.put(
                    f"{base_key}.{extension}",
                    artifact,
                    content_type,
                )
                manifest_bytes = json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8")
                manifest_path = self.storage.put(
                    f"{base_key}-manifest.json",
                    manifest_bytes,
                    "application/json",
                )

                export.storage_path = storage_path
                export.manifest_path = manifest_path
                export.manifest_hash = sha256_hex(manifest_bytes)
                export.manifest = manifest
                export.checksum = sha256_hex(artifact)
                export.completed_at = datetime.utcnow()
                export.error_code = None
                export.error_message = None
                self._set_state(db, export, ExportState.READY.value, PROGRESS_READY)

                audit.record(
                    export.organization_id,
                    f"export.{export.export_type}.completed",
                    actor_id=export.requested_by,
                    target_type="export",
                    target_id=export.id,
                    category="governance",
                    metadata={
                        "export_type": export.export_type,
                        "storage_path": storage_path,
                        "manifest_path": manifest_path,
                        "manifest_hash": export.manifest_hash,
                        "checksum": export.checksum,
                    },
                    job_id=export.job_id,
                )
                logger.info(f"Export {export.id} ready at {storage_path}")
                return export.state

            except Exception as e:
                return self._record_failure(db, export_id, e)
        finally:
            db.close()

    def _record_failure(self, db: Session, export_id: str, error: Exception) -> str:
        db.rollback()
        export = db.query(Export).filter(Export.id == export_id).one()
        export.failure_count = (export.failure_count or 0) + 1
        poison_pill = export.failure_count >= self.max_failures
        export.state = ExportState.FAILED.value if poison_pill else ExportState.QUEUED.value
        export.error_code = ERROR_CODE_GENERATION_FAILED
        export.error_id = str(uuid.uuid4())
        export.error_message = str(error)
        db.commit()

        logger.error(
            f"Export {export.id} failed ({export.failure_count}/{self.max_failures}): {error}",
            exc_info=True,
            extra={"export_id": export.id, "error_id": export.error_id, "poison_pill": poison_pill},
        )
        AuditLogService(db).record(
            export.organization_id,
            f"export.{export.export_type}.failed",
            actor_id=export.requested_by,
            target_type="export",
            target_id=export.id,
            category="governance",
            outcome="failed",
            severity="high" if poison_pill else "medium",
            metadata={
                "export_type": export.export_type,
                "error_code": export.error_code,
                "error_id": export.error_id,
                "error_message": export.error_message,
                "failure_count": export.failure_count,
            },
            job_id=export.job_id,
        )
        return export.state

    def _generate(self, db: Session, export: Export) -> Tuple[bytes, str, str, Dict[str, Any]]:
        """Returns (artifact bytes, file extension, content type, manifest)"""
        filters = ProofPackFilters.from_dict({**(export.filters or {}), "job_id": export.job_id})
        actor_name, actor_role = self._actor(db, export.requested_by)
        service = ProofPackService(db)

        if export.export_type == ExportType.PROOF_PACK.value:
            pack = service.build(
                export.organization_id,
                filters,
                actor_id=export.requested_by,
                actor_name=actor_name,
                actor_role=actor_role,
                pack_id=export.id,
                record_audit=False,
            )
            return pack.to_zip(), "zip", "application/zip", pack.manifest

        if export.export_type not in (
            ExportType.LEDGER.value,
            ExportType.CONTROLS.value,
            ExportType.ATTESTATIONS.value,
        ):
            raise ValueError(f"Unsupported export type: {export.export_type}")

        assert_plan_active(get_org_entitlements(db, export.organization_id))
        generated_at = datetime.utcnow()
        data = service.collect(export.organization_id, filters)
        meta = ProofPackMeta(
            pack_id=export.id,
            organization_name=service.organization_name(export.organization_id),
            generated_by=actor_name,
            generated_by_role=actor_role,
            generated_at=generated_at,
            time_range=filters.time_range,
        )

        if export.export_type == ExportType.LEDGER.value:
            name = "ledger-export.pdf"
            pdf = generate_ledger_export_pdf(
                data["events"],
                export_id=export.id,
                organization_name=meta.organization_name,
                generated_by=actor_name,
                generated_by_role=actor_role,
                time_range=filters.time_range,
                filters=filters.query_filters(),
                generated_at=generated_at,
            )
        elif export.export_type == ExportType.CONTROLS.value:
            name = "controls.pdf"
            pdf = generate_controls_pdf(data["controls"], meta)
        else:
            name = "attestations.pdf"
            pdf = generate_attestations_pdf(data["attestations"], meta)

        manifest = {
            "version": MANIFEST_VERSION,
            "export_id": export.id,
            "export_type": export.export_type,
            "generated_at": generated_at.isoformat() + "Z",
            "organization_id": export.organization_id,
            "work_record_id": export.job_id,
            "filters": filters.to_dict(),
            "files": [file_entry(name, pdf)],
        }
        return pdf, "pdf", "application/pdf", manifest


def get_export_worker() -> ExportWorker:
    """Worker wired to the app session factory and configured storage"""
    from ..config import config
    from ..db.engine import SessionLocal
    from .storage_provider import get_storage_provider

    return ExportWorker(
        SessionLocal,
        get_storage_provider(),
        max_concurrent=config.EXPORT_MAX_CONCURRENT,
        max_failures=config.EXPORT_MAX_FAILURES,
    )
