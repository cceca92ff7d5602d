"""
Audit Log Service
Append-only compliance ledger writes and queries
"""
import csv
import io
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from ..db.models.audit import AuditLog

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "all": None,
}


class AuditEvent:
    """Ledger event names (enum-like constants)"""
    # Billing
    SUBSCRIPTION_CREATED = "billing.subscription_created"
    SUBSCRIPTION_UPDATED = "billing.subscription_updated"
    PLAN_CHANGED = "billing.plan_changed"
    SUBSCRIPTION_CANCELED = "billing.subscription_canceled"
    PAYMENT_FAILED = "billing.payment_failed"

    # Jobs
    JOB_CREATED = "job.created"
    JOB_UPDATED = "job.updated"
    RISK_ASSESSED = "job.risk_assessed"
    DOCUMENT_UPLOADED = "document.uploaded"
    MITIGATION_COMPLETED = "mitigation.completed"
    MITIGATION_REOPENED = "mitigation.reopened"
    REPORT_GENERATED = "report.generated"

    # Exports
    PROOF_PACK_GENERATED = "export.proof_pack.generated"
    LEDGER_EXPORTED = "audit.export"


def time_range_start(time_range: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Lower bound for a 24h/7d/30d/all time range (None = unbounded)"""
    if time_range not in TIME_RANGES:
        raise ValueError(f"Invalid time range: {time_range}")
    delta = TIME_RANGES[time_range]
    if delta is None:
        return None
    return (now or datetime.utcnow()) - delta


class AuditLogService:
    """
    Service for creating and querying ledger events

    Rows are never updated or deleted.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        organization_id: Optional[str],
        event_name: str,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        actor_role: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        category: str = "operations",
        outcome: str = "allowed",
        severity: str = "info",
        summary: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
        site_id: Optional[str] = None,
        commit: bool = True,
    ) -> AuditLog:
        """
        Append a ledger event

        Args:
            organization_id: Owning organization
            event_name: Dotted event name (use AuditEvent constants)
            commit: Commit immediately; pass False to join the caller's transaction

        Returns:
            Created AuditLog instance
        """
        entry = AuditLog(
            organization_id=organization_id,
            event_name=event_name,
            actor_id=actor_id,
            actor_name=actor_name,
            actor_role=actor_role,
            target_type=target_type,
            target_id=target_id,
            category=category,
            outcome=outcome,
            severity=severity,
            summary=summary,
            extra_metadata=metadata or {},
            job_id=job_id,
            site_id=site_id,
            created_at=datetime.utcnow(),
        )

        try:
            self.db.add(entry)
            if commit:
                self.db.commit()
            else:
                self.db.flush()
        except Exception as e:
            logger.error(f"Failed to create audit log: {e}", exc_info=True)
            self.db.rollback()
            raise

        logger.debug(f"Audit event {event_name} recorded for org {organization_id}")
        return entry

    def list_events(
        self,
        organization_id: str,
        time_range: str = "30d",
        job_id: Optional[str] = None,
        site_ids: Optional[List[str]] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLog]:
        """Ledger events for an organization, newest first"""
        query = self.db.query(AuditLog).filter(AuditLog.organization_id == organization_id)

        since = time_range_start(time_range)
        if since is not None:
            query = query.filter(AuditLog.created_at >= since)
        if job_id:
            query = query.filter(AuditLog.job_id == job_id)
        if site_ids:
            query = query.filter(AuditLog.site_id.in_(site_ids))
        if category:
            query = query.filter(AuditLog.category == category)

        query = query.order_by(AuditLog.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()


def serialize_event(entry: AuditLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "event_name": entry.event_name,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "category": entry.category,
        "outcome": entry.outcome,
        "severity": entry.severity,
        "actor_name": entry.actor_name,
        "actor_role": entry.actor_role,
        "job_id": entry.job_id,
        "target_type": entry.target_type,
        "target_id": entry.target_id,
        "summary": entry.summary,
        "metadata": entry.extra_metadata or {},
    }


LEDGER_CSV_COLUMNS = ["Timestamp", "Event", "Category", "Outcome", "Severity", "Actor", "Role", "Target", "Summary"]


def ledger_csv(events: List[Dict[str, Any]], header_lines: Optional[List[str]] = None) -> str:
    """
    Render serialized ledger events as CSV, every cell quoted

    header_lines are written as single-cell rows above the column header.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for line in header_lines or []:
        writer.writerow([line])
    if header_lines:
        writer.writerow([])
    writer.writerow(LEDGER_CSV_COLUMNS)
    for event in events:
        writer.writerow([
            event.get("created_at") or "",
            event.get("event_name") or "",
            event.get("category") or "operations",
            event.get("outcome") or "allowed",
            event.get("severity") or "info",
            event.get("actor_name") or "System",
            event.get("actor_role") or "",
            event.get("job_title") or event.get("target_type") or "",
            event.get("summary") or "",
        ])
    return buffer.getvalue()
