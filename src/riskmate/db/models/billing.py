"""
Billing bookkeeping models: reconciliation runs, alerts and webhook events
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON
from datetime import datetime
import enum

from ..base import Base, new_uuid


class ReconciliationRunType(str, enum.Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK_FAILURE = "webhook_failure"


class ReconciliationStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class AlertSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


class WebhookEventStatus(str, enum.Enum):
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class ReconciliationLog(Base):
    """One row per reconciliation sweep"""
    __tablename__ = "reconciliation_logs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    run_type = Column(String, nullable=False, default=ReconciliationRunType.SCHEDULED.value)
    lookback_hours = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=ReconciliationStatus.RUNNING.value, index=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    created_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    mismatch_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    reconciliations = Column(JSON, nullable=False, default=list)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)


class BillingAlert(Base):
    """
    Operational alert about billing health

    alert_key is set for condition alerts that must exist at most once
    (e.g. reconcile_stale) and is NULL for event alerts.
    """
    __tablename__ = "billing_alerts"

    id = Column(String(36), primary_key=True, default=new_uuid)
    alert_type = Column(String, nullable=False, index=True)
    alert_key = Column(String, nullable=True, unique=True)
    severity = Column(String, nullable=False, default=AlertSeverity.WARNING.value, index=True)
    message = Column(Text, nullable=False)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class StripeWebhookEvent(Base):
    """Processed Stripe events, keyed by Stripe event id for idempotency"""
    __tablename__ = "stripe_webhook_events"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=WebhookEventStatus.PROCESSING.value)
    error = Column(Text, nullable=True)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
