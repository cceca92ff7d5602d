"""
Database models for RiskMate
"""
from .organization import Organization, User, MembershipRole
from .subscription import Subscription, SubscriptionStatus, PlanTier
from .billing import (
    ReconciliationLog,
    ReconciliationRunType,
    ReconciliationStatus,
    BillingAlert,
    AlertSeverity,
    StripeWebhookEvent,
    WebhookEventStatus,
)
from .job import Job, RiskFactor, MitigationItem, JobSignoff, JobDocument, RiskLevel, SignoffStatus
from .audit import AuditLog
from .export import Export, ExportState, ExportType
from .report import ReportRun

__all__ = [
    "Organization",
    "User",
    "MembershipRole",
    "Subscription",
    "SubscriptionStatus",
    "PlanTier",
    "ReconciliationLog",
    "ReconciliationRunType",
    "ReconciliationStatus",
    "BillingAlert",
    "AlertSeverity",
    "StripeWebhookEvent",
    "WebhookEventStatus",
    "Job",
    "RiskFactor",
    "MitigationItem",
    "JobSignoff",
    "JobDocument",
    "RiskLevel",
    "SignoffStatus",
    "AuditLog",
    "Export",
    "ExportState",
    "ExportType",
    "ReportRun",
]
