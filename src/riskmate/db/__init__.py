"""
Database module for RiskMate
"""
from .base import Base
from .engine import engine, SessionLocal, get_db, init_db
from .models import (
    Organization,
    User,
    Subscription,
    ReconciliationLog,
    BillingAlert,
    StripeWebhookEvent,
    Job,
    RiskFactor,
    MitigationItem,
    JobSignoff,
    JobDocument,
    AuditLog,
    Export,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "Organization",
    "User",
    "Subscription",
    "ReconciliationLog",
    "BillingAlert",
    "StripeWebhookEvent",
    "Job",
    "RiskFactor",
    "MitigationItem",
    "JobSignoff",
    "JobDocument",
    "AuditLog",
    "Export",
]
