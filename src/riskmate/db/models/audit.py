"""
Audit log (compliance ledger) model
"""
from sqlalchemy import Column, String, DateTime, Text, JSON
from datetime import datetime

from ..base import Base, new_uuid


class AuditLog(Base):
    """Append-only ledger event"""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organization_id = Column(String(36), nullable=True, index=True)
    actor_id = Column(String(36), nullable=True)
    actor_name = Column(String, nullable=True)
    actor_role = Column(String, nullable=True)
    event_name = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, default="operations")
    outcome = Column(String, nullable=False, default="allowed")
    severity = Column(String, nullable=False, default="info")
    target_type = Column(String, nullable=True)
    target_id = Column(String, nullable=True)
    job_id = Column(String(36), nullable=True, index=True)
    site_id = Column(String(36), nullable=True, index=True)
    summary = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
