"""
Job, hazard catalog, mitigation, sign-off and document models
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, new_uuid


class RiskLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SignoffStatus(str, enum.Enum):
    PENDING = "pending"
    SIGNED = "signed"
    REJECTED = "rejected"


class Job(Base):
    """A unit of contractor work with a risk score and mitigation checklist"""
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    site_id = Column(String(36), nullable=True, index=True)
    client_name = Column(String, nullable=False)
    job_type = Column(String, nullable=True)
    location = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="draft")
    # Codes into risk_factors selected for this job
    hazard_codes = Column(JSON, nullable=False, default=list)
    risk_score = Column(Integer, nullable=True)
    risk_level = Column(String, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="jobs")
    mitigation_items = relationship("MitigationItem", back_populates="job", cascade="all, delete-orphan")
    signoffs = relationship("JobSignoff", back_populates="job", cascade="all, delete-orphan")
    documents = relationship("JobDocument", back_populates="job", cascade="all, delete-orphan")


class RiskFactor(Base):
    """Hazard catalog entry"""
    __tablename__ = "risk_factors"

    id = Column(String(36), primary_key=True, default=new_uuid)
    code = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    severity = Column(String, nullable=False)
    category = Column(String, nullable=True)
    mitigation_steps = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)


class MitigationItem(Base):
    """Mitigation checklist entry, exported as a control in proof packs"""
    __tablename__ = "mitigation_items"

    id = Column(String(36), primary_key=True, default=new_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    organization_id = Column(String(36), nullable=False, index=True)
    risk_factor_code = Column(String, nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(String, nullable=True)
    owner_name = Column(String, nullable=True)
    due_date = Column(DateTime, nullable=True)
    done = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    job = relationship("Job", back_populates="mitigation_items")


class JobSignoff(Base):
    """Sign-off on a job, exported as an attestation in proof packs"""
    __tablename__ = "job_signoffs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    organization_id = Column(String(36), nullable=False, index=True)
    signoff_type = Column(String, nullable=False, default="safety_review")
    signer_id = Column(String(36), nullable=True)
    signer_name = Column(String, nullable=True)
    signer_role = Column(String, nullable=True)
    status = Column(String, nullable=False, default=SignoffStatus.PENDING.value)
    comments = Column(Text, nullable=True)
    signed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    job = relationship("Job", back_populates="signoffs")


class JobDocument(Base):
    """Photo or document attached to a job"""
    __tablename__ = "job_documents"

    id = Column(String(36), primary_key=True, default=new_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    organization_id = Column(String(36), nullable=False, index=True)
    name = Column(String, nullable=False)
    doc_type = Column(String, nullable=False, default="photo")
    storage_path = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    job = relationship("Job", back_populates="documents")
