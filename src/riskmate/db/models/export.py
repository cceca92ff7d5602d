"""
Background export job model
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from datetime import datetime
import enum

from ..base import Base, new_uuid


class ExportState(str, enum.Enum):
    QUEUED = "queued"
    PREPARING = "preparing"
    GENERATING = "generating"
    UPLOADING = "uploading"
    READY = "ready"
    FAILED = "failed"


class ExportType(str, enum.Enum):
    PROOF_PACK = "proof_pack"
    LEDGER = "ledger"
    CONTROLS = "controls"
    ATTESTATIONS = "attestations"


class Export(Base):
    """Queued export processed by the export worker"""
    __tablename__ = "exports"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organization_id = Column(String(36), nullable=False, index=True)
    requested_by = Column(String(36), nullable=True)
    export_type = Column(String, nullable=False)
    job_id = Column(String(36), nullable=True)
    filters = Column(JSON, nullable=False, default=dict)
    state = Column(String, nullable=False, default=ExportState.QUEUED.value, index=True)
    progress = Column(Integer, nullable=False, default=0)
    storage_path = Column(String, nullable=True)
    manifest_path = Column(String, nullable=True)
    manifest_hash = Column(String, nullable=True)
    manifest = Column(JSON, nullable=True)
    checksum = Column(String, nullable=True)
    failure_count = Column(Integer, nullable=False, default=0)
    error_code = Column(String, nullable=True)
    error_id = Column(String(36), nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
