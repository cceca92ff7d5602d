"""
Generated report record, used to verify a PDF after the fact
"""
from sqlalchemy import Column, String, DateTime, Integer, JSON
from datetime import datetime

from ..base import Base, new_uuid

SHORT_ID_PREFIX = "RM-"


class ReportRun(Base):
    """One generated report PDF and the sha256 of its bytes"""
    __tablename__ = "report_runs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organization_id = Column(String(36), nullable=False, index=True)
    job_id = Column(String(36), nullable=True, index=True)
    packet_type = Column(String, nullable=False, default="job_report")
    report_hash = Column(String(64), nullable=False)
    byte_size = Column(Integer, nullable=False, default=0)
    storage_path = Column(String, nullable=True)
    generated_by = Column(String(36), nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)
    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    @property
    def short_id(self) -> str:
        return f"{SHORT_ID_PREFIX}{self.id[:8]}"
