"""
Organization and User models
"""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, new_uuid


class MembershipRole(str, enum.Enum):
    """Role of a user inside their organization"""
    OWNER = "owner"
    ADMIN = "admin"
    SAFETY_LEAD = "safety_lead"
    EXECUTIVE = "executive"
    MEMBER = "member"


class Organization(Base):
    """Tenant; every other row is scoped by organization_id"""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    # Denormalized plan state, written by subscription sync
    subscription_tier = Column(String, nullable=False, default="starter")
    subscription_status = Column(String, nullable=False, default="none")
    stripe_customer_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    users = relationship("User", back_populates="organization", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="organization", cascade="all, delete-orphan")
    jobs = relationship("Job", back_populates="organization", cascade="all, delete-orphan")


class User(Base):
    """Application user; id matches the Supabase auth user id"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default=MembershipRole.MEMBER.value)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="users")
