"""
Subscription model
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base, new_uuid


class SubscriptionStatus(str, enum.Enum):
    """Canonical local subscription status"""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    NONE = "none"


class PlanTier(str, enum.Enum):
    """Plan tier enum"""
    STARTER = "starter"
    PRO = "pro"
    BUSINESS = "business"


class Subscription(Base):
    """
    Organization subscription mirrored from Stripe

    (organization_id, stripe_subscription_id) is the upsert key used by
    webhooks and the reconciliation sweep.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("organization_id", "stripe_subscription_id", name="uq_subscriptions_org_stripe_sub"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    tier = Column(String, nullable=False, default=PlanTier.STARTER.value, index=True)
    status = Column(String, nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True, index=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    # None means unlimited
    seats_limit = Column(Integer, nullable=True)
    jobs_limit = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="subscriptions")
