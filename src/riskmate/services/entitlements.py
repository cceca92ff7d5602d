"""
Entitlements
Single source of truth for plan-gated feature access and limits

Rules:
- active or trialing = full access for the tier
- past_due = hard block, no grace period
- canceled = access until current_period_end
- no subscription = starter defaults
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy.orm import Session

from ..db.models.job import Job
from ..db.models.subscription import Subscription, SubscriptionStatus, PlanTier
from ..exceptions import ApiError
from .subscription_sync import limits_for

logger = logging.getLogger(__name__)

FEATURES = ("permit_packs", "version_history", "evidence_verification", "job_assignment")


@dataclass
class Entitlements:
    """Derived plan entitlements for an organization"""
    permit_packs: bool
    version_history: bool
    evidence_verification: bool
    job_assignment: bool
    jobs_monthly_limit: Optional[int]
    seats_limit: Optional[int]
    tier: str
    status: str
    period_end: Optional[datetime]

    @property
    def has_access(self) -> bool:
        return _has_access(self.status, self.period_end)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["period_end"] = self.period_end.isoformat() if self.period_end else None
        return data


class EntitlementError(ApiError):
    """Raised when the current plan does not include a feature"""

    def __init__(self, feature: str, tier: str, status: str, message: Optional[str] = None):
        self.feature = feature
        self.tier = tier
        self.status = status
        super().__init__(
            "ENTITLEMENTS_FEATURE_NOT_ALLOWED",
            message or f"Feature '{feature}' requires Business plan (current: {tier}, status: {status})",
            details={"feature": feature, "tier": tier, "status": status},
        )


def _has_access(status: str, period_end: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value):
        return True
    if status == SubscriptionStatus.CANCELED.value and period_end is not None:
        return period_end > (now or datetime.utcnow())
    return False


def get_org_subscription(db: Session, organization_id: str) -> Optional[Subscription]:
    """Latest subscription row for an organization"""
    return (
        db.query(Subscription)
        .filter(Subscription.organization_id == organization_id)
        .order_by(Subscription.created_at.desc())
        .first()
    )


def get_entitlements(subscription: Optional[Subscription], now: Optional[datetime] = None) -> Entitlements:
    """Derive entitlements from a subscription row (or None)"""
    if subscription is None:
        return Entitlements(
            permit_packs=False,
            version_history=False,
            evidence_verification=True,
            job_assignment=True,
            jobs_monthly_limit=10,
            seats_limit=1,
            tier=PlanTier.STARTER.value,
            status=SubscriptionStatus.NONE.value,
            period_end=None,
        )

    tier = subscription.tier or PlanTier.STARTER.value
    status = subscription.status or SubscriptionStatus.NONE.value
    period_end = subscription.current_period_end
    access = _has_access(status, period_end, now)

    if access:
        limits = limits_for(tier)
    else:
        limits = {"seats_limit": 0, "jobs_limit": 0}

    return Entitlements(
        permit_packs=access and tier == PlanTier.BUSINESS.value,
        version_history=access and tier == PlanTier.BUSINESS.value,
        evidence_verification=True,
        job_assignment=True,
        jobs_monthly_limit=limits["jobs_limit"],
        seats_limit=limits["seats_limit"],
        tier=tier,
        status=status,
        period_end=period_end,
    )


def get_org_entitlements(db: Session, organization_id: str) -> Entitlements:
    return get_entitlements(get_org_subscription(db, organization_id))


def has_entitlement(entitlements: Entitlements, feature: str) -> bool:
    if feature not in FEATURES:
        raise ValueError(f"Unknown feature: {feature}")
    return bool(getattr(entitlements, feature))


def assert_entitled(entitlements: Entitlements, feature: str) -> None:
    """
    Raises:
        EntitlementError: If the feature is not available on the current plan
    """
    if not has_entitlement(entitlements, feature):
        logger.info(f"Entitlement denied: {feature} (tier={entitlements.tier}, status={entitlements.status})")
        raise EntitlementError(feature, entitlements.tier, entitlements.status)


def assert_plan_active(entitlements: Entitlements) -> None:
    """
    Block organizations whose plan lapsed

    Organizations without a subscription run on starter defaults and pass.
    """
    if entitlements.status == SubscriptionStatus.NONE.value:
        return
    if entitlements.status == SubscriptionStatus.PAST_DUE.value:
        raise ApiError(
            "ENTITLEMENTS_PLAN_PAST_DUE",
            "Your subscription payment is past due",
            details={"tier": entitlements.tier, "status": entitlements.status},
        )
    if not entitlements.has_access:
        raise ApiError(
            "ENTITLEMENTS_PLAN_INACTIVE",
            "Your subscription is not active",
            details={"tier": entitlements.tier, "status": entitlements.status},
        )


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return datetime(now.year, now.month, 1)


def count_jobs_this_month(db: Session, organization_id: str, now: Optional[datetime] = None) -> int:
    return db.query(Job).filter(
        Job.organization_id == organization_id,
        Job.created_at >= month_start(now),
    ).count()


def assert_can_create_job(db: Session, organization_id: str) -> Entitlements:
    """
    Check plan state and monthly job usage before creating a job

    Raises:
        ApiError: ENTITLEMENTS_PLAN_PAST_DUE, ENTITLEMENTS_PLAN_INACTIVE or
            ENTITLEMENTS_JOB_LIMIT_REACHED
    """
    entitlements = get_org_entitlements(db, organization_id)
    assert_plan_active(entitlements)

    limit = entitlements.jobs_monthly_limit
    if limit is not None:
        used = count_jobs_this_month(db, organization_id)
        if used >= limit:
            raise ApiError(
                "ENTITLEMENTS_JOB_LIMIT_REACHED",
                f"Monthly job limit reached ({used}/{limit})",
                details={"used": used, "limit": limit, "tier": entitlements.tier},
            )
    return entitlements
