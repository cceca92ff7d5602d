"""
Subscription Sync
Maps Stripe subscription state onto local subscription and organization rows
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..db.base import new_uuid
from ..db.models.organization import Organization
from ..db.models.subscription import Subscription, SubscriptionStatus, PlanTier
from .stripe_gateway import stripe_field, subscription_periods, subscription_customer_id

logger = logging.getLogger(__name__)

PLAN_LIMITS: Dict[str, Dict[str, Optional[int]]] = {
    PlanTier.STARTER.value: {"seats_limit": 1, "jobs_limit": 10},
    PlanTier.PRO.value: {"seats_limit": 5, "jobs_limit": None},
    PlanTier.BUSINESS.value: {"seats_limit": None, "jobs_limit": None},
}

ACCESS_STATUSES = {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}

_PAST_DUE_STATUSES = {"past_due", "unpaid", "incomplete", "incomplete_expired"}
_CANCELED_STATUSES = {"canceled", "cancelled"}


def limits_for(tier: Optional[str]) -> Dict[str, Optional[int]]:
    """Seat and monthly job limits for a tier (None = unlimited)"""
    return dict(PLAN_LIMITS.get(tier or "", PLAN_LIMITS[PlanTier.STARTER.value]))


def normalize_stripe_status(status: Optional[str]) -> str:
    """Collapse a Stripe subscription status to the local status set"""
    value = (status or "").lower()
    if value == "trialing":
        return SubscriptionStatus.TRIALING.value
    if value in _PAST_DUE_STATUSES:
        return SubscriptionStatus.PAST_DUE.value
    if value in _CANCELED_STATUSES:
        return SubscriptionStatus.CANCELED.value
    return SubscriptionStatus.ACTIVE.value


def extract_plan_code(metadata: Any, default: Optional[str] = None) -> Optional[str]:
    """Read plan_code (or legacy plan) from Stripe metadata"""
    value = stripe_field(metadata, "plan_code") or stripe_field(metadata, "plan")
    if value and str(value).lower() in PLAN_LIMITS:
        return str(value).lower()
    return default


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    return None


def upsert_subscription(
    db: Session,
    organization_id: str,
    stripe_subscription_id: str,
    values: Dict[str, Any],
) -> Subscription:
    """
    Insert or update the subscription keyed by (organization_id, stripe_subscription_id)

    Uses INSERT ... ON CONFLICT DO UPDATE where the dialect supports it, so
    repeated webhook deliveries and reconciliation runs converge on one row.
    The caller owns the transaction.
    """
    if not stripe_subscription_id:
        raise ValueError("stripe_subscription_id is required for upsert")

    now = datetime.utcnow()
    insert = _dialect_insert(db)

    if insert is not None:
        stmt = insert(Subscription).values(
            id=new_uuid(),
            organization_id=organization_id,
            stripe_subscription_id=stripe_subscription_id,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id", "stripe_subscription_id"],
            set_={**values, "updated_at": now},
        )
        db.execute(stmt)
        db.flush()
        return (
            db.query(Subscription)
            .populate_existing()
            .filter(
                Subscription.organization_id == organization_id,
                Subscription.stripe_subscription_id == stripe_subscription_id,
            )
            .one()
        )

    row = db.query(Subscription).filter(
        Subscription.organization_id == organization_id,
        Subscription.stripe_subscription_id == stripe_subscription_id,
    ).first()
    if row is None:
        row = Subscription(
            organization_id=organization_id,
            stripe_subscription_id=stripe_subscription_id,
        )
        db.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    row.updated_at = now
    db.flush()
    return row


def subscription_values(stripe_subscription: Any, tier: str, status: Optional[str] = None) -> Dict[str, Any]:
    """Column values for a subscription row derived from a Stripe subscription"""
    local_status = normalize_stripe_status(status or stripe_field(stripe_subscription, "status"))
    start, end = subscription_periods(stripe_subscription)

    if local_status in ACCESS_STATUSES:
        limits = limits_for(tier)
    else:
        limits = {"seats_limit": 0, "jobs_limit": 0}

    return {
        "tier": tier,
        "status": local_status,
        "stripe_customer_id": subscription_customer_id(stripe_subscription),
        "current_period_start": start,
        "current_period_end": end,
        "cancel_at_period_end": bool(stripe_field(stripe_subscription, "cancel_at_period_end", False)),
        **limits,
    }


def _update_organization(db: Session, organization_id: str, tier: str, status: str, customer_id: Optional[str]) -> None:
    org = db.get(Organization, organization_id)
    if org is None:
        logger.warning(f"Organization {organization_id} not found while syncing subscription")
        return
    org.subscription_tier = tier
    org.subscription_status = status
    if customer_id:
        org.stripe_customer_id = customer_id


def apply_plan_to_organization(
    db: Session,
    organization_id: str,
    plan_code: str,
    stripe_subscription: Any,
    status: Optional[str] = None,
) -> Subscription:
    """
    Apply a Stripe subscription to an organization

    Upserts the subscription row (limits zeroed unless active/trialing) and
    mirrors tier and status onto the organization. The caller commits.
    """
    subscription_id = stripe_field(stripe_subscription, "id")
    values = subscription_values(stripe_subscription, plan_code, status)
    row = upsert_subscription(db, organization_id, subscription_id, values)
    _update_organization(db, organization_id, plan_code, values["status"], values["stripe_customer_id"])

    logger.info(
        f"Applied plan {plan_code} ({values['status']}) to organization {organization_id}",
        extra={"organization_id": organization_id, "stripe_subscription_id": subscription_id}
    )
    return row


def sync_subscription_row(db: Session, row: Subscription, stripe_subscription: Any) -> Subscription:
    """Overwrite status, periods and limits of an existing row from Stripe"""
    values = subscription_values(stripe_subscription, row.tier)
    row.status = values["status"]
    row.current_period_start = values["current_period_start"] or row.current_period_start
    row.current_period_end = values["current_period_end"] or row.current_period_end
    row.cancel_at_period_end = values["cancel_at_period_end"]
    row.seats_limit = values["seats_limit"]
    row.jobs_limit = values["jobs_limit"]
    _update_organization(db, row.organization_id, row.tier, row.status, values["stripe_customer_id"])
    db.flush()
    return row
