"""
Subscription API routes - current plan and the billing reconciliation job
"""
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
import logging

from .auth import OrganizationContext, get_current_context, require_reconcile_secret
from .db.engine import get_db
from .exceptions import ApiError
from .logging_config import get_request_id
from .services.entitlements import count_jobs_this_month, get_entitlements, get_org_subscription
from .services.rate_limiter import (
    RATE_LIMIT_CONFIGS,
    FixedWindowRateLimiter,
    client_ip,
    get_rate_limiter,
    raise_if_limited,
)
from .services.reconciliation_service import ReconciliationError, ReconciliationService
from .services.stripe_gateway import StripeGateway, get_stripe_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def serialize_subscription(subscription) -> Optional[dict]:
    if subscription is None:
        return None
    return {
        "id": subscription.id,
        "tier": subscription.tier,
        "status": subscription.status,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "current_period_start": subscription.current_period_start.isoformat() if subscription.current_period_start else None,
        "current_period_end": subscription.current_period_end.isoformat() if subscription.current_period_end else None,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "seats_limit": subscription.seats_limit,
        "jobs_limit": subscription.jobs_limit,
    }


@router.get("")
async def get_subscription(
    context: OrganizationContext = Depends(get_current_context),
    db: Session = Depends(get_db)
):
    """
    Current subscription, derived entitlements and this month's usage
    """
    subscription = get_org_subscription(db, context.organization_id)
    entitlements = get_entitlements(subscription)
    jobs_used = count_jobs_this_month(db, context.organization_id)

    return {
        "subscription": serialize_subscription(subscription),
        "entitlements": {**entitlements.to_dict(), "has_access": entitlements.has_access},
        "usage": {
            "jobs_this_month": jobs_used,
            "jobs_limit": entitlements.jobs_monthly_limit,
        },
    }


@router.post("/reconcile", dependencies=[Depends(require_reconcile_secret)])
async def reconcile_subscriptions(
    request: Request,
    hours: Optional[str] = Query(None, description="Lookback window in hours (1-168, default 24)"),
    run_type: str = Query(
        "scheduled",
        alias="type",
        pattern="^(scheduled|manual|webhook_failure)$",
        description="scheduled, manual or webhook_failure",
    ),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """
    Reconcile Stripe subscriptions with the database

    Guarded by the reconcile secret and rate limited per client IP.
    Called hourly by an external cron and on demand by operators.
    """
    ip = client_ip(request)
    limit_config = RATE_LIMIT_CONFIGS["reconcile"]
    limit = raise_if_limited(limiter.check(f"{limit_config.key_prefix}:{ip}", limit_config))

    service = ReconciliationService(db, gateway)
    try:
        result = service.run(
            lookback_hours=hours,
            run_type=run_type,
            metadata={
                "ip": ip,
                "user_agent": request.headers.get("user-agent"),
                "request_id": get_request_id(),
            },
        )
    except ReconciliationError as e:
        raise ApiError(
            "INTERNAL_ERROR",
            "Reconciliation failed",
            details={"reconciliation_log_id": e.reconciliation_log_id, "error": str(e)},
        )

    body = result.to_dict()
    body["request_id"] = get_request_id()
    return JSONResponse(content=body, headers=limit.headers())
