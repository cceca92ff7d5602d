"""
Billing API routes - Stripe webhook and billing alert operations
"""
from datetime import datetime
from typing import Optional
import logging

import stripe
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import require_reconcile_secret
from .db.engine import get_db
from .db.models.billing import StripeWebhookEvent, WebhookEventStatus
from .exceptions import ApiError
from .services.billing_monitoring import BillingMonitor, serialize_alert
from .services.stripe_gateway import StripeGateway, get_stripe_gateway, stripe_field
from .services.stripe_webhooks import StripeWebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


def _start_event(db: Session, event_id: str, event_type: str) -> Optional[StripeWebhookEvent]:
    """
    Record an event as processing

    Returns None when the event was already processed (or is being processed
    by another delivery). Failed events are picked up again.
    """
    existing = db.get(StripeWebhookEvent, event_id)
    if existing is not None:
        if existing.status != WebhookEventStatus.FAILED.value:
            return None
        existing.status = WebhookEventStatus.PROCESSING.value
        existing.error = None
        db.commit()
        return existing

    row = StripeWebhookEvent(id=event_id, event_type=event_type, status=WebhookEventStatus.PROCESSING.value)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent delivery inserted the same event id
        db.rollback()
        return None
    return row


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """
    Stripe webhook endpoint with signature verification and idempotency
    """
    monitor = BillingMonitor(db)
    signature = request.headers.get("stripe-signature")
    body = await request.body()

    if not signature:
        monitor.track_webhook_failure(None, None, "Missing stripe-signature header")
        raise ApiError("WEBHOOK_SIGNATURE_INVALID", "Missing stripe-signature header")

    try:
        event = gateway.construct_event(body, signature)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning(f"Stripe webhook verification failed: {e}")
        monitor.track_webhook_failure(None, None, f"Signature verification failed: {e}")
        raise ApiError("WEBHOOK_SIGNATURE_INVALID", f"Webhook Error: {e}")

    event_id = stripe_field(event, "id")
    event_type = stripe_field(event, "type")

    row = _start_event(db, event_id, event_type)
    if row is None:
        logger.info(f"Stripe event {event_id} already processed, skipping")
        return {"received": True, "skipped": True}

    try:
        processed = StripeWebhookHandler(db, gateway).handle(event)
        row.status = WebhookEventStatus.PROCESSED.value
        row.processed_at = datetime.utcnow()
        db.commit()
        logger.info(f"Stripe event {event_id} ({event_type}) handled, applied={processed}")
        return {"received": True}

    except Exception as e:
        db.rollback()
        logger.error(f"Stripe webhook processing failed for {event_id}: {e}", exc_info=True)
        failed = db.get(StripeWebhookEvent, event_id)
        if failed is not None:
            failed.status = WebhookEventStatus.FAILED.value
            failed.error = str(e)
            db.commit()
        monitor.track_webhook_failure(event_type, event_id, f"Webhook handler error: {e}")
        raise ApiError("INTERNAL_ERROR", "Webhook handler error", details={"event_id": event_id})


@router.get("/billing/alerts", dependencies=[Depends(require_reconcile_secret)])
async def list_billing_alerts(
    alert_type: Optional[str] = Query(None, description="Only alerts of this type"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    Unresolved billing alerts, newest first
    """
    alerts = BillingMonitor(db).get_unresolved_alerts(alert_type=alert_type, limit=limit)
    return {
        "alerts": [serialize_alert(alert) for alert in alerts],
        "count": len(alerts),
    }


@router.post("/billing/alerts/{alert_id}/resolve", dependencies=[Depends(require_reconcile_secret)])
async def resolve_billing_alert(
    alert_id: str,
    resolved_by: str = Query("operator", max_length=100),
    db: Session = Depends(get_db),
):
    """
    Mark a billing alert resolved
    """
    alert = BillingMonitor(db).resolve_alert(alert_id, resolved_by=resolved_by)
    if alert is None:
        raise ApiError("NOT_FOUND", "Billing alert not found")
    return {"alert": serialize_alert(alert)}


@router.post("/billing/monitor", dependencies=[Depends(require_reconcile_secret)])
async def run_billing_monitor(db: Session = Depends(get_db)):
    """
    Evaluate monitoring conditions now (also run by the scheduler)
    """
    return BillingMonitor(db).check_monitoring_conditions()
