"""
Stripe Webhook Handlers
Applies verified Stripe events to local subscriptions and the ledger
"""
from typing import Any, Callable, Dict, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from ..db.models.subscription import SubscriptionStatus
from .audit_log_service import AuditEvent, AuditLogService
from .entitlements import get_org_subscription
from .stripe_gateway import StripeGateway, stripe_field
from .subscription_sync import apply_plan_to_organization, extract_plan_code

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> Optional[str]:
    """Id of a Stripe reference that may be a plain id or an expanded object"""
    if value is None or isinstance(value, str):
        return value
    return stripe_field(value, "id")


def metadata_target(metadata: Any) -> Tuple[Optional[str], Optional[str]]:
    """(plan_code, organization_id) from Stripe metadata"""
    return extract_plan_code(metadata), stripe_field(metadata, "organization_id")


class StripeWebhookHandler:
    """
    Dispatches Stripe events by type

    Handlers flush through the session; the caller commits or rolls back.
    """

    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self.audit = AuditLogService(db)
        self.handlers: Dict[str, Callable[[Any], bool]] = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.created": self._subscription_changed,
            "customer.subscription.updated": self._subscription_changed,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._payment_succeeded,
            "invoice.payment_failed": self._payment_failed,
        }

    def handle(self, event: Any) -> bool:
        """
        Apply an event

        Returns:
            True when the event changed local state, False when it was ignored
        """
        event_type = stripe_field(event, "type")
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.info(f"Ignoring Stripe event type {event_type}")
            return False
        payload = stripe_field(stripe_field(event, "data"), "object")
        return handler(payload)

    def _retrieve_subscription(self, subscription_id: str) -> Optional[Any]:
        try:
            return self.gateway.retrieve_subscription(subscription_id)
        except Exception as e:
            logger.warning(f"Could not retrieve Stripe subscription {subscription_id}: {e}")
            return None

    def _record(self, organization_id: str, event_name: str, subscription_id: Optional[str], metadata: Dict[str, Any], severity: str = "info"):
        self.audit.record(
            organization_id,
            event_name,
            target_type="subscription",
            target_id=subscription_id,
            category="billing",
            severity=severity,
            metadata={**metadata, "source": "stripe_webhook"},
            commit=False,
        )

    def _checkout_completed(self, session: Any) -> bool:
        plan, organization_id = metadata_target(stripe_field(session, "metadata"))
        subscription_id = _object_id(stripe_field(session, "subscription"))
        if not plan or not organization_id or not subscription_id:
            logger.info(f"Checkout session {stripe_field(session, 'id')} has no plan, organization or subscription")
            return False

        # Errors propagate so the event is kept as failed and Stripe retries it
        subscription = self.gateway.retrieve_subscription(subscription_id)

        row = apply_plan_to_organization(self.db, organization_id, plan, subscription)
        self._record(
            organization_id,
            AuditEvent.SUBSCRIPTION_CREATED,
            subscription_id,
            {"plan": plan, "status": row.status, "stripe_customer_id": row.stripe_customer_id},
        )
        return True

    def _subscription_changed(self, payload: Any) -> bool:
        subscription_id = stripe_field(payload, "id")
        if not subscription_id:
            return False

        # Deliveries can arrive out of order; apply Stripe's current state
        subscription = self._retrieve_subscription(subscription_id)
        if subscription is None:
            logger.warning(f"Skipping update for subscription {subscription_id}: not retrievable")
            return False

        plan, organization_id = metadata_target(stripe_field(subscription, "metadata"))
        if not plan or not organization_id:
            return False

        previous = get_org_subscription(self.db, organization_id)
        previous_plan = previous.tier if previous is not None else None

        row = apply_plan_to_organization(self.db, organization_id, plan, subscription)
        plan_changed = previous_plan is not None and previous_plan != plan
        self._record(
            organization_id,
            AuditEvent.PLAN_CHANGED if plan_changed else AuditEvent.SUBSCRIPTION_UPDATED,
            row.stripe_subscription_id,
            {"plan": plan, "previous_plan": previous_plan, "status": row.status},
        )
        return True

    def _subscription_deleted(self, subscription: Any) -> bool:
        plan, organization_id = metadata_target(stripe_field(subscription, "metadata"))
        if not plan or not organization_id:
            return False

        row = apply_plan_to_organization(
            self.db, organization_id, plan, subscription, status=SubscriptionStatus.CANCELED.value
        )
        self._record(
            organization_id,
            AuditEvent.SUBSCRIPTION_CANCELED,
            row.stripe_subscription_id,
            {"plan": plan, "stripe_customer_id": row.stripe_customer_id},
        )
        return True

    def _invoice_target(self, invoice: Any) -> Tuple[Optional[str], Optional[str], Optional[Any]]:
        """
        Resolve (plan, organization_id, subscription) for an invoice

        Metadata is read from the first line item, then the invoice, then the
        subscription (retrieved from Stripe when only its id is present).
        """
        lines = stripe_field(stripe_field(invoice, "lines"), "data") or []
        first_line = lines[0] if lines else None
        subscription_ref = stripe_field(invoice, "subscription")
        subscription = subscription_ref if subscription_ref is not None and not isinstance(subscription_ref, str) else None
        subscription_id = _object_id(subscription_ref)

        plan, organization_id = None, None
        for source in (stripe_field(first_line, "metadata"), stripe_field(invoice, "metadata")):
            found_plan, found_org = metadata_target(source)
            plan = plan or found_plan
            organization_id = organization_id or found_org

        if (not plan or not organization_id) and subscription is None and subscription_id:
            subscription = self._retrieve_subscription(subscription_id)
        if subscription is not None:
            found_plan, found_org = metadata_target(stripe_field(subscription, "metadata"))
            plan = plan or found_plan
            organization_id = organization_id or found_org

        if subscription is None and subscription_id:
            period = stripe_field(first_line, "period") or {}
            subscription = {
                "id": subscription_id,
                "customer": stripe_field(invoice, "customer"),
                "current_period_start": stripe_field(period, "start"),
                "current_period_end": stripe_field(period, "end"),
            }
        return plan, organization_id, subscription

    def _payment_succeeded(self, invoice: Any) -> bool:
        plan, organization_id, subscription = self._invoice_target(invoice)
        if not plan or not organization_id or subscription is None:
            return False
        apply_plan_to_organization(
            self.db, organization_id, plan, subscription, status=SubscriptionStatus.ACTIVE.value
        )
        return True

    def _payment_failed(self, invoice: Any) -> bool:
        plan, organization_id, subscription = self._invoice_target(invoice)
        if not plan or not organization_id or subscription is None:
            return False
        row = apply_plan_to_organization(
            self.db, organization_id, plan, subscription, status=SubscriptionStatus.PAST_DUE.value
        )
        self._record(
            organization_id,
            AuditEvent.PAYMENT_FAILED,
            row.stripe_subscription_id,
            {"plan": plan, "invoice_id": stripe_field(invoice, "id")},
            severity="high",
        )
        return True
