"""
Stripe gateway
Thin wrapper over the stripe SDK used by webhooks and the reconciliation sweep
"""
from datetime import datetime, timezone
from typing import Any, Optional, Tuple
import logging

import stripe

from ..config import config
from ..exceptions import ApiError

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PAGE_SIZE = 100


def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    """
    Read a field from a Stripe object or a plain dict

    Stripe payloads are read dict-style so webhook bodies, SDK objects and test
    fixtures are handled the same way.
    """
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    getter = getattr(obj, "get", None)
    if callable(getter):
        return getter(key, default)
    return getattr(obj, key, default)


def from_timestamp(value: Any) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to a naive UTC datetime"""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def subscription_periods(subscription: Any) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Current period (start, end) of a subscription

    Newer API versions moved the period onto the subscription items, so fall
    back to the first item when the top-level fields are absent.
    """
    start = stripe_field(subscription, "current_period_start")
    end = stripe_field(subscription, "current_period_end")

    if start is None or end is None:
        items = stripe_field(stripe_field(subscription, "items"), "data") or []
        if items:
            start = start if start is not None else stripe_field(items[0], "current_period_start")
            end = end if end is not None else stripe_field(items[0], "current_period_end")

    return from_timestamp(start), from_timestamp(end)


def subscription_customer_id(subscription: Any) -> Optional[str]:
    """Customer id whether the customer field is expanded or not"""
    customer = stripe_field(subscription, "customer")
    if customer is None or isinstance(customer, str):
        return customer
    return stripe_field(customer, "id")


def is_resource_missing(exc: Exception) -> bool:
    """True when Stripe reports the requested object does not exist"""
    return isinstance(exc, stripe.InvalidRequestError) and getattr(exc, "code", None) == "resource_missing"


class StripeGateway:
    """Stripe API access for billing flows"""

    def __init__(self, api_key: str, webhook_secret: Optional[str] = None, api_version: Optional[str] = None):
        """
        Initialize Stripe gateway

        Args:
            api_key: Stripe secret key (test or live)
            webhook_secret: Stripe webhook signing secret
            api_version: Optional pinned API version
        """
        stripe.api_key = api_key
        if api_version:
            stripe.api_version = api_version
        self.webhook_secret = webhook_secret

    def list_completed_checkout_sessions(
        self,
        created_gte: int,
        limit: int = CHECKOUT_SESSION_PAGE_SIZE,
        starting_after: Optional[str] = None,
    ) -> Any:
        """
        One page of completed checkout sessions created at or after created_gte

        Returns:
            Stripe list object with ``data`` and ``has_more``
        """
        params = {
            "created": {"gte": created_gte},
            "status": "complete",
            "limit": limit,
        }
        if starting_after:
            params["starting_after"] = starting_after
        return stripe.checkout.Session.list(**params)

    def retrieve_subscription(self, subscription_id: str) -> Any:
        """Fetch a subscription by id"""
        return stripe.Subscription.retrieve(subscription_id)

    def construct_event(self, payload: bytes, signature: str) -> Any:
        """
        Verify the signature and parse a webhook event

        Raises:
            stripe.SignatureVerificationError: If the signature does not match
            ValueError: If the payload is not valid JSON
        """
        if not self.webhook_secret:
            raise stripe.SignatureVerificationError("Webhook secret not configured", signature)
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)


_gateway: Optional[StripeGateway] = None


def get_stripe_gateway() -> StripeGateway:
    """
    Get the process-wide Stripe gateway
    Used as a FastAPI dependency so tests can override it

    Raises:
        ApiError: If STRIPE_SECRET_KEY is not configured
    """
    global _gateway

    if _gateway is None:
        if not config.STRIPE_SECRET_KEY:
            raise ApiError("STRIPE_ERROR", "Stripe is not configured", status_code=503)
        _gateway = StripeGateway(
            api_key=config.STRIPE_SECRET_KEY,
            webhook_secret=config.STRIPE_WEBHOOK_SECRET,
            api_version=config.STRIPE_API_VERSION,
        )
        logger.info("Stripe gateway initialized")

    return _gateway
