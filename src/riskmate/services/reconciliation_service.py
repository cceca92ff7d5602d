"""
Reconciliation Service
Diffs Stripe checkout sessions and subscriptions against local rows and heals drift

Two sweeps run per invocation:
1. Completed checkout sessions in the lookback window -> missing local rows are created
2. Local rows with a Stripe id -> status/period drift is overwritten from Stripe

Each run is recorded in reconciliation_logs; drift raises a billing alert.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging
import time

from sqlalchemy.orm import Session

from ..config import config
from ..db.models.billing import ReconciliationLog, ReconciliationStatus, ReconciliationRunType
from ..db.models.subscription import Subscription, SubscriptionStatus, PlanTier
from .billing_monitoring import BillingMonitor
from .stripe_gateway import StripeGateway, stripe_field, is_resource_missing
from .subscription_sync import (
    apply_plan_to_organization,
    extract_plan_code,
    normalize_stripe_status,
    sync_subscription_row,
    upsert_subscription,
    subscription_values,
)

logger = logging.getLogger(__name__)

RUN_TYPES = {t.value for t in ReconciliationRunType}


def clamp_lookback_hours(value: Any, default: Optional[int] = None, maximum: Optional[int] = None) -> int:
    """Parse and clamp a lookback window to [1, maximum] hours"""
    default = default if default is not None else config.RECONCILE_DEFAULT_LOOKBACK_HOURS
    maximum = maximum if maximum is not None else config.RECONCILE_MAX_LOOKBACK_HOURS
    try:
        hours = int(float(value))
    except (TypeError, ValueError, OverflowError):
        hours = default
    return max(1, min(hours, maximum))


def canonical_status(status: Optional[str]) -> str:
    """Status used for drift comparison; trialing counts as active"""
    normalized = normalize_stripe_status(status)
    if normalized == SubscriptionStatus.TRIALING.value:
        return SubscriptionStatus.ACTIVE.value
    return normalized


@dataclass
class ReconciliationIssue:
    """One drift finding"""
    type: str
    organization_id: Optional[str]
    stripe_subscription_id: Optional[str]
    issue: str
    fixed: bool
    action_taken: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["action_taken"] is None:
            del data["action_taken"]
        return data


@dataclass
class ReconciliationResult:
    """Outcome of a reconciliation run"""
    reconciliation_log_id: Optional[str]
    lookback_hours: int
    status: str = ReconciliationStatus.SUCCESS.value
    created_count: int = 0
    updated_count: int = 0
    mismatch_count: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    reconciliations: List[ReconciliationIssue] = field(default_factory=list)
    duration_ms: int = 0
    alert_id: Optional[str] = None

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def total_issues(self) -> int:
        return len(self.reconciliations)

    @property
    def message(self) -> str:
        if self.total_issues == 0:
            return "No issues found - Stripe and DB are in sync"
        return f"{self.total_issues} issue(s) found, {self.created_count} created, {self.updated_count} updated"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": True,
            "reconciliation_log_id": self.reconciliation_log_id,
            "status": self.status,
            "lookback_hours": self.lookback_hours,
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "mismatch_count": self.mismatch_count,
            "error_count": self.error_count,
            "reconciliations": [issue.to_dict() for issue in self.reconciliations],
            "total_issues": self.total_issues,
            "duration_ms": self.duration_ms,
            "message": self.message,
        }
        if self.errors:
            data["errors"] = self.errors
        return data


class ReconciliationError(Exception):
    """Unexpected failure during a run; the log row is already marked 'error'"""

    def __init__(self, message: str, reconciliation_log_id: str):
        super().__init__(message)
        self.reconciliation_log_id = reconciliation_log_id


def _error(error_type: str, message: str, **details: Any) -> Dict[str, Any]:
    entry = {"type": error_type, "message": message}
    if details:
        entry["details"] = details
    return entry


class ReconciliationService:
    """Billing reconciliation sweep"""

    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        max_sessions: Optional[int] = None,
        db_scan_limit: Optional[int] = None,
        page_size: int = 100,
    ):
        self.db = db
        self.gateway = gateway
        self.max_sessions = max_sessions or config.RECONCILE_MAX_SESSIONS
        self.db_scan_limit = db_scan_limit or config.RECONCILE_DB_SCAN_LIMIT
        self.page_size = page_size

    def run(
        self,
        lookback_hours: Any = None,
        run_type: str = ReconciliationRunType.SCHEDULED.value,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ReconciliationResult:
        """
        Run both sweeps and record the outcome

        Args:
            lookback_hours: Window for checkout sessions, clamped to 1-168
            run_type: scheduled, manual or webhook_failure
            metadata: Extra context stored on the log row (ip, user agent)

        Returns:
            ReconciliationResult

        Raises:
            ReconciliationError: Unexpected failures, after the log row is marked 'error'
        """
        started = time.monotonic()
        hours = clamp_lookback_hours(lookback_hours)
        if run_type not in RUN_TYPES:
            raise ValueError(f"Invalid run_type: {run_type}")

        log = ReconciliationLog(
            run_type=run_type,
            lookback_hours=hours,
            status=ReconciliationStatus.RUNNING.value,
            started_at=datetime.utcnow(),
            extra_metadata=metadata or {},
        )
        self.db.add(log)
        self.db.commit()

        logger.info(f"Reconciliation {log.id} started ({run_type}, lookback {hours}h)")
        result = ReconciliationResult(reconciliation_log_id=log.id, lookback_hours=hours)

        try:
            since = datetime.utcnow() - timedelta(hours=hours)
            self._sweep_checkout_sessions(since, result)
            self._sweep_local_subscriptions(result)

            if result.errors or result.mismatch_count > 0:
                result.status = ReconciliationStatus.PARTIAL.value
            else:
                result.status = ReconciliationStatus.SUCCESS.value
            result.duration_ms = int((time.monotonic() - started) * 1000)

            self._finish_log(log, result)

            if result.mismatch_count > 0 or result.created_count > 0:
                alert = BillingMonitor(self.db).track_reconcile_drift(
                    log.id, result.mismatch_count, result.created_count, result.updated_count
                )
                result.alert_id = alert.id
        except Exception as e:
            logger.error(f"Reconciliation {log.id} failed: {e}", exc_info=True)
            self.db.rollback()
            log.status = ReconciliationStatus.ERROR.value
            log.completed_at = datetime.utcnow()
            log.errors = result.errors + [_error("unexpected_error", str(e))]
            log.error_count = len(log.errors)
            self.db.commit()
            raise ReconciliationError(str(e), log.id) from e

        logger.info(
            f"Reconciliation {log.id} finished: {result.status}, "
            f"created={result.created_count} updated={result.updated_count} "
            f"mismatches={result.mismatch_count} errors={result.error_count} ({result.duration_ms}ms)"
        )
        return result

    def _finish_log(self, log: ReconciliationLog, result: ReconciliationResult) -> None:
        log.status = result.status
        log.completed_at = datetime.utcnow()
        log.created_count = result.created_count
        log.updated_count = result.updated_count
        log.mismatch_count = result.mismatch_count
        log.error_count = result.error_count
        log.errors = list(result.errors)
        log.reconciliations = [issue.to_dict() for issue in result.reconciliations]
        self.db.commit()

    def _sweep_checkout_sessions(self, since: datetime, result: ReconciliationResult) -> None:
        """Sweep 1: completed checkout sessions without a local subscription row"""
        created_gte = int((since - datetime(1970, 1, 1)).total_seconds())
        starting_after = None
        seen = 0

        while seen < self.max_sessions:
            try:
                page = self.gateway.list_completed_checkout_sessions(
                    created_gte=created_gte,
                    limit=min(self.page_size, self.max_sessions - seen),
                    starting_after=starting_after,
                )
            except Exception as e:
                logger.error(f"Listing checkout sessions failed: {e}")
                result.errors.append(_error("list_sessions_error", f"Error listing Stripe sessions: {e}"))
                return

            sessions = list(stripe_field(page, "data") or [])
            for session in sessions:
                seen += 1
                self._reconcile_session(session, result)
                if seen >= self.max_sessions:
                    logger.warning(f"Checkout session scan stopped at safety limit {self.max_sessions}")
                    break

            if not sessions or not stripe_field(page, "has_more", False):
                return
            starting_after = stripe_field(sessions[-1], "id")

    def _reconcile_session(self, session: Any, result: ReconciliationResult) -> None:
        subscription_id = stripe_field(session, "subscription")
        if subscription_id is not None and not isinstance(subscription_id, str):
            subscription_id = stripe_field(subscription_id, "id")
        metadata = stripe_field(session, "metadata") or {}
        organization_id = stripe_field(metadata, "organization_id")
        if not subscription_id or not organization_id:
            return

        exists = self.db.query(Subscription.id).filter(
            Subscription.organization_id == organization_id,
            Subscription.stripe_subscription_id == subscription_id,
        ).first()
        if exists:
            return

        session_id = stripe_field(session, "id")
        issue_text = f"Stripe session {session_id} completed but no DB subscription found"

        try:
            stripe_subscription = self.gateway.retrieve_subscription(subscription_id)
        except Exception as e:
            logger.error(f"Retrieving subscription {subscription_id} failed: {e}")
            result.errors.append(_error(
                "create_subscription_error",
                f"Error creating subscription: {e}",
                session_id=session_id,
                stripe_subscription_id=subscription_id,
            ))
            result.reconciliations.append(ReconciliationIssue(
                "missing_subscription", organization_id, subscription_id, issue_text, fixed=False
            ))
            return

        tier = extract_plan_code(metadata, default=PlanTier.STARTER.value)
        try:
            upsert_subscription(
                self.db,
                organization_id,
                subscription_id,
                subscription_values(stripe_subscription, tier),
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Creating subscription {subscription_id} for org {organization_id} failed: {e}")
            result.errors.append(_error(
                "create_subscription_failed",
                f"Failed to create subscription for org {organization_id}",
                error=str(e),
            ))
            result.reconciliations.append(ReconciliationIssue(
                "missing_subscription", organization_id, subscription_id, issue_text, fixed=False
            ))
            return

        result.created_count += 1
        result.reconciliations.append(ReconciliationIssue(
            "missing_subscription", organization_id, subscription_id, issue_text,
            fixed=True, action_taken="Created missing subscription",
        ))

    def _sweep_local_subscriptions(self, result: ReconciliationResult) -> None:
        """Sweep 2: local rows whose status drifted from Stripe"""
        try:
            rows = (
                self.db.query(Subscription)
                .filter(Subscription.stripe_subscription_id.isnot(None))
                .order_by(Subscription.updated_at.desc())
                .limit(self.db_scan_limit)
                .all()
            )
        except Exception as e:
            self.db.rollback()
            result.errors.append(_error("fetch_db_subscriptions_error", f"Failed to fetch DB subscriptions: {e}"))
            return

        for row in rows:
            self._reconcile_row(row, result)

    def _reconcile_row(self, row: Subscription, result: ReconciliationResult) -> None:
        organization_id = row.organization_id
        subscription_id = row.stripe_subscription_id

        try:
            stripe_subscription = self.gateway.retrieve_subscription(subscription_id)
        except Exception as e:
            if is_resource_missing(e):
                result.mismatch_count += 1
                # Left for manual review
                result.reconciliations.append(ReconciliationIssue(
                    "stripe_subscription_missing", organization_id, subscription_id,
                    "DB has subscription but Stripe subscription not found", fixed=False,
                ))
            else:
                result.errors.append(_error(
                    "retrieve_stripe_subscription_error",
                    f"Error retrieving Stripe subscription: {e}",
                    stripe_subscription_id=subscription_id,
                ))
            return

        stripe_status = stripe_field(stripe_subscription, "status")
        db_status = row.status
        if canonical_status(db_status) == canonical_status(stripe_status):
            return

        result.mismatch_count += 1
        issue_text = f"DB status={db_status} but Stripe status={stripe_status}"
        new_status = normalize_stripe_status(stripe_status)

        try:
            sync_subscription_row(self.db, row, stripe_subscription)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Updating subscription {subscription_id} failed: {e}")
            result.errors.append(_error(
                "update_status_error",
                f"Failed to update subscription status: {e}",
                stripe_subscription_id=subscription_id,
            ))
            result.reconciliations.append(ReconciliationIssue(
                "status_mismatch", organization_id, subscription_id, issue_text, fixed=False,
            ))
            return

        result.updated_count += 1
        result.reconciliations.append(ReconciliationIssue(
            "status_mismatch", organization_id, subscription_id, issue_text,
            fixed=True, action_taken=f"Updated DB status to {new_status}",
        ))


def reconcile_organization_subscription(db: Session, gateway: StripeGateway, organization_id: str) -> Dict[str, Any]:
    """
    Re-apply Stripe state to one organization's latest subscription

    Returns:
        {"matched": bool, "repaired": bool, "details": str}
    """
    row = (
        db.query(Subscription)
        .filter(
            Subscription.organization_id == organization_id,
            Subscription.stripe_subscription_id.isnot(None),
        )
        .order_by(Subscription.updated_at.desc())
        .first()
    )
    if row is None:
        return {"matched": True, "repaired": False, "details": "No Stripe subscription on record"}

    try:
        stripe_subscription = gateway.retrieve_subscription(row.stripe_subscription_id)
    except Exception as e:
        if is_resource_missing(e):
            return {"matched": False, "repaired": False, "details": "Stripe subscription not found"}
        raise

    metadata = stripe_field(stripe_subscription, "metadata") or {}
    plan_code = extract_plan_code(metadata, default=row.tier)
    stripe_status = normalize_stripe_status(stripe_field(stripe_subscription, "status"))

    if row.tier == plan_code and row.status == stripe_status:
        return {"matched": True, "repaired": False, "details": "In sync"}

    before = f"{row.tier}/{row.status}"
    apply_plan_to_organization(db, organization_id, plan_code, stripe_subscription)
    db.commit()
    return {"matched": False, "repaired": True, "details": f"Updated {before} -> {plan_code}/{stripe_status}"}


def reconcile_all_subscriptions(db: Session, gateway: StripeGateway) -> Dict[str, Any]:
    """Run reconcile_organization_subscription for every billable organization"""
    statuses = [
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.PAST_DUE.value,
    ]
    organization_ids = [
        org_id for (org_id,) in db.query(Subscription.organization_id)
        .filter(Subscription.status.in_(statuses), Subscription.stripe_subscription_id.isnot(None))
        .distinct()
        .all()
    ]

    totals = {"total": len(organization_ids), "matched": 0, "repaired": 0, "errors": 0, "results": []}
    for organization_id in organization_ids:
        try:
            outcome = reconcile_organization_subscription(db, gateway, organization_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Reconciling organization {organization_id} failed: {e}")
            totals["errors"] += 1
            totals["results"].append({"organization_id": organization_id, "error": str(e)})
            continue
        if outcome["matched"]:
            totals["matched"] += 1
        if outcome["repaired"]:
            totals["repaired"] += 1
        totals["results"].append({"organization_id": organization_id, **outcome})

    return totals
