"""
Billing Monitoring
Records billing alerts and evaluates standing health conditions
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from ..config import config
from ..db.models.billing import BillingAlert, AlertSeverity, ReconciliationLog, ReconciliationStatus

logger = logging.getLogger(__name__)

ALERT_WEBHOOK_FAILURE = "webhook_failure"
ALERT_RECONCILE_DRIFT = "reconcile_drift"
ALERT_RECONCILE_STALE = "reconcile_stale"
ALERT_HIGH_SEVERITY_STALE = "high_severity_stale"

DRIFT_CRITICAL_THRESHOLD = 10


class BillingMonitor:
    """Billing alert bookkeeping"""

    def __init__(self, db: Session):
        self.db = db

    def _create_alert(self, alert_type: str, severity: str, message: str, metadata: Dict[str, Any]) -> BillingAlert:
        alert = BillingAlert(
            alert_type=alert_type,
            severity=severity,
            message=message,
            extra_metadata=metadata,
        )
        self.db.add(alert)
        self.db.commit()
        logger.warning(f"Billing alert [{severity}] {alert_type}: {message}")
        return alert

    def track_webhook_failure(self, event_type: Optional[str], event_id: Optional[str], error: str) -> BillingAlert:
        """Record a webhook that failed verification or processing"""
        return self._create_alert(
            ALERT_WEBHOOK_FAILURE,
            AlertSeverity.CRITICAL.value,
            f"Webhook processing failed: {error}",
            {"event_type": event_type, "event_id": event_id, "error": error},
        )

    def track_reconcile_drift(
        self, reconciliation_log_id: str, mismatch_count: int, created_count: int, updated_count: int = 0
    ) -> BillingAlert:
        """Record drift found by a reconciliation run"""
        severity = AlertSeverity.CRITICAL.value if mismatch_count > DRIFT_CRITICAL_THRESHOLD else AlertSeverity.WARNING.value
        return self._create_alert(
            ALERT_RECONCILE_DRIFT,
            severity,
            f"Reconciliation found {mismatch_count} mismatches, {created_count} missing subscriptions",
            {
                "reconciliation_log_id": reconciliation_log_id,
                "mismatch_count": mismatch_count,
                "created_count": created_count,
                "updated_count": updated_count,
            },
        )

    def get_unresolved_alerts(self, alert_type: Optional[str] = None, limit: int = 50) -> List[BillingAlert]:
        query = self.db.query(BillingAlert).filter(BillingAlert.resolved.is_(False))
        if alert_type:
            query = query.filter(BillingAlert.alert_type == alert_type)
        return query.order_by(BillingAlert.created_at.desc()).limit(limit).all()

    def resolve_alert(self, alert_id: str, resolved_by: str = "system") -> Optional[BillingAlert]:
        alert = self.db.get(BillingAlert, alert_id)
        if alert is None:
            return None
        if not alert.resolved:
            alert.resolved = True
            alert.resolved_at = datetime.utcnow()
            alert.resolved_by = resolved_by
            self.db.commit()
            logger.info(f"Billing alert {alert_id} resolved by {resolved_by}")
        return alert

    def _upsert_condition_alert(self, alert_key: str, severity: str, message: str, metadata: Dict[str, Any]) -> BillingAlert:
        """Create or refresh the single alert for a standing condition"""
        alert = self.db.query(BillingAlert).filter(BillingAlert.alert_key == alert_key).first()
        if alert is None:
            alert = BillingAlert(alert_type=alert_key, alert_key=alert_key)
            self.db.add(alert)
            logger.warning(f"Billing condition raised: {alert_key}: {message}")
        alert.severity = severity
        alert.message = message
        alert.extra_metadata = metadata
        alert.resolved = False
        alert.resolved_at = None
        alert.resolved_by = None
        alert.updated_at = datetime.utcnow()
        self.db.commit()
        return alert

    def _resolve_condition_alert(self, alert_key: str) -> bool:
        alert = self.db.query(BillingAlert).filter(
            BillingAlert.alert_key == alert_key,
            BillingAlert.resolved.is_(False),
        ).first()
        if alert is None:
            return False
        alert.resolved = True
        alert.resolved_at = datetime.utcnow()
        alert.resolved_by = "system"
        self.db.commit()
        logger.info(f"Billing condition cleared: {alert_key}")
        return True

    def check_monitoring_conditions(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Evaluate standing conditions

        - reconcile_stale: no reconciliation run started in the last N hours
        - high_severity_stale: critical/high alerts left unresolved for more than N minutes

        Returns:
            Dict of condition name -> {"triggered": bool, ...}
        """
        now = now or datetime.utcnow()
        results: Dict[str, Any] = {}

        stale_hours = config.MONITOR_RECONCILE_STALE_HOURS
        last_run = (
            self.db.query(ReconciliationLog)
            .order_by(ReconciliationLog.started_at.desc())
            .first()
        )
        if last_run is None or last_run.started_at < now - timedelta(hours=stale_hours):
            last_run_at = last_run.started_at.isoformat() if last_run else None
            self._upsert_condition_alert(
                ALERT_RECONCILE_STALE,
                AlertSeverity.WARNING.value,
                f"No reconciliation run in the last {stale_hours} hours",
                {"last_run_at": last_run_at},
            )
            results[ALERT_RECONCILE_STALE] = {"triggered": True, "last_run_at": last_run_at}
        else:
            self._resolve_condition_alert(ALERT_RECONCILE_STALE)
            results[ALERT_RECONCILE_STALE] = {"triggered": False}

        stale_minutes = config.MONITOR_HIGH_SEVERITY_STALE_MINUTES
        stale_count = self.db.query(BillingAlert).filter(
            BillingAlert.resolved.is_(False),
            BillingAlert.severity.in_([AlertSeverity.CRITICAL.value, AlertSeverity.HIGH.value]),
            BillingAlert.created_at < now - timedelta(minutes=stale_minutes),
            # The condition alert must not count itself
            BillingAlert.alert_type != ALERT_HIGH_SEVERITY_STALE,
        ).count()
        if stale_count > 0:
            self._upsert_condition_alert(
                ALERT_HIGH_SEVERITY_STALE,
                AlertSeverity.CRITICAL.value,
                f"{stale_count} high-severity billing alert(s) unresolved for over {stale_minutes} minutes",
                {"stale_count": stale_count},
            )
            results[ALERT_HIGH_SEVERITY_STALE] = {"triggered": True, "stale_count": stale_count}
        else:
            self._resolve_condition_alert(ALERT_HIGH_SEVERITY_STALE)
            results[ALERT_HIGH_SEVERITY_STALE] = {"triggered": False}

        results["auto_resolved"] = self.auto_resolve_alerts()
        return results

    def auto_resolve_alerts(self) -> int:
        """
        Resolve open drift alerts once the latest completed run is clean

        Returns:
            Number of alerts resolved
        """
        latest = (
            self.db.query(ReconciliationLog)
            .filter(ReconciliationLog.status.in_([
                ReconciliationStatus.SUCCESS.value,
                ReconciliationStatus.PARTIAL.value,
            ]))
            .order_by(ReconciliationLog.started_at.desc())
            .first()
        )
        if latest is None or latest.mismatch_count > 0 or latest.created_count > 0:
            return 0

        open_drift = self.db.query(BillingAlert).filter(
            BillingAlert.alert_type == ALERT_RECONCILE_DRIFT,
            BillingAlert.resolved.is_(False),
            BillingAlert.created_at <= latest.started_at,
        ).all()
        now = datetime.utcnow()
        for alert in open_drift:
            alert.resolved = True
            alert.resolved_at = now
            alert.resolved_by = "auto"
        if open_drift:
            self.db.commit()
            logger.info(f"Auto-resolved {len(open_drift)} drift alert(s) after clean run {latest.id}")
        return len(open_drift)


def serialize_alert(alert: BillingAlert) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "metadata": alert.extra_metadata or {},
        "resolved": alert.resolved,
        "resolved_at": alert.resolved_at.isoformat() if alert.resolved_at else None,
        "resolved_by": alert.resolved_by,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
    }
