"""
Tests for billing alerts, monitoring conditions and the alert routes
"""
from datetime import datetime, timedelta

from riskmate.db.models import BillingAlert, ReconciliationLog
from riskmate.services.billing_monitoring import BillingMonitor
from helpers import RECONCILE_HEADERS


def add_run(db_session, started_at, status="success", mismatch_count=0, created_count=0):
    log = ReconciliationLog(
        run_type="scheduled",
        lookback_hours=24,
        status=status,
        started_at=started_at,
        mismatch_count=mismatch_count,
        created_count=created_count,
    )
    db_session.add(log)
    db_session.commit()
    return log


class TestAlerts:
    """Event alerts"""

    def test_webhook_failure_is_critical(self, db_session):
        alert = BillingMonitor(db_session).track_webhook_failure("invoice.paid", "evt_1", "boom")

        assert alert.alert_type == "webhook_failure"
        assert alert.severity == "critical"
        assert alert.extra_metadata == {"event_type": "invoice.paid", "event_id": "evt_1", "error": "boom"}

    def test_drift_severity_scales_with_mismatches(self, db_session):
        monitor = BillingMonitor(db_session)

        assert monitor.track_reconcile_drift("log_1", 2, 0).severity == "warning"
        assert monitor.track_reconcile_drift("log_2", 11, 0).severity == "critical"

    def test_drift_metadata_counts(self, db_session):
        alert = BillingMonitor(db_session).track_reconcile_drift("log_1", 3, 1, updated_count=2)

        assert alert.extra_metadata == {
            "reconciliation_log_id": "log_1",
            "mismatch_count": 3,
            "created_count": 1,
            "updated_count": 2,
        }

    def test_unresolved_filtered_by_type(self, db_session):
        monitor = BillingMonitor(db_session)
        monitor.track_webhook_failure(None, None, "bad signature")
        monitor.track_reconcile_drift("log_1", 1, 0)

        alerts = monitor.get_unresolved_alerts(alert_type="reconcile_drift")

        assert [a.alert_type for a in alerts] == ["reconcile_drift"]

    def test_resolve_alert(self, db_session):
        monitor = BillingMonitor(db_session)
        alert = monitor.track_webhook_failure(None, None, "bad signature")

        resolved = monitor.resolve_alert(alert.id, resolved_by="ops@acme.test")

        assert resolved.resolved is True
        assert resolved.resolved_by == "ops@acme.test"
        assert monitor.get_unresolved_alerts() == []

    def test_resolve_unknown_alert(self, db_session):
        assert BillingMonitor(db_session).resolve_alert("missing") is None


class TestMonitoringConditions:
    """Standing condition alerts"""

    def test_no_runs_raises_stale_alert(self, db_session):
        report = BillingMonitor(db_session).check_monitoring_conditions()

        assert report["reconcile_stale"] == {"triggered": True, "last_run_at": None}
        alert = db_session.query(BillingAlert).filter_by(alert_key="reconcile_stale").one()
        assert alert.severity == "warning"

    def test_stale_alert_is_not_duplicated(self, db_session):
        monitor = BillingMonitor(db_session)
        monitor.check_monitoring_conditions()
        monitor.check_monitoring_conditions()

        assert db_session.query(BillingAlert).filter_by(alert_key="reconcile_stale").count() == 1

    def test_recent_run_clears_stale_alert(self, db_session):
        monitor = BillingMonitor(db_session)
        monitor.check_monitoring_conditions()
        add_run(db_session, datetime.utcnow())

        report = monitor.check_monitoring_conditions()

        assert report["reconcile_stale"] == {"triggered": False}
        alert = db_session.query(BillingAlert).filter_by(alert_key="reconcile_stale").one()
        assert alert.resolved is True
        assert alert.resolved_by == "system"

    def test_old_critical_alert_triggers_high_severity_stale(self, db_session):
        add_run(db_session, datetime.utcnow())
        monitor = BillingMonitor(db_session)
        alert = monitor.track_webhook_failure(None, None, "bad signature")
        alert.created_at = datetime.utcnow() - timedelta(minutes=45)
        db_session.commit()

        report = monitor.check_monitoring_conditions()

        assert report["high_severity_stale"] == {"triggered": True, "stale_count": 1}
        condition = db_session.query(BillingAlert).filter_by(alert_key="high_severity_stale").one()
        assert condition.severity == "critical"

        report = monitor.check_monitoring_conditions()
        assert report["high_severity_stale"]["stale_count"] == 1

    def test_fresh_critical_alert_does_not_trigger(self, db_session):
        add_run(db_session, datetime.utcnow())
        monitor = BillingMonitor(db_session)
        monitor.track_webhook_failure(None, None, "bad signature")

        report = monitor.check_monitoring_conditions()

        assert report["high_severity_stale"] == {"triggered": False}


class TestAutoResolve:
    """Drift alerts cleared by a clean run"""

    def test_clean_run_resolves_drift(self, db_session):
        monitor = BillingMonitor(db_session)
        drift = monitor.track_reconcile_drift("log_1", 1, 0)
        add_run(db_session, datetime.utcnow() + timedelta(seconds=1))

        assert monitor.auto_resolve_alerts() == 1
        db_session.refresh(drift)
        assert drift.resolved_by == "auto"

    def test_dirty_run_keeps_drift(self, db_session):
        monitor = BillingMonitor(db_session)
        monitor.track_reconcile_drift("log_1", 1, 0)
        add_run(db_session, datetime.utcnow() + timedelta(seconds=1), status="partial", mismatch_count=1)

        assert monitor.auto_resolve_alerts() == 0

    def test_errored_run_is_ignored(self, db_session):
        monitor = BillingMonitor(db_session)
        monitor.track_reconcile_drift("log_1", 1, 0)
        add_run(db_session, datetime.utcnow() - timedelta(minutes=5), status="partial", mismatch_count=1)
        add_run(db_session, datetime.utcnow() + timedelta(seconds=1), status="error")

        assert monitor.auto_resolve_alerts() == 0


class TestAlertRoutes:
    """Operator endpoints"""

    def test_requires_secret(self, client):
        assert client.get("/api/billing/alerts").status_code == 401

    def test_list_alerts(self, client, db_session):
        BillingMonitor(db_session).track_webhook_failure("invoice.paid", "evt_1", "boom")

        response = client.get("/api/billing/alerts", headers=RECONCILE_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["alerts"][0]["alert_type"] == "webhook_failure"
        assert body["alerts"][0]["metadata"]["event_id"] == "evt_1"

    def test_limit_validated(self, client):
        response = client.get("/api/billing/alerts?limit=500", headers=RECONCILE_HEADERS)

        assert response.status_code == 422

    def test_resolve(self, client, db_session):
        alert = BillingMonitor(db_session).track_webhook_failure(None, None, "bad signature")

        response = client.post(
            f"/api/billing/alerts/{alert.id}/resolve?resolved_by=oncall", headers=RECONCILE_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["alert"]["resolved"] is True
        assert response.json()["alert"]["resolved_by"] == "oncall"

    def test_resolve_missing(self, client):
        response = client.post("/api/billing/alerts/nope/resolve", headers=RECONCILE_HEADERS)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_monitor_now(self, client):
        response = client.post("/api/billing/monitor", headers=RECONCILE_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["reconcile_stale"]["triggered"] is True
        assert body["auto_resolved"] == 0
