"""
Tests for scheduled jobs and the command line entry points
"""
import json
from unittest.mock import Mock

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from riskmate.db.models import BillingAlert, ReconciliationLog
from riskmate.main import build_parser, main
from riskmate.services import scheduled_jobs
from riskmate.services.scheduled_jobs import (
    run_export_worker_job,
    run_monitoring_job,
    run_reconciliation_job,
    start_scheduler,
    stop_scheduler,
)

from helpers import FakeStripeGateway, stripe_subscription


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeStripeGateway()
    monkeypatch.setattr("riskmate.services.stripe_gateway.get_stripe_gateway", lambda: fake)
    return fake


@pytest.fixture
def scheduler(monkeypatch):
    instance = BackgroundScheduler()
    monkeypatch.setattr(scheduled_jobs, "_scheduler", instance)
    yield instance
    if instance.running:
        instance.shutdown(wait=False)


class TestScheduler:
    """Job registration"""

    def test_registers_jobs(self, scheduler):
        start_scheduler()

        assert scheduler.running
        assert sorted(job.id for job in scheduler.get_jobs()) == [
            "billing_monitoring",
            "billing_reconciliation",
            "export_worker",
        ]

        stop_scheduler()
        assert not scheduler.running

    def test_second_start_is_noop(self, scheduler):
        start_scheduler()
        start_scheduler()

        assert len(scheduler.get_jobs()) == 3


class TestReconciliationJob:
    """run_reconciliation_job"""

    def test_skipped_without_stripe(self, db_session):
        assert run_reconciliation_job() is None
        assert db_session.query(ReconciliationLog).count() == 0

    def test_runs_sweep(self, db_session, gateway):
        summary = run_reconciliation_job(lookback_hours=6, run_type="manual")

        assert summary["status"] == "success"
        assert summary["lookback_hours"] == 6
        db_session.expire_all()
        log = db_session.query(ReconciliationLog).one()
        assert log.run_type == "manual"

    def test_failure_returns_none(self, db_session, gateway, monkeypatch):
        def broken(self, lookback_hours=None, run_type="scheduled", metadata=None):
            raise RuntimeError("database went away")

        monkeypatch.setattr("riskmate.services.reconciliation_service.ReconciliationService.run", broken)

        assert run_reconciliation_job() is None


class TestMonitoringJob:
    """run_monitoring_job"""

    def test_raises_stale_alert(self, db_session):
        report = run_monitoring_job()

        assert report["reconcile_stale"]["triggered"] is True
        db_session.expire_all()
        assert db_session.query(BillingAlert).filter_by(alert_type="reconcile_stale").count() == 1


class TestExportWorkerJob:
    """run_export_worker_job"""

    def test_returns_stats(self, monkeypatch):
        worker = Mock()
        worker.process_pending.return_value = {"claimed": 2, "ready": 2, "failed": 0, "requeued": 0}
        monkeypatch.setattr("riskmate.services.export_worker.get_export_worker", lambda: worker)

        assert run_export_worker_job()["ready"] == 2

    def test_errors_are_logged(self, monkeypatch):
        worker = Mock()
        worker.process_pending.side_effect = RuntimeError("storage offline")
        monkeypatch.setattr("riskmate.services.export_worker.get_export_worker", lambda: worker)

        assert run_export_worker_job() is None


class TestCommandLine:
    """riskmate CLI"""

    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        # console handler writes to stdout, which would mix with the JSON output
        monkeypatch.setattr("riskmate.main.setup_logging", lambda **kwargs: None)

    def test_parser_defaults(self):
        args = build_parser().parse_args(["reconcile"])

        assert args.hours is None
        assert args.type == "manual"
        assert args.per_organization is False

    def test_rejects_unknown_run_type(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["reconcile", "--type", "nightly"])

    def test_reconcile_without_stripe(self, db_session, capsys):
        assert main(["reconcile"]) == 1
        assert "Reconciliation failed" in capsys.readouterr().err

    def test_reconcile_prints_summary(self, db_session, gateway, capsys):
        assert main(["reconcile", "--hours", "12"]) == 0

        summary = json.loads(capsys.readouterr().out)
        assert summary["lookback_hours"] == 12

    def test_reconcile_per_organization(self, db_session, gateway, organization, active_subscription, capsys):
        gateway.subscriptions["sub_active"] = stripe_subscription("sub_active", organization.id, plan="business")

        assert main(["reconcile", "--per-organization"]) == 0

        totals = json.loads(capsys.readouterr().out)
        assert totals["total"] == 1
        assert totals["matched"] == 1

    def test_process_exports(self, monkeypatch, capsys):
        worker = Mock()
        worker.process_pending.return_value = {"claimed": 1, "ready": 0, "failed": 1, "requeued": 0}
        monkeypatch.setattr("riskmate.services.export_worker.get_export_worker", lambda: worker)

        assert main(["process-exports"]) == 2
        assert json.loads(capsys.readouterr().out)["failed"] == 1
