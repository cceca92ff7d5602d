"""
Tests for the background export worker
"""
import io
import json
import zipfile

import pytest

from riskmate.db.engine import SessionLocal
from riskmate.db.models import AuditLog, Export, MitigationItem
from riskmate.services.export_worker import ExportWorker, export_storage_base
from riskmate.services.proof_pack_service import sha256_hex


@pytest.fixture
def worker(db_session, storage):
    return ExportWorker(SessionLocal, storage, max_concurrent=3, max_failures=3, clock=lambda: 1767225600.0)


def queue_export(db_session, organization, user=None, export_type="ledger", state="queued"):
    export = Export(
        organization_id=organization.id,
        requested_by=user.id if user else None,
        export_type=export_type,
        filters={"time_range": "30d"},
        state=state,
    )
    db_session.add(export)
    db_session.commit()
    return export


def reload(db_session, export):
    db_session.expire_all()
    return db_session.get(Export, export.id)


class TestStorageKeys:
    def test_job_scoped(self):
        assert export_storage_base("org", "ledger", "job_1", 42) == "org/ledger/job_1-42"

    def test_all_jobs(self):
        assert export_storage_base("org", "controls", None, 42) == "org/controls/all-42"


class TestProcessing:
    """Happy path"""

    def test_ledger_export_becomes_ready(self, db_session, worker, storage, organization, test_user, job):
        export = queue_export(db_session, organization, test_user)

        stats = worker.process_pending()

        assert stats == {"claimed": 1, "ready": 1, "failed": 0, "requeued": 0}
        export = reload(db_session, export)
        assert export.state == "ready"
        assert export.progress == 100
        assert export.storage_path == f"{organization.id}/ledger/all-1767225600000.pdf"
        artifact = storage.get(export.storage_path)
        assert artifact.startswith(b"%PDF")
        assert export.checksum == sha256_hex(artifact)
        manifest_bytes = storage.get(export.manifest_path)
        assert export.manifest_hash == sha256_hex(manifest_bytes)
        manifest = json.loads(manifest_bytes)
        assert manifest["files"][0]["name"] == "ledger-export.pdf"
        assert manifest["files"][0]["sha256"] == export.checksum

    def test_lifecycle_is_audited(self, db_session, worker, organization, test_user):
        export = queue_export(db_session, organization, test_user, export_type="controls")

        worker.process_pending()

        db_session.expire_all()
        names = [e.event_name for e in db_session.query(AuditLog).order_by(AuditLog.created_at).all()]
        assert names == ["export.controls.started", "export.controls.completed"]
        completed = db_session.query(AuditLog).filter_by(event_name="export.controls.completed").one()
        assert completed.target_id == export.id

    def test_proof_pack_export_is_zip(self, db_session, worker, storage, organization, test_user, job):
        db_session.add(MitigationItem(job_id=job.id, organization_id=organization.id, title="Barricade"))
        db_session.commit()
        export = queue_export(db_session, organization, test_user, export_type="proof_pack")

        worker.process_pending()

        export = reload(db_session, export)
        assert export.state == "ready"
        assert export.storage_path.endswith(".zip")
        with zipfile.ZipFile(io.BytesIO(storage.get(export.storage_path))) as archive:
            assert "manifest.json" in archive.namelist()
            assert "controls.pdf" in archive.namelist()
        assert export.manifest["pack_id"] == export.id
        assert export.manifest["counts"]["controls"] == 1

    def test_download_after_processing(self, client, auth_headers, db_session, worker, organization, test_user):
        export = queue_export(db_session, organization, test_user, export_type="attestations")
        worker.process_pending()
        db_session.expire_all()

        response = client.get(f"/api/exports/{export.id}/download", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["X-Checksum-SHA256"] == sha256_hex(response.content)


class TestClaiming:
    """Concurrency slots and claim races"""

    def test_respects_concurrency_limit(self, db_session, worker, organization):
        for _ in range(3):
            queue_export(db_session, organization, state="generating")
        queue_export(db_session, organization)

        assert worker.claim_pending() == []

    def test_claims_oldest_first_up_to_free_slots(self, db_session, worker, organization):
        queue_export(db_session, organization, state="uploading")
        first = queue_export(db_session, organization)
        second = queue_export(db_session, organization)
        queue_export(db_session, organization)

        claimed = worker.claim_pending()

        assert claimed == [first.id, second.id]
        assert reload(db_session, first).state == "preparing"

    def test_already_claimed_export_is_skipped(self, db_session, worker, organization):
        export = queue_export(db_session, organization)
        db = SessionLocal()
        try:
            assert worker._claim(db, export.id) is True
            assert worker._claim(db, export.id) is False
        finally:
            db.close()


class TestFailures:
    """Requeue and poison pill"""

    def test_failure_requeues(self, db_session, worker, organization, monkeypatch):
        def broken(self, db, export):
            raise RuntimeError("renderer crashed")

        monkeypatch.setattr(ExportWorker, "_generate", broken)
        export = queue_export(db_session, organization)

        stats = worker.process_pending()

        assert stats["requeued"] == 1
        export = reload(db_session, export)
        assert export.state == "queued"
        assert export.failure_count == 1
        assert export.error_code == "EXPORT_GENERATION_FAILED"
        assert export.error_message == "renderer crashed"
        assert export.error_id

    def test_poison_pill_after_max_failures(self, db_session, worker, organization, monkeypatch):
        def broken(self, db, export):
            raise RuntimeError("renderer crashed")

        monkeypatch.setattr(ExportWorker, "_generate", broken)
        export = queue_export(db_session, organization)

        for _ in range(3):
            worker.process_pending()

        export = reload(db_session, export)
        assert export.state == "failed"
        assert export.failure_count == 3
        failed = db_session.query(AuditLog).filter_by(event_name="export.ledger.failed").all()
        assert [entry.severity for entry in failed] == ["medium", "medium", "high"]

    def test_lapsed_plan_fails_export(self, db_session, worker, organization, active_subscription):
        active_subscription.status = "past_due"
        db_session.commit()
        export = queue_export(db_session, organization)

        worker.process_pending()

        export = reload(db_session, export)
        assert export.state == "queued"
        assert "past due" in export.error_message
