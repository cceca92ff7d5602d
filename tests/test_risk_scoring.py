"""
Tests for risk scoring and the risk assessment endpoint
"""
import pytest

from riskmate.db.models import AuditLog, Job, MitigationItem, RiskFactor
from riskmate.services.risk_scoring import (
    assess_job,
    calculate_risk_score,
    generate_mitigation_items,
    risk_level_for,
    score_factors,
)


def factor(code, severity, steps=None, name=None, active=True):
    return RiskFactor(
        code=code,
        name=name or code.replace("_", " ").title(),
        severity=severity,
        mitigation_steps=steps or [],
        is_active=active,
    )


@pytest.fixture
def catalog(db_session):
    factors = [
        factor("fall_height", "critical", ["Install guardrails", "Harness inspection"]),
        factor("electrical", "high", ["Lockout/tagout"]),
        factor("noise", "medium"),
        factor("dust", "low", ["Wet cutting"]),
        factor("retired", "critical", active=False),
    ]
    db_session.add_all(factors)
    db_session.commit()
    return factors


class TestScoring:
    """Weights and levels"""

    @pytest.mark.parametrize("score,level", [
        (0, "low"),
        (69, "low"),
        (70, "medium"),
        (89, "medium"),
        (90, "high"),
        (99, "high"),
        (100, "critical"),
    ])
    def test_levels(self, score, level):
        assert risk_level_for(score) == level

    def test_weights_sum(self):
        result = score_factors([factor("a", "critical"), factor("b", "high"), factor("c", "low")])

        assert result.overall_score == 43
        assert result.risk_level == "low"
        assert [f["weight"] for f in result.factors] == [25, 15, 3]

    def test_capped_at_100(self):
        result = score_factors([factor(f"c{i}", "critical") for i in range(5)])

        assert result.overall_score == 100
        assert result.risk_level == "critical"

    def test_unknown_severity_weighs_nothing(self):
        assert score_factors([factor("odd", "extreme")]).overall_score == 0

    def test_empty_codes(self, db_session):
        result = calculate_risk_score(db_session, [])

        assert result.overall_score == 0
        assert result.risk_level == "low"

    def test_inactive_factors_ignored(self, db_session, catalog):
        result = calculate_risk_score(db_session, ["retired", "noise"])

        assert result.overall_score == 8


class TestMitigationItems:
    """Checklist generation"""

    def test_one_item_per_step(self, job, catalog):
        items = generate_mitigation_items(job, [catalog[0]])

        assert [item.title for item in items] == ["Install guardrails", "Harness inspection"]
        assert all(item.severity == "critical" for item in items)

    def test_factor_without_steps(self, job, catalog):
        items = generate_mitigation_items(job, [catalog[2]])

        assert [item.title for item in items] == ["Address Noise"]

    def test_assess_job_keeps_completed_items(self, db_session, job, catalog):
        db_session.add_all([
            MitigationItem(job_id=job.id, organization_id=job.organization_id, title="Old open item"),
            MitigationItem(job_id=job.id, organization_id=job.organization_id, title="Old done item", done=True),
        ])
        db_session.commit()
        db_session.refresh(job)

        result = assess_job(db_session, job, ["electrical", "electrical", "dust"])
        db_session.commit()

        assert result.overall_score == 18
        assert sorted(job.hazard_codes) == ["dust", "electrical"]
        titles = sorted(item.title for item in db_session.query(MitigationItem).filter_by(job_id=job.id))
        assert titles == ["Lockout/tagout", "Old done item", "Wet cutting"]


class TestRiskAssessmentRoute:
    """POST /api/jobs/{id}/risk-assessment"""

    def test_assess(self, client, auth_headers, db_session, job, catalog):
        response = client.post(
            f"/api/jobs/{job.id}/risk-assessment",
            json={"risk_factor_codes": ["fall_height", "electrical"]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["risk_score"]["overall_score"] == 40
        assert body["risk_score"]["risk_level"] == "low"
        assert len(body["mitigation_items"]) == 3
        db_session.expire_all()
        stored = db_session.get(Job, job.id)
        assert stored.risk_score == 40
        entry = db_session.query(AuditLog).filter_by(event_name="job.risk_assessed").one()
        assert entry.job_id == job.id

    def test_unknown_job(self, client, auth_headers):
        response = client.post(
            "/api/jobs/missing/risk-assessment", json={"risk_factor_codes": []}, headers=auth_headers
        )

        assert response.status_code == 404
