"""
Risk Scoring
Deterministic job risk score from selected hazard severities
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence
import logging

from sqlalchemy.orm import Session

from ..db.models.job import Job, RiskFactor, MitigationItem, RiskLevel

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {
    "critical": 25,
    "high": 15,
    "medium": 8,
    "low": 3,
}

MAX_SCORE = 100

# Minimum score for each level, checked highest first
RISK_LEVEL_THRESHOLDS = (
    (100, RiskLevel.CRITICAL.value),
    (90, RiskLevel.HIGH.value),
    (70, RiskLevel.MEDIUM.value),
)


@dataclass
class RiskScoreResult:
    overall_score: int
    risk_level: str
    factors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "risk_level": self.risk_level,
            "factors": self.factors,
        }


def risk_level_for(score: int) -> str:
    for threshold, level in RISK_LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return RiskLevel.LOW.value


def score_factors(factors: Iterable[RiskFactor]) -> RiskScoreResult:
    """Sum severity weights (unknown severities weigh 0), capped at 100"""
    total = 0
    breakdown = []
    for factor in factors:
        weight = SEVERITY_WEIGHTS.get((factor.severity or "").lower(), 0)
        total += weight
        breakdown.append({
            "code": factor.code,
            "name": factor.name,
            "severity": factor.severity,
            "weight": weight,
        })

    score = min(MAX_SCORE, total)
    return RiskScoreResult(overall_score=score, risk_level=risk_level_for(score), factors=breakdown)


def calculate_risk_score(db: Session, risk_factor_codes: Sequence[str]) -> RiskScoreResult:
    """Score active catalog factors matching the given codes"""
    if not risk_factor_codes:
        return RiskScoreResult(overall_score=0, risk_level=RiskLevel.LOW.value)

    factors = db.query(RiskFactor).filter(
        RiskFactor.code.in_(list(risk_factor_codes)),
        RiskFactor.is_active.is_(True),
    ).all()
    return score_factors(factors)


def generate_mitigation_items(job: Job, factors: Iterable[RiskFactor]) -> List[MitigationItem]:
    """One checklist item per mitigation step, or a generic item when a factor has none"""
    items = []
    for factor in factors:
        steps = list(factor.mitigation_steps or []) or [f"Address {factor.name}"]
        for step in steps:
            items.append(MitigationItem(
                job_id=job.id,
                organization_id=job.organization_id,
                risk_factor_code=factor.code,
                title=step,
                severity=factor.severity,
                done=False,
            ))
    return items


def assess_job(db: Session, job: Job, risk_factor_codes: Sequence[str]) -> RiskScoreResult:
    """
    Score a job and rebuild its mitigation checklist

    Replaces existing open items; completed items are kept. The caller commits.
    """
    codes = list(dict.fromkeys(risk_factor_codes))
    factors = []
    if codes:
        factors = db.query(RiskFactor).filter(
            RiskFactor.code.in_(codes),
            RiskFactor.is_active.is_(True),
        ).all()
    result = score_factors(factors)

    job.hazard_codes = [f.code for f in factors]
    job.risk_score = result.overall_score
    job.risk_level = result.risk_level

    for item in list(job.mitigation_items):
        if not item.done:
            job.mitigation_items.remove(item)
    for item in generate_mitigation_items(job, factors):
        job.mitigation_items.append(item)

    db.flush()
    logger.info(f"Job {job.id} scored {result.overall_score} ({result.risk_level}) from {len(factors)} factor(s)")
    return result
