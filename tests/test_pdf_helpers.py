"""
Tests for PDF text normalization, ranking and KPI helpers
"""
from datetime import datetime

import pytest

from riskmate.pdf import (
    ProofPackMeta,
    generate_attestations_pdf,
    generate_controls_pdf,
    generate_evidence_index_pdf,
    generate_ledger_export_pdf,
)
from riskmate.pdf.ledger_export import ledger_row
from riskmate.pdf.normalize import (
    calculate_attestation_kpis,
    calculate_control_kpis,
    compare_severity,
    count_active_filters,
    format_date,
    format_filter_context,
    format_hash_short,
    normalize_control_status,
    normalize_severity,
    parse_datetime,
    sanitize_text,
    sort_attestations,
    sort_controls,
    truncate_text,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


class TestSanitizeText:
    """sanitize_text"""

    def test_folds_typographic_punctuation(self):
        assert sanitize_text("\u201cHi\u201d \u2014 it\u2019s") == "\"Hi\" - it's"

    def test_strips_control_and_private_use(self):
        assert sanitize_text("a\u0000b\u200bcd") == "abcd"

    def test_collapses_whitespace_and_line_separators(self):
        assert sanitize_text("  one\ttwo\r\n\u2028three  ") == "one two three"

    def test_empty(self):
        assert sanitize_text(None) == ""


class TestFormatting:
    """Truncation, hashes and dates"""

    def test_truncate(self):
        assert truncate_text("abcdefghij", 8) == "abcde..."
        assert truncate_text("short", 8) == "short"

    def test_hash_short(self):
        assert format_hash_short("a" * 64) == "a" * 16
        assert format_hash_short(None) == "N/A"

    def test_parse_aware_iso_to_naive_utc(self):
        assert parse_datetime("2026-03-01T14:00:00+02:00") == datetime(2026, 3, 1, 12, 0, 0)
        assert parse_datetime("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, 0, 0)

    def test_parse_invalid(self):
        assert parse_datetime("yesterday") is None

    def test_format_date_styles(self):
        assert format_date(NOW) == "Mar 01, 2026"
        assert format_date(NOW, "long") == "Mar 01, 2026 12:00 UTC"
        assert format_date(NOW, "iso") == "2026-03-01T12:00:00Z"
        assert format_date(None) == "N/A"


class TestStatusAndSeverity:
    """Normalization and ordering"""

    @pytest.mark.parametrize("raw,expected", [("done", "completed"), ("Verified", "completed"), ("open", "pending"), (None, "pending")])
    def test_control_status(self, raw, expected):
        assert normalize_control_status(raw) == expected

    @pytest.mark.parametrize("raw,expected", [("CRIT", "critical"), ("med", "medium"), ("l", "low"), ("weird", "info"), (None, "info")])
    def test_severity(self, raw, expected):
        assert normalize_severity(raw) == expected

    def test_compare_severity(self):
        assert compare_severity("critical", "low") < 0
        assert compare_severity("info", "high") > 0

    def test_sort_controls(self):
        controls = [
            {"title": "later", "status_at_export": "pending", "severity": "low", "due_date": "2026-04-01T00:00:00"},
            {"title": "undated", "status_at_export": "pending", "severity": "low"},
            {"title": "high", "status_at_export": "pending", "severity": "high", "due_date": "2026-05-01T00:00:00"},
            {"title": "overdue", "status_at_export": "pending", "severity": "low", "due_date": "2026-02-01T00:00:00"},
        ]

        ordered = [c["title"] for c in sort_controls(controls, now=NOW)]

        assert ordered == ["overdue", "high", "later", "undated"]

    def test_sort_attestations(self):
        attestations = [
            {"title": "old signed", "status_at_export": "signed", "attested_at": "2026-01-01T00:00:00"},
            {"title": "pending", "status_at_export": "pending"},
            {"title": "new signed", "status_at_export": "completed", "attested_at": "2026-02-01T00:00:00"},
        ]

        assert [a["title"] for a in sort_attestations(attestations)] == ["pending", "new signed", "old signed"]


class TestKpis:
    """Counts shown in KPI rows"""

    def test_control_kpis(self):
        kpis = calculate_control_kpis([
            {"status_at_export": "completed", "severity": "critical"},
            {"status_at_export": "pending", "severity": "high", "due_date": "2026-02-01T00:00:00"},
            {"status_at_export": "pending", "severity": "low"},
        ], now=NOW)

        assert kpis == {"total": 3, "completed": 1, "pending": 2, "overdue": 1, "high_severity": 2}

    def test_attestation_kpis(self):
        assert calculate_attestation_kpis([{"status_at_export": "signed"}, {}]) == {
            "total": 2, "completed": 1, "pending": 1,
        }

    def test_filter_context(self):
        filters = {"time_range": "30d", "job_id": None, "site_ids": ["s1", "s2"]}

        assert count_active_filters(filters) == 2
        assert format_filter_context(filters) == "time range: 30d, site ids: s1, s2"
        assert format_filter_context({}) == "No filters applied"


class TestGenerators:
    """Each generator renders a document, with or without rows"""

    @pytest.fixture
    def meta(self):
        return ProofPackMeta(
            pack_id="pack-0123456789abcdef",
            organization_name="Acme Roofing",
            generated_by="Olivia Owner",
            generated_by_role="owner",
            generated_at=NOW,
            time_range="30d",
        )

    def test_ledger_row_defaults(self):
        row = ledger_row({"event_name": "job.created", "created_at": "2026-03-01T12:00:00"})

        assert "job.created" in row
        assert "System" in row

    def test_ledger_pdf(self):
        events = [{"event_name": "job.created", "created_at": NOW.isoformat(), "summary": "Job \u201cA\u201d created"}]

        pdf = generate_ledger_export_pdf(
            events,
            export_id="EXP-1",
            organization_name="Acme Roofing",
            generated_by="Olivia Owner",
            generated_by_role="owner",
            time_range="30d",
            filters={"time_range": "30d"},
            generated_at=NOW,
        )

        assert pdf.startswith(b"%PDF")

    def test_empty_ledger_pdf(self):
        pdf = generate_ledger_export_pdf(
            [],
            export_id="EXP-2",
            organization_name="Acme Roofing",
            generated_by="System",
            generated_by_role="system",
            time_range="all",
            filters={},
            generated_at=NOW,
        )

        assert pdf.startswith(b"%PDF")

    def test_controls_and_attestations(self, meta):
        assert generate_controls_pdf([
            {"control_id": "c1", "title": "Guardrails", "status_at_export": "pending", "severity": "high"},
        ], meta).startswith(b"%PDF")
        assert generate_attestations_pdf([], meta).startswith(b"%PDF")

    def test_evidence_index(self, meta):
        pdf = generate_evidence_index_pdf(
            {"files": [{"name": "controls.pdf", "bytes": 10, "sha256": "f" * 64}], "counts": {"controls": 1}, "filters": {}},
            meta,
        )

        assert pdf.startswith(b"%PDF")
