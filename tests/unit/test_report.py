"""
Unit tests for report rendering.

Tests cover the JSON report sections and the markdown ticket body.
"""

import json
from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from driftfix.models import (
    Category,
    Classification,
    ClassifiedChange,
    ClassifiedPlan,
    RemediationOutcome,
    RemediationRecord,
    RemediationReport,
    ResourceChange,
)
from driftfix.report import (
    classified_plan_to_dict,
    record_to_dict,
    render_markdown,
    report_to_dict,
)

STARTED = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
FINISHED = datetime(2026, 3, 1, 8, 1, tzinfo=UTC)

ChangeFactory = Callable[..., ResourceChange]


def _classified(change: ResourceChange, category: Category, reason: str) -> ClassifiedChange:
    return ClassifiedChange(
        change=change,
        classification=Classification(category=category, reason=reason, rule="test-rule"),
    )


@pytest.fixture
def sample_report(make_change: ChangeFactory) -> RemediationReport:
    """Provide a report with every kind of entry."""
    review = _classified(
        make_change(
            "aws_instance.web",
            resource_type="aws_instance",
            before={"instance_type": "t3.small"},
            after={"instance_type": "t3.large"},
        ),
        Category.REQUIRES_REVIEW,
        "non-allow-listed attributes changed: instance_type",
    )
    critical = _classified(
        make_change("aws_lb.front", resource_type="aws_lb", actions=("delete",)),
        Category.CRITICAL,
        "destructive action: delete",
    )
    return RemediationReport(
        run_id="run-42",
        started_at=STARTED,
        finished_at=FINISHED,
        applied=(
            RemediationRecord(
                change=make_change("aws_s3_bucket.assets"),
                outcome=RemediationOutcome.APPLIED,
                timestamp=FINISHED,
            ),
            RemediationRecord(
                change=make_change("aws_s3_bucket.logs"),
                outcome=RemediationOutcome.FAILED,
                timestamp=FINISHED,
                error_detail="exit | 1",
            ),
            RemediationRecord(
                change=make_change("aws_s3_bucket.child", depends_on=("aws_s3_bucket.logs",)),
                outcome=RemediationOutcome.SKIPPED_DEPENDENCY_FAILED,
                timestamp=FINISHED,
            ),
        ),
        requires_review=(review,),
        critical=(critical,),
    )


class TestJsonReport:
    """Tests for report_to_dict and friends."""

    def test_report_summary(self, sample_report: RemediationReport) -> None:
        """Test the summary counts every outcome and bucket."""
        data = report_to_dict(sample_report)

        assert data["runId"] == "run-42"
        assert data["startedAt"] == STARTED.isoformat()
        assert data["summary"] == {
            "applied": 1,
            "failed": 1,
            "skippedDependencyFailed": 1,
            "skippedTimeout": 0,
            "requiresReview": 1,
            "critical": 1,
        }

    def test_report_sections(self, sample_report: RemediationReport) -> None:
        """Test applied, requiresReview and critical sections are present."""
        data = report_to_dict(sample_report)

        assert [r["outcome"] for r in data["applied"]] == [
            "applied",
            "failed",
            "skipped-dependency-failed",
        ]
        assert data["applied"][1]["errorDetail"] == "exit | 1"
        assert "errorDetail" not in data["applied"][0]
        assert data["requiresReview"][0]["changedAttributes"] == ["instance_type"]
        assert data["critical"][0]["actions"] == ["delete"]
        assert data["critical"][0]["category"] == "Critical"

    def test_report_is_json_serializable(self, sample_report: RemediationReport) -> None:
        """Test the report survives json.dumps."""
        text = json.dumps(report_to_dict(sample_report))

        assert json.loads(text)["runId"] == "run-42"

    def test_record_to_dict(self, make_change: ChangeFactory) -> None:
        """Test a record serializes with its change details."""
        record = RemediationRecord(
            change=make_change("aws_s3_bucket.assets"),
            outcome=RemediationOutcome.SKIPPED_TIMEOUT,
            timestamp=FINISHED,
        )

        assert record_to_dict(record) == {
            "address": "aws_s3_bucket.assets",
            "resourceType": "aws_s3_bucket",
            "changedAttributes": ["tags"],
            "outcome": "skipped-timeout",
            "timestamp": FINISHED.isoformat(),
        }

    def test_classified_plan_to_dict(self, make_change: ChangeFactory) -> None:
        """Test a classification-only result lists all three buckets."""
        safe = _classified(make_change("a.one"), Category.SAFE_AUTO_REMEDIATE, "tags only")
        plan = ClassifiedPlan(safe=(safe,))

        data = classified_plan_to_dict(plan)

        assert data["summary"] == {"safe": 1, "requiresReview": 0, "critical": 0}
        assert data["safe"][0]["address"] == "a.one"
        assert data["safe"][0]["rule"] == "test-rule"
        assert data["requiresReview"] == []
        assert data["critical"] == []


class TestMarkdownReport:
    """Tests for render_markdown."""

    def test_sections_rendered(self, sample_report: RemediationReport) -> None:
        """Test the markdown body has the title, counts and every section."""
        body = render_markdown(sample_report)

        assert body.startswith("## Infrastructure Drift Report")
        assert "| Auto-remediated | 1 |" in body
        assert "### 🚨 Critical drift" in body
        assert "### 🔍 Requires review" in body
        assert "### 🔧 Automatic remediation" in body
        assert "`aws_lb.front`" in body
        assert "No drift detected" not in body

    def test_attribute_diff_rendered(self, sample_report: RemediationReport) -> None:
        """Test changed attribute values appear in the details block."""
        body = render_markdown(sample_report)

        assert '| `instance_type` | "t3.small" | "t3.large" |' in body

    def test_pipes_escaped(self, sample_report: RemediationReport) -> None:
        """Test table cell content cannot break the table."""
        body = render_markdown(sample_report)

        assert "exit \\| 1" in body

    def test_reason_pipes_escaped(self, make_change: ChangeFactory) -> None:
        """Test a classification reason containing a pipe stays in its cell."""
        report = RemediationReport(
            run_id="run-7",
            started_at=STARTED,
            finished_at=FINISHED,
            requires_review=(
                _classified(
                    make_change("aws_iam_role.ci", resource_type="aws_iam_role"),
                    Category.REQUIRES_REVIEW,
                    "custom rule: tags | policy\nchanged",
                ),
            ),
        )

        body = render_markdown(report)

        assert "| custom rule: tags \\| policy changed |" in body

    def test_no_drift(self) -> None:
        """Test an empty report says no drift was found."""
        report = RemediationReport(run_id="run-0", started_at=STARTED, finished_at=FINISHED)

        body = render_markdown(report)

        assert "No drift detected." in body
        assert "### " not in body
