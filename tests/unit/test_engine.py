"""
Unit tests for the engine facade.

Tests run full drift passes end to end: normalize, classify, remediate
the safe subset and report.
"""

from unittest.mock import MagicMock

import pytest

from driftfix.appliers import DryRunApplier
from driftfix.audit import InMemoryAuditLog
from driftfix.config import ClassifierConfig
from driftfix.engine import classify_plan, run_remediation
from driftfix.errors import ApplyError, ConfigurationError, MalformedPlanError
from driftfix.logging_config import get_run_id
from driftfix.models import Category, RemediationOutcome, ResourceChange


class TestClassifyPlan:
    """Tests for classify_plan."""

    def test_storage_tags_safe_and_protected_compute_critical(
        self,
        e2e_plan: dict[str, object],
        classifier_config: ClassifierConfig,
    ) -> None:
        """Test the tags-only bucket is safe and the protected compute service is Critical."""
        plan = classify_plan(e2e_plan, classifier_config)

        assert [c.address for c in plan.safe_changes()] == ["aws_s3_bucket.assets"]
        assert [c.change.address for c in plan.critical] == ["aws_ecs_service.gateway"]
        assert plan.requires_review == ()

    def test_unprotected_compute_requires_review(
        self,
        e2e_plan: dict[str, object],
        unprotected_compute_config: ClassifierConfig,
    ) -> None:
        """Test the compute scale change needs review when compute is not protected."""
        plan = classify_plan(e2e_plan, unprotected_compute_config)

        assert [c.address for c in plan.safe_changes()] == ["aws_s3_bucket.assets"]
        review = plan.requires_review
        assert [c.change.address for c in review] == ["aws_ecs_service.gateway"]
        assert review[0].classification.category == Category.REQUIRES_REVIEW
        assert plan.critical == ()

    def test_accepts_mapping_config(self, e2e_plan: dict[str, object]) -> None:
        """Test a plain mapping is accepted as configuration."""
        plan = classify_plan(
            e2e_plan,
            {"allowed_attributes": ["tags"], "protected_resource_types": ["aws_ecs_service"]},
        )

        assert len(plan.safe) == 1
        assert len(plan.critical) == 1

    @pytest.mark.parametrize(
        "config",
        [
            None,
            {"allowed_attributes": [], "protected_resource_types": ["aws_lb"]},
            {"allowed_attributes": ["tags"]},
        ],
    )
    def test_missing_config_raises_before_normalizing(self, config: object) -> None:
        """Test configuration errors win over an invalid plan."""
        with pytest.raises(ConfigurationError):
            _ = classify_plan("not a plan", config)  # type: ignore[arg-type]

    def test_no_op_entry_with_drift_is_classified(
        self,
        classifier_config: ClassifierConfig,
    ) -> None:
        """Test a no-op entry whose tags still differ gets a classification."""
        raw_plan = {
            "resources": [
                {
                    "address": "aws_s3_bucket.logs",
                    "type": "aws_s3_bucket",
                    "actions": ["no-op"],
                    "before": {"tags": {"a": 1}},
                    "after": {"tags": {"a": 2}},
                },
            ]
        }

        plan = classify_plan(raw_plan, classifier_config)

        assert [c.address for c in plan.safe_changes()] == ["aws_s3_bucket.logs"]
        assert len(plan.safe) + len(plan.requires_review) + len(plan.critical) == 1

    def test_malformed_plan_raises(self, classifier_config: ClassifierConfig) -> None:
        """Test an invalid plan raises MalformedPlanError."""
        with pytest.raises(MalformedPlanError):
            _ = classify_plan({"resources": [{"address": "a.b"}]}, classifier_config)


class TestRunRemediation:
    """Tests for run_remediation."""

    def test_end_to_end_only_safe_changes_applied(
        self,
        e2e_plan: dict[str, object],
        classifier_config: ClassifierConfig,
    ) -> None:
        """Test only the safe change reaches the applier and the report lists the rest."""
        applier = DryRunApplier()
        audit_log = InMemoryAuditLog()

        report = run_remediation(e2e_plan, classifier_config, applier, audit_log=audit_log)

        assert applier.applied == ["aws_s3_bucket.assets"]
        assert [r.outcome for r in report.applied] == [RemediationOutcome.APPLIED]
        assert [c.change.address for c in report.critical] == ["aws_ecs_service.gateway"]
        assert report.requires_review == ()
        assert report.started_at <= report.finished_at
        assert [e["address"] for e in audit_log.entries()] == ["aws_s3_bucket.assets"]

    def test_run_id_shared_by_report_and_audit(
        self,
        e2e_plan: dict[str, object],
        classifier_config: ClassifierConfig,
    ) -> None:
        """Test the report and audit entries carry the same run ID, scoped to the call."""
        audit_log = InMemoryAuditLog()

        report = run_remediation(
            e2e_plan,
            classifier_config,
            DryRunApplier(),
            audit_log=audit_log,
            run_id="nightly-7",
        )

        assert report.run_id == "nightly-7"
        assert audit_log.entries()[0]["run_id"] == "nightly-7"
        assert get_run_id() is None

    def test_generated_run_ids_differ(
        self,
        e2e_plan: dict[str, object],
        classifier_config: ClassifierConfig,
    ) -> None:
        """Test every invocation gets its own run ID."""
        first = run_remediation(e2e_plan, classifier_config, DryRunApplier())
        second = run_remediation(e2e_plan, classifier_config, DryRunApplier())

        assert first.run_id != second.run_id

    def test_layered_failure_skips_dependents(
        self,
        layered_plan: dict[str, object],
        classifier_config: ClassifierConfig,
    ) -> None:
        """Test a failed dependency skips its dependents while the independent change applies."""

        def applier(change: ResourceChange) -> None:
            if change.address == "aws_kms_key.secrets":
                raise ApplyError("key policy locked")

        report = run_remediation(layered_plan, classifier_config, applier, max_concurrency=2)

        outcomes = {r.change.address: r.outcome for r in report.applied}
        assert outcomes == {
            "aws_ecr_repository.webui": RemediationOutcome.APPLIED,
            "aws_kms_key.secrets": RemediationOutcome.FAILED,
            "aws_iam_role.task": RemediationOutcome.SKIPPED_DEPENDENCY_FAILED,
            "aws_iam_role_policy.task": RemediationOutcome.SKIPPED_DEPENDENCY_FAILED,
        }
        assert report.has_failures()

    def test_config_error_raised_before_applying(self, e2e_plan: dict[str, object]) -> None:
        """Test an empty configuration never reaches the applier."""
        applier = MagicMock()

        with pytest.raises(ConfigurationError):
            _ = run_remediation(e2e_plan, None, applier)

        applier.assert_not_called()

    def test_malformed_plan_applies_nothing(self, classifier_config: ClassifierConfig) -> None:
        """Test a malformed plan fails the whole pass without partial output."""
        applier = MagicMock()
        plan = {
            "resources": [
                {"address": "a.one", "type": "a", "actions": ["update"]},
                {"address": "b.two", "type": "b", "actions": ["update"], "dependsOn": ["gone.x"]},
            ]
        }

        with pytest.raises(MalformedPlanError):
            _ = run_remediation(plan, classifier_config, applier)

        applier.assert_not_called()

    def test_critical_and_review_never_applied(
        self,
        classifier_config: ClassifierConfig,
    ) -> None:
        """Test Critical and RequiresReview changes never reach the applier."""
        calls: list[str] = []

        def apply(change: ResourceChange) -> None:
            calls.append(change.address)

        plan = {
            "resources": [
                {
                    "address": "aws_security_group_rule.ssh",
                    "type": "aws_security_group_rule",
                    "actions": ["update"],
                    "before": {"description": "a"},
                    "after": {"description": "b"},
                },
                {
                    "address": "aws_s3_bucket.old",
                    "type": "aws_s3_bucket",
                    "actions": ["delete"],
                    "before": {"tags": {}},
                },
                {
                    "address": "aws_instance.web",
                    "type": "aws_instance",
                    "actions": ["update"],
                    "before": {"ami": "a"},
                    "after": {"ami": "b"},
                },
            ]
        }

        report = run_remediation(plan, classifier_config, apply)

        assert calls == []
        assert report.applied == ()
        assert len(report.critical) == 2
        assert len(report.requires_review) == 1
