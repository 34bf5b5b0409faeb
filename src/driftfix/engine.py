"""
End-to-end drift pipeline.

Wires the three stages together under one run ID:

    raw plan → normalize_plan → Classifier.partition → RemediationExecutor
             → RemediationReport

The engine holds no state between invocations. It is meant to be called
by an external scheduler (cron, CI job); every call is an independent
pass over its input, and the only lasting effect besides what the applier
does is the audit log.

Usage:
    from driftfix.engine import run_remediation
    from driftfix.appliers import DryRunApplier
    from driftfix.config import ClassifierConfig

    report = run_remediation(
        raw_plan=plan,
        config=ClassifierConfig(
            allowed_attributes={"tags"},
            protected_resource_types={"aws_security_group"},
        ),
        applier=DryRunApplier(),
    )
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from driftfix.appliers import Applier
from driftfix.audit import AuditLog, InMemoryAuditLog
from driftfix.classifier import Classifier
from driftfix.config import ClassifierConfig
from driftfix.errors import ConfigurationError
from driftfix.executor import RemediationExecutor
from driftfix.logging_config import RunContext, get_logger, log_with_context
from driftfix.models import ClassifiedPlan, RemediationReport
from driftfix.normalizer import normalize_plan

logger = get_logger(__name__)


def _resolve_config(config: ClassifierConfig | Mapping[str, Any] | None) -> ClassifierConfig:
    if config is None:
        raise ConfigurationError(
            "Classifier configuration is required",
            config_key="config",
            reason="No allow-list or protected resource types supplied",
        )
    if isinstance(config, ClassifierConfig):
        return config
    return ClassifierConfig(
        allowed_attributes=config.get("allowed_attributes"),
        protected_resource_types=config.get("protected_resource_types"),
    )


def classify_plan(
    raw_plan: Any,
    config: ClassifierConfig | Mapping[str, Any] | None,
    classifier_workers: int = 1,
) -> ClassifiedPlan:
    """
    Normalize and classify a plan without applying anything.

    Args:
        raw_plan: Parsed plan document
        config: Classifier configuration (model or mapping)
        classifier_workers: Worker threads for classification

    Returns:
        ClassifiedPlan partition

    Raises:
        ConfigurationError: If the configuration is missing or empty
        MalformedPlanError: If the plan violates the input contract
    """
    classifier = Classifier(_resolve_config(config))
    changes = normalize_plan(raw_plan)
    return classifier.partition(changes, max_workers=classifier_workers)


def run_remediation(
    raw_plan: Any,
    config: ClassifierConfig | Mapping[str, Any] | None,
    applier: Applier,
    audit_log: AuditLog | None = None,
    max_concurrency: int = 1,
    timeout_seconds: float | None = None,
    classifier_workers: int = 1,
    run_id: str | None = None,
) -> RemediationReport:
    """
    Run one full drift pass: normalize, classify, remediate safe changes.

    Only SafeAutoRemediate changes reach the applier. RequiresReview and
    Critical changes are returned untouched in the report.

    Args:
        raw_plan: Parsed plan document
        config: Classifier configuration (model or mapping)
        applier: Apply collaborator
        audit_log: Audit sink (in-memory when omitted)
        max_concurrency: Concurrent apply limit
        timeout_seconds: Deadline for the remediation pass
        classifier_workers: Worker threads for classification
        run_id: Run ID to use (generated when omitted)

    Returns:
        RemediationReport

    Raises:
        ConfigurationError: If the configuration is missing or empty,
            raised before any classification
        MalformedPlanError: If the plan violates the input contract
        AuditLogError: If the audit log cannot be written
    """
    resolved = _resolve_config(config)

    with RunContext(run_id) as current_run_id:
        started_at = datetime.now(UTC)
        log_with_context(
            logger,
            "info",
            "Starting drift run",
            allowed_attribute_count=len(resolved.allowed_attributes),
            protected_type_count=len(resolved.protected_resource_types),
        )

        plan = classify_plan(raw_plan, resolved, classifier_workers=classifier_workers)

        executor = RemediationExecutor(
            applier=applier,
            audit_log=audit_log if audit_log is not None else InMemoryAuditLog(),
            max_concurrency=max_concurrency,
            timeout_seconds=timeout_seconds,
        )
        records = executor.execute(plan.safe_changes())

        report = RemediationReport(
            run_id=current_run_id,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            applied=tuple(records),
            requires_review=plan.requires_review,
            critical=plan.critical,
        )

        log_with_context(
            logger,
            "info",
            "Finished drift run",
            outcomes=report.outcome_counts(),
            review_count=len(report.requires_review),
            critical_count=len(report.critical),
        )
        return report
