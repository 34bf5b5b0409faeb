"""
Data model for the drift pipeline.

All records are immutable Pydantic models created fresh on every
invocation. They serialize directly to the JSON report and audit log
formats.

Types:
    ResourceChange: One unit of drift for a single resource
    Classification: The verdict for one ResourceChange
    ClassifiedChange: A change paired with its verdict
    ClassifiedPlan: The three-way partition of a normalized plan
    RemediationRecord: Outcome of attempting one safe change
    RemediationReport: Everything one run produced, for external reporting
"""

from datetime import datetime
from enum import Enum
from typing import Any, Self, override

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChangeAction(str, Enum):
    """Plan actions a resource change may carry."""

    NO_OP = "no-op"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"


DESTRUCTIVE_ACTIONS = frozenset({ChangeAction.DELETE, ChangeAction.REPLACE})


class Category(str, Enum):
    """
    Classification categories.

    Attributes:
        SAFE_AUTO_REMEDIATE: Low-risk drift applied without a human
        REQUIRES_REVIEW: Drift that needs a human decision
        CRITICAL: Destructive or high-blast-radius drift, never auto-applied
    """

    SAFE_AUTO_REMEDIATE = "SafeAutoRemediate"
    REQUIRES_REVIEW = "RequiresReview"
    CRITICAL = "Critical"


class RemediationOutcome(str, Enum):
    """Result of one remediation attempt."""

    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED_DEPENDENCY_FAILED = "skipped-dependency-failed"
    SKIPPED_TIMEOUT = "skipped-timeout"


_MISSING = object()


class ResourceChange(BaseModel):
    """
    One unit of drift for a single infrastructure resource.

    Attributes:
        address: Unique identifier of the resource within the plan
        resource_type: Category of resource (e.g., aws_s3_bucket)
        actions: Ordered plan actions for this resource
        before: Current attribute values (empty if resource does not exist)
        after: Desired attribute values (empty if resource is removed)
        depends_on: Addresses that must be applied before this change
    """

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., min_length=1, description="Resource address")
    resource_type: str = Field(..., min_length=1, description="Resource type")
    actions: tuple[ChangeAction, ...] = Field(..., description="Plan actions")
    before: dict[str, Any] = Field(default_factory=dict)
    after: dict[str, Any] = Field(default_factory=dict)
    depends_on: tuple[str, ...] = Field(
        default=(),
        description="Sorted addresses this change must be applied after",
    )

    def added_attributes(self) -> set[str]:
        """Attribute keys present only in ``after``."""
        return set(self.after) - set(self.before)

    def removed_attributes(self) -> set[str]:
        """Attribute keys present only in ``before``."""
        return set(self.before) - set(self.after)

    def changed_attributes(self) -> set[str]:
        """
        Attribute keys whose value differs between ``before`` and ``after``.

        Added and removed keys count as changed.
        """
        keys = set(self.before) | set(self.after)
        return {
            key
            for key in keys
            if self.before.get(key, _MISSING) != self.after.get(key, _MISSING)
        }

    def is_destructive(self) -> bool:
        """Whether the change deletes or replaces the resource."""
        return any(action in DESTRUCTIVE_ACTIONS for action in self.actions)

    @override
    def __str__(self) -> str:
        """Return human-readable string representation."""
        actions = ",".join(action.value for action in self.actions)
        return f"ResourceChange({self.address}, {self.resource_type}, [{actions}])"


class Classification(BaseModel):
    """
    The engine's verdict for one ResourceChange.

    Attributes:
        category: Exactly one of the three categories
        reason: Human-readable justification
        rule: Name of the rule that matched
    """

    model_config = ConfigDict(frozen=True)

    category: Category
    reason: str
    rule: str


class ClassifiedChange(BaseModel):
    """A resource change together with its classification."""

    model_config = ConfigDict(frozen=True)

    change: ResourceChange
    classification: Classification


class ClassifiedPlan(BaseModel):
    """
    Normalized plan partitioned by category.

    Each bucket keeps the normalizer's topological order.
    """

    model_config = ConfigDict(frozen=True)

    safe: tuple[ClassifiedChange, ...] = ()
    requires_review: tuple[ClassifiedChange, ...] = ()
    critical: tuple[ClassifiedChange, ...] = ()

    def safe_changes(self) -> list[ResourceChange]:
        """Changes eligible for automatic remediation, in order."""
        return [item.change for item in self.safe]

    def __len__(self) -> int:
        return len(self.safe) + len(self.requires_review) + len(self.critical)


class RemediationRecord(BaseModel):
    """
    Outcome of attempting to apply one SafeAutoRemediate change.

    Attributes:
        change: The originating change
        outcome: What happened
        timestamp: When the outcome was decided (UTC)
        error_detail: Failure description, only for failed outcomes
    """

    model_config = ConfigDict(frozen=True)

    change: ResourceChange
    outcome: RemediationOutcome
    timestamp: datetime
    error_detail: str | None = None

    @model_validator(mode="after")
    def _error_detail_only_on_failure(self) -> Self:
        if self.outcome is RemediationOutcome.FAILED and not self.error_detail:
            raise ValueError("error_detail is required when outcome is failed")
        if self.outcome is not RemediationOutcome.FAILED and self.error_detail:
            raise ValueError("error_detail is only allowed when outcome is failed")
        return self

    def to_audit_entry(self) -> dict[str, object]:
        """
        Flatten the record into one audit log entry.

        Returns:
            JSON-serializable dictionary
        """
        entry: dict[str, object] = {
            "timestamp": self.timestamp.isoformat(),
            "address": self.change.address,
            "resource_type": self.change.resource_type,
            "actions": [action.value for action in self.change.actions],
            "outcome": self.outcome.value,
        }
        if self.error_detail is not None:
            entry["error_detail"] = self.error_detail
        return entry


class RemediationReport(BaseModel):
    """
    Structured result of one drift run.

    ``applied`` holds a record for every SafeAutoRemediate change, whatever
    its outcome. The other two buckets were never passed to the applier.

    Attributes:
        run_id: Run identifier shared with the logs and audit entries
        started_at: When the run began (UTC)
        finished_at: When the run ended (UTC)
        applied: Remediation records in normalizer order
        requires_review: Changes needing human review
        critical: Changes that must never be auto-applied
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    started_at: datetime
    finished_at: datetime
    applied: tuple[RemediationRecord, ...] = ()
    requires_review: tuple[ClassifiedChange, ...] = ()
    critical: tuple[ClassifiedChange, ...] = ()

    def outcome_counts(self) -> dict[str, int]:
        """Count remediation records by outcome."""
        counts = {outcome.value: 0 for outcome in RemediationOutcome}
        for record in self.applied:
            counts[record.outcome.value] += 1
        return counts

    def has_failures(self) -> bool:
        """Whether any safe change failed to apply."""
        return any(r.outcome is RemediationOutcome.FAILED for r in self.applied)
