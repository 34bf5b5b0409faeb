"""
Report rendering.

Turns a ``RemediationReport`` (or a bare ``ClassifiedPlan``) into the
formats handed to external collaborators:

- ``report_to_dict``: JSON document with ``applied``, ``requiresReview``
  and ``critical`` sections plus a summary
- ``render_markdown``: a ticket or chat notification body

Delivering the output (issue tracker, webhook) is the caller's job.

Usage:
    from driftfix.report import render_markdown, report_to_dict

    print(json.dumps(report_to_dict(report), indent=2))
    issue_body = render_markdown(report)
"""

import json

from driftfix.models import (
    ClassifiedChange,
    ClassifiedPlan,
    RemediationOutcome,
    RemediationRecord,
    RemediationReport,
)

# Attribute values longer than this are truncated in markdown output
_MAX_VALUE_CHARS = 200

_OUTCOME_LABELS = {
    RemediationOutcome.APPLIED: "✅ applied",
    RemediationOutcome.FAILED: "❌ failed",
    RemediationOutcome.SKIPPED_DEPENDENCY_FAILED: "⏭️ skipped (dependency failed)",
    RemediationOutcome.SKIPPED_TIMEOUT: "⏱️ skipped (timeout)",
}


def classified_change_to_dict(item: ClassifiedChange) -> dict[str, object]:
    """Serialize a classified change for the JSON report."""
    change = item.change
    return {
        "address": change.address,
        "resourceType": change.resource_type,
        "actions": [action.value for action in change.actions],
        "changedAttributes": sorted(change.changed_attributes()),
        "dependsOn": list(change.depends_on),
        "category": item.classification.category.value,
        "rule": item.classification.rule,
        "reason": item.classification.reason,
    }


def record_to_dict(record: RemediationRecord) -> dict[str, object]:
    """Serialize a remediation record for the JSON report."""
    data: dict[str, object] = {
        "address": record.change.address,
        "resourceType": record.change.resource_type,
        "changedAttributes": sorted(record.change.changed_attributes()),
        "outcome": record.outcome.value,
        "timestamp": record.timestamp.isoformat(),
    }
    if record.error_detail is not None:
        data["errorDetail"] = record.error_detail
    return data


def classified_plan_to_dict(plan: ClassifiedPlan) -> dict[str, object]:
    """
    Serialize a classification-only result.

    Returns:
        Dictionary with ``safe``, ``requiresReview`` and ``critical`` lists
    """
    return {
        "summary": {
            "safe": len(plan.safe),
            "requiresReview": len(plan.requires_review),
            "critical": len(plan.critical),
        },
        "safe": [classified_change_to_dict(item) for item in plan.safe],
        "requiresReview": [classified_change_to_dict(item) for item in plan.requires_review],
        "critical": [classified_change_to_dict(item) for item in plan.critical],
    }


def report_to_dict(report: RemediationReport) -> dict[str, object]:
    """
    Serialize a remediation report.

    Returns:
        JSON-serializable dictionary
    """
    counts = report.outcome_counts()
    return {
        "runId": report.run_id,
        "startedAt": report.started_at.isoformat(),
        "finishedAt": report.finished_at.isoformat(),
        "summary": {
            "applied": counts[RemediationOutcome.APPLIED.value],
            "failed": counts[RemediationOutcome.FAILED.value],
            "skippedDependencyFailed": counts[RemediationOutcome.SKIPPED_DEPENDENCY_FAILED.value],
            "skippedTimeout": counts[RemediationOutcome.SKIPPED_TIMEOUT.value],
            "requiresReview": len(report.requires_review),
            "critical": len(report.critical),
        },
        "applied": [record_to_dict(record) for record in report.applied],
        "requiresReview": [classified_change_to_dict(item) for item in report.requires_review],
        "critical": [classified_change_to_dict(item) for item in report.critical],
    }


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def _value(value: object) -> str:
    text = json.dumps(value, sort_keys=True, default=str)
    if len(text) > _MAX_VALUE_CHARS:
        text = text[:_MAX_VALUE_CHARS] + "…"
    return _cell(text)


def _change_table(items: tuple[ClassifiedChange, ...]) -> str:
    lines = [
        "| Resource | Type | Actions | Reason |",
        "|----------|------|---------|--------|",
    ]
    for item in items:
        change = item.change
        actions = ", ".join(action.value for action in change.actions)
        lines.append(
            f"| `{change.address}` | {change.resource_type} | {actions} "
            f"| {_cell(item.classification.reason)} |"
        )
    return "\n".join(lines)


def _attribute_details(items: tuple[ClassifiedChange, ...]) -> str:
    sections = []
    for item in items:
        change = item.change
        rows = [
            f"<details><summary><code>{change.address}</code></summary>",
            "",
            "| Attribute | Before | After |",
            "|-----------|--------|-------|",
        ]
        for key in sorted(change.changed_attributes()):
            before = _value(change.before[key]) if key in change.before else "_(absent)_"
            after = _value(change.after[key]) if key in change.after else "_(absent)_"
            rows.append(f"| `{key}` | {before} | {after} |")
        rows.extend(["", "</details>"])
        sections.append("\n".join(rows))
    return "\n\n".join(sections)


def render_markdown(report: RemediationReport) -> str:
    """
    Render a report as a markdown ticket body.

    Args:
        report: Result of one drift run

    Returns:
        Markdown text
    """
    counts = report.outcome_counts()
    parts = [
        "## Infrastructure Drift Report",
        "",
        f"Run `{report.run_id}` finished at {report.finished_at.isoformat()}.",
        "",
        "| Outcome | Count |",
        "|---------|-------|",
        f"| Auto-remediated | {counts[RemediationOutcome.APPLIED.value]} |",
        f"| Remediation failed | {counts[RemediationOutcome.FAILED.value]} |",
        f"| Skipped (dependency failed) | {counts[RemediationOutcome.SKIPPED_DEPENDENCY_FAILED.value]} |",
        f"| Skipped (timeout) | {counts[RemediationOutcome.SKIPPED_TIMEOUT.value]} |",
        f"| Requires review | {len(report.requires_review)} |",
        f"| Critical | {len(report.critical)} |",
    ]

    if report.critical:
        parts += [
            "",
            "### 🚨 Critical drift",
            "",
            "Destructive or protected-resource changes. These were not applied.",
            "",
            _change_table(report.critical),
            "",
            _attribute_details(report.critical),
        ]

    if report.requires_review:
        parts += [
            "",
            "### 🔍 Requires review",
            "",
            _change_table(report.requires_review),
            "",
            _attribute_details(report.requires_review),
        ]

    if report.applied:
        parts += [
            "",
            "### 🔧 Automatic remediation",
            "",
            "| Resource | Outcome | Detail |",
            "|----------|---------|--------|",
        ]
        for record in report.applied:
            detail = _cell(record.error_detail or "")
            parts.append(
                f"| `{record.change.address}` | {_OUTCOME_LABELS[record.outcome]} | {detail} |"
            )

    if not (report.critical or report.requires_review or report.applied):
        parts += ["", "No drift detected. ✨"]

    return "\n".join(parts) + "\n"
