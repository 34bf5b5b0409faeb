"""
DriftFix: drift classification and safe auto-remediation.

DriftFix takes an infrastructure plan diff (per-resource before/after
attribute sets), sorts every resource change into exactly one category,
applies only the low-risk ones through an injected applier, and reports
the rest for a human. Every remediation attempt lands in an append-only
audit log.

Key Components:
    - normalizer.normalize_plan: raw plan → ordered ResourceChange list
    - classifier.Classifier: ordered rules → SafeAutoRemediate,
      RequiresReview or Critical
    - executor.RemediationExecutor: dependency-ordered apply with
      partial-failure isolation, concurrency limit and deadline
    - audit: JSON lines, Redis and in-memory audit sinks
    - report: JSON and markdown reports
    - engine.run_remediation: the whole pipeline in one call

Architecture:
    plan.json → Normalizer → Classifier ─┬─ SafeAutoRemediate → Executor → applier
                                         ├─ RequiresReview ──┐     ↓
                                         └─ Critical ────────┴→ Report + audit log

Usage:
    # Classify only
    driftfix classify --plan plan.json --policy policy.json

    # Classify and apply the safe subset
    driftfix remediate --plan plan.json --policy policy.json \\
        --apply-command "terraform apply -auto-approve -target={address}"

License: MIT
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
