"""
Remediation executor.

Applies SafeAutoRemediate changes through an injected applier, in
dependency order, and records one ``RemediationRecord`` per change:

- A change whose dependency (among the changes being remediated) failed
  or was skipped is recorded ``skipped-dependency-failed``; the applier is
  not called for it.
- Otherwise the applier is called exactly once. Returning means
  ``applied``; raising means ``failed``. A failure never aborts changes
  that do not depend on it, and nothing is retried.
- Changes with no dependency relationship may run concurrently, up to
  ``max_concurrency`` (default 1, fully sequential).
- When the optional deadline passes, in-flight applies are allowed to
  finish and every change not yet started is recorded ``skipped-timeout``.

Each record is appended to the audit log as soon as it is decided.
Records are returned in input order.

Usage:
    from driftfix.executor import RemediationExecutor

    executor = RemediationExecutor(applier, audit_log, max_concurrency=2)
    records = executor.execute(classified_plan.safe_changes())
"""

import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime

from driftfix.appliers import Applier
from driftfix.audit import AuditLog
from driftfix.errors import ApplyError, AuditLogError
from driftfix.logging_config import get_logger, log_with_context
from driftfix.models import RemediationOutcome, RemediationRecord, ResourceChange

logger = get_logger(__name__)

_BLOCKING_OUTCOMES = frozenset(
    {
        RemediationOutcome.FAILED,
        RemediationOutcome.SKIPPED_DEPENDENCY_FAILED,
        RemediationOutcome.SKIPPED_TIMEOUT,
    }
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RemediationExecutor:
    """
    Dependency-ordered, partial-failure-tolerant remediation pass.

    Attributes:
        applier: Callable performing the actual mutation
        audit_log: Append-only sink receiving every record
        max_concurrency: Maximum concurrent applier calls
        timeout_seconds: Deadline for one ``execute`` pass, or None
    """

    def __init__(
        self,
        applier: Applier,
        audit_log: AuditLog,
        max_concurrency: int = 1,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        """
        Initialize the executor.

        Args:
            applier: Applier called once per eligible change
            audit_log: Sink receiving one entry per record
            max_concurrency: Concurrent apply limit (>= 1)
            timeout_seconds: Deadline for the pass, measured from its start
            clock: Monotonic clock used for the deadline
            now: Wall clock used for record timestamps

        Raises:
            ValueError: If max_concurrency or timeout_seconds is not positive
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self.applier: Applier = applier
        self.audit_log: AuditLog = audit_log
        self.max_concurrency: int = max_concurrency
        self.timeout_seconds: float | None = timeout_seconds
        self._clock = clock
        self._now = now

    def execute(self, changes: Sequence[ResourceChange]) -> list[RemediationRecord]:
        """
        Remediate changes in dependency order.

        Args:
            changes: SafeAutoRemediate changes in topological order

        Returns:
            One RemediationRecord per change, in input order

        Raises:
            ValueError: If addresses repeat or a change precedes one of
                its dependencies
            AuditLogError: If the audit log cannot be written. Applies
                already running are waited for and their outcomes logged
                before the error propagates
        """
        position = self._validate_order(changes)
        deadline = None if self.timeout_seconds is None else self._clock() + self.timeout_seconds

        log_with_context(
            logger,
            "info",
            "Starting remediation pass",
            change_count=len(changes),
            max_concurrency=self.max_concurrency,
            timeout_seconds=self.timeout_seconds,
        )

        outcomes: dict[str, RemediationOutcome] = {}
        records: dict[int, RemediationRecord] = {}
        pending: list[int] = list(range(len(changes)))
        in_flight: dict[Future[str | None], int] = {}

        def decide(index: int, outcome: RemediationOutcome, error: str | None = None) -> None:
            change = changes[index]
            record = RemediationRecord(
                change=change,
                outcome=outcome,
                timestamp=self._now(),
                error_detail=error,
            )
            outcomes[change.address] = outcome
            records[index] = record
            self.audit_log.append(record)
            log_with_context(
                logger,
                "warning" if outcome is not RemediationOutcome.APPLIED else "info",
                "Recorded remediation outcome",
                address=change.address,
                outcome=outcome.value,
                error=error,
            )

        def expired() -> bool:
            return deadline is not None and self._clock() >= deadline

        with ThreadPoolExecutor(
            max_workers=self.max_concurrency,
            thread_name_prefix="driftfix-apply",
        ) as pool:
            try:
                while pending or in_flight:
                    if pending and expired():
                        for index in pending:
                            decide(index, RemediationOutcome.SKIPPED_TIMEOUT)
                        log_with_context(
                            logger,
                            "warning",
                            "Remediation deadline reached",
                            skipped_count=len(pending),
                            in_flight_count=len(in_flight),
                        )
                        pending = []

                    still_pending: list[int] = []
                    for index in pending:
                        dependencies = [d for d in changes[index].depends_on if d in position]
                        if any(outcomes.get(d) in _BLOCKING_OUTCOMES for d in dependencies):
                            decide(index, RemediationOutcome.SKIPPED_DEPENDENCY_FAILED)
                        elif (
                            len(in_flight) < self.max_concurrency
                            and all(
                                outcomes.get(d) is RemediationOutcome.APPLIED
                                for d in dependencies
                            )
                            and not expired()
                        ):
                            in_flight[pool.submit(self._apply_one, changes[index])] = index
                        else:
                            still_pending.append(index)
                    pending = still_pending

                    if not in_flight:
                        continue

                    # Once nothing is pending the deadline no longer matters
                    remaining = None
                    if deadline is not None and pending:
                        remaining = max(0.0, deadline - self._clock())
                    done, _ = wait(in_flight, timeout=remaining, return_when=FIRST_COMPLETED)
                    for future in sorted(done, key=lambda f: in_flight[f]):
                        index = in_flight.pop(future)
                        error = future.result()
                        if error is None:
                            decide(index, RemediationOutcome.APPLIED)
                        else:
                            decide(index, RemediationOutcome.FAILED, error)
            except AuditLogError:
                self._log_unaudited(changes, in_flight)
                raise

        ordered = [records[index] for index in range(len(changes))]

        counts = {outcome.value.replace("-", "_"): 0 for outcome in RemediationOutcome}
        for record in ordered:
            counts[record.outcome.value.replace("-", "_")] += 1

        log_with_context(
            logger,
            "info",
            "Finished remediation pass",
            **counts,
        )
        return ordered

    def _apply_one(self, change: ResourceChange) -> str | None:
        """
        Call the applier for one change.

        Returns:
            None on success, the error detail on failure
        """
        try:
            self.applier(change)
        except ApplyError as e:
            return str(e) or "ApplyError"
        except Exception as e:
            log_with_context(
                logger,
                "error",
                "Unexpected error from applier",
                address=change.address,
                error=str(e),
                error_type=type(e).__name__,
            )
            return f"{type(e).__name__}: {e}"
        return None

    @staticmethod
    def _log_unaudited(
        changes: Sequence[ResourceChange],
        in_flight: dict[Future[str | None], int],
    ) -> None:
        """Wait for applies still running after an audit failure and log their outcomes."""
        done, _ = wait(in_flight)
        for future in sorted(done, key=lambda f: in_flight[f]):
            error = future.result()
            outcome = RemediationOutcome.APPLIED if error is None else RemediationOutcome.FAILED
            log_with_context(
                logger,
                "error",
                "Apply finished after audit log failure; outcome not audited",
                address=changes[in_flight[future]].address,
                outcome=outcome.value,
                error=error,
            )

    @staticmethod
    def _validate_order(changes: Sequence[ResourceChange]) -> dict[str, int]:
        position: dict[str, int] = {}
        for index, change in enumerate(changes):
            if change.address in position:
                raise ValueError(f"Duplicate address '{change.address}' in remediation set")
            position[change.address] = index
        for index, change in enumerate(changes):
            for dependency in change.depends_on:
                if dependency in position and position[dependency] > index:
                    raise ValueError(
                        f"'{change.address}' precedes its dependency '{dependency}'"
                    )
        return position
