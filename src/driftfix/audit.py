"""
Append-only audit log sinks for remediation records.

Every remediation attempt produces exactly one audit entry: one JSON
object per line, stamped with the run ID of the invocation. DriftFix only
ever appends; it never reads the log back. Correlating history (for
example to detect flapping attributes) is left to whoever consumes it.

Sinks:
    JsonLinesAuditLog: appends to a local file
    RedisAuditLog: appends to a Redis list, usable as a shared log stream
    InMemoryAuditLog: keeps entries in memory, for tests and embedding

Usage:
    from driftfix.audit import JsonLinesAuditLog

    with JsonLinesAuditLog("./driftfix-audit.jsonl") as audit_log:
        executor = RemediationExecutor(applier, audit_log)
"""

import json
import threading
from pathlib import Path
from types import TracebackType
from typing import Protocol, Self

import redis
from redis.exceptions import RedisError

from driftfix.errors import AuditLogError
from driftfix.logging_config import get_logger, get_run_id, log_with_context
from driftfix.models import RemediationRecord

logger = get_logger(__name__)


class AuditLog(Protocol):
    """Protocol for audit log sinks."""

    def append(self, record: RemediationRecord) -> None:
        """Append one remediation record."""
        ...


def _entry_for(record: RemediationRecord) -> str:
    entry = {"run_id": get_run_id(), **record.to_audit_entry()}
    return json.dumps(entry, sort_keys=True, default=str)


class InMemoryAuditLog:
    """
    Audit sink that keeps serialized entries in memory.

    Attributes:
        lines: Serialized entries in append order
    """

    def __init__(self) -> None:
        self.lines: list[str] = []
        self._lock = threading.Lock()

    def append(self, record: RemediationRecord) -> None:
        line = _entry_for(record)
        with self._lock:
            self.lines.append(line)

    def entries(self) -> list[dict[str, object]]:
        """Return parsed copies of the recorded entries."""
        with self._lock:
            return [json.loads(line) for line in self.lines]


class JsonLinesAuditLog:
    """
    Audit sink appending JSON lines to a file.

    The file is opened in append mode for each write and flushed before
    returning, so a crash mid-run loses at most the entry being written.

    Attributes:
        path: Audit log file path
    """

    def __init__(self, path: str | Path) -> None:
        """
        Initialize file sink.

        Args:
            path: Audit log file; parent directories are created on demand
        """
        self.path: Path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: RemediationRecord) -> None:
        """
        Append one record.

        Raises:
            AuditLogError: If the file cannot be written
        """
        line = _entry_for(record)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    _ = f.write(line + "\n")
                    f.flush()
        except OSError as e:
            log_with_context(
                logger,
                "error",
                "Failed to write audit entry",
                path=str(self.path),
                address=record.change.address,
                error=str(e),
            )
            raise AuditLogError(
                f"Failed to write audit log {self.path}: {e}",
                sink="jsonl",
                operation="append",
            ) from e

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Nothing to release; the file is opened per write."""


class RedisAuditLog:
    """
    Audit sink appending entries to a Redis list.

    Entries are pushed with RPUSH and never expire or get trimmed, so the
    list reads as an ordered, append-only stream of remediation attempts
    across runs and hosts.

    Attributes:
        client: Redis client
        key: List key receiving the entries
    """

    def __init__(self, redis_url: str, key: str = "driftfix:audit") -> None:
        """
        Connect to Redis.

        Args:
            redis_url: Redis connection URL (redis://host:port/db)
            key: List key for audit entries

        Raises:
            AuditLogError: If Redis is unreachable
        """
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self.client.ping()
        except RedisError as e:
            log_with_context(
                logger,
                "error",
                "Failed to connect to Redis",
                redis_url=self._sanitize_url(redis_url),
                error=str(e),
            )
            raise AuditLogError(
                f"Failed to connect to Redis: {e}",
                sink="redis",
                operation="connect",
            ) from e

        self.key: str = key

        log_with_context(
            logger,
            "info",
            "Connected audit log to Redis",
            redis_url=self._sanitize_url(redis_url),
            key=key,
        )

    @staticmethod
    def _sanitize_url(url: str) -> str:
        if "@" in url:
            scheme, _, rest = url.partition("://")
            return f"{scheme}://***@{rest.rsplit('@', 1)[-1]}"
        return url

    def append(self, record: RemediationRecord) -> None:
        """
        Append one record.

        Raises:
            AuditLogError: If the push fails
        """
        try:
            self.client.rpush(self.key, _entry_for(record))
        except RedisError as e:
            log_with_context(
                logger,
                "error",
                "Failed to push audit entry",
                key=self.key,
                address=record.change.address,
                error=str(e),
            )
            raise AuditLogError(
                f"Failed to push audit entry: {e}",
                sink="redis",
                operation="append",
            ) from e

    def close(self) -> None:
        """Close the Redis connection pool. Safe to call twice."""
        try:
            self.client.close()
        except RedisError as e:
            log_with_context(
                logger,
                "warning",
                "Error closing Redis connection",
                error=str(e),
            )

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class FanOutAuditLog:
    """
    Audit sink writing each record to several sinks in order.

    The first failing sink stops the fan-out and its error propagates.
    """

    def __init__(self, *sinks: AuditLog) -> None:
        self.sinks: tuple[AuditLog, ...] = sinks

    def append(self, record: RemediationRecord) -> None:
        for sink in self.sinks:
            sink.append(record)
