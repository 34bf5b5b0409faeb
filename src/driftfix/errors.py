"""
Custom exception classes for DriftFix.

This module defines the exception hierarchy used throughout DriftFix. Each
exception class maps to one failure mode of the drift pipeline and carries a
structured context dictionary for logging.

Exception Hierarchy:
    DriftFixError (base)
    ├── MalformedPlanError (plan document violates the input contract)
    ├── ConfigurationError (missing or invalid safety configuration)
    ├── ApplyError (apply collaborator failed for one change)
    └── AuditLogError (audit sink could not be written)

Propagation Semantics:
    - MalformedPlanError fails the whole normalization pass
    - ConfigurationError is raised before any classification happens
    - ApplyError is recorded against a single change and never aborts siblings
    - AuditLogError propagates to the caller; the audit trail is mandatory
"""


class DriftFixError(Exception):
    """
    Base exception for all DriftFix errors.

    Attributes:
        message: Human-readable error description
        retryable: Whether the caller may reasonably retry the operation
        context: Additional context dictionary for structured logging
    """

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        context: dict[str, object] | None = None,
    ) -> None:
        """
        Initialize DriftFix error.

        Args:
            message: Human-readable error description
            retryable: Whether the caller may retry
            context: Additional context for structured logging
        """
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.context = context or {}

    def __str__(self) -> str:
        """Return string representation of error."""
        return self.message


class MalformedPlanError(DriftFixError):
    """
    Plan document does not satisfy the input contract.

    Raised by the normalizer when an entry is missing a required field,
    carries an unknown action, references an address absent from the plan,
    or when the dependency graph contains a cycle. The whole pass fails;
    the upstream plan has to be fixed.

    Attributes:
        entry_index: Position of the offending entry in the plan, if known
        address: Address of the offending entry, if known
        field: Name of the offending field, if applicable
    """

    def __init__(
        self,
        message: str,
        entry_index: int | None = None,
        address: str | None = None,
        field: str | None = None,
    ) -> None:
        """
        Initialize malformed plan error.

        Args:
            message: Human-readable error description
            entry_index: Index of the entry within ``resources``
            address: Resource address of the entry
            field: Field that failed validation
        """
        context = {
            "entry_index": entry_index,
            "address": address,
            "field": field,
        }
        super().__init__(message, retryable=False, context=context)
        self.entry_index = entry_index
        self.address = address
        self.field = field


class ConfigurationError(DriftFixError):
    """
    Error in DriftFix configuration.

    Raised when required configuration is missing or invalid. An empty
    allow-list or protected-type set is always a configuration error:
    an engine without safety configuration must not run.

    Attributes:
        config_key: Configuration key that is invalid
        reason: Specific validation failure reason
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        reason: str | None = None,
    ) -> None:
        """
        Initialize configuration error.

        Args:
            message: Human-readable error description
            config_key: Configuration key that failed validation
            reason: Why the configuration is invalid
        """
        context = {
            "config_key": config_key,
            "reason": reason,
        }
        super().__init__(message, retryable=False, context=context)
        self.config_key = config_key
        self.reason = reason


class ApplyError(DriftFixError):
    """
    The apply collaborator failed to remediate one change.

    Appliers raise this to report a failed mutation. The executor records
    the failure against that change only. The ``retryable`` hint is kept for
    reporting; DriftFix never retries on its own.

    Attributes:
        address: Address of the change that failed
        exit_code: Exit code of an external command, when one was run
    """

    def __init__(
        self,
        message: str,
        address: str | None = None,
        exit_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        """
        Initialize apply error.

        Args:
            message: Human-readable error description
            address: Resource address being applied
            exit_code: Exit code of the apply command, if any
            retryable: Hint for the caller's retry policy
        """
        context = {
            "address": address,
            "exit_code": exit_code,
        }
        super().__init__(message, retryable=retryable, context=context)
        self.address = address
        self.exit_code = exit_code


class AuditLogError(DriftFixError):
    """
    Error writing to an audit log sink.

    Attributes:
        sink: Name of the sink that failed (e.g., "jsonl", "redis")
        operation: Operation that failed (e.g., "append", "connect")
    """

    def __init__(
        self,
        message: str,
        sink: str | None = None,
        operation: str | None = None,
    ) -> None:
        """
        Initialize audit log error.

        Args:
            message: Human-readable error description
            sink: Audit sink name
            operation: Operation that failed
        """
        context = {
            "sink": sink,
            "operation": operation,
        }
        super().__init__(message, retryable=False, context=context)
        self.sink = sink
        self.operation = operation
