"""
Apply collaborators.

The executor never mutates infrastructure itself. It calls an injected
applier, any callable taking a ``ResourceChange`` that returns on success
and raises ``ApplyError`` on failure. This module ships the appliers used
by the CLI:

- ``DryRunApplier`` logs what would be applied and always succeeds.
- ``CommandApplier`` runs an operator supplied command template per
  change, e.g. ``terraform apply -auto-approve -target={address}``.
- ``RateLimitedApplier`` wraps another applier with a token bucket.

Usage:
    from driftfix.appliers import CommandApplier, RateLimitedApplier

    applier = RateLimitedApplier(
        CommandApplier("terraform apply -auto-approve -target={address}"),
        requests_per_minute=30,
    )
"""

import shlex
import subprocess
from collections.abc import Callable
from pathlib import Path

from driftfix.errors import ApplyError
from driftfix.logging_config import get_logger, log_with_context
from driftfix.models import ResourceChange
from driftfix.rate_limiter import RateLimitConfig, TokenBucketRateLimiter

logger = get_logger(__name__)

Applier = Callable[[ResourceChange], None]

# Keep captured output small enough for audit entries
_MAX_OUTPUT_CHARS = 1000


class DryRunApplier:
    """
    Applier that records intent without touching infrastructure.

    Attributes:
        applied: Addresses passed to the applier, in call order
    """

    def __init__(self) -> None:
        self.applied: list[str] = []

    def __call__(self, change: ResourceChange) -> None:
        log_with_context(
            logger,
            "info",
            "Dry run: would apply change",
            address=change.address,
            resource_type=change.resource_type,
            attributes=sorted(change.changed_attributes()),
        )
        self.applied.append(change.address)


class CommandApplier:
    """
    Applier that runs an external command for each change.

    The template is split with ``shlex`` and each argument is formatted
    with ``address`` and ``type``, so no shell is involved and addresses
    containing spaces or quotes are passed through verbatim.

    Attributes:
        template: Command template containing ``{address}``
        timeout_seconds: Timeout for one command run
        working_dir: Directory the command runs in
    """

    def __init__(
        self,
        template: str,
        timeout_seconds: float = 600.0,
        working_dir: str | Path | None = None,
    ) -> None:
        """
        Initialize command applier.

        Args:
            template: Command template, e.g. ``terraform apply -target={address}``
            timeout_seconds: Per-change timeout
            working_dir: Working directory for the command

        Raises:
            ValueError: If the template is empty
        """
        self.template: str = template
        self.argv_template: list[str] = shlex.split(template)
        if not self.argv_template:
            raise ValueError("Apply command template is empty")
        self.timeout_seconds: float = timeout_seconds
        self.working_dir: Path | None = Path(working_dir) if working_dir else None

    def build_command(self, change: ResourceChange) -> list[str]:
        """
        Render the command for one change.

        Returns:
            Argument vector
        """
        return [
            arg.format(address=change.address, type=change.resource_type)
            for arg in self.argv_template
        ]

    def __call__(self, change: ResourceChange) -> None:
        """
        Run the command for a change.

        Raises:
            ApplyError: If the command is missing, times out or exits non-zero
        """
        command = self.build_command(change)

        log_with_context(
            logger,
            "info",
            "Running apply command",
            address=change.address,
            command=command,
        )

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                cwd=self.working_dir,
            )
        except FileNotFoundError as e:
            raise ApplyError(
                f"Apply command not found: {command[0]}",
                address=change.address,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ApplyError(
                f"Apply command timed out after {self.timeout_seconds}s",
                address=change.address,
                retryable=True,
            ) from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise ApplyError(
                f"Apply command exited with {result.returncode}: {output[:_MAX_OUTPUT_CHARS]}",
                address=change.address,
                exit_code=result.returncode,
            )


class RateLimitedApplier:
    """
    Applier wrapper that throttles calls through a token bucket.

    Attributes:
        inner: Wrapped applier
        limiter: Token bucket shared by all calls through this wrapper
        acquire_timeout: Seconds to wait for a token before failing the change
    """

    def __init__(
        self,
        inner: Applier,
        requests_per_minute: int,
        burst_size: int = 1,
        acquire_timeout: float = 300.0,
        limiter: TokenBucketRateLimiter | None = None,
    ) -> None:
        """
        Initialize rate limited applier.

        Args:
            inner: Applier to throttle
            requests_per_minute: Sustained apply rate
            burst_size: Calls allowed back to back
            acquire_timeout: Maximum wait for a token
            limiter: Pre-built limiter (overrides rate and burst)
        """
        self.inner: Applier = inner
        self.limiter: TokenBucketRateLimiter = limiter or TokenBucketRateLimiter(
            RateLimitConfig(requests_per_minute=requests_per_minute, burst_size=burst_size)
        )
        self.acquire_timeout: float = acquire_timeout

    def __call__(self, change: ResourceChange) -> None:
        """
        Wait for a token, then delegate.

        Raises:
            ApplyError: If no token becomes available in time, or the
                wrapped applier fails
        """
        if not self.limiter.acquire(timeout=self.acquire_timeout):
            raise ApplyError(
                f"Rate limit wait exceeded {self.acquire_timeout}s",
                address=change.address,
                retryable=True,
            )
        self.inner(change)
