"""
Configuration management for DriftFix.

Two layers of configuration exist:

- ``ClassifierConfig`` is the explicit safety configuration handed to the
  classifier: the allow-list of low-risk attributes and the set of
  protected resource types. It refuses to exist with either set empty.
- ``Settings`` loads process-level settings from environment variables
  (and an optional ``.env`` file) using Pydantic settings. The CLI turns
  it into a ``ClassifierConfig`` and executor parameters; library callers
  can skip it entirely and build ``ClassifierConfig`` themselves.

Environment Variables:
    ALLOWED_ATTRIBUTES: Comma separated or JSON list of low-risk attributes
    PROTECTED_RESOURCE_TYPES: Comma separated or JSON list of protected types
    MAX_CONCURRENT_APPLIES: Concurrent apply limit (default: 1)
    REMEDIATION_TIMEOUT_SECONDS: Deadline for the executor pass (optional)
    CLASSIFIER_WORKERS: Worker threads used for classification (default: 1)
    APPLY_REQUESTS_PER_MINUTE: Throttle for the applier (optional)
    APPLY_COMMAND: Command template run per change (optional)
    AUDIT_LOG_PATH: JSON lines audit log file (default: ./driftfix-audit.jsonl)
    REDIS_URL: Redis URL for the audit stream (optional)
    LOG_LEVEL: Logging level (default: INFO)

Usage:
    from driftfix.config import get_settings

    settings = get_settings()
    classifier_config = settings.classifier_config()
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from driftfix.errors import ConfigurationError


def _parse_name_set(value: Any, config_key: str) -> frozenset[str]:
    """
    Parse a set of names from a list, a JSON array or a comma separated string.

    Raises:
        ConfigurationError: If the value has an unsupported shape
    """
    if value is None:
        return frozenset()
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"{config_key} is not valid JSON: {e}",
                    config_key=config_key,
                    reason=str(e),
                ) from e
        else:
            value = text.split(",")
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ConfigurationError(
            f"{config_key} must be a list of names",
            config_key=config_key,
            reason=f"Unsupported type {type(value).__name__}",
        )
    names: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            raise ConfigurationError(
                f"{config_key} entries must be strings, got {item!r}",
                config_key=config_key,
                reason="Non-string entry",
            )
        if item.strip():
            names.add(item.strip())
    return frozenset(names)


class ClassifierConfig(BaseModel):
    """
    Safety configuration for the classifier.

    Attributes:
        allowed_attributes: Attributes whose value changes are low risk
            (tag maps, descriptions, name prefixes)
        protected_resource_types: Resource types that are always Critical
    """

    model_config = ConfigDict(frozen=True)

    allowed_attributes: frozenset[str] = Field(default=frozenset(), validate_default=True)
    protected_resource_types: frozenset[str] = Field(
        default=frozenset(),
        validate_default=True,
    )

    @field_validator("allowed_attributes", mode="before")
    @classmethod
    def validate_allowed_attributes(cls, v: Any) -> frozenset[str]:
        """
        Validate the allow-list is present and non-empty.

        Raises:
            ConfigurationError: If the allow-list is empty or malformed
        """
        names = _parse_name_set(v, "ALLOWED_ATTRIBUTES")
        if not names:
            raise ConfigurationError(
                "ALLOWED_ATTRIBUTES is required but empty",
                config_key="ALLOWED_ATTRIBUTES",
                reason="Refusing to classify without an attribute allow-list",
            )
        return names

    @field_validator("protected_resource_types", mode="before")
    @classmethod
    def validate_protected_resource_types(cls, v: Any) -> frozenset[str]:
        """
        Validate the protected type set is present and non-empty.

        Raises:
            ConfigurationError: If the set is empty or malformed
        """
        names = _parse_name_set(v, "PROTECTED_RESOURCE_TYPES")
        if not names:
            raise ConfigurationError(
                "PROTECTED_RESOURCE_TYPES is required but empty",
                config_key="PROTECTED_RESOURCE_TYPES",
                reason="Refusing to classify without protected resource types",
            )
        return names

    @classmethod
    def from_policy_file(cls, path: str | Path) -> "ClassifierConfig":
        """
        Load a classifier configuration from a JSON policy file.

        The file holds ``{"allowed_attributes": [...],
        "protected_resource_types": [...]}``.

        Args:
            path: Path to the policy file

        Returns:
            Validated ClassifierConfig

        Raises:
            ConfigurationError: If the file is unreadable or invalid
        """
        policy_path = Path(path)
        try:
            data = json.loads(policy_path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read policy file {policy_path}: {e}",
                config_key="policy",
                reason=str(e),
            ) from e
        except UnicodeDecodeError as e:
            raise ConfigurationError(
                f"Policy file {policy_path} is not valid UTF-8: {e}",
                config_key="policy",
                reason=str(e),
            ) from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Policy file {policy_path} is not valid JSON: {e}",
                config_key="policy",
                reason=str(e),
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Policy file {policy_path} must contain a JSON object",
                config_key="policy",
                reason="Top-level value is not an object",
            )
        try:
            return cls(
                allowed_attributes=data.get("allowed_attributes"),
                protected_resource_types=data.get("protected_resource_types"),
            )
        except ValidationError as e:
            raise ConfigurationError(
                f"Policy file {policy_path} is invalid: {e}",
                config_key="policy",
                reason=str(e),
            ) from e


class Settings(BaseSettings):
    """
    DriftFix process settings.

    Attributes:
        allowed_attributes: Raw allow-list (validated by ClassifierConfig)
        protected_resource_types: Raw protected types (validated by ClassifierConfig)
        max_concurrent_applies: Upper bound on concurrent apply calls
        remediation_timeout_seconds: Deadline for one executor pass
        classifier_workers: Worker threads used to classify changes
        apply_requests_per_minute: Optional applier throttle
        apply_command: Command template for the command applier
        audit_log_path: JSON lines audit log file
        redis_url: Optional Redis URL for the audit stream
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    allowed_attributes: Annotated[frozenset[str], NoDecode] = Field(
        default_factory=frozenset,
        description="Attributes that may be remediated without review",
    )
    protected_resource_types: Annotated[frozenset[str], NoDecode] = Field(
        default_factory=frozenset,
        description="Resource types whose drift is always Critical",
    )
    max_concurrent_applies: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Maximum concurrent apply calls",
    )
    remediation_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Deadline for the remediation pass",
    )
    classifier_workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Worker threads for classification",
    )
    apply_requests_per_minute: int | None = Field(
        default=None,
        ge=1,
        description="Maximum apply calls per minute",
    )
    apply_command: str | None = Field(
        default=None,
        description="Command template, e.g. 'terraform apply -auto-approve -target={address}'",
    )
    audit_log_path: str = Field(
        default="./driftfix-audit.jsonl",
        description="Path to the JSON lines audit log",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for the audit stream",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("allowed_attributes", mode="before")
    @classmethod
    def parse_allowed_attributes(cls, v: Any) -> frozenset[str]:
        """Parse the allow-list from a comma separated string or JSON list."""
        return _parse_name_set(v, "ALLOWED_ATTRIBUTES")

    @field_validator("protected_resource_types", mode="before")
    @classmethod
    def parse_protected_resource_types(cls, v: Any) -> frozenset[str]:
        """Parse protected types from a comma separated string or JSON list."""
        return _parse_name_set(v, "PROTECTED_RESOURCE_TYPES")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate log level is recognized.

        Raises:
            ConfigurationError: If log level is invalid
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ConfigurationError(
                f"LOG_LEVEL '{v}' is not valid. Must be one of: {', '.join(sorted(valid_levels))}",
                config_key="LOG_LEVEL",
                reason=f"Invalid log level: {v}",
            )
        return v_upper

    @field_validator("apply_command")
    @classmethod
    def validate_apply_command(cls, v: str | None) -> str | None:
        """
        Validate the apply command template references the change address.

        Raises:
            ConfigurationError: If the template has no ``{address}`` placeholder
        """
        if v is None or not v.strip():
            return None
        if "{address}" not in v:
            raise ConfigurationError(
                "APPLY_COMMAND must contain an {address} placeholder",
                config_key="APPLY_COMMAND",
                reason="Template would apply the same target for every change",
            )
        return v.strip()

    def classifier_config(self) -> ClassifierConfig:
        """
        Build the classifier configuration from these settings.

        Returns:
            Validated ClassifierConfig

        Raises:
            ConfigurationError: If the allow-list or protected types are unset
        """
        return ClassifierConfig(
            allowed_attributes=self.allowed_attributes,
            protected_resource_types=self.protected_resource_types,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Validated Settings instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    try:
        return Settings()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load configuration: {e}",
            reason=str(e),
        ) from e
