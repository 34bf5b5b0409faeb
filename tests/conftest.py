"""
Shared pytest fixtures for DriftFix tests.

Fixtures include environment variables for Settings, classifier
configurations, sample plan documents, a ResourceChange factory and a
fakeredis-backed Redis client.

Usage:
    def test_something(classifier_config, e2e_plan):
        # Fixtures are injected automatically by pytest
        assert classifier_config.allowed_attributes
"""

from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import patch

import fakeredis
import pytest
from _pytest.monkeypatch import MonkeyPatch

from driftfix.config import ClassifierConfig, Settings
from driftfix.models import ChangeAction, ResourceChange


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def mock_env_vars(monkeypatch: MonkeyPatch) -> dict[str, str]:
    """
    Set up environment variables for Settings.

    Args:
        monkeypatch: pytest monkeypatch fixture

    Returns:
        Dictionary of environment variable names and values
    """
    env_vars = {
        "ALLOWED_ATTRIBUTES": "tags,tags_all,description,name_prefix",
        "PROTECTED_RESOURCE_TYPES": '["aws_security_group_rule", "aws_ecs_service", "aws_db_instance", "aws_lb"]',
        "MAX_CONCURRENT_APPLIES": "2",
        "CLASSIFIER_WORKERS": "4",
        "LOG_LEVEL": "DEBUG",
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Settings:
    """
    Provide a Settings instance built from mock_env_vars.

    Settings is created directly to bypass the get_settings cache.
    """
    _ = mock_env_vars
    return Settings()


@pytest.fixture
def classifier_config() -> ClassifierConfig:
    """
    Provide the standard classifier configuration used across tests.

    The allow-list holds tag maps, descriptions and name prefixes. The
    protected types are a network rule, a compute service, a managed
    database and a load balancer.
    """
    return ClassifierConfig(
        allowed_attributes={"tags", "tags_all", "description", "name_prefix"},
        protected_resource_types={
            "aws_security_group_rule",
            "aws_ecs_service",
            "aws_db_instance",
            "aws_lb",
        },
    )


@pytest.fixture
def unprotected_compute_config() -> ClassifierConfig:
    """Classifier configuration that does not protect compute services."""
    return ClassifierConfig(
        allowed_attributes={"tags", "description"},
        protected_resource_types={"aws_security_group_rule"},
    )


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def make_change() -> Callable[..., ResourceChange]:
    """
    Provide a factory for ResourceChange objects.

    Returns:
        Callable accepting address plus optional overrides
    """

    def factory(
        address: str,
        resource_type: str = "aws_s3_bucket",
        actions: tuple[str, ...] = ("update",),
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        depends_on: tuple[str, ...] = (),
    ) -> ResourceChange:
        return ResourceChange(
            address=address,
            resource_type=resource_type,
            actions=tuple(ChangeAction(a) for a in actions),
            before={"tags": {"team": "web"}} if before is None else before,
            after={"tags": {"team": "platform"}} if after is None else after,
            depends_on=tuple(sorted(depends_on)),
        )

    return factory


@pytest.fixture
def e2e_plan() -> dict[str, object]:
    """
    Provide a plan with a tags-only storage change and a compute scale change.

    Returns:
        Raw plan document
    """
    return {
        "resources": [
            {
                "address": "aws_s3_bucket.assets",
                "type": "aws_s3_bucket",
                "actions": ["update"],
                "before": {"bucket": "webui-assets", "tags": {"env": "dev"}},
                "after": {"bucket": "webui-assets", "tags": {"env": "prod"}},
                "dependsOn": [],
            },
            {
                "address": "aws_ecs_service.gateway",
                "type": "aws_ecs_service",
                "actions": ["update"],
                "before": {"name": "gateway", "desiredCount": 1},
                "after": {"name": "gateway", "desiredCount": 2},
                "dependsOn": [],
            },
        ]
    }


@pytest.fixture
def layered_plan() -> dict[str, object]:
    """
    Provide a plan with a dependency chain and an independent resource.

    Order in the document deliberately lists dependents before their
    dependencies:

        aws_ecr_repository.webui  (independent)
        aws_iam_role_policy.task  -> aws_iam_role.task
        aws_iam_role.task         -> aws_kms_key.secrets
        aws_kms_key.secrets
    """
    tags_change = {
        "before": {"tags": {"owner": "ops"}},
        "after": {"tags": {"owner": "platform"}},
    }
    return {
        "resources": [
            {
                "address": "aws_ecr_repository.webui",
                "type": "aws_ecr_repository",
                "actions": ["update"],
                **tags_change,
            },
            {
                "address": "aws_iam_role_policy.task",
                "type": "aws_iam_role_policy",
                "actions": ["update"],
                "dependsOn": ["aws_iam_role.task"],
                **tags_change,
            },
            {
                "address": "aws_iam_role.task",
                "type": "aws_iam_role",
                "actions": ["update"],
                "dependsOn": ["aws_kms_key.secrets"],
                **tags_change,
            },
            {
                "address": "aws_kms_key.secrets",
                "type": "aws_kms_key",
                "actions": ["update"],
                **tags_change,
            },
        ]
    }


# =============================================================================
# Mock Client Fixtures
# =============================================================================


@pytest.fixture
def mock_redis_client() -> Generator[fakeredis.FakeRedis, None, None]:
    """
    Provide an in-memory Redis via fakeredis.

    Patches redis.from_url so RedisAuditLog connects to the fake server.

    Yields:
        FakeRedis client shared with the code under test
    """
    fake_redis = fakeredis.FakeRedis(decode_responses=True)
    with patch("redis.from_url", return_value=fake_redis):
        yield fake_redis


# =============================================================================
# Utility Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """
    Reset cached settings between tests.

    Yields:
        None (used for cleanup after test)
    """
    from driftfix.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()
