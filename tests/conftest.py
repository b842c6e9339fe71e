"""Pytest configuration and shared fixtures."""

import pytest

from ldims_mcp.config.settings import Settings
from ldims_mcp.errors import ClassifierConfig, ErrorClassifier, RetryExecutor, RetryPolicy


@pytest.fixture
def settings() -> Settings:
    """Provide settings pointing at a fake LDIMS backend.

    Returns:
        Settings isolated from any local .env file.
    """
    return Settings(
        _env_file=None,
        ldims_api_base_url="http://ldims.test",
        ldims_auth_token="test-token",
        environment="test",
        error_retry_delay=0,
    )


@pytest.fixture
def classifier() -> ErrorClassifier:
    """Provide a fresh error classifier.

    Returns:
        Classifier with empty statistics.
    """
    return ErrorClassifier(ClassifierConfig(default_retry_delay_ms=0))


@pytest.fixture
def executor(classifier: ErrorClassifier) -> RetryExecutor:
    """Provide a retry executor that does not wait between attempts.

    Returns:
        Executor making up to three attempts.
    """
    return RetryExecutor(classifier, RetryPolicy(max_attempts=3, base_delay_ms=0))
