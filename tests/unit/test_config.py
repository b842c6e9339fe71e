"""Tests for the configuration module."""

import os
from unittest.mock import patch

import pytest

from ldims_mcp.config import (
    ConfigurationError,
    Settings,
    get_settings,
    load_settings,
    validate_settings,
)
from ldims_mcp.errors.types import ErrorCode


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep configuration variables of the host out of these tests."""
    for name in [*Settings.model_fields, "node_env"]:
        monkeypatch.delenv(name.upper(), raising=False)


class TestSettingsDefaults:
    """Tests for Settings default values."""

    def test_backend_defaults(self) -> None:
        """Test the default LDIMS backend settings."""
        settings = Settings(_env_file=None)

        assert settings.ldims_api_base_url == "http://localhost:3000"
        assert settings.ldims_api_version == "v1"
        assert settings.ldims_api_timeout == 30000
        assert settings.ldims_api_retry_count == 3
        assert settings.ldims_auth_token is None

    def test_server_defaults(self) -> None:
        """Test the default MCP server and HTTP settings."""
        settings = Settings(_env_file=None)

        assert settings.mcp_server_name == "ldims-document-mcp"
        assert settings.http_port == 3001
        assert settings.log_level == "info"
        assert settings.config_validation_level == "strict"

    def test_derived_properties(self) -> None:
        """Test the API prefix and timeout conversion."""
        settings = Settings(_env_file=None, ldims_api_version="v2", ldims_api_timeout=1500)

        assert settings.api_prefix == "/api/v2"
        assert settings.timeout_seconds == 1.5


class TestEnvironmentVariables:
    """Tests for loading settings from the environment."""

    def test_values_from_environment(self) -> None:
        """Test that environment variables override defaults."""
        env = {
            "LDIMS_API_BASE_URL": "https://ldims.example.com/",
            "LDIMS_API_TIMEOUT": "5000",
            "LDIMS_AUTH_TOKEN": "secret",
            "LOG_LEVEL": "WARN",
        }
        with patch.dict(os.environ, env):
            settings = Settings(_env_file=None)

        assert settings.ldims_api_base_url == "https://ldims.example.com"
        assert settings.ldims_api_timeout == 5000
        assert settings.ldims_auth_token == "secret"
        assert settings.log_level == "warning"

    def test_node_env_alias(self) -> None:
        """Test that NODE_ENV sets the environment."""
        with patch.dict(os.environ, {"NODE_ENV": "production"}):
            settings = Settings(_env_file=None)

        assert settings.environment == "production"

    def test_empty_token_is_unset(self) -> None:
        """Test that an empty token counts as missing."""
        with patch.dict(os.environ, {"LDIMS_AUTH_TOKEN": ""}):
            settings = Settings(_env_file=None)

        assert settings.ldims_auth_token is None


class TestErrorReportingDefaults:
    """Tests for environment-dependent error reporting."""

    def test_detailed_errors_in_development(self) -> None:
        """Test that development enables detailed errors and stack traces."""
        settings = Settings(_env_file=None, environment="development")

        assert settings.error_detailed is True
        assert settings.error_stack_trace is True

    def test_no_detailed_errors_in_production(self) -> None:
        """Test that production disables detailed errors."""
        settings = Settings(_env_file=None, environment="production")

        assert settings.error_detailed is False
        assert settings.error_stack_trace is False

    def test_explicit_value_wins(self) -> None:
        """Test that an explicit setting is kept."""
        settings = Settings(_env_file=None, environment="production", error_detailed=True)

        assert settings.error_detailed is True


class TestValidationLevels:
    """Tests for strict and basic validation."""

    def test_strict_rejects_invalid_timeout(self) -> None:
        """Test that strict validation fails on a non-positive timeout."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(_env_file=None, ldims_api_timeout=0)

        error = exc_info.value
        assert error.code is ErrorCode.CONFIG_INVALID
        assert "LDIMS_API_TIMEOUT" in error.message
        assert error.issues[0].field == "LDIMS_API_TIMEOUT"

    def test_basic_coerces_invalid_timeout(self) -> None:
        """Test that basic validation falls back to the default timeout."""
        settings = load_settings(
            _env_file=None, config_validation_level="basic", ldims_api_timeout=0
        )

        assert settings.ldims_api_timeout == 30000

    def test_basic_coerces_unparsable_values(self) -> None:
        """Test that basic validation replaces unparsable values from the environment."""
        env = {
            "CONFIG_VALIDATION_LEVEL": "basic",
            "LDIMS_API_RETRY_COUNT": "many",
            "LOG_LEVEL": "loud",
            "LOG_FORMAT": "xml",
        }
        with patch.dict(os.environ, env):
            settings = load_settings(_env_file=None)

        assert settings.ldims_api_retry_count == 3
        assert settings.log_level == "info"
        assert settings.log_format == "text"

    def test_basic_still_rejects_invalid_url(self) -> None:
        """Test that an invalid base URL is an error at every level."""
        with pytest.raises(ConfigurationError):
            load_settings(
                _env_file=None, config_validation_level="basic", ldims_api_base_url="ldims"
            )

    @pytest.mark.parametrize("url", ["ldims.local", "ftp://ldims.local", "http://"])
    def test_invalid_base_url(self, url: str) -> None:
        """Test that the base URL must be an absolute http(s) URL."""
        with pytest.raises(ConfigurationError):
            load_settings(_env_file=None, ldims_api_base_url=url)


class TestValidateSettings:
    """Tests for semantic configuration checks."""

    def test_auth_without_token_is_error(self) -> None:
        """Test that HTTP auth requires a token."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(_env_file=None, http_auth_enabled=True)

        assert exc_info.value.issues[0].field == "LDIMS_AUTH_TOKEN"

    def test_strict_reports_warnings(self) -> None:
        """Test that strict validation reports warnings but not suggestions."""
        settings = Settings(
            _env_file=None,
            environment="production",
            log_level="debug",
            ldims_api_timeout=200000,
        )

        issues = validate_settings(settings)

        levels = {issue.level for issue in issues}
        assert levels == {"warning"}
        assert {issue.field for issue in issues} >= {"LDIMS_AUTH_TOKEN", "LOG_LEVEL"}

    def test_comprehensive_reports_suggestions(self) -> None:
        """Test that comprehensive validation adds deployment suggestions."""
        settings = Settings(
            _env_file=None,
            environment="production",
            config_validation_level="comprehensive",
            ldims_auth_token="secret",
            ldims_api_timeout=200000,
        )

        issues = validate_settings(settings)

        fields = {issue.field for issue in issues if issue.level == "suggestion"}
        assert fields == {"LDIMS_API_BASE_URL", "LDIMS_API_TIMEOUT"}

    def test_basic_reports_errors_only(self) -> None:
        """Test that basic validation hides warnings."""
        settings = Settings(_env_file=None, config_validation_level="basic")

        assert validate_settings(settings) == []


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_get_settings_is_cached(self) -> None:
        """Test that get_settings returns the same instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
