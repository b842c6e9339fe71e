"""Application settings and configuration management.

This module provides Pydantic-based settings that load from environment
variables with validation and type safety. Settings follow the 12-factor
app methodology for configuration management.

Three validation levels are supported through ``CONFIG_VALIDATION_LEVEL``:

- ``basic``: invalid numeric values, log level and log format are replaced
  by their defaults with a logged warning; only hard errors are reported.
- ``strict`` (default): any invalid value fails startup; semantic warnings
  are logged.
- ``comprehensive``: as strict, plus deployment suggestions are reported.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import (
    AliasChoices,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ldims_mcp.errors.types import ClassifiedError, ErrorCode, ErrorSeverity
from ldims_mcp.version import __version__

logger = logging.getLogger(__name__)

ValidationLevel = Literal["basic", "strict", "comprehensive"]
LogLevel = Literal["debug", "info", "warning", "error", "critical"]

_LOG_LEVEL_ALIASES = {"warn": "warning", "fatal": "critical"}

# Fields that basic validation coerces back to their default: name -> check
_COERCIBLE_NUMBERS: dict[str, tuple[type, Any]] = {
    "ldims_api_timeout": (int, lambda v: v > 0),
    "ldims_api_retry_count": (int, lambda v: v >= 0),
    "error_retry_delay": (int, lambda v: v >= 0),
    "http_port": (int, lambda v: 1 <= v <= 65535),
    "session_idle_timeout": (float, lambda v: v > 0),
    "session_sweep_interval": (float, lambda v: v > 0),
}


class ConfigurationError(ClassifiedError):
    """Raised when the configuration cannot be loaded or is invalid.

    Attributes:
        issues: Individual problems found during validation.
    """

    def __init__(self, message: str, issues: list["ConfigIssue"] | None = None) -> None:
        """Initialize the configuration error.

        Args:
            message: Descriptive message listing the problems.
            issues: Individual validation issues.
        """
        super().__init__(
            ErrorCode.CONFIG_INVALID,
            message,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            user_message="Fix the service configuration and restart.",
            details={"issues": [issue.to_dict() for issue in issues or []]},
        )
        object.__setattr__(self, "issues", list(issues or []))


@dataclass(frozen=True)
class ConfigIssue:
    """A single configuration finding.

    Attributes:
        level: ``error``, ``warning`` or ``suggestion``.
        field: Environment variable the finding is about.
        message: Description of the problem.
        suggestion: How to fix it.
    """

    level: Literal["error", "warning", "suggestion"]
    field: str
    message: str
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the issue."""
        return {
            "level": self.level,
            "field": self.field,
            "message": self.message,
            "suggestion": self.suggestion,
        }


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables. The class
    provides sensible defaults for development while enforcing valid
    values for production deployment.

    Example:
        >>> settings = Settings()
        >>> print(settings.ldims_api_base_url)
        'http://localhost:3000'
        >>> print(settings.api_prefix)
        '/api/v1'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # =========================================================================
    # LDIMS Backend API
    # =========================================================================

    ldims_api_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the LDIMS REST API",
    )

    ldims_api_version: str = Field(
        default="v1",
        min_length=1,
        description="LDIMS API version path segment",
    )

    ldims_auth_token: str | None = Field(
        default=None,
        description="Bearer token for the LDIMS API",
    )

    ldims_api_timeout: int = Field(
        default=30000,
        gt=0,
        description="Backend request timeout in milliseconds",
    )

    ldims_api_retry_count: int = Field(
        default=3,
        ge=0,
        description="Total attempts for retried backend calls (0 means a single attempt)",
    )

    # =========================================================================
    # Error Handling
    # =========================================================================

    error_retry_delay: int = Field(
        default=1000,
        ge=0,
        description="Base retry delay in milliseconds, doubled on each retry",
    )

    error_detailed: bool | None = Field(
        default=None,
        description="Render detailed errors with stack traces (defaults to on in development)",
    )

    error_stack_trace: bool | None = Field(
        default=None,
        description="Log stack traces of critical errors (defaults to on in development)",
    )

    # =========================================================================
    # Logging
    # =========================================================================

    log_level: LogLevel = Field(
        default="info",
        description="Application log level",
    )

    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format",
    )

    log_file: str | None = Field(
        default=None,
        description="Optional log file path in addition to stderr",
    )

    # =========================================================================
    # MCP Server
    # =========================================================================

    mcp_server_name: str = Field(
        default="ldims-document-mcp",
        description="Server name announced during MCP initialization",
    )

    mcp_server_version: str = Field(
        default=__version__,
        description="Server version announced during MCP initialization",
    )

    environment: Literal["development", "production", "test"] = Field(
        default="development",
        validation_alias=AliasChoices("environment", "node_env"),
        description="Deployment environment",
    )

    config_validation_level: ValidationLevel = Field(
        default="strict",
        description="How strictly configuration values are validated",
    )

    # =========================================================================
    # HTTP Transport
    # =========================================================================

    http_host: str = Field(
        default="0.0.0.0",  # nosec B104
        description="Bind address of the HTTP transport",
    )

    http_port: int = Field(
        default=3001,
        ge=1,
        le=65535,
        description="Port of the HTTP transport",
    )

    cors_origin: str = Field(
        default="*",
        description="Allowed CORS origin",
    )

    cors_credentials: bool = Field(
        default=False,
        description="Allow credentials in CORS requests",
    )

    http_auth_enabled: bool = Field(
        default=False,
        description="Require a bearer token on /api and /mcp endpoints",
    )

    http_auth_header: str = Field(
        default="Authorization",
        description="Header carrying the HTTP transport token",
    )

    session_idle_timeout: float = Field(
        default=1800.0,
        gt=0,
        description="Seconds an MCP session may stay idle before eviction",
    )

    session_sweep_interval: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between idle session sweeps",
    )

    @model_validator(mode="before")
    @classmethod
    def coerce_in_basic_mode(cls, data: Any) -> Any:
        """Replace invalid values with defaults when validation level is basic.

        Args:
            data: Raw settings values.

        Returns:
            Values with invalid entries removed so that defaults apply.
        """
        if not isinstance(data, dict):
            return data
        level = str(data.get("config_validation_level", "strict")).lower()
        if level != "basic":
            return data

        values = dict(data)
        for name, (caster, is_valid) in _COERCIBLE_NUMBERS.items():
            if name not in values or values[name] is None:
                continue
            raw = values[name]
            try:
                valid = is_valid(caster(raw))
            except (TypeError, ValueError):
                valid = False
            if not valid:
                default = cls.model_fields[name].default
                logger.warning(f"Invalid {name.upper()}={raw!r}, using default {default!r}")
                values.pop(name)

        if "log_level" in values:
            normalized = _normalize_log_level(values["log_level"])
            if normalized not in {"debug", "info", "warning", "error", "critical"}:
                logger.warning(f"Invalid LOG_LEVEL={values['log_level']!r}, using default 'info'")
                values.pop("log_level")
        if "log_format" in values and str(values["log_format"]).lower() not in {"json", "text"}:
            logger.warning(f"Invalid LOG_FORMAT={values['log_format']!r}, using default 'text'")
            values.pop("log_format")
        return values

    @field_validator("ldims_api_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate that the base URL is an absolute http(s) URL.

        Args:
            v: The configured base URL.

        Returns:
            The URL without a trailing slash.

        Raises:
            ValueError: If the URL cannot be parsed or lacks scheme/host.
        """
        value = v.strip()
        try:
            parts = urlsplit(value)
        except ValueError as e:
            raise ValueError(f"Invalid LDIMS API URL: {v}") from e
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError(
                f"Invalid LDIMS API URL: {v!r}. Use an absolute URL such as http://localhost:3000"
            )
        return value.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept log levels case-insensitively and map ``warn`` to ``warning``."""
        return _normalize_log_level(v) if isinstance(v, str) else v

    @field_validator("log_format", "config_validation_level", "environment", mode="before")
    @classmethod
    def lowercase_choice(cls, v: Any) -> Any:
        """Accept enumerated values case-insensitively."""
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("ldims_auth_token", "log_file", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        """Treat empty strings as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def resolve_environment_defaults(self) -> "Settings":
        """Derive error-reporting switches from the environment when unset.

        Returns:
            The validated Settings instance.
        """
        is_development = self.environment == "development"
        if self.error_detailed is None:
            self.error_detailed = is_development
        if self.error_stack_trace is None:
            self.error_stack_trace = is_development
        return self

    @property
    def api_prefix(self) -> str:
        """Path prefix of every backend endpoint, e.g. ``/api/v1``."""
        return f"/api/{self.ldims_api_version}"

    @property
    def timeout_seconds(self) -> float:
        """Backend request timeout in seconds."""
        return self.ldims_api_timeout / 1000


def _normalize_log_level(value: Any) -> str:
    level = str(value).strip().lower()
    return _LOG_LEVEL_ALIASES.get(level, level)


def validate_settings(settings: Settings) -> list[ConfigIssue]:
    """Run semantic checks that go beyond per-field validation.

    The validation level controls which findings are reported: ``basic``
    reports errors only, ``strict`` adds warnings, ``comprehensive`` adds
    suggestions.

    Args:
        settings: Settings to check.

    Returns:
        List of configuration issues, possibly empty.
    """
    issues: list[ConfigIssue] = []
    production = settings.environment == "production"

    if settings.http_auth_enabled and not settings.ldims_auth_token:
        issues.append(
            ConfigIssue(
                level="error",
                field="LDIMS_AUTH_TOKEN",
                message="HTTP_AUTH_ENABLED=true requires LDIMS_AUTH_TOKEN",
                suggestion="Set LDIMS_AUTH_TOKEN or disable HTTP_AUTH_ENABLED",
            )
        )

    if not settings.ldims_auth_token:
        issues.append(
            ConfigIssue(
                level="warning",
                field="LDIMS_AUTH_TOKEN",
                message="No LDIMS API token configured; backend calls are unauthenticated",
                suggestion="Set LDIMS_AUTH_TOKEN if the backend requires authentication",
            )
        )
    if production and settings.log_level == "debug":
        issues.append(
            ConfigIssue(
                level="warning",
                field="LOG_LEVEL",
                message="Debug logging is enabled in production",
                suggestion="Use info, warning or error in production",
            )
        )
    if production and settings.error_detailed:
        issues.append(
            ConfigIssue(
                level="warning",
                field="ERROR_DETAILED",
                message="Detailed errors expose stack traces in production",
                suggestion="Set ERROR_DETAILED=false in production",
            )
        )

    if production and urlsplit(settings.ldims_api_base_url).scheme != "https":
        issues.append(
            ConfigIssue(
                level="suggestion",
                field="LDIMS_API_BASE_URL",
                message="The LDIMS API is reached over plain HTTP in production",
                suggestion="Use an https:// base URL",
            )
        )
    if settings.ldims_api_timeout > 120000:
        issues.append(
            ConfigIssue(
                level="suggestion",
                field="LDIMS_API_TIMEOUT",
                message=f"Request timeout of {settings.ldims_api_timeout}ms is unusually long",
                suggestion="Keep LDIMS_API_TIMEOUT at or below 120000",
            )
        )

    reported = {"basic": {"error"}, "strict": {"error", "warning"}}.get(
        settings.config_validation_level, {"error", "warning", "suggestion"}
    )
    return [issue for issue in issues if issue.level in reported]


def load_settings(**overrides: Any) -> Settings:
    """Load, validate and report on the application settings.

    Args:
        **overrides: Explicit values taking precedence over the environment.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If any value is invalid or a semantic check fails.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        issues = [
            ConfigIssue(
                level="error",
                field=".".join(str(part) for part in err["loc"]).upper(),
                message=err["msg"],
            )
            for err in e.errors()
        ]
        lines = "\n".join(f"  - {issue.field}: {issue.message}" for issue in issues)
        raise ConfigurationError(f"Configuration validation failed:\n{lines}", issues) from e

    issues = validate_settings(settings)
    for issue in issues:
        hint = f" ({issue.suggestion})" if issue.suggestion else ""
        if issue.level == "warning":
            logger.warning(f"Configuration warning: {issue.field}: {issue.message}{hint}")
        elif issue.level == "suggestion":
            logger.info(f"Configuration suggestion: {issue.field}: {issue.message}{hint}")

    errors = [issue for issue in issues if issue.level == "error"]
    if errors:
        lines = "\n".join(f"  - {issue.field}: {issue.message}" for issue in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{lines}", errors)

    return settings


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are cached to avoid repeated environment variable reads
    and validation. The cache is cleared on application restart.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    return load_settings()
