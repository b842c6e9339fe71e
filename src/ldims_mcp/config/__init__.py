"""Configuration management for LDIMS MCP.

This module exports the main Settings class and configuration utilities.
"""

from ldims_mcp.config.settings import (
    ConfigIssue,
    ConfigurationError,
    Settings,
    get_settings,
    load_settings,
    validate_settings,
)

__all__ = [
    "ConfigIssue",
    "ConfigurationError",
    "Settings",
    "get_settings",
    "load_settings",
    "validate_settings",
]
