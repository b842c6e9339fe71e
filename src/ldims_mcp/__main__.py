"""LDIMS MCP main entry point."""

import argparse
import sys

import uvicorn

from ldims_mcp.config.settings import (
    ConfigurationError,
    Settings,
    load_settings,
    validate_settings,
)
from ldims_mcp.logging_config import configure_from_settings
from ldims_mcp.server.http_app import create_app
from ldims_mcp.server.stdio import run as run_stdio
from ldims_mcp.version import __version__


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="ldims-mcp",
        description="Model Context Protocol service for the LDIMS document system",
    )
    parser.add_argument(
        "--transport",
        choices=("stdio", "http"),
        default="stdio",
        help="MCP transport to serve (default: stdio)",
    )
    parser.add_argument("--host", help="HTTP bind address (overrides HTTP_HOST)")
    parser.add_argument("--port", type=int, help="HTTP port (overrides HTTP_PORT)")
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the configuration, print findings and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _check_config(settings: Settings) -> int:
    issues = validate_settings(settings)
    print(f"Configuration OK ({settings.config_validation_level} validation)")
    for issue in issues:
        hint = f" -> {issue.suggestion}" if issue.suggestion else ""
        print(f"  [{issue.level}] {issue.field}: {issue.message}{hint}")
    return 1 if any(issue.level == "error" for issue in issues) else 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        argv: Command line arguments. Defaults to sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = build_parser().parse_args(argv)

    overrides: dict[str, object] = {}
    if args.host:
        overrides["http_host"] = args.host
    if args.port is not None:
        overrides["http_port"] = args.port

    try:
        settings = load_settings(**overrides)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.check_config:
        return _check_config(settings)

    configure_from_settings(settings)

    if args.transport == "http":
        uvicorn.run(
            create_app(settings),
            host=settings.http_host,
            port=settings.http_port,
            log_config=None,
        )
    else:
        run_stdio(settings)
    return 0


if __name__ == "__main__":
    sys.exit(main())
