"""Logging setup shared by both transports.

Standard library loggers and structlog loggers are routed through the same
handlers, so a module may use either ``logging.getLogger(__name__)`` or
``structlog.get_logger(__name__)``. Output always goes to stderr: on the
stdio transport stdout carries protocol messages only.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from ldims_mcp.config.settings import Settings

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def configure_logging(
    level: str = "info",
    log_format: str = "text",
    log_file: str | Path | None = None,
) -> None:
    """Configure stdlib logging and structlog.

    Args:
        level: Log level name (debug, info, warning, error, critical).
        log_format: ``json`` for machine-readable lines, ``text`` for console output.
        log_file: Optional file receiving the same records as stderr.

    Example:
        >>> configure_logging("debug", "json")
        >>> structlog.get_logger("ldims").info("started", port=3001)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer: Any
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Access logs of the HTTP server are noisy at info level
    logging.getLogger("uvicorn.access").setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Loggers created at import time must respect later configuration
        cache_logger_on_first_use=False,
    )


def configure_from_settings(settings: Settings) -> None:
    """Configure logging from application settings.

    Args:
        settings: Application settings.
    """
    configure_logging(settings.log_level, settings.log_format, settings.log_file)
