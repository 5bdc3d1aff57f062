"""Structured logging setup using structlog.

One processor chain (context vars, level, timestamp, exception info) feeds
either a coloured console renderer for local runs or a JSON renderer for
deployed workers.  ``APP_ENV=production`` selects JSON unless the caller
forces it via ``json_output``.

Log lines go to **stderr** so that CLI commands can keep stdout for their
machine-readable job results.  Standard-library logging (httpx, redis,
aiosqlite) is routed through the same formatter.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    app_env: str | None = None,
) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output regardless of environment.
        app_env: Deployment environment.  Falls back to ``APP_ENV`` and then
            ``"development"``.

    Returns:
        A configured structlog BoundLogger.
    """
    env = app_env or os.environ.get("APP_ENV", "development")
    use_json = json_output or env == "production"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())
    # httpx logs every request at INFO; keep that behind DEBUG.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, root_logger.level))

    return structlog.get_logger()


def bind_job_context(**fields: Any) -> None:
    """Attach job-scoped fields (job_id, job_type, source) to every log line.

    Uses structlog's contextvars so concurrent jobs on one event loop each
    keep their own bindings.
    """
    structlog.contextvars.bind_contextvars(**fields)


def clear_job_context() -> None:
    """Drop all job-scoped bindings set by :func:`bind_job_context`."""
    structlog.contextvars.clear_contextvars()
