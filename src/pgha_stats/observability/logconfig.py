"""structlog setup for the agent process."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from pgha_stats.config.models import LogFormat, LoggingConfig


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Route structlog through stdlib logging with a JSON or console renderer."""
    cfg = config or LoggingConfig()
    level = logging.getLevelName(cfg.level.upper())
    logging.basicConfig(
        format="%(message)s", stream=sys.stderr, level=level, force=True
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if cfg.format == LogFormat.JSON:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
