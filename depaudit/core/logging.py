"""Structured logging configuration — structlog + stdlib logging.

Only the ``depaudit`` logger tree gets a handler; the root logger is left to
whatever embeds the audit.
"""

from __future__ import annotations

import logging
import logging.config
import os

import structlog

LOG_FORMATS = ("console", "json")


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    if fmt == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    raise ValueError(f"unknown log format {fmt!r} (expected one of: {', '.join(LOG_FORMATS)})")


def _pre_chain(fmt: str) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]
    if fmt == "json":
        # console lines are read next to the report; only JSON carries time
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    return processors


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Send ``depaudit.*`` events to stderr, keeping stdout for the report.

    Explicit arguments win over the environment:
        DEPAUDIT_LOG_LEVEL  — log level (default: WARNING)
        DEPAUDIT_LOG_FORMAT — console | json (default: console)

    Raises ValueError for an unknown level or format.
    """
    log_level = (level or os.environ.get("DEPAUDIT_LOG_LEVEL", "WARNING")).upper()
    fmt = (log_format or os.environ.get("DEPAUDIT_LOG_FORMAT", "console")).lower()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"unknown log level {log_level!r}")
    renderer = _renderer(fmt)
    pre_chain = _pre_chain(fmt)

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "depaudit": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": pre_chain,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "depaudit",
                },
            },
            "loggers": {
                "depaudit": {
                    "handlers": ["stderr"],
                    "level": log_level,
                    "propagate": False,
                },
            },
        }
    )
