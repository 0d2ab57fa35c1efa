"""structlog on top of stdlib logging, rendered to stderr.

Environment:
    REFGATE_LOG_LEVEL   level for refgate loggers (default INFO)
    REFGATE_LOG_FORMAT  console | json | auto (default console); ``auto``
                        picks json when stderr is not a terminal
"""

from __future__ import annotations

import logging.config
import os
import sys

import structlog

# Third-party loggers that are too chatty at INFO.
QUIET_LOGGERS = {
    "uvicorn.access": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "asyncpg": "WARNING",
    "httpx": "WARNING",
}


def _use_json(log_format: str) -> bool:
    if log_format == "auto":
        return not sys.stderr.isatty()
    return log_format == "json"


def build_processors() -> list[structlog.types.Processor]:
    """Processors shared by structlog loggers and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    level = (level or os.environ.get("REFGATE_LOG_LEVEL", "INFO")).upper()
    log_format = (log_format or os.environ.get("REFGATE_LOG_FORMAT", "console")).lower()

    pre_chain = build_processors()
    renderer: structlog.types.Processor
    if _use_json(log_format):
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    loggers = {name: {"level": lvl} for name, lvl in QUIET_LOGGERS.items()}
    loggers["refgate"] = {"level": level}

    # stdout belongs to the git hook protocol
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "refgate": {
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
                    "formatter": "refgate",
                },
            },
            "root": {"handlers": ["stderr"], "level": level},
            "loggers": loggers,
        }
    )
