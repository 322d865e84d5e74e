# utils/logging.py

"""Logging for narrative runs.

structlog renders into the standard library so the rotating log file and the
console share one pipeline. The run seed, the model and the chapter being
written are bound as context variables and prefixed to every line.
"""

from __future__ import annotations

import logging
import logging.handlers
import os

import structlog
from config import NarrativeSettings
from rich.logging import RichHandler

logger = structlog.get_logger(__name__)

__all__ = [
    "RunContextFilter",
    "bind_run_context",
    "clear_run_context",
    "setup_logging",
]

# Context keys rendered into the line prefix, in this order.
RUN_CONTEXT_KEYS = ("keywords", "model", "chapter")
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def bind_run_context(**values: object) -> None:
    """Attach run facts to every log line emitted in the current context."""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()


class RunContextFilter(logging.Filter):
    """Set ``record.run_context`` from the bound run facts.

    Records from plain stdlib loggers (httpx, asyncio) get an empty prefix.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        parts = []
        for key in RUN_CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                shown = repr(value) if isinstance(value, str) else value
                parts.append(f"{key}={shown}")
        record.run_context = f"[{' '.join(parts)}] " if parts else ""
        return True


def _log_file_path(settings: NarrativeSettings) -> str:
    if os.path.isabs(settings.LOG_FILE):
        return settings.LOG_FILE
    return os.path.join(settings.BASE_OUTPUT_DIR, settings.LOG_FILE)


def _file_handler(settings: NarrativeSettings) -> logging.Handler:
    file_path = _log_file_path(settings)
    log_dir = os.path.dirname(file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        file_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        mode="a",
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)
    )
    return handler


def _console_handler(settings: NarrativeSettings) -> logging.Handler:
    if settings.ENABLE_RICH_PROGRESS:
        # Rich draws time and level itself; only the prefix goes into the message.
        handler: logging.Handler = RichHandler(
            level=settings.LOG_LEVEL_STR,
            rich_tracebacks=True,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(run_context)s%(message)s"))
        return handler
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(settings.LOG_FORMAT, datefmt=settings.LOG_DATE_FORMAT)
    )
    return handler


def setup_logging(settings: NarrativeSettings) -> None:
    """Configure structlog and the root logger for one run."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(settings.LOG_LEVEL_STR)

    console_handler = _console_handler(settings)
    console_handler.addFilter(RunContextFilter())
    root_logger.addHandler(console_handler)

    if settings.LOG_FILE:
        try:
            file_handler = _file_handler(settings)
        except OSError as e:
            logger.error("Error setting up file logger: %s", e)
        else:
            file_handler.addFilter(RunContextFilter())
            root_logger.addHandler(file_handler)

    # Request lines from the transport would drown out paragraph progress.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger.info(
        "Logging configured.",
        log_level=settings.LOG_LEVEL_STR,
        log_file=_log_file_path(settings) if settings.LOG_FILE else None,
    )
