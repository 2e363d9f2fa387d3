"""Structured logging for the realtime server and client processes.

structlog renders to the console in development and to JSON lines in
production. Every record carries the process role (``server`` or
``client``); records emitted while a session is being served also carry
its ``sid`` and client type.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Third-party loggers that are chatty at INFO (per-request access lines,
# frame traces, SQL echo)
NOISY_LOGGERS = (
    "uvicorn.access",
    "websockets",
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "aiosqlite",
)


def _add_role(role: str) -> structlog.types.Processor:
    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("role", role)
        return event_dict

    return processor


def setup_logging(
    level: str | None = None,
    log_format: str | None = None,
    role: str = "server",
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to RTB_LOG_LEVEL or INFO
        log_format: ``console`` or ``json``; defaults to RTB_LOG_FORMAT or console
        role: Process role stamped on every record
    """
    level = (level or os.environ.get("RTB_LOG_LEVEL", "INFO")).upper()
    log_format = log_format or os.environ.get("RTB_LOG_FORMAT", "console")
    log_level = getattr(logging, level, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    if log_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_role(role),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def session_context(sid: str, client_type: str, user_id: str | None = None) -> Iterator[None]:
    """Bind a session's identity to every record logged inside the block."""
    bound: dict[str, Any] = {"sid": sid, "client_type": client_type}
    if user_id is not None:
        bound["user_id"] = user_id
    with structlog.contextvars.bound_contextvars(**bound):
        yield
