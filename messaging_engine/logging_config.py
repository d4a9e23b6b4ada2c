"""Centralised structured logging setup for the messaging engine.

Importing this module configures *structlog* with a JSON-formatted pipeline
(or a console renderer when ``LOG_PRETTY=1``) that merges contextvars, so a
job id bound at the start of a pipeline run shows up on every log line the
run produces.  Other modules should call :pyfunc:`structlog.get_logger()`
directly and avoid re-configuring the library.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

__all__ = [
    "configure_logging",
    "bind_job_context",
    "clear_job_context",
    "get_logger",
]

_JOB_CONTEXT_KEYS = ("job_id", "pipeline", "session_id")


def configure_logging(force: bool = False) -> None:  # noqa: D401
    """Setup structlog + stdlib bridging exactly once.

    Args:
        force: When True, reconfigure even if previously configured. Use only
               inside isolated scripts/tests that need a different renderer.
    """

    configured = getattr(structlog, "_is_configured", False)  # type: ignore[attr-defined]
    if configured and not force:
        return

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    dev_mode = os.getenv("LOG_PRETTY", "0").lower() in {"1", "true", "yes"}
    if dev_mode:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # stdlib records (tenacity, SDK loggers) share the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.contextvars.merge_contextvars],
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    structlog.configure(
        processors=shared_processors + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    setattr(structlog, "_is_configured", True)  # type: ignore[attr-defined]


def bind_job_context(
    job_id: Optional[str] = None,
    pipeline: Optional[str] = None,
    session_id: Optional[str] = None,
) -> None:
    """Bind job correlation ids into structlog contextvars.

    Safe to call multiple times; only provided keys are updated.
    """
    payload: Dict[str, str] = {}
    if job_id:
        payload["job_id"] = job_id
    if pipeline:
        payload["pipeline"] = pipeline
    if session_id:
        payload["session_id"] = session_id
    if payload:
        bind_contextvars(**payload)


def clear_job_context() -> None:
    unbind_contextvars(*_JOB_CONTEXT_KEYS)


def get_logger(name: Optional[str] = None):
    """Return a structlog logger; ensures configuration first."""
    configure_logging()
    return structlog.get_logger(name) if name else structlog.get_logger()
