"""Structured logging scoped to one backfill run.

structlog renders both its own events and plain ``logging`` records from
the library modules, so every line on stderr carries the same run
context: trace id, chain, token, starting reference and dry-run flag.
The context lives in ``structlog.contextvars`` and is bound once per run
by ``bind_run_context``.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog

_RUN_KEYS = ("trace_id", "chain", "token", "after_tx", "dry_run")
_HANDLER_NAME = "tx_backfill"


def new_trace_id() -> str:
    """Generate and bind a new trace ID."""
    tid = uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(trace_id=tid)
    return tid


def get_trace_id() -> str:
    """Trace ID of the current run, binding a fresh one if none is set."""
    tid = structlog.contextvars.get_contextvars().get("trace_id")
    return tid or new_trace_id()


def bind_run_context(
    *, chain: str, token: str, after_tx: str, dry_run: bool
) -> str:
    """Start a run: fresh trace id plus the run's identifying fields."""
    clear_run_context()
    tid = new_trace_id()
    structlog.contextvars.bind_contextvars(
        chain=chain, token=token, after_tx=after_tx, dry_run=dry_run
    )
    return tid


def clear_run_context() -> None:
    structlog.contextvars.unbind_contextvars(*_RUN_KEYS)


def _shared_processors() -> list[Any]:
    # Applied to structlog events and to foreign stdlib records alike.
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def setup_logging(
    level: str = "WARNING",
    format: str = "console",
) -> None:
    """Configure structured logging for the backfill.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: "json" for machine-readable output, "console" for humans.
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: Any
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    handler = logging.StreamHandler(sys.stderr)  # stdout is for progress
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)
