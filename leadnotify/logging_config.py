"""Logging setup: Rich console output in development, JSON lines in production.

Modules log through ``logging.getLogger(__name__)`` and attach structured
context with ``extra={...}``. structlog's ``ProcessorFormatter`` lifts the keys
in ``CONTEXT_FIELDS`` off each record and adds the request id of the HTTP
request (or worker cycle) that produced it.
"""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar

import structlog
from rich.console import Console
from rich.logging import RichHandler

from .config import settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

CONTEXT_FIELDS = (
    "conversation_id",
    "customer_id",
    "event_id",
    "event_type",
    "channel",
    "worker_id",
    "idempotency_key",
    "rate_limit_key",
)


def new_request_id() -> str:
    return str(uuid.uuid4())


def add_request_id(logger, method_name: str, event_dict: dict) -> dict:
    event_dict["request_id"] = request_id_var.get() or "no-request-id"
    return event_dict


def _drop_exc_info(logger, method_name: str, event_dict: dict) -> dict:
    # RichHandler renders the traceback itself.
    event_dict.pop("exc_info", None)
    return event_dict


def _context_chain() -> list:
    return [
        structlog.stdlib.ExtraAdder(allow=CONTEXT_FIELDS),
        add_request_id,
    ]


def build_json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """One JSON object per line, suitable for log shippers."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *_context_chain(),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )


def build_console_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_context_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _drop_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        keep_exc_info=True,
    )


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Install a single handler on the root logger."""
    if json_output is None:
        json_output = settings.use_json_logs
    if json_output:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(build_json_formatter())
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
        )
        handler.setFormatter(build_console_formatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel((level or settings.log_level).upper())

    # Per-request access lines duplicate our own request logging.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
