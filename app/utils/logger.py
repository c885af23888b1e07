"""Diagnostic logging for keyledger (structlog).

Two channels exist and must not be confused:

  - the audit log (app/audit/): one durable entry per credential call,
    queryable through GET /api/audit-log;
  - this diagnostic channel: operator-facing lines on stdout, including
    the audit-write failures the service swallows.

Every line carries the request_id bound by RequestIdMiddleware, so a
diagnostic line can be joined to the audit entry written by the same
request. Lines also carry the emitting module under ``logger``.

Plaintext keys must never reach this channel. Call sites log ids and
``key_ref`` hash prefixes only; redact_key_material() is the backstop for
any ``kl_`` key that slips into an event value anyway.
"""

import logging
import re
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from app.constants import KEY_ENTROPY_BYTES, KEY_PREFIX

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REDACTED = "[redacted-key]"

_KEY_MATERIAL_RE = re.compile(
    rf"{re.escape(KEY_PREFIX)}[0-9a-fA-F]{{{KEY_ENTROPY_BYTES * 2}}}"
)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the current request's id, when one is bound."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = time.time()
    return event_dict


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return _KEY_MATERIAL_RE.sub(REDACTED, value)
    return value


def redact_key_material(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace any full presented key in string values with REDACTED."""
    return {name: _redact(value) for name, value in event_dict.items()}


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """Install the keyledger processor chain.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Unknown names
            fall back to INFO.
        json_output: One JSON object per line when True (the default for
            servers); coloured console output for local runs otherwise.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_key_material,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "keyledger") -> structlog.stdlib.BoundLogger:
    """Module logger; ``name`` is bound lazily as the ``logger`` field."""
    return structlog.get_logger(name).bind(logger=name)


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


# Defaults until app/main.py reconfigures from DEBUG / LOG_LEVEL / JSON_LOGS.
configure_logging()
