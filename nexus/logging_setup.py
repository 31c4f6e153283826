"""
Logging setup — structlog over the standard library.

Every module logs through ``structlog.get_logger(__name__)`` with dotted event
names and key/value context. Entry points call ``configure_logging()`` once
before doing any work.
"""

from __future__ import annotations

import logging

import structlog

_SECRET_KEYS = {"api_key", "auth_token", "token", "authorization"}
_LONG_TEXT_KEYS = {"goal", "question", "result", "report", "content"}
_MAX_DISPLAY_LEN = 80

_logging_configured = False


def _redact_sensitive_fields(logger, method_name, event_dict):
    """
    Structlog processor that keeps secrets and bulky model text out of logs.

    Credentials are replaced outright. Free text (goals, agent output) is
    truncated so a single log line stays readable.
    """
    for key in _SECRET_KEYS:
        if key in event_dict and event_dict[key]:
            event_dict[key] = "[REDACTED]"

    for key in _LONG_TEXT_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_DISPLAY_LEN:
            event_dict[key] = val[:_MAX_DISPLAY_LEN] + "... [truncated]"

    return event_dict


def configure_logging(level: str = "WARNING", colors: bool = True) -> None:
    """Configure structlog and standard-library logging for Nexus entry points.

    Safe to call more than once — subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    numeric_level = getattr(logging, str(level).upper(), logging.WARNING)
    logging.basicConfig(format="%(message)s", level=numeric_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _redact_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
