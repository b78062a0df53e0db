from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Per-request id, echoed in the X-Request-ID header and attached to every log entry
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

PREVIEW_CHARS = 100


def get_request_id() -> Optional[str]:
    """Get the current request ID for request tracing."""
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set or generate a request ID for the current request context."""
    rid = request_id or str(uuid.uuid4())
    request_id_var.set(rid)
    return rid


def _add_request_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to add request_id to all log entries."""
    rid = get_request_id()
    if rid:
        event_dict["request_id"] = rid
    return event_dict


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to redact credentials from log entries."""
    secret_keys = {"password", "secret", "token", "api_key", "authorization"}
    for key in list(event_dict.keys()):
        lower_key = key.lower()
        if any(secret in lower_key for secret in secret_keys):
            if isinstance(event_dict[key], str) and len(event_dict[key]) > 4:
                # Keep first/last 2 chars for debugging
                event_dict[key] = event_dict[key][:2] + "***" + event_dict[key][-2:]
    return event_dict


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_request_id,
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Initialize logging on module import
_log_level = os.getenv("LOG_LEVEL", "INFO").upper()
_json_output = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}
_dev_mode = os.getenv("LOG_DEV_MODE", "false").lower() in {"1", "true", "yes", "on"}

_configure_structlog(
    log_level=_log_level,
    json_output=_json_output,
    development_mode=_dev_mode,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger with request ID support."""
    return structlog.get_logger(name)


def preview(text: Optional[str], limit: int = PREVIEW_CHARS) -> str:
    """Shorten response text for log fields."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def debug_enabled() -> bool:
    """True when LOG_LEVEL lets debug events through."""
    return _log_level == "DEBUG"
