"""structlog setup for GovLink.

Every event carries the request's correlation id, and values under
credential or contact keys are masked before rendering. ``LOG_LEVEL`` and
``LOG_JSON`` (JSON lines vs. coloured console output) are read once at import.
"""

from __future__ import annotations

import hashlib
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

_request_id: ContextVar[Optional[str]] = ContextVar("govlink_request_id", default=None)

_SENSITIVE_KEYS = ("password", "secret", "token", "authorization", "cookie", "email")
_UNMASKED_SUFFIXES = ("_hash", "_type")


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind the request id for the current context, generating one if absent."""
    cid = correlation_id or str(uuid.uuid4())
    _request_id.set(cid)
    return cid


def hash_identifier(value: str) -> str:
    """Stable, non-reversible handle for an email or other identifier in logs."""
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()[:16]


def _add_correlation_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    cid = _request_id.get()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def _mask(value: str) -> str:
    return value[:2] + "***" + value[-2:]


def _redact_pii(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in event_dict.items():
        lower_key = key.lower()
        if key == "event" or lower_key.endswith(_UNMASKED_SUFFIXES):
            continue
        if isinstance(value, str) and len(value) > 4 and any(s in lower_key for s in _SENSITIVE_KEYS):
            event_dict[key] = _mask(value)
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def _configure(level: str, json_output: bool) -> None:
    renderer = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if json_output
        else [structlog.dev.ConsoleRenderer(colors=True)]
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_correlation_id,
            _redact_pii,
            *renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_configure(
    os.getenv("LOG_LEVEL", "INFO"),
    _env_flag("LOG_JSON", "true") and not _env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
