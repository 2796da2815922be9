from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Substring matches; "code" and "otp" are exact so error_code etc. survive
_SENSITIVE_FRAGMENTS = ("password", "secret", "token", "authorization", "email")
_SENSITIVE_NAMES = frozenset({"code", "otp"})
_MASK = "***"
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation id to the current context, generating one if needed."""
    value = correlation_id or uuid.uuid4().hex
    correlation_id_var.set(value)
    return value


def redact_email(email: Optional[str]) -> str:
    """``alice@example.com`` -> ``ali***@example.com``."""
    if not email or "@" not in email:
        return _MASK
    local, domain = email.split("@", 1)
    keep = 1 if len(local) <= 3 else 3
    return f"{local[:keep]}{_MASK}@{domain}"


def _is_sensitive(key: str) -> bool:
    key = key.lower()
    return key in _SENSITIVE_NAMES or any(part in key for part in _SENSITIVE_FRAGMENTS)


def _mask(value: str) -> str:
    if _MASK in value:
        return value
    return f"{value[:2]}{_MASK}{value[-2:]}" if len(value) > 4 else _MASK


def _inject_correlation_id(_logger: Any, _method: str, event: Dict[str, Any]) -> Dict[str, Any]:
    cid = correlation_id_var.get()
    if cid:
        event.setdefault("correlation_id", cid)
    return event


def _redact_pii(_logger: Any, _method: str, event: Dict[str, Any]) -> Dict[str, Any]:
    """Mask string values stored under credential-like or contact keys."""
    for key, value in event.items():
        if key != "event" and isinstance(value, str) and _is_sensitive(key):
            event[key] = _mask(value)
    return event


def _renderer(fmt: str) -> list:
    if fmt == "console":
        return [structlog.dev.ConsoleRenderer(colors=True)]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install the structlog pipeline.

    ``fmt`` is ``"json"`` for machine-readable output or ``"console"`` for
    local development.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _inject_correlation_id,
            _redact_pii,
            structlog.processors.StackInfoRenderer(),
            *_renderer(fmt),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Runtime reconfigures from Settings after module loggers exist
        cache_logger_on_first_use=False,
    )


configure_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    fmt=os.getenv("LOG_FORMAT", "json").lower(),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
