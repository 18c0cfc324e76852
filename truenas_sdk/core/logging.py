"""Structured logging with secret redaction for the TrueNAS SDK.

Log records are written as one JSON object per line to stderr. Any string
registered with ``register_secret_for_redaction`` (the client registers its
API key) is replaced by ``[REDACTED]`` before a record is emitted, so frames
logged at debug level never leak credentials.
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Optional, Set


# Global registry for secrets to redact
_SECRET_REGISTRY: Set[str] = set()
_SECRET_REGISTRY_LOCK = threading.Lock()

_REDACTED = "[REDACTED]"


class SecretRedactionFilter(logging.Filter):
    """Logging filter that redacts registered secrets."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_secrets(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: redact_secrets(value) if isinstance(value, str) else value
                    for key, value in record.args.items()
                }
            else:
                record.args = tuple(
                    redact_secrets(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Extra fields passed as extra={'extra_fields': {...}}
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_entry.update(extra_fields)

        if record.exc_info:
            log_entry["exception"] = redact_secrets(self.formatException(record.exc_info))

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def init_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Initialize stderr logging with secret redaction.

    Args:
        level: Log level name. Falls back to ``TRUENAS_LOG_LEVEL``, then INFO.
        fmt: ``json`` or ``text``. Falls back to ``TRUENAS_LOG_FORMAT``, then json.
    """
    log_level = (level or os.getenv("TRUENAS_LOG_LEVEL", "INFO")).upper()
    log_format = (fmt or os.getenv("TRUENAS_LOG_FORMAT", "json")).lower()

    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(numeric_level)
    stderr_handler.addFilter(SecretRedactionFilter())

    if log_format == "text":
        stderr_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    else:
        stderr_handler.setFormatter(JSONFormatter())

    root_logger.addHandler(stderr_handler)

    logging.getLogger(__name__).debug(
        "TrueNAS SDK logging initialized",
        extra={"extra_fields": {"log_level": log_level, "format": log_format}},
    )


def register_secret_for_redaction(secret_value: str) -> None:
    """Register a secret value for redaction in logs.

    Args:
        secret_value: The secret string to redact from logs
    """
    if not secret_value or len(secret_value.strip()) == 0:
        return

    with _SECRET_REGISTRY_LOCK:
        _SECRET_REGISTRY.add(secret_value.strip())


def redact_secrets(text: str) -> str:
    """Redact all registered secrets from the given text.

    Args:
        text: The text to redact secrets from

    Returns:
        The text with secrets replaced by [REDACTED]
    """
    if not text:
        return text

    result = text
    with _SECRET_REGISTRY_LOCK:
        # Longest first so a secret that contains another is fully masked
        for secret in sorted(_SECRET_REGISTRY, key=len, reverse=True):
            if secret in result:
                result = result.replace(secret, _REDACTED)

    return result


def clear_secret_registry() -> None:
    """Clear all registered secrets (mainly for testing)."""
    with _SECRET_REGISTRY_LOCK:
        _SECRET_REGISTRY.clear()


def get_registered_secrets_count() -> int:
    """Get the number of registered secrets (for testing/debugging)."""
    with _SECRET_REGISTRY_LOCK:
        return len(_SECRET_REGISTRY)


def get_logger(name: str) -> logging.Logger:
    """Get a logger that redacts registered secrets even without init_logging.

    Args:
        name: Logger name, usually ``__name__``

    Returns:
        A logger carrying a SecretRedactionFilter
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, SecretRedactionFilter) for f in logger.filters):
        logger.addFilter(SecretRedactionFilter())

    return logger
