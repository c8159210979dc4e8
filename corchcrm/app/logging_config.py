"""
Structured logging configuration for the CorchCRM orchestrator.
Provides JSON-formatted structlog output with PII redaction.
"""

import logging
import re
import sys
from functools import lru_cache
from typing import Any

import structlog

from .config import get_settings


# =============================================================================
# PII Redaction Patterns
# =============================================================================

PII_PATTERNS = [
    # Email addresses
    (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), '[EMAIL_REDACTED]'),
    # Phone numbers (various formats)
    (re.compile(r'\b\d{3}[-.]?\d{3}[-.]?\d{4}\b'), '[PHONE_REDACTED]'),
    # Credit card numbers (basic pattern)
    (re.compile(r'\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b'), '[CARD_REDACTED]'),
]

# Sensitive field names to redact values for
SENSITIVE_FIELDS = {
    'password', 'secret', 'token', 'api_key', 'apikey', 'authorization',
    'auth', 'credential', 'private_key', 'access_token', 'refresh_token',
}


def is_sensitive_key(key: str) -> bool:
    """Whether a mapping key names a credential-like value."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS)


def redact_pii(text: str) -> str:
    """Redact PII patterns from text."""
    if not get_settings().redact_pii:
        return text

    for pattern, replacement in PII_PATTERNS:
        text = pattern.sub(replacement, text)

    return text


def redact_sensitive_dict(data: dict[str, Any], depth: int = 0) -> dict[str, Any]:
    """Recursively redact sensitive fields from a dictionary."""
    if depth > 10:  # Prevent infinite recursion
        return data

    result = {}
    for key, value in data.items():
        if is_sensitive_key(str(key)):
            result[key] = '[REDACTED]'
        elif isinstance(value, dict):
            result[key] = redact_sensitive_dict(value, depth + 1)
        elif isinstance(value, list):
            result[key] = [
                redact_sensitive_dict(item, depth + 1) if isinstance(item, dict)
                else redact_pii(item) if isinstance(item, str) else item
                for item in value
            ]
        elif isinstance(value, str):
            result[key] = redact_pii(value)
        else:
            result[key] = value

    return result


def redact_event(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor applying the redaction rules to every event."""
    return redact_sensitive_dict(event_dict)


# =============================================================================
# Logger Configuration
# =============================================================================

@lru_cache()
def setup_logging() -> None:
    """Configure stdlib logging and structlog based on settings."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_event,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Reduce noise from other libraries
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def get_logger(name: str) -> Any:
    """Get a structlog logger bound to the given name."""
    setup_logging()
    return structlog.get_logger(name)
