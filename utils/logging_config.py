"""
Centralized logging configuration for the click analytics service.

Sets up structured logging with:
- JSON output in production, coloured console output in development
- IP hashing in production (raw visitor IPs never reach the log sink)
- redaction of credential-like fields
- per-event sampling rates for the hot ingestion and broadcast paths
"""

import hashlib
import logging
import os
import sys

import structlog
from structlog.types import EventDict, Processor


ENV = os.getenv("ENV", "development")
IS_PRODUCTION = ENV == "production"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if IS_PRODUCTION else "console")

# Sampling rates for high-frequency events
SAMPLING_RATES = {
    "click_recorded": float(os.getenv("SAMPLE_RATE_CLICK", "0.05")),
    "analytics_query": float(os.getenv("SAMPLE_RATE_ANALYTICS", "0.20")),
    "realtime_broadcast": float(os.getenv("SAMPLE_RATE_BROADCAST", "0.05")),
    "click_export": float(os.getenv("SAMPLE_RATE_EXPORT", "0.80")),
}

REDACTED_FIELDS = {
    "password",
    "token",
    "api_key",
    "authorization",
    "cookie",
    "secret",
    "key",
}

_PROTECTED_KEYS = {"level", "event", "timestamp", "logger"}


def hash_ip(ip_address: str) -> str:
    """
    Hash an IP address in production, pass it through in development.

    The hash is the first 16 hex chars of SHA-256, enough to correlate
    requests from one visitor without storing the address itself.
    """
    if IS_PRODUCTION and ip_address:
        return hashlib.sha256(ip_address.encode()).hexdigest()[:16]
    return ip_address


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace the value of any credential-like key with a marker."""
    for key in list(event_dict.keys()):
        if key in _PROTECTED_KEYS:
            continue
        lowered = key.lower()
        if lowered in REDACTED_FIELDS or any(
            sensitive in lowered for sensitive in ("password", "token", "secret")
        ):
            event_dict[key] = "***REDACTED***"
    return event_dict


def configure_structlog() -> None:
    """Configure structlog processors for the current environment."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive_fields,
        structlog.processors.format_exc_info,
    ]

    if LOG_FORMAT == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True, pad_event=15, sort_keys=False
        )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_stdlib_logging() -> None:
    """Route stdlib logging to stdout and quiet the noisy drivers."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, LOG_LEVEL.upper()),
    )

    for noisy in ("pymongo", "urllib3", "asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_logging() -> None:
    """
    Initialize logging for the process.

    Runs on import so that every entry point (ASGI app, retention CLI,
    tests) gets the same configuration.
    """
    configure_stdlib_logging()
    configure_structlog()

    structlog.get_logger(__name__).info(
        "logging_initialized",
        env=ENV,
        log_level=LOG_LEVEL,
        log_format=LOG_FORMAT,
        sentry_enabled=bool(os.getenv("SENTRY_DSN")),
    )


setup_logging()
