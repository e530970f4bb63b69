"""
Logger factory and helpers.

Provides:
- get_logger(): a configured structlog logger
- should_sample(): probabilistic sampling for high-frequency events
- hash_ip(): None-tolerant IP hashing
"""

import random
from typing import Optional

import structlog
from structlog.stdlib import BoundLogger

from .logging_config import SAMPLING_RATES, hash_ip as _hash_ip


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("click_recorded", short_code="abc123", is_unique=True)
    """
    return structlog.get_logger(name)


def should_sample(event_type: str) -> bool:
    """
    Return True if an event of this type should be logged.

    Events missing from SAMPLING_RATES are always logged.

    Example:
        >>> if should_sample("click_recorded"):
        ...     log.info("click_recorded", short_code="abc123")
    """
    sample_rate = SAMPLING_RATES.get(event_type, 1.0)
    if sample_rate >= 1.0:
        return True
    if sample_rate <= 0.0:
        return False
    return random.random() < sample_rate


def hash_ip(ip_address: Optional[str]) -> Optional[str]:
    """Hash an IP address for logging; None passes through."""
    if ip_address is None:
        return None
    return _hash_ip(ip_address)


def log_with_context(logger: BoundLogger, **context) -> BoundLogger:
    """Bind context (short_code, topic, ...) to all subsequent log calls."""
    return logger.bind(**context)
