"""
Logging re-exports.

Application code imports from shared.logging so that it does not depend on
the layout of utils/.
"""

from utils.logger import get_logger, hash_ip, log_with_context, should_sample
from utils.logging_config import (
    SAMPLING_RATES,
    configure_structlog,
    setup_logging,
)

__all__ = [
    "get_logger",
    "hash_ip",
    "log_with_context",
    "should_sample",
    "SAMPLING_RATES",
    "configure_structlog",
    "setup_logging",
]
