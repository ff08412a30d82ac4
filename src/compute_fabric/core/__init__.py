"""Core infrastructure and utilities.

Responsibility: Provides foundational primitives (logging, the error hierarchy, clocks)
used across all ComputeFabric modules.
"""

from .exceptions import (
    FabricError,
    Forbidden,
    InvalidImage,
    InvalidInput,
    InvalidTransition,
    NotFound,
    TransientStoreError,
)
from .logging import CorrelationIdFilter, JsonFormatter, configure_logging, get_logger, log_with_context, set_correlation_id
from .time import Clock, utc_timestamp, utcnow

__all__ = [
    "FabricError",
    "Forbidden",
    "InvalidImage",
    "InvalidInput",
    "InvalidTransition",
    "NotFound",
    "TransientStoreError",
    "configure_logging",
    "CorrelationIdFilter",
    "JsonFormatter",
    "get_logger",
    "log_with_context",
    "set_correlation_id",
    "Clock",
    "utc_timestamp",
    "utcnow",
]
