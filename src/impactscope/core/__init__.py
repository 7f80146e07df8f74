"""Core module exports."""

from impactscope.core.errors import (
    ConfigError,
    ErrorCode,
    FactError,
    ImpactScopeError,
    IntegrityViolation,
    InternalError,
    MissingInputError,
)
from impactscope.core.logging import (
    clear_run_id,
    configure_logging,
    get_logger,
    get_run_id,
    set_run_id,
)
from impactscope.core.progress import Reporter, pluralize

__all__ = [
    # Errors
    "ConfigError",
    "ErrorCode",
    "FactError",
    "ImpactScopeError",
    "IntegrityViolation",
    "InternalError",
    "MissingInputError",
    # Logging
    "clear_run_id",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "set_run_id",
    # Console
    "Reporter",
    "pluralize",
]
