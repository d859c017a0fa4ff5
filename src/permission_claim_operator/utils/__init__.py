"""Utility functions for the Permission Claim Operator."""

from .conditions import (
    set_bound_condition,
    set_waiting_for_token_condition,
    update_condition,
)
from .context import (
    get_context_dict,
    get_correlation_id,
    with_correlation_id,
)
from .errors import (
    ReconcileStepError,
    is_conflict,
    is_not_found,
    sanitize_exception,
)
from .events import emit_event
from .rate_limit import RateLimiter, is_rate_limit_error, record_rate_limit_error
from .secrets import decode_secret_value, encode_secret_data

__all__ = [
    "update_condition",
    "set_bound_condition",
    "set_waiting_for_token_condition",
    "emit_event",
    "decode_secret_value",
    "encode_secret_data",
    "RateLimiter",
    "is_rate_limit_error",
    "record_rate_limit_error",
    "ReconcileStepError",
    "is_conflict",
    "is_not_found",
    "sanitize_exception",
    "get_correlation_id",
    "with_correlation_id",
    "get_context_dict",
]
