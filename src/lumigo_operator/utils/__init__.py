"""Utility functions for the Lumigo Operator."""

from .conditions import LumigoConditions, has_error, is_active, update_condition
from .context import get_context_dict, get_correlation_id, with_correlation_id
from .errors import sanitize_dict, sanitize_error_message, sanitize_exception
from .events import emit_event
from .rate_limit import is_rate_limit_error, rate_limit_k8s
from .retry import PollTimeoutError, poll_until, retry_on_conflict
from .tokens import SecretReference, validate_token_secret

__all__ = [
    "LumigoConditions",
    "update_condition",
    "is_active",
    "has_error",
    "emit_event",
    "get_context_dict",
    "get_correlation_id",
    "with_correlation_id",
    "sanitize_dict",
    "sanitize_error_message",
    "sanitize_exception",
    "rate_limit_k8s",
    "is_rate_limit_error",
    "poll_until",
    "retry_on_conflict",
    "PollTimeoutError",
    "SecretReference",
    "validate_token_secret",
]
