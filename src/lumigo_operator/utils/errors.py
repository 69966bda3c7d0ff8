"""Error sanitization utilities to prevent credential leakage."""

import re
from typing import Any

# Lumigo tokens, wherever they appear
TOKEN_PATTERN = re.compile(r"\bt_[a-zA-Z0-9]{21}\b")

# Fields to redact completely
SENSITIVE_FIELDS = {
    "token",
    "secret",
    "password",
    "credentials",
    "authorization",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with tokens and bearer credentials redacted
    """
    sanitized = TOKEN_PATTERN.sub("[REDACTED]", message)
    sanitized = re.sub(r"(bearer\s+)[^\s,;]+", r"\1[REDACTED]", sanitized, flags=re.IGNORECASE)
    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message."""
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
