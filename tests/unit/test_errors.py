"""Tests for error sanitization utilities."""

from __future__ import annotations

import json
import logging

from lumigo_operator.logging import log_resource_event, sanitize_secrets
from lumigo_operator.utils.context import with_correlation_id
from lumigo_operator.utils.errors import (
    sanitize_dict,
    sanitize_error_message,
    sanitize_exception,
)

TOKEN = "t_1234567890123456789AB"


class TestSanitizeErrorMessage:
    """Test cases for sanitize_error_message function."""

    def test_sanitize_lumigo_token(self):
        """Test that Lumigo tokens are redacted wherever they appear."""
        message = f"Error: token {TOKEN} was rejected"
        result = sanitize_error_message(message)
        assert TOKEN not in result
        assert "[REDACTED]" in result

    def test_sanitize_multiple_tokens(self):
        message = f"{TOKEN},{TOKEN[:-1]}C"
        result = sanitize_error_message(message)
        assert result == "[REDACTED],[REDACTED]"

    def test_sanitize_bearer_credentials(self):
        """Test that bearer credentials are sanitized."""
        message = "Unauthorized: Authorization: Bearer abc.def.ghi; retry later"
        result = sanitize_error_message(message)
        assert "abc.def.ghi" not in result
        assert "Bearer [REDACTED]" in result

    def test_no_sanitization_needed(self):
        """Test that messages without sensitive data remain unchanged."""
        message = "Error: Deployment default/checkout not found"
        assert sanitize_error_message(message) == message

    def test_token_like_words_are_kept(self):
        """Test that words shorter than a token are left alone."""
        message = "t_short is not a token"
        assert sanitize_error_message(message) == message


class TestSanitizeException:
    """Test cases for sanitize_exception function."""

    def test_sanitize_exception(self):
        error = ValueError(f"invalid token {TOKEN}")
        result = sanitize_exception(error)
        assert TOKEN not in result
        assert result.startswith("invalid token")


class TestSanitizeDict:
    """Test cases for sanitize_dict function."""

    def test_sensitive_keys_redacted(self):
        data = {"lumigoToken": TOKEN, "name": "lumigo"}
        result = sanitize_dict(data)
        assert result["lumigoToken"] == "[REDACTED]"
        assert result["name"] == "lumigo"

    def test_nested_dicts(self):
        data = {"spec": {"tracing": {"injection": {"enabled": True}}, "password": "hunter2"}}
        result = sanitize_dict(data)
        assert result["spec"]["tracing"]["injection"]["enabled"] is True
        assert result["spec"]["password"] == "[REDACTED]"

    def test_values_scrubbed(self):
        data = {"message": f"bad {TOKEN}"}
        assert TOKEN not in sanitize_dict(data)["message"]

    def test_additional_keys(self):
        data = {"endpoint": "https://ga-otlp.lumigo-tracer-edge.golumigo.com", "count": 3}
        result = sanitize_dict(data, {"endpoint"})
        assert result["endpoint"] == "[REDACTED]"
        assert result["count"] == 3


class TestStructuredLogging:
    """Test cases for structured log records."""

    def test_sanitize_secrets(self):
        result = sanitize_secrets({"token": TOKEN, "name": "lumigo"})
        assert result == {"token": "[REDACTED]", "name": "lumigo"}

    def test_sanitize_secrets_scrubs_nested_fields(self):
        result = sanitize_secrets({"error": f"secret holds {TOKEN}", "spec": {"lumigoToken": TOKEN}})
        assert result == {"error": "secret holds [REDACTED]", "spec": {"lumigoToken": "[REDACTED]"}}

    def test_log_resource_event_includes_correlation_id(self, caplog):
        logger = logging.getLogger("test.structured")

        with caplog.at_level(logging.INFO), with_correlation_id("abc123"):
            log_resource_event(
                logger,
                {"resource": "Lumigo", "name": "lumigo", "namespace": "default", "uid": "uid-1"},
                event="activated",
                reason="Activated",
                message="Lumigo instance is active",
                lumigoToken=TOKEN,
            )

        record = json.loads(caplog.records[-1].getMessage())
        assert record["controller"] == "lumigo-operator"
        assert record["name"] == "lumigo"
        assert record["correlation_id"] == "abc123"
        assert record["lumigoToken"] == "[REDACTED]"
        assert record["event"] == "activated"
        assert TOKEN not in caplog.text
