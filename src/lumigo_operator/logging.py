"""Structured JSON logging for the Lumigo Operator.

Records logged through ``log_resource_event`` are single JSON documents
carrying the identity of the resource they are about, the correlation id of
the reconcile that produced them and, when tracing is on, the current trace
and span ids.
"""

import json
import logging
import sys
from typing import Any

from .constants import CONTROLLER_NAME
from .utils.context import get_context_dict
from .utils.errors import sanitize_dict

# Client libraries that log every request at INFO
_CHATTY_LOGGERS = ("urllib3", "kubernetes.client.rest")


def setup_structured_logging(debug: bool = False) -> None:
    """Configure root logging to print one message per line on stdout."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not debug:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def log_resource_event(
    logger: logging.Logger,
    resource: dict[str, Any],
    event: str,
    reason: str,
    message: str,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Log a structured record about a Kubernetes resource.

    Args:
        logger: Logger to emit on
        resource: Identity of the resource (kind, name, namespace, uid)
        event: Short machine-readable event name
        reason: CamelCase reason, as used for Kubernetes events
        message: Human-readable message
        level: Logging level
        **fields: Extra fields; secret-bearing keys and embedded tokens are redacted
    """
    record = {"controller": CONTROLLER_NAME, **resource, "event": event, "reason": reason, "message": message}
    record.update(get_context_dict(fields))
    logger.log(level, json.dumps(sanitize_secrets(record), default=str))


def sanitize_secrets(log_data: dict[str, Any]) -> dict[str, Any]:
    """Redact secret-bearing fields, and tokens inside any string or nested field."""
    return sanitize_dict(log_data)
