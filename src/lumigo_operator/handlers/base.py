"""Common plumbing for kopf handlers: structured logs, metrics and events."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

from .. import metrics
from ..logging import log_resource_event
from ..utils.errors import sanitize_exception
from ..utils.events import emit_reconcile_failed, emit_reconcile_started

T = TypeVar("T")


class BaseHandler:
    """Base class for the handlers of one resource kind.

    Args:
        kind: The Kubernetes resource kind (e.g., "Lumigo")
    """

    def __init__(self, kind: str):
        self.kind = kind
        self.logger = logging.getLogger(__name__)

    def _resource(self, meta: dict[str, Any]) -> dict[str, Any]:
        return {
            "resource": self.kind,
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", "default"),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(self, level: int, meta: dict[str, Any], message: str, event: str, reason: str, **fields: Any) -> None:
        log_resource_event(
            self.logger,
            self._resource(meta),
            event=event,
            reason=reason,
            message=message,
            level=level,
            **fields,
        )

    def log_info(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **fields: Any,
    ) -> None:
        """Log an info-level record about the resource described by ``meta``."""
        self._log(logging.INFO, meta, message, event, reason, **fields)

    def log_warning(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **fields: Any,
    ) -> None:
        self._log(logging.WARNING, meta, message, event, reason, **fields)

    def log_error(
        self,
        meta: dict[str, Any],
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **fields: Any,
    ) -> None:
        """Log an error-level record; ``error`` is added sanitized, with its type."""
        if error is not None:
            fields["error"] = sanitize_exception(error)
            fields["error_type"] = type(error).__name__
        self._log(logging.ERROR, meta, message, event, reason, **fields)

    def reconcile_with_metrics(
        self,
        body: dict[str, Any],
        reconcile_fn: Callable[[], T],
        announce: bool = True,
    ) -> T:
        """Run ``reconcile_fn`` with metrics, events and error logging around it.

        Args:
            body: Resource body, used as the target of emitted events
            reconcile_fn: The reconciliation itself
            announce: Whether to emit a ReconcileStarted event; periodic
                runs pass False to keep the event stream quiet

        Returns:
            Whatever ``reconcile_fn`` returns; its exceptions propagate
        """
        if announce:
            emit_reconcile_started(body)
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        started = time.monotonic()
        result = "error"
        try:
            value = reconcile_fn()
            result = "success"
            return value
        except Exception as e:
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
            self.log_error(body.get("metadata") or {}, "Reconciliation failed", error=e, reason="ReconciliationFailed")
            emit_reconcile_failed(body, f"Reconciliation failed: {sanitize_exception(e)}")
            raise
        finally:
            metrics.reconcile_total.labels(kind=self.kind, result=result).inc()
            metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(time.monotonic() - started)
