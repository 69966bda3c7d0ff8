"""Handler for Lumigo CRD."""

from __future__ import annotations

import os
from typing import Any

import kopf

from ..constants import API_GROUP_VERSION, KIND_LUMIGO, REASON_INVALID_CREDENTIALS, REASON_NAMESPACE_CONFLICT
from ..exceptions import ReconcileError, TransientError
from ..models import FinalizeOutcome, ReconcileOutcome
from ..utils.conditions import has_error
from ..utils.context import with_correlation_id
from ..utils.errors import sanitize_exception
from ..utils.events import (
    emit_activated,
    emit_injection_failed,
    emit_invalid_credentials,
    emit_namespace_conflict,
    emit_workload_instrumented,
    emit_workload_uninstrumented,
)
from .base import BaseHandler
from .shared import drop_identity_lock, get_config, get_reconciler, identity_lock, snapshot


class LumigoHandler(BaseHandler):
    """Handler for Lumigo resources."""

    def __init__(self):
        """Initialize Lumigo handler."""
        super().__init__(KIND_LUMIGO)

    def reconcile(self, body: dict[str, Any], is_new: bool = False, periodic: bool = False) -> ReconcileOutcome:
        """Reconcile a Lumigo resource and report the outcome.

        Args:
            body: Resource body as delivered by kopf
            is_new: Whether the resource was just created
            periodic: Whether this is a timer run; timer runs do not raise
                for requeueing since the timer fires again anyway

        Raises:
            kopf.TemporaryError: When the resource must be reconciled again
        """
        meta = body.get("metadata") or {}
        namespace, name = meta["namespace"], meta["name"]
        reconciler = get_reconciler()

        with with_correlation_id(), identity_lock(namespace, name):
            outcome = self.reconcile_with_metrics(
                body,
                lambda: self._reconcile(namespace, name, is_new),
                announce=not periodic,
            )
            self._report(body, outcome)

        if outcome.requeue and not periodic:
            raise kopf.TemporaryError(
                outcome.message or "some workloads could not be instrumented",
                delay=reconciler.config.reconcile_interval_seconds,
            )
        return outcome

    def _reconcile(self, namespace: str, name: str, is_new: bool) -> ReconcileOutcome:
        try:
            return get_reconciler().reconcile(namespace, name, is_new=is_new)
        except (TransientError, ReconcileError) as e:
            raise kopf.TemporaryError(sanitize_exception(e), delay=get_config().reconcile_interval_seconds) from e

    def _report(self, body: dict[str, Any], outcome: ReconcileOutcome) -> None:
        meta = body.get("metadata") or {}
        if not outcome.found:
            return

        previous_error, previous_message = has_error(body)
        repeated = previous_error and previous_message == outcome.message
        if outcome.reason == REASON_NAMESPACE_CONFLICT:
            self.log_warning(meta, outcome.message, reason=outcome.reason)
            if not repeated:
                emit_namespace_conflict(body, outcome.message)
        elif outcome.reason == REASON_INVALID_CREDENTIALS:
            self.log_warning(meta, outcome.message, reason=outcome.reason)
            if not repeated:
                emit_invalid_credentials(body, outcome.message)
        elif outcome.activated:
            self.log_info(meta, "Lumigo instance is active", event="activated", reason="Activated")
            emit_activated(body)

        for ref in outcome.changed:
            emit_workload_instrumented(body, ref)
        for ref, message in sorted(outcome.failures.items()):
            self.log_warning(meta, f"Cannot instrument {ref}", reason="InjectionFailed", workload=ref, error=message)
            emit_injection_failed(body, ref, message)

    def delete(self, body: dict[str, Any]) -> FinalizeOutcome:
        """Handle Lumigo resource deletion."""
        meta = body.get("metadata") or {}
        namespace, name = meta["namespace"], meta["name"]
        reconciler = get_reconciler()
        self.log_info(meta, "Lumigo instance is being deleted", event="deletion", reason="Deletion")

        with with_correlation_id(), identity_lock(namespace, name):
            try:
                outcome = reconciler.finalize(namespace, name, body)
            except (TransientError, ReconcileError) as e:
                self.log_error(meta, "Cannot finalize Lumigo instance", error=e, reason="FinalizeFailed")
                raise kopf.TemporaryError(
                    sanitize_exception(e), delay=reconciler.config.reconcile_interval_seconds
                ) from e

        if outcome.skipped_reason:
            self.log_info(meta, f"Leaving instrumentation in place: {outcome.skipped_reason}", reason="Deletion")
        for ref in outcome.reverted:
            emit_workload_uninstrumented(body, ref)

        nudged = reconciler.request_reconcile_of_others(namespace, name)
        if nudged:
            self.log_info(meta, "Requested reconciliation of remaining instances", reason="Deletion", instances=nudged)
        drop_identity_lock(namespace, name)
        return outcome


# Global handler instance
_handler = LumigoHandler()


@kopf.index(API_GROUP_VERSION, KIND_LUMIGO)
def lumigo_by_namespace(namespace: str, body: kopf.Body, **kwargs: Any) -> dict[str, dict[str, Any]]:
    """In-memory index of Lumigo resources by namespace."""
    return {namespace: snapshot(body)}


@kopf.on.create(API_GROUP_VERSION, KIND_LUMIGO)
def handle_lumigo_create(body: kopf.Body, **kwargs: Any) -> None:
    """Handle Lumigo resource creation."""
    _handler.reconcile(snapshot(body), is_new=True)


@kopf.on.update(API_GROUP_VERSION, KIND_LUMIGO)
@kopf.on.resume(API_GROUP_VERSION, KIND_LUMIGO)
def handle_lumigo(body: kopf.Body, **kwargs: Any) -> None:
    """Handle Lumigo resource reconciliation."""
    _handler.reconcile(snapshot(body))


@kopf.timer(API_GROUP_VERSION, KIND_LUMIGO, interval=float(os.getenv("RECONCILE_INTERVAL_SECONDS", "30")))
def handle_lumigo_timer(body: kopf.Body, **kwargs: Any) -> None:
    """Periodically re-reconcile, to observe out-of-band changes."""
    _handler.reconcile(snapshot(body), periodic=True)


@kopf.on.delete(API_GROUP_VERSION, KIND_LUMIGO)
def handle_lumigo_delete(body: kopf.Body, **kwargs: Any) -> None:
    """Handle Lumigo resource deletion."""
    _handler.delete(snapshot(body))
