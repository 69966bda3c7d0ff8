"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_ACTIVATED,
    EVENT_REASON_INJECTION_FAILED,
    EVENT_REASON_INVALID_CREDENTIALS,
    EVENT_REASON_NAMESPACE_CONFLICT,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_WORKLOAD_INSTRUMENTED,
    EVENT_REASON_WORKLOAD_UNINSTRUMENTED,
)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Resource body (needs apiVersion, kind and metadata)
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(body: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(body, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(body: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(body, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_activated(body: dict[str, Any]) -> None:
    emit_event(body, EVENT_REASON_ACTIVATED, "Lumigo instance is active")


def emit_namespace_conflict(body: dict[str, Any], message: str) -> None:
    emit_event(body, EVENT_REASON_NAMESPACE_CONFLICT, message, type_="Warning")


def emit_invalid_credentials(body: dict[str, Any], message: str) -> None:
    emit_event(body, EVENT_REASON_INVALID_CREDENTIALS, message, type_="Warning")


def emit_workload_instrumented(body: dict[str, Any], workload_ref: str) -> None:
    """Emit workload instrumented event."""
    emit_event(body, EVENT_REASON_WORKLOAD_INSTRUMENTED, f"Instrumented {workload_ref}")


def emit_workload_uninstrumented(body: dict[str, Any], workload_ref: str) -> None:
    """Emit workload uninstrumented event."""
    emit_event(body, EVENT_REASON_WORKLOAD_UNINSTRUMENTED, f"Removed instrumentation from {workload_ref}")


def emit_injection_failed(body: dict[str, Any], workload_ref: str, message: str) -> None:
    """Emit injection failed event."""
    emit_event(
        body,
        EVENT_REASON_INJECTION_FAILED,
        f"Cannot instrument {workload_ref}: {message}",
        type_="Warning",
    )
