"""Shared state and utilities for handlers."""

from __future__ import annotations

import copy
import threading
from typing import Any, Mapping

from ..config import OperatorConfig
from ..reconciler import Reconciler

_reconciler: Reconciler | None = None

# Timers can fire while another handler of the same object is running
_identity_locks: dict[tuple[str, str], threading.Lock] = {}
_identity_locks_guard = threading.Lock()


def configure(reconciler: Reconciler) -> None:
    """Install the reconciler the handlers delegate to."""
    global _reconciler
    _reconciler = reconciler


def get_reconciler() -> Reconciler:
    if _reconciler is None:
        raise RuntimeError("handlers are not configured; the startup handler has not run")
    return _reconciler


def get_config() -> OperatorConfig:
    return get_reconciler().config


def identity_lock(namespace: str, name: str) -> threading.Lock:
    """Lock serializing all work on one Lumigo resource."""
    with _identity_locks_guard:
        return _identity_locks.setdefault((namespace, name), threading.Lock())


def drop_identity_lock(namespace: str, name: str) -> None:
    with _identity_locks_guard:
        _identity_locks.pop((namespace, name), None)


def snapshot(body: Mapping[str, Any]) -> dict[str, Any]:
    """Plain, detached copy of a kopf body."""
    return copy.deepcopy(dict(body))


def is_configured() -> bool:
    """Whether the startup handler has installed the reconciler."""
    return _reconciler is not None
