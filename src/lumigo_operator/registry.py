"""Resolution of the one Lumigo instance allowed to be active per namespace."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

_NOT_YET_CREATED = datetime.max.replace(tzinfo=timezone.utc)


def _creation_time(body: dict[str, Any]) -> datetime:
    raw = (body.get("metadata") or {}).get("creationTimestamp")
    if not raw:
        return _NOT_YET_CREATED
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def authority_key(body: dict[str, Any]) -> tuple[datetime, str]:
    """Sort key: oldest first, then by name."""
    return _creation_time(body), (body.get("metadata") or {}).get("name", "")


def is_being_deleted(body: dict[str, Any]) -> bool:
    return bool((body.get("metadata") or {}).get("deletionTimestamp"))


def select_authoritative(candidates: Iterable[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick the authoritative instance among ``candidates``.

    Instances being deleted are not eligible. The earliest
    ``creationTimestamp`` wins; equal timestamps are ordered by name.
    """
    eligible = [c for c in candidates if not is_being_deleted(c)]
    if not eligible:
        return None
    return min(eligible, key=authority_key)


class NamespaceRegistry:
    """Tracks which Lumigo instance is authoritative in each namespace.

    Authority is recomputed from the candidates on every call. The registry
    only remembers the previous answer so that hand-overs can be logged.
    """

    def __init__(self) -> None:
        self._authoritative: dict[str, str | None] = {}
        self._lock = threading.Lock()

    def resolve_authoritative(self, namespace: str, candidates: Iterable[dict[str, Any]]) -> str | None:
        """Return the name of the authoritative instance, None if there is none."""
        selected = select_authoritative(candidates)
        name = selected["metadata"]["name"] if selected is not None else None

        with self._lock:
            previous = self._authoritative.get(namespace)
            self._authoritative[namespace] = name

        if previous is not None and previous != name:
            logger.info("Authoritative Lumigo instance in namespace %s changed from %s to %s", namespace, previous, name)
        return name

    def was_authoritative(self, namespace: str, name: str, candidates: Iterable[dict[str, Any]]) -> bool:
        """Whether ``name``, which may be being deleted, holds authority.

        Used while finalizing an instance: it is compared against the other
        live instances as if it were not being deleted.
        """
        others = []
        own = None
        for candidate in candidates:
            if candidate["metadata"]["name"] == name:
                own = candidate
            elif not is_being_deleted(candidate):
                others.append(candidate)
        if own is None:
            return False
        return all(authority_key(own) <= authority_key(other) for other in others)

    def forget(self, namespace: str) -> None:
        with self._lock:
            self._authoritative.pop(namespace, None)
