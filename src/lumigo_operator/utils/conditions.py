"""Status conditions of Lumigo resources.

A Lumigo resource carries at most two conditions, ``Active`` and ``Error``.
They are held in a fixed record rather than a free-form list, and the
transitions below keep them mutually exclusive: the resource is never
Active while an Error is reported.

Pending (no conditions) -> Active | Error, and Active <-> Error afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..constants import COND_ACTIVE, COND_ERROR, REASON_ACTIVE, REASON_INACTIVE

STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

PHASE_PENDING = "Pending"
PHASE_ACTIVE = "Active"
PHASE_ERROR = "Error"


def _timestamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


@dataclass
class Condition:
    """A single status condition."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_update_time: str = ""
    last_transition_time: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastUpdateTime": self.last_update_time,
            "lastTransitionTime": self.last_transition_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=data.get("type", ""),
            status=data.get("status", STATUS_UNKNOWN),
            reason=data.get("reason", "") or "",
            message=data.get("message", "") or "",
            last_update_time=data.get("lastUpdateTime", "") or "",
            last_transition_time=data.get("lastTransitionTime", "") or "",
        )


def update_condition(
    existing: Condition | None,
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    now: datetime | None = None,
) -> Condition:
    """Re-evaluate a condition.

    Args:
        existing: Current condition of that type, if any
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        now: Evaluation time, defaults to the current UTC time

    Returns:
        The new condition. ``lastUpdateTime`` is always ``now``;
        ``lastTransitionTime`` only moves when the status changed.
    """
    timestamp = _timestamp(now)
    transition_time = timestamp
    if existing is not None and existing.status == status and existing.last_transition_time:
        transition_time = existing.last_transition_time

    return Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        last_update_time=timestamp,
        last_transition_time=transition_time,
    )


@dataclass
class LumigoConditions:
    """The condition record of one Lumigo resource."""

    active: Condition | None = None
    error: Condition | None = None
    extra: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_status(cls, status: dict[str, Any] | None) -> LumigoConditions:
        """Parse the ``status.conditions`` list of a Lumigo resource.

        Unknown condition types are carried over untouched; for duplicated
        types the first occurrence wins.
        """
        record = cls()
        for raw in (status or {}).get("conditions") or []:
            cond_type = raw.get("type")
            if cond_type == COND_ACTIVE:
                if record.active is None:
                    record.active = Condition.from_dict(raw)
            elif cond_type == COND_ERROR:
                if record.error is None:
                    record.error = Condition.from_dict(raw)
            else:
                record.extra.append(raw)
        return record

    def to_status(self) -> list[dict[str, Any]]:
        """Serialize back to a ``status.conditions`` list."""
        conditions = [cond.to_dict() for cond in (self.active, self.error) if cond is not None]
        return conditions + list(self.extra)

    def set_error(self, reason: str, message: str, now: datetime | None = None) -> None:
        """Put the resource in error; Active turns False."""
        self.error = update_condition(self.error, COND_ERROR, STATUS_TRUE, reason, message, now)
        self.active = update_condition(self.active, COND_ACTIVE, STATUS_FALSE, REASON_INACTIVE, message, now)

    def set_active(self, now: datetime | None = None) -> None:
        """Mark the resource active and drop any Error condition."""
        self.active = update_condition(
            self.active, COND_ACTIVE, STATUS_TRUE, REASON_ACTIVE, "Lumigo is active", now
        )
        self.error = None

    def is_active(self) -> bool:
        return self.active is not None and self.active.status == STATUS_TRUE

    def has_error(self) -> tuple[bool, str]:
        """Return whether an Error is reported, and its message."""
        if self.error is not None and self.error.status == STATUS_TRUE:
            return True, self.error.message
        return False, ""

    def phase(self) -> str:
        if self.is_active():
            return PHASE_ACTIVE
        if self.has_error()[0]:
            return PHASE_ERROR
        return PHASE_PENDING


def is_active(body: dict[str, Any]) -> bool:
    """Whether a Lumigo resource body reports Active=True."""
    return LumigoConditions.from_status(body.get("status")).is_active()


def has_error(body: dict[str, Any]) -> tuple[bool, str]:
    """Whether a Lumigo resource body reports Error=True, and its message."""
    return LumigoConditions.from_status(body.get("status")).has_error()
