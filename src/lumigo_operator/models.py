"""Models for Lumigo resources and reconciliation outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .utils.conditions import PHASE_PENDING
from .utils.tokens import SecretReference


def _flag(value: Any, default: bool) -> bool:
    return default if value is None else bool(value)


@dataclass(frozen=True)
class LumigoSpec:
    """The parts of a Lumigo resource spec the operator acts on."""

    credentials: SecretReference
    injection_enabled: bool = True
    inject_on_existing_resources_on_creation: bool = True
    remove_on_deletion: bool = True

    @classmethod
    def from_spec(cls, spec: dict[str, Any] | None) -> LumigoSpec:
        spec = spec or {}
        injection = (spec.get("tracing") or {}).get("injection") or {}
        return cls(
            credentials=SecretReference.from_spec((spec.get("lumigoToken") or {}).get("secretRef")),
            injection_enabled=_flag(injection.get("enabled"), True),
            inject_on_existing_resources_on_creation=_flag(
                injection.get("injectLumigoIntoExistingResourcesOnCreation"), True
            ),
            remove_on_deletion=_flag(injection.get("removeLumigoFromResourcesOnDeletion"), True),
        )


@dataclass
class ReconcileOutcome:
    """Result of one reconciliation of a Lumigo resource."""

    found: bool = True
    phase: str = PHASE_PENDING
    reason: str = ""
    message: str = ""
    requeue: bool = False
    activated: bool = False
    instrumented: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


@dataclass
class FinalizeOutcome:
    """Result of finalizing a deleted Lumigo resource."""

    reverted: list[str] = field(default_factory=list)
    skipped_reason: str = ""
