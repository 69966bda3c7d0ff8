"""Planning and application of Lumigo injection on pod templates."""

from .engine import ApplyResult, InjectionEngine
from .planner import (
    InjectionPlan,
    InjectionPlanner,
    PlanAction,
    has_marker,
    inspect_pod_template,
    read_marker,
)

__all__ = [
    "ApplyResult",
    "InjectionEngine",
    "InjectionPlan",
    "InjectionPlanner",
    "PlanAction",
    "has_marker",
    "inspect_pod_template",
    "read_marker",
]
