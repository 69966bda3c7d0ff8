"""Application and reversal of injection plans on workload objects."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any

from ..constants import ANNOTATION_EMPTY_FIELDS, ANNOTATION_INSTRUMENTATION, LABEL_INSTRUMENTED
from ..exceptions import InjectionError
from ..utils.tokens import SecretReference
from ..workloads import is_opted_out, workload_kind_of, workload_ref
from .planner import InjectionPlan, InjectionPlanner, PlanAction, application_containers, is_reserved

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying a plan to a workload."""

    workload: dict[str, Any]
    action: PlanAction
    changed: bool = False
    skipped: bool = False


def _replace_named(
    items: list[dict[str, Any]] | None,
    remove: set[str],
    add: tuple[dict[str, Any], ...],
) -> list[dict[str, Any]]:
    kept = [item for item in items or [] if item.get("name") not in remove]
    return kept + [copy.deepcopy(item) for item in add]


def _set_or_drop(node: dict[str, Any], key: str, value: Any, keep: bool = False) -> None:
    # Empty collections are dropped unless they were there before injection
    if value or keep:
        node[key] = value
    else:
        node.pop(key, None)


def _empty_fields(template: dict[str, Any]) -> set[str]:
    """Paths of the fields of a pod template that are present but empty."""
    fields: set[str] = set()

    def collect(node: dict[str, Any], path: str, keys: tuple[str, ...]) -> None:
        for key in keys:
            value = node.get(key)
            if isinstance(value, (list, dict)) and not value:
                fields.add(f"{path}{key}")

    collect(template, "", ("metadata",))
    collect(template.get("metadata") or {}, "metadata.", ("labels", "annotations"))
    spec = template.get("spec") or {}
    collect(spec, "spec.", ("initContainers", "containers", "volumes"))
    for container in application_containers(spec):
        collect(container, f"spec.containers[{container.get('name')}].", ("env", "volumeMounts"))
    return fields


def _recorded_empty_fields(template: dict[str, Any]) -> set[str]:
    annotations = (template.get("metadata") or {}).get("annotations") or {}
    raw = annotations.get(ANNOTATION_EMPTY_FIELDS)
    if not raw:
        return set()
    try:
        recorded = json.loads(raw)
    except ValueError:
        logger.warning("Unparseable %s annotation: %r", ANNOTATION_EMPTY_FIELDS, raw)
        return set()
    return {field for field in recorded if isinstance(field, str)} if isinstance(recorded, list) else set()


class InjectionEngine:
    """Applies injection plans to in-memory workload bodies.

    The engine never mutates its input: it works on a deep copy and either
    returns the fully transformed copy or raises, leaving the caller with the
    untouched original. Persisting the result is the caller's job.
    """

    def __init__(self, planner: InjectionPlanner):
        self.planner = planner

    def plan(self, workload: dict[str, Any], token_ref: SecretReference) -> InjectionPlan:
        kind = workload_kind_of(workload)
        return self.planner.plan(kind.get_pod_template(workload), token_ref)

    def apply(self, workload: dict[str, Any], plan: InjectionPlan) -> ApplyResult:
        """Apply ``plan`` to a workload.

        Workloads labelled ``lumigo.auto-trace: "false"`` are skipped.

        Raises:
            InjectionError: If the plan cannot be applied; nothing is modified
        """
        if is_opted_out(workload) and plan.action is not PlanAction.REMOVE:
            logger.debug("Skipping %s: opted out of auto-tracing", workload_ref(workload))
            return ApplyResult(workload=workload, action=PlanAction.NOOP, skipped=True)
        return self._transform(workload, plan)

    def inject(self, workload: dict[str, Any], token_ref: SecretReference) -> ApplyResult:
        """Plan and apply the injection of a workload."""
        if is_opted_out(workload):
            return ApplyResult(workload=workload, action=PlanAction.NOOP, skipped=True)
        return self._transform(workload, self.plan(workload, token_ref))

    def revert(self, workload: dict[str, Any]) -> ApplyResult:
        """Remove every trace of injection from a workload.

        Opted-out workloads are reverted too: opting out after being
        instrumented must not strand the injection.
        """
        kind = workload_kind_of(workload)
        plan = self.planner.plan_removal(kind.get_pod_template(workload))
        return self._transform(workload, plan)

    def _transform(self, workload: dict[str, Any], plan: InjectionPlan) -> ApplyResult:
        if not plan.has_changes:
            return ApplyResult(workload=workload, action=PlanAction.NOOP)

        kind = workload_kind_of(workload)
        mutated = copy.deepcopy(workload)
        template = kind.get_pod_template(mutated)
        try:
            self._apply_to_template(template, plan)
        except (AttributeError, KeyError, TypeError) as e:
            raise InjectionError(f"cannot apply {plan.action.value} plan to {workload_ref(workload)}: {e}") from e
        kind.set_pod_template(mutated, template)

        return ApplyResult(workload=mutated, action=plan.action, changed=mutated != workload)

    def _apply_to_template(self, template: dict[str, Any], plan: InjectionPlan) -> None:
        # Fields that were empty before the first injection survive every later change
        preserved = _recorded_empty_fields(template) | _empty_fields(template)
        spec = template.setdefault("spec", {})

        # Names of added elements are removed first, so re-applying a plan is a no-op
        container_names = set(plan.remove_container_names)
        container_names.update(c["name"] for c in plan.add_init_containers + plan.add_containers)
        volume_names = set(plan.remove_volume_names) | {v["name"] for v in plan.add_volumes}
        env_names = set(plan.remove_env_var_names) | {e["name"] for e in plan.env_vars}
        mount_names = set(plan.remove_volume_mount_names) | {m["name"] for m in plan.volume_mounts}

        for container in spec.get("containers") or []:
            if is_reserved(container.get("name")):
                continue
            path = f"spec.containers[{container.get('name')}]"
            _set_or_drop(
                container,
                "env",
                _replace_named(container.get("env"), env_names, plan.env_vars),
                keep=f"{path}.env" in preserved,
            )
            _set_or_drop(
                container,
                "volumeMounts",
                _replace_named(container.get("volumeMounts"), mount_names, plan.volume_mounts),
                keep=f"{path}.volumeMounts" in preserved,
            )

        _set_or_drop(
            spec,
            "initContainers",
            _replace_named(spec.get("initContainers"), container_names, plan.add_init_containers),
            keep="spec.initContainers" in preserved,
        )
        _set_or_drop(
            spec,
            "containers",
            _replace_named(spec.get("containers"), container_names, plan.add_containers),
            keep="spec.containers" in preserved,
        )
        _set_or_drop(
            spec,
            "volumes",
            _replace_named(spec.get("volumes"), volume_names, plan.add_volumes),
            keep="spec.volumes" in preserved,
        )

        # The marker goes last: a marked template without injected elements is
        # a valid intermediate state that the next removal finishes
        metadata = template.setdefault("metadata", {})
        labels = dict(metadata.get("labels") or {})
        annotations = dict(metadata.get("annotations") or {})
        if plan.marker is not None:
            labels[LABEL_INSTRUMENTED] = "true"
            annotations[ANNOTATION_INSTRUMENTATION] = json.dumps(plan.marker, sort_keys=True)
            if preserved:
                annotations[ANNOTATION_EMPTY_FIELDS] = json.dumps(sorted(preserved))
            else:
                annotations.pop(ANNOTATION_EMPTY_FIELDS, None)
        else:
            labels.pop(LABEL_INSTRUMENTED, None)
            annotations.pop(ANNOTATION_INSTRUMENTATION, None)
            annotations.pop(ANNOTATION_EMPTY_FIELDS, None)
        _set_or_drop(metadata, "labels", labels, keep="metadata.labels" in preserved)
        _set_or_drop(metadata, "annotations", annotations, keep="metadata.annotations" in preserved)
        if not metadata and "metadata" not in preserved:
            template.pop("metadata")
