"""Workload kinds that carry a pod template the operator can instrument.

Each supported kind is described by a ``WorkloadKind`` record; code that
needs the pod template of "any workload" looks the record up by ``kind``
instead of probing the object's shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .constants import LABEL_AUTO_TRACE
from .exceptions import InjectionError


@dataclass(frozen=True)
class WorkloadKind:
    """A workload kind and where its pod template lives."""

    kind: str
    api_version: str
    template_path: tuple[str, ...]

    def get_pod_template(self, body: dict[str, Any]) -> dict[str, Any]:
        """Return the pod template of ``body``; missing levels read as empty."""
        node: Any = body
        for key in self.template_path:
            node = (node or {}).get(key)
        return node or {}

    def set_pod_template(self, body: dict[str, Any], template: dict[str, Any]) -> None:
        """Replace the pod template of ``body`` in place."""
        node = body
        for key in self.template_path[:-1]:
            node = node.setdefault(key, {})
        node[self.template_path[-1]] = template

    def template_patch(self, template: dict[str, Any]) -> dict[str, Any]:
        """Build a merge patch that sets the pod template to ``template``."""
        patch: dict[str, Any] = template
        for key in reversed(self.template_path):
            patch = {key: patch}
        return patch


_POD_TEMPLATE = ("spec", "template")

DEPLOYMENT = WorkloadKind("Deployment", "apps/v1", _POD_TEMPLATE)
DAEMON_SET = WorkloadKind("DaemonSet", "apps/v1", _POD_TEMPLATE)
STATEFUL_SET = WorkloadKind("StatefulSet", "apps/v1", _POD_TEMPLATE)
REPLICA_SET = WorkloadKind("ReplicaSet", "apps/v1", _POD_TEMPLATE)
JOB = WorkloadKind("Job", "batch/v1", _POD_TEMPLATE)
CRON_JOB = WorkloadKind("CronJob", "batch/v1", ("spec", "jobTemplate", "spec", "template"))

WORKLOAD_KINDS: dict[str, WorkloadKind] = {
    k.kind: k for k in (DEPLOYMENT, DAEMON_SET, STATEFUL_SET, REPLICA_SET, JOB, CRON_JOB)
}


def workload_kind_of(body: dict[str, Any]) -> WorkloadKind:
    """Look up the kind record of a workload body.

    Raises:
        InjectionError: If the kind is not one the operator can instrument
    """
    kind = body.get("kind")
    try:
        return WORKLOAD_KINDS[kind]
    except KeyError:
        raise InjectionError(f"unsupported workload kind {kind!r}") from None


def get_meta(body: dict[str, Any]) -> dict[str, Any]:
    return body.get("metadata") or {}


def workload_ref(body: dict[str, Any]) -> str:
    """Short human-readable reference, e.g. ``Deployment/checkout``."""
    return f"{body.get('kind', 'Unknown')}/{get_meta(body).get('name', 'unknown')}"


def is_controlled(body: dict[str, Any]) -> bool:
    """Whether another controller owns this workload.

    ReplicaSets of Deployments and Jobs of CronJobs are instrumented through
    their owner's template and are left alone.
    """
    return any(ref.get("controller") for ref in get_meta(body).get("ownerReferences") or [])


def is_opted_out(body: dict[str, Any]) -> bool:
    """Whether the workload or its pod template opted out of auto-tracing."""
    labels = dict(get_meta(body).get("labels") or {})
    kind = WORKLOAD_KINDS.get(body.get("kind", ""))
    if kind is not None:
        template_labels = (kind.get_pod_template(body).get("metadata") or {}).get("labels") or {}
        labels.update(template_labels)
    return str(labels.get(LABEL_AUTO_TRACE, "")).lower() == "false"
