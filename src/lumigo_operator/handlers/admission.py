"""Mutating admission handlers for workloads."""

from __future__ import annotations

from typing import Any

import kopf

from ..admission import mutate_on_admission
from ..workloads import workload_kind_of
from .shared import get_config, snapshot

_OPERATIONS = ["CREATE", "UPDATE"]


@kopf.on.mutate("apps/v1", "deployments", id="inject-deployments", operations=_OPERATIONS)
@kopf.on.mutate("apps/v1", "daemonsets", id="inject-daemonsets", operations=_OPERATIONS)
@kopf.on.mutate("apps/v1", "statefulsets", id="inject-statefulsets", operations=_OPERATIONS)
@kopf.on.mutate("apps/v1", "replicasets", id="inject-replicasets", operations=_OPERATIONS)
@kopf.on.mutate("batch/v1", "jobs", id="inject-jobs", operations=_OPERATIONS)
@kopf.on.mutate("batch/v1", "cronjobs", id="inject-cronjobs", operations=_OPERATIONS)
def admit_workload(
    body: kopf.Body,
    patch: kopf.Patch,
    namespace: str,
    lumigo_by_namespace: kopf.Index,
    **kwargs: Any,
) -> None:
    """Instrument a workload on its way into the cluster."""
    lumigos = list(lumigo_by_namespace.get(namespace, []))
    if not lumigos:
        return

    workload = snapshot(body)
    mutated = mutate_on_admission(workload, lumigos, get_config())
    if mutated is workload:
        return

    kind = workload_kind_of(mutated)
    patch.update(kind.template_patch(kind.get_pod_template(mutated)))
