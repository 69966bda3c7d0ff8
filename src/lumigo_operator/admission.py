"""Injection of workloads as they are admitted to the cluster.

Admission must never fail a workload because of Lumigo, and must not talk
to the API server: everything it needs comes from the Lumigo resources of
the workload's namespace, which the caller keeps in memory.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from .config import OperatorConfig
from .exceptions import InjectionError
from .injection import InjectionEngine, InjectionPlanner
from .models import LumigoSpec
from .registry import select_authoritative
from .utils.conditions import is_active
from .utils.errors import sanitize_exception
from .workloads import is_controlled, workload_ref

logger = logging.getLogger(__name__)


def mutate_on_admission(
    workload: dict[str, Any],
    lumigo_bodies: Iterable[dict[str, Any]],
    config: OperatorConfig,
    engine: InjectionEngine | None = None,
) -> dict[str, Any]:
    """Return ``workload`` as it should be admitted.

    The workload is injected when the authoritative Lumigo resource of its
    namespace is active and has injection enabled. In every other case, and
    when injection fails, it is returned unchanged.
    """
    if is_controlled(workload):
        return workload

    lumigo = select_authoritative(lumigo_bodies)
    if lumigo is None or not is_active(lumigo):
        return workload

    spec = LumigoSpec.from_spec(lumigo.get("spec"))
    if not spec.injection_enabled:
        return workload

    engine = engine or InjectionEngine(InjectionPlanner(config))
    try:
        result = engine.inject(workload, spec.credentials)
    except InjectionError as e:
        logger.warning("Admitting %s without instrumentation: %s", workload_ref(workload), sanitize_exception(e))
        return workload

    if not result.changed:
        return workload
    logger.info("Instrumenting %s on admission", workload_ref(workload))
    return result.workload
