"""Reconciliation of Lumigo resources.

The ``Reconciler`` owns the status of Lumigo resources and drives the
instrumentation of the workloads in their namespace. Every call recomputes
from live cluster state: nothing about workloads is cached between calls,
and the provenance marker on pod templates is the only record of what has
been instrumented.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from kubernetes.client.exceptions import ApiException

from . import metrics
from .cluster import KubernetesCluster
from .config import OperatorConfig
from .constants import (
    ANNOTATION_RECONCILE_REQUESTED,
    KIND_LUMIGO,
    MSG_NAMESPACE_CONFLICT,
    REASON_ACTIVE,
    REASON_INVALID_CREDENTIALS,
    REASON_NAMESPACE_CONFLICT,
)
from .exceptions import (
    InjectionError,
    InvalidCredentialsError,
    ReconcileError,
    ReconcileTimeoutError,
    TransientError,
)
from .injection import ApplyResult, InjectionEngine, InjectionPlanner, has_marker
from .models import FinalizeOutcome, LumigoSpec, ReconcileOutcome
from .registry import NamespaceRegistry, is_being_deleted
from .tracing import add_span_attribute, trace_span
from .utils.conditions import PHASE_ERROR, LumigoConditions
from .utils.errors import sanitize_exception
from .utils.retry import retry_on_conflict
from .utils.tokens import validate_token_secret
from .workloads import get_meta, is_controlled, workload_kind_of, workload_ref

logger = logging.getLogger(__name__)

# Status field recording that the pass over pre-existing workloads was handled
STATUS_EXISTING_PROCESSED = "existingResourcesProcessed"
STATUS_INSTRUMENTED = "instrumentedResources"

StatusUpdate = Callable[[dict[str, Any], LumigoConditions], None]
WorkloadTransform = Callable[[dict[str, Any]], ApplyResult]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """Reconciles one Lumigo resource identity at a time.

    Args:
        cluster: Facade for the API server
        config: Operator configuration
        registry: Namespace authority registry, shared across reconciles
        planner: Injection planner; built from ``config`` when omitted
        engine: Injection engine; built from ``planner`` when omitted
        now: Wall clock used for condition timestamps
        clock: Monotonic clock used for deadlines
        sleep: Sleep function used between conflict retries
    """

    def __init__(
        self,
        cluster: KubernetesCluster,
        config: OperatorConfig,
        registry: NamespaceRegistry | None = None,
        planner: InjectionPlanner | None = None,
        engine: InjectionEngine | None = None,
        now: Callable[[], datetime] = _utcnow,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cluster = cluster
        self.config = config
        self.registry = registry or NamespaceRegistry()
        self.planner = planner or InjectionPlanner(config)
        self.engine = engine or InjectionEngine(self.planner)
        self.now = now
        self.clock = clock
        self.sleep = sleep

    def deadline(self) -> float:
        """Deadline for a reconcile starting now."""
        return self.clock() + self.config.reconcile_timeout_seconds

    def reconcile(
        self,
        namespace: str,
        name: str,
        *,
        is_new: bool = False,
        deadline: float | None = None,
    ) -> ReconcileOutcome:
        """Bring a Lumigo resource and its namespace to the desired state.

        Args:
            namespace: Namespace of the resource
            name: Name of the resource
            is_new: Whether the resource was just created
            deadline: Monotonic time after which no workload is written

        Returns:
            What the reconcile found and did

        Raises:
            ReconcileTimeoutError: If the deadline elapsed
            TransientError: If status writes kept conflicting
            ApiException: On API errors other than conflicts
        """
        deadline = deadline if deadline is not None else self.deadline()

        with trace_span("reconcile_lumigo", kind=KIND_LUMIGO, attributes={"lumigo.name": name}):
            body = self.cluster.get_lumigo(namespace, name)
            if body is None:
                logger.debug("Lumigo %s/%s no longer exists", namespace, name)
                return ReconcileOutcome(found=False)
            if is_being_deleted(body):
                conditions = LumigoConditions.from_status(body.get("status"))
                return ReconcileOutcome(phase=conditions.phase(), message="being deleted")

            spec = LumigoSpec.from_spec(body.get("spec"))

            authoritative = self.registry.resolve_authoritative(namespace, self.cluster.list_lumigos(namespace))
            if authoritative != name:
                now = self.now()
                self._write_status(
                    namespace,
                    name,
                    lambda status, conditions: conditions.set_error(
                        REASON_NAMESPACE_CONFLICT, MSG_NAMESPACE_CONFLICT, now
                    ),
                )
                add_span_attribute("lumigo.phase", PHASE_ERROR)
                return ReconcileOutcome(
                    phase=PHASE_ERROR, reason=REASON_NAMESPACE_CONFLICT, message=MSG_NAMESPACE_CONFLICT
                )

            try:
                validate_token_secret(self.cluster.read_secret_data, namespace, spec.credentials)
            except InvalidCredentialsError as e:
                message = str(e)
                now = self.now()
                self._write_status(
                    namespace,
                    name,
                    lambda status, conditions: conditions.set_error(REASON_INVALID_CREDENTIALS, message, now),
                )
                add_span_attribute("lumigo.phase", PHASE_ERROR)
                return ReconcileOutcome(
                    phase=PHASE_ERROR, reason=REASON_INVALID_CREDENTIALS, message=message, requeue=True
                )

            was_active = LumigoConditions.from_status(body.get("status")).is_active()
            now = self.now()
            body = self._write_status(namespace, name, lambda status, conditions: conditions.set_active(now))
            if body is None:
                return ReconcileOutcome(found=False)

            outcome = ReconcileOutcome(
                phase=LumigoConditions.from_status(body.get("status")).phase(),
                reason=REASON_ACTIVE,
                activated=not was_active,
            )
            add_span_attribute("lumigo.phase", outcome.phase)

            status = body.get("status") or {}
            process_existing = False
            if spec.injection_enabled:
                process_existing = spec.inject_on_existing_resources_on_creation and (
                    is_new or not status.get(STATUS_EXISTING_PROCESSED)
                )
            self._converge_workloads(
                namespace,
                spec,
                inject=spec.injection_enabled,
                process_existing=process_existing,
                deadline=deadline,
                outcome=outcome,
            )

            outcome.requeue = bool(outcome.failures)
            existing_processed = bool(status.get(STATUS_EXISTING_PROCESSED))
            if spec.injection_enabled and not outcome.failures:
                existing_processed = True

            def record_workloads(status: dict[str, Any], conditions: LumigoConditions) -> None:
                status[STATUS_INSTRUMENTED] = list(outcome.instrumented)
                if existing_processed:
                    status[STATUS_EXISTING_PROCESSED] = True

            self._write_status(namespace, name, record_workloads, touch_conditions=False)
            return outcome

    def _converge_workloads(
        self,
        namespace: str,
        spec: LumigoSpec,
        *,
        inject: bool,
        process_existing: bool,
        deadline: float,
        outcome: ReconcileOutcome,
    ) -> None:
        """Inject workloads of the namespace as far as the policy allows.

        Workloads that already carry the marker are always re-converged, so
        configuration and token reference changes reach them. Unmarked ones
        are only touched during the pass over pre-existing workloads.
        """
        instrumented = set()
        for workload in self.cluster.list_workloads(namespace):
            if is_controlled(workload):
                continue

            ref = workload_ref(workload)
            marked = has_marker(workload_kind_of(workload).get_pod_template(workload))
            if not inject or not (marked or process_existing):
                if marked:
                    instrumented.add(ref)
                continue

            try:
                result = self.update_workload(
                    workload, lambda w: self.engine.inject(w, spec.credentials), deadline
                )
            except ReconcileTimeoutError:
                raise
            except (InjectionError, TransientError) as e:
                message = sanitize_exception(e)
                outcome.failures[ref] = message
                metrics.injection_operations_total.labels(operation="inject", result="failed").inc()
                metrics.error_total.labels(kind=workload.get("kind", "Unknown"), error_type=type(e).__name__).inc()
                logger.warning("Cannot instrument %s in namespace %s: %s", ref, namespace, message)
                if marked:
                    instrumented.add(ref)
                continue

            if result is None:
                continue
            if result.changed:
                outcome.changed.append(ref)
                metrics.injection_operations_total.labels(operation="inject", result="success").inc()
                logger.info("Instrumented %s in namespace %s", ref, namespace)
            if has_marker(workload_kind_of(result.workload).get_pod_template(result.workload)):
                instrumented.add(ref)

        outcome.instrumented = sorted(instrumented)

    def update_workload(
        self,
        workload: dict[str, Any],
        transform: WorkloadTransform,
        deadline: float,
    ) -> ApplyResult | None:
        """Transform and write a workload with optimistic concurrency.

        The first attempt uses ``workload`` as given; after a conflict the
        workload is read again and the transform redone against it.

        Returns:
            The result of the last transform, with the written object when it
            changed; None if the workload disappeared

        Raises:
            ReconcileTimeoutError: If the deadline elapsed before a write
            TransientError: If every attempt conflicted
            InjectionError: If the transform failed
        """
        kind = workload_kind_of(workload)
        meta = get_meta(workload)
        namespace, name = meta.get("namespace", ""), meta.get("name", "")
        ref = workload_ref(workload)
        pending: dict[str, Any] = {"body": workload}

        def attempt() -> ApplyResult | None:
            current = pending.pop("body", None)
            if current is None:
                current = self.cluster.read_workload(kind.kind, namespace, name)
                if current is None:
                    logger.debug("%s in namespace %s is gone", ref, namespace)
                    return None

            result = transform(current)
            if not result.changed:
                return result

            if self.clock() >= deadline:
                raise ReconcileTimeoutError(f"reconcile deadline elapsed before updating {ref}")
            written = self.cluster.replace_workload(result.workload)
            return ApplyResult(workload=written, action=result.action, changed=True)

        return retry_on_conflict(
            attempt,
            kind=kind.kind,
            max_attempts=self.config.workload_update_max_attempts,
            base_delay=self.config.conflict_retry_base_delay_seconds,
            sleep=self.sleep,
        )

    def _write_status(
        self,
        namespace: str,
        name: str,
        update: StatusUpdate,
        touch_conditions: bool = True,
    ) -> dict[str, Any] | None:
        """Read-modify-write the status subresource.

        ``update`` is re-applied to a fresh read after every conflict.
        Returns the written body, None if the resource is gone.
        """

        def attempt() -> dict[str, Any] | None:
            body = self.cluster.get_lumigo(namespace, name)
            if body is None:
                return None

            current = body.get("status") or {}
            status = dict(current)
            conditions = LumigoConditions.from_status(current)
            update(status, conditions)
            if touch_conditions:
                status["conditions"] = conditions.to_status()
                status["active"] = conditions.is_active()
            if status == current:
                return body

            body = dict(body)
            body["status"] = status
            written = self.cluster.replace_lumigo_status(body)
            metrics.resource_status_total.labels(kind=KIND_LUMIGO, status=conditions.phase().lower()).inc()
            return written

        return retry_on_conflict(
            attempt,
            kind=KIND_LUMIGO,
            max_attempts=self.config.workload_update_max_attempts,
            base_delay=self.config.conflict_retry_base_delay_seconds,
            sleep=self.sleep,
        )

    def finalize(
        self,
        namespace: str,
        name: str,
        body: dict[str, Any],
        deadline: float | None = None,
    ) -> FinalizeOutcome:
        """Clean up after a Lumigo resource that is being deleted.

        Instrumentation is only removed when the resource asks for it and it
        was the authoritative instance of its namespace; a conflicting
        instance never held the instrumentation it would be removing.

        Raises:
            ReconcileError: If some workloads could not be reverted
        """
        deadline = deadline if deadline is not None else self.deadline()
        spec = LumigoSpec.from_spec(body.get("spec"))

        with trace_span("finalize_lumigo", kind=KIND_LUMIGO, attributes={"lumigo.name": name}):
            candidates = self.cluster.list_lumigos(namespace)
            if not any(get_meta(c).get("name") == name for c in candidates):
                candidates.append(body)
            others = [c for c in candidates if get_meta(c).get("name") != name]
            if not others:
                self.registry.forget(namespace)

            if not spec.remove_on_deletion:
                return FinalizeOutcome(skipped_reason="removal on deletion is disabled")
            if not self.registry.was_authoritative(namespace, name, candidates):
                return FinalizeOutcome(skipped_reason="not the authoritative instance")

            outcome = FinalizeOutcome()
            failures: dict[str, str] = {}
            for workload in self.cluster.list_workloads(namespace):
                if is_controlled(workload):
                    continue
                if not has_marker(workload_kind_of(workload).get_pod_template(workload)):
                    continue

                ref = workload_ref(workload)
                try:
                    result = self.update_workload(workload, self.engine.revert, deadline)
                except ReconcileTimeoutError:
                    raise
                except (InjectionError, TransientError) as e:
                    failures[ref] = sanitize_exception(e)
                    metrics.injection_operations_total.labels(operation="revert", result="failed").inc()
                    continue

                if result is not None and result.changed:
                    outcome.reverted.append(ref)
                    metrics.injection_operations_total.labels(operation="revert", result="success").inc()
                    logger.info("Removed instrumentation from %s in namespace %s", ref, namespace)

            if failures:
                details = "; ".join(f"{ref}: {message}" for ref, message in sorted(failures.items()))
                raise ReconcileError(f"cannot remove instrumentation from workloads: {details}")
            return outcome

    def request_reconcile(self, namespace: str, name: str) -> None:
        """Nudge a Lumigo resource so that kopf reconciles it again."""
        try:
            self.cluster.annotate_lumigo(namespace, name, {ANNOTATION_RECONCILE_REQUESTED: self.now().isoformat()})
        except ApiException as e:
            if e.status != 404:
                raise

    def request_reconcile_of_others(self, namespace: str, exclude: str) -> list[str]:
        """Nudge every other live Lumigo resource of the namespace.

        Used when an instance goes away, so that the next one in line takes
        over authority through the regular reconcile path.
        """
        nudged = []
        for candidate in self.cluster.list_lumigos(namespace):
            other = get_meta(candidate).get("name")
            if other == exclude or is_being_deleted(candidate):
                continue
            self.request_reconcile(namespace, other)
            nudged.append(other)
        return nudged


def build_reconciler(config: OperatorConfig, cluster: KubernetesCluster | None = None) -> Reconciler:
    """Build a reconciler talking to the cluster the operator runs in."""
    return Reconciler(cluster or KubernetesCluster.from_environment(), config)
