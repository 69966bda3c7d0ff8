"""Shared fixtures: an in-memory cluster and object builders."""

from __future__ import annotations

import copy
import itertools
from typing import Any

import pytest
from kubernetes.client.exceptions import ApiException

from lumigo_operator.config import OperatorConfig
from lumigo_operator.injection import InjectionEngine, InjectionPlanner
from lumigo_operator.reconciler import Reconciler
from lumigo_operator.registry import NamespaceRegistry

VALID_TOKEN = "t_1234567890123456789AB"


class FakeCluster:
    """In-memory stand-in for ``KubernetesCluster``.

    Writes are conditional on ``metadata.resourceVersion`` like on a real API
    server, and conflicts can be scripted per workload.
    """

    def __init__(self) -> None:
        self.lumigos: dict[tuple[str, str], dict[str, Any]] = {}
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.workloads: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.conflicts: dict[str, int] = {}
        self.workload_writes: list[str] = []
        self.status_writes = 0
        self.annotations: list[tuple[str, str]] = []
        self._versions = itertools.count(1)

    def _stamp(self, body: dict[str, Any]) -> None:
        body["metadata"]["resourceVersion"] = str(next(self._versions))

    @staticmethod
    def _conflict() -> ApiException:
        return ApiException(status=409, reason="Conflict")

    # Setup helpers

    def add_lumigo(
        self,
        name: str,
        namespace: str = "default",
        secret_name: str = "lumigo-credentials",
        key: str = "token",
        created: str = "2024-01-01T00:00:00Z",
        injection: dict[str, Any] | None = None,
        status: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body = {
            "apiVersion": "operator.lumigo.io/v1alpha1",
            "kind": "Lumigo",
            "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}", "creationTimestamp": created},
            "spec": {
                "lumigoToken": {"secretRef": {"name": secret_name, "key": key}},
                "tracing": {"injection": dict(injection or {})},
            },
        }
        if status is not None:
            body["status"] = status
        self._stamp(body)
        self.lumigos[(namespace, name)] = body
        return copy.deepcopy(body)

    def add_secret(self, name: str, data: dict[str, str], namespace: str = "default") -> None:
        self.secrets[(namespace, name)] = dict(data)

    def add_workload(self, body: dict[str, Any]) -> dict[str, Any]:
        body = copy.deepcopy(body)
        self._stamp(body)
        meta = body["metadata"]
        self.workloads[(body["kind"], meta["namespace"], meta["name"])] = body
        return copy.deepcopy(body)

    def mark_deleting(self, name: str, namespace: str = "default") -> dict[str, Any]:
        body = self.lumigos[(namespace, name)]
        body["metadata"]["deletionTimestamp"] = "2024-06-01T00:00:00Z"
        return copy.deepcopy(body)

    def remove_lumigo(self, name: str, namespace: str = "default") -> None:
        self.lumigos.pop((namespace, name), None)

    def workload(self, kind: str, name: str, namespace: str = "default") -> dict[str, Any]:
        return copy.deepcopy(self.workloads[(kind, namespace, name)])

    def status_of(self, name: str, namespace: str = "default") -> dict[str, Any]:
        return copy.deepcopy(self.lumigos[(namespace, name)].get("status") or {})

    # KubernetesCluster interface

    def get_lumigo(self, namespace: str, name: str) -> dict[str, Any] | None:
        body = self.lumigos.get((namespace, name))
        return copy.deepcopy(body) if body is not None else None

    def list_lumigos(self, namespace: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(b) for (ns, _), b in sorted(self.lumigos.items()) if ns == namespace]

    def replace_lumigo_status(self, body: dict[str, Any]) -> dict[str, Any]:
        meta = body["metadata"]
        stored = self.lumigos.get((meta["namespace"], meta["name"]))
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        if stored["metadata"]["resourceVersion"] != meta.get("resourceVersion"):
            raise self._conflict()
        stored["status"] = copy.deepcopy(body.get("status") or {})
        self._stamp(stored)
        self.status_writes += 1
        return copy.deepcopy(stored)

    def annotate_lumigo(self, namespace: str, name: str, annotations: dict[str, str]) -> None:
        stored = self.lumigos.get((namespace, name))
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        stored["metadata"].setdefault("annotations", {}).update(annotations)
        self._stamp(stored)
        self.annotations.append((namespace, name))

    def read_secret_data(self, namespace: str, name: str) -> dict[str, str] | None:
        data = self.secrets.get((namespace, name))
        return dict(data) if data is not None else None

    def list_workloads(self, namespace: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(w) for (_, ns, _), w in sorted(self.workloads.items()) if ns == namespace]

    def read_workload(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        body = self.workloads.get((kind, namespace, name))
        return copy.deepcopy(body) if body is not None else None

    def replace_workload(self, body: dict[str, Any]) -> dict[str, Any]:
        meta = body["metadata"]
        key = (body["kind"], meta["namespace"], meta["name"])
        stored = self.workloads.get(key)
        if stored is None:
            raise ApiException(status=404, reason="Not Found")

        ref = f"{body['kind']}/{meta['name']}"
        if self.conflicts.get(ref, 0) > 0:
            # Someone else wrote the object in between
            self.conflicts[ref] -= 1
            self._stamp(stored)
            raise self._conflict()
        if stored["metadata"]["resourceVersion"] != meta.get("resourceVersion"):
            raise self._conflict()

        written = copy.deepcopy(body)
        self._stamp(written)
        self.workloads[key] = written
        self.workload_writes.append(ref)
        return copy.deepcopy(written)


def make_container(name: str = "app", image: str = "nginx:1.25", **extra: Any) -> dict[str, Any]:
    return {"name": name, "image": image, **extra}


def make_workload(
    kind: str = "Deployment",
    name: str = "checkout",
    namespace: str = "default",
    containers: list[dict[str, Any]] | None = None,
    labels: dict[str, str] | None = None,
    template_labels: dict[str, str] | None = None,
    owner: str | None = None,
) -> dict[str, Any]:
    pod_template = {
        "metadata": {"labels": {"app": name, **(template_labels or {})}},
        "spec": {"containers": containers if containers is not None else [make_container()]},
    }
    metadata: dict[str, Any] = {"name": name, "namespace": namespace}
    if labels:
        metadata["labels"] = dict(labels)
    if owner:
        metadata["ownerReferences"] = [{"kind": "Deployment", "name": owner, "controller": True}]

    if kind == "CronJob":
        spec: dict[str, Any] = {"schedule": "*/5 * * * *", "jobTemplate": {"spec": {"template": pod_template}}}
        api_version = "batch/v1"
    else:
        spec = {"template": pod_template}
        api_version = "batch/v1" if kind == "Job" else "apps/v1"
    return {"apiVersion": api_version, "kind": kind, "metadata": metadata, "spec": spec}


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig(
        operator_version="1.2.3",
        injector_image="localhost:5000/lumigo-autotrace:1.2.3",
        telemetry_proxy_otlp_service="http://lumigo-telemetry-proxy.lumigo-system.svc.cluster.local",
        conflict_retry_base_delay_seconds=0.0,
    )


@pytest.fixture
def planner(config: OperatorConfig) -> InjectionPlanner:
    return InjectionPlanner(config)


@pytest.fixture
def engine(planner: InjectionPlanner) -> InjectionEngine:
    return InjectionEngine(planner)


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def reconciler(cluster: FakeCluster, config: OperatorConfig) -> Reconciler:
    return Reconciler(cluster, config, registry=NamespaceRegistry(), sleep=lambda _: None)


@pytest.fixture
def valid_secret(cluster: FakeCluster) -> None:
    cluster.add_secret("lumigo-credentials", {"token": VALID_TOKEN})
