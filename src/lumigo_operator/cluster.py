"""Access to the Kubernetes API server.

``KubernetesCluster`` is the only object that performs API calls. Everything
it returns is a plain camelCase dict, the same shape kopf hands to handlers,
so the reconciliation and injection code never sees client model classes.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Any, Callable

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from . import metrics
from .constants import API_GROUP, API_VERSION, FIELD_MANAGER, PLURAL_LUMIGO
from .utils.rate_limit import rate_limit_k8s
from .workloads import WORKLOAD_KINDS

logger = logging.getLogger(__name__)


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def _decode_secret_value(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


class KubernetesCluster:
    """Thin facade over the Kubernetes API groups the operator uses."""

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        apps_api: client.AppsV1Api | None = None,
        batch_api: client.BatchV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
        api_client: client.ApiClient | None = None,
    ):
        self.api_client = api_client or client.ApiClient()
        self.core_api = core_api or client.CoreV1Api(self.api_client)
        self.apps_api = apps_api or client.AppsV1Api(self.api_client)
        self.batch_api = batch_api or client.BatchV1Api(self.api_client)
        self.custom_api = custom_api or client.CustomObjectsApi(self.api_client)

        # kind -> (list, read, replace)
        self._workload_calls: dict[str, tuple[Callable[..., Any], Callable[..., Any], Callable[..., Any]]] = {
            "Deployment": (
                self.apps_api.list_namespaced_deployment,
                self.apps_api.read_namespaced_deployment,
                self.apps_api.replace_namespaced_deployment,
            ),
            "DaemonSet": (
                self.apps_api.list_namespaced_daemon_set,
                self.apps_api.read_namespaced_daemon_set,
                self.apps_api.replace_namespaced_daemon_set,
            ),
            "StatefulSet": (
                self.apps_api.list_namespaced_stateful_set,
                self.apps_api.read_namespaced_stateful_set,
                self.apps_api.replace_namespaced_stateful_set,
            ),
            "ReplicaSet": (
                self.apps_api.list_namespaced_replica_set,
                self.apps_api.read_namespaced_replica_set,
                self.apps_api.replace_namespaced_replica_set,
            ),
            "Job": (
                self.batch_api.list_namespaced_job,
                self.batch_api.read_namespaced_job,
                self.batch_api.replace_namespaced_job,
            ),
            "CronJob": (
                self.batch_api.list_namespaced_cron_job,
                self.batch_api.read_namespaced_cron_job,
                self.batch_api.replace_namespaced_cron_job,
            ),
        }

    @classmethod
    def from_environment(cls) -> KubernetesCluster:
        load_kube_config()
        return cls()

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        start_time = time.time()
        try:
            result = rate_limit_k8s(fn)(*args, **kwargs)
            metrics.api_call_total.labels(api_type="k8s", operation=operation, result="success").inc()
            return result
        except ApiException as e:
            result_label = "not_found" if e.status == 404 else "conflict" if e.status == 409 else "error"
            metrics.api_call_total.labels(api_type="k8s", operation=operation, result=result_label).inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(duration)

    def _to_dict(self, obj: Any, kind: str, api_version: str) -> dict[str, Any]:
        body = self.api_client.sanitize_for_serialization(obj)
        # List responses leave kind and apiVersion off the items
        body["kind"] = kind
        body["apiVersion"] = api_version
        return body

    # Lumigo resources

    def get_lumigo(self, namespace: str, name: str) -> dict[str, Any] | None:
        """Read a Lumigo resource, None if it does not exist."""
        try:
            return self._call(
                "get_lumigo",
                self.custom_api.get_namespaced_custom_object,
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=PLURAL_LUMIGO,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def list_lumigos(self, namespace: str) -> list[dict[str, Any]]:
        result = self._call(
            "list_lumigos",
            self.custom_api.list_namespaced_custom_object,
            group=API_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=PLURAL_LUMIGO,
        )
        return list(result.get("items") or [])

    def replace_lumigo_status(self, body: dict[str, Any]) -> dict[str, Any]:
        """Write the status subresource.

        ``metadata.resourceVersion`` of ``body`` makes the write conditional;
        a stale version fails with HTTP 409.
        """
        meta = body["metadata"]
        return self._call(
            "replace_lumigo_status",
            self.custom_api.replace_namespaced_custom_object_status,
            group=API_GROUP,
            version=API_VERSION,
            namespace=meta["namespace"],
            plural=PLURAL_LUMIGO,
            name=meta["name"],
            body=body,
            field_manager=FIELD_MANAGER,
        )

    def annotate_lumigo(self, namespace: str, name: str, annotations: dict[str, str]) -> None:
        self._call(
            "annotate_lumigo",
            self.custom_api.patch_namespaced_custom_object,
            group=API_GROUP,
            version=API_VERSION,
            namespace=namespace,
            plural=PLURAL_LUMIGO,
            name=name,
            body={"metadata": {"annotations": annotations}},
            field_manager=FIELD_MANAGER,
        )

    # Secrets

    def read_secret_data(self, namespace: str, name: str) -> dict[str, str] | None:
        """Read and decode a secret's data, None if the secret does not exist.

        Any other API error, permission errors included, propagates.
        """
        try:
            secret = self._call("read_secret", self.core_api.read_namespaced_secret, name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return {key: _decode_secret_value(value) for key, value in (secret.data or {}).items()}

    # Workloads

    def list_workloads(self, namespace: str) -> list[dict[str, Any]]:
        """List every supported workload in the namespace."""
        workloads = []
        for kind, (list_fn, _, _) in self._workload_calls.items():
            api_version = WORKLOAD_KINDS[kind].api_version
            result = self._call(f"list_{kind.lower()}", list_fn, namespace=namespace)
            workloads.extend(self._to_dict(item, kind, api_version) for item in result.items)
        return workloads

    def read_workload(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        _, read_fn, _ = self._workload_calls[kind]
        try:
            obj = self._call(f"read_{kind.lower()}", read_fn, name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_dict(obj, kind, WORKLOAD_KINDS[kind].api_version)

    def replace_workload(self, body: dict[str, Any]) -> dict[str, Any]:
        """Replace a workload; conditional on its ``metadata.resourceVersion``."""
        kind = body["kind"]
        _, _, replace_fn = self._workload_calls[kind]
        meta = body["metadata"]
        obj = self._call(
            f"replace_{kind.lower()}",
            replace_fn,
            name=meta["name"],
            namespace=meta["namespace"],
            body=body,
            field_manager=FIELD_MANAGER,
        )
        return self._to_dict(obj, kind, WORKLOAD_KINDS[kind].api_version)
