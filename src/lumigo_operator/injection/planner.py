"""Planning of pod template changes for Lumigo injection.

Plans are always computed against the live pod template; nothing about a
previous plan is remembered. What is injected is recognised by two things
only: the provenance marker on the template metadata and the reserved
``lumigo-`` prefix of injected containers and volumes. Without the marker
only the exact names of injected elements count.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config import OperatorConfig
from ..constants import (
    ANNOTATION_INSTRUMENTATION,
    ENV_LD_PRELOAD,
    ENV_LUMIGO_ENDPOINT,
    ENV_LUMIGO_LOGS_ENDPOINT,
    ENV_LUMIGO_TRACER_TOKEN,
    INJECTED_ENV_VARS,
    INJECTOR_CONTAINER_NAME,
    INJECTOR_LD_PRELOAD,
    INJECTOR_MOUNT_PATH,
    INJECTOR_VOLUME_NAME,
    LABEL_INSTRUMENTED,
    RESERVED_PREFIX,
    SIDECAR_CONTAINER_NAME,
)
from ..exceptions import InjectionConflictError
from ..utils.tokens import SecretReference

logger = logging.getLogger(__name__)

_INIT_TARGET_DIRECTORY = "/target"
_INJECTED_NAMES = frozenset({INJECTOR_CONTAINER_NAME, SIDECAR_CONTAINER_NAME, INJECTOR_VOLUME_NAME})


class PlanAction(str, Enum):
    ADD = "add"
    REPLACE = "replace"
    NOOP = "noop"
    REMOVE = "remove"


@dataclass(frozen=True)
class InjectionPlan:
    """Changes to one pod template.

    Removals are applied before additions, so a ``REPLACE`` plan never
    produces a template with two copies of an injected element.
    """

    action: PlanAction
    add_init_containers: tuple[dict[str, Any], ...] = ()
    add_containers: tuple[dict[str, Any], ...] = ()
    remove_container_names: tuple[str, ...] = ()
    add_volumes: tuple[dict[str, Any], ...] = ()
    remove_volume_names: tuple[str, ...] = ()
    env_vars: tuple[dict[str, Any], ...] = ()
    remove_env_var_names: tuple[str, ...] = ()
    volume_mounts: tuple[dict[str, Any], ...] = ()
    remove_volume_mount_names: tuple[str, ...] = ()
    marker: dict[str, str] | None = None

    @property
    def has_changes(self) -> bool:
        return self.action is not PlanAction.NOOP


@dataclass(frozen=True)
class InjectedState:
    """What of an injection is currently present on a pod template."""

    marker: dict[str, str] | None
    init_container_names: tuple[str, ...]
    container_names: tuple[str, ...]
    volume_names: tuple[str, ...]
    env_var_names: tuple[str, ...]
    volume_mount_names: tuple[str, ...]

    @property
    def is_empty(self) -> bool:
        return not (
            self.init_container_names
            or self.container_names
            or self.volume_names
            or self.env_var_names
            or self.volume_mount_names
        )


def is_reserved(name: str | None) -> bool:
    return bool(name) and name.startswith(RESERVED_PREFIX)


def _is_injected_name(name: str | None) -> bool:
    return name in _INJECTED_NAMES


def application_containers(pod_spec: dict[str, Any]) -> list[dict[str, Any]]:
    """Containers of the pod that are not injected ones."""
    return [c for c in pod_spec.get("containers") or [] if not is_reserved(c.get("name"))]


def read_marker(pod_template: dict[str, Any]) -> dict[str, str] | None:
    """Read the provenance marker off a pod template, None when absent.

    A marker whose annotation cannot be parsed still counts as present, so
    that a damaged marker never blocks removal.
    """
    metadata = pod_template.get("metadata") or {}
    labels = metadata.get("labels") or {}
    annotations = metadata.get("annotations") or {}
    raw = annotations.get(ANNOTATION_INSTRUMENTATION)

    if raw is None and LABEL_INSTRUMENTED not in labels:
        return None
    try:
        marker = json.loads(raw) if raw else {}
    except ValueError:
        logger.warning("Unparseable %s annotation: %r", ANNOTATION_INSTRUMENTATION, raw)
        return {}
    return marker if isinstance(marker, dict) else {}


def has_marker(pod_template: dict[str, Any]) -> bool:
    return read_marker(pod_template) is not None


def _is_injected_env(env: dict[str, Any], marked: bool) -> bool:
    name = env.get("name")
    if name not in INJECTED_ENV_VARS:
        return False
    if not marked:
        # Without a marker only our own LD_PRELOAD is recognisable
        return name == ENV_LD_PRELOAD and env.get("value") == INJECTOR_LD_PRELOAD
    return True


def inspect_pod_template(pod_template: dict[str, Any]) -> InjectedState:
    """Find the injected elements present on a pod template.

    A marked template owns everything under the reserved prefix. Without a
    marker only the exact names of injected elements are claimed, so that
    user elements that happen to share the prefix are never picked up.
    """
    marker = read_marker(pod_template)
    spec = pod_template.get("spec") or {}
    marked = marker is not None
    owned = is_reserved if marked else _is_injected_name

    env_names: set[str] = set()
    mount_names: set[str] = set()
    for container in application_containers(spec):
        env_names.update(e["name"] for e in container.get("env") or [] if _is_injected_env(e, marked))
        mount_names.update(m["name"] for m in container.get("volumeMounts") or [] if owned(m.get("name")))

    return InjectedState(
        marker=marker,
        init_container_names=tuple(
            sorted(c["name"] for c in spec.get("initContainers") or [] if owned(c.get("name")))
        ),
        container_names=tuple(sorted(c["name"] for c in spec.get("containers") or [] if owned(c.get("name")))),
        volume_names=tuple(sorted(v["name"] for v in spec.get("volumes") or [] if owned(v.get("name")))),
        env_var_names=tuple(sorted(env_names)),
        volume_mount_names=tuple(sorted(mount_names)),
    )


def _matches(desired: Any, live: Any) -> bool:
    """Whether ``live`` contains everything ``desired`` sets.

    The API server fills in defaults (imagePullPolicy, terminationMessagePath,
    ...) on persisted objects, so live objects are compared as supersets.
    """
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(_matches(value, live.get(key)) for key, value in desired.items())
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        return all(_matches(d, l) for d, l in zip(desired, live))
    return desired == live


def _named_matches(desired: tuple[dict[str, Any], ...], live: list[dict[str, Any]]) -> bool:
    live_by_name = {item.get("name"): item for item in live}
    if set(live_by_name) != {item["name"] for item in desired}:
        return False
    return all(_matches(item, live_by_name[item["name"]]) for item in desired)


class InjectionPlanner:
    """Computes the injection plan of a pod template for the current configuration."""

    def __init__(self, config: OperatorConfig):
        self.config = config

    def marker(self) -> dict[str, str]:
        return {
            "operatorVersion": self.config.operator_version,
            "injectorImage": self.config.injector_image,
            "proxyEndpoint": self.config.telemetry_proxy_otlp_service,
        }

    def init_container(self) -> dict[str, Any]:
        return {
            "name": INJECTOR_CONTAINER_NAME,
            "image": self.config.injector_image,
            "env": [{"name": "TARGET_DIRECTORY", "value": _INIT_TARGET_DIRECTORY}],
            "volumeMounts": [{"name": INJECTOR_VOLUME_NAME, "mountPath": _INIT_TARGET_DIRECTORY}],
            "securityContext": {
                "allowPrivilegeEscalation": False,
                "readOnlyRootFilesystem": True,
                "runAsNonRoot": True,
                "runAsUser": 1234,
            },
        }

    def sidecar_containers(self) -> tuple[dict[str, Any], ...]:
        if not self.config.sidecar_image:
            return ()
        return (
            {
                "name": SIDECAR_CONTAINER_NAME,
                "image": self.config.sidecar_image,
                "env": [{"name": "LUMIGO_ENDPOINT", "value": self.config.telemetry_proxy_otlp_service}],
                "securityContext": {"allowPrivilegeEscalation": False, "runAsNonRoot": True},
            },
        )

    def volumes(self) -> tuple[dict[str, Any], ...]:
        return ({"name": INJECTOR_VOLUME_NAME, "emptyDir": {}},)

    def env_vars(self, token_ref: SecretReference) -> tuple[dict[str, Any], ...]:
        env = [
            {"name": ENV_LD_PRELOAD, "value": INJECTOR_LD_PRELOAD},
            {
                "name": ENV_LUMIGO_TRACER_TOKEN,
                "valueFrom": {
                    "secretKeyRef": {"name": token_ref.name, "key": token_ref.key, "optional": True},
                },
            },
            {"name": ENV_LUMIGO_ENDPOINT, "value": self.config.traces_endpoint},
            {"name": ENV_LUMIGO_LOGS_ENDPOINT, "value": self.config.logs_endpoint},
        ]
        return tuple(sorted(env, key=lambda e: e["name"]))

    def volume_mounts(self) -> tuple[dict[str, Any], ...]:
        return ({"name": INJECTOR_VOLUME_NAME, "mountPath": INJECTOR_MOUNT_PATH, "readOnly": True},)

    def _is_converged(self, pod_template: dict[str, Any], state: InjectedState, token_ref: SecretReference) -> bool:
        if state.marker != self.marker():
            return False
        labels = (pod_template.get("metadata") or {}).get("labels") or {}
        if labels.get(LABEL_INSTRUMENTED) != "true":
            return False

        spec = pod_template.get("spec") or {}
        injected_init = [c for c in spec.get("initContainers") or [] if is_reserved(c.get("name"))]
        injected_containers = [c for c in spec.get("containers") or [] if is_reserved(c.get("name"))]
        injected_volumes = [v for v in spec.get("volumes") or [] if is_reserved(v.get("name"))]
        if not _named_matches((self.init_container(),), injected_init):
            return False
        if not _named_matches(self.sidecar_containers(), injected_containers):
            return False
        if not _named_matches(self.volumes(), injected_volumes):
            return False

        env_vars = self.env_vars(token_ref)
        mounts = self.volume_mounts()
        for container in application_containers(spec):
            live_env = [e for e in container.get("env") or [] if _is_injected_env(e, True)]
            live_mounts = [m for m in container.get("volumeMounts") or [] if is_reserved(m.get("name"))]
            if not _named_matches(env_vars, live_env) or not _named_matches(mounts, live_mounts):
                return False
        return True

    def _check_reserved_names(self, pod_template: dict[str, Any]) -> None:
        spec = pod_template.get("spec") or {}
        for field in ("initContainers", "containers", "volumes"):
            clashing = sorted(
                item["name"]
                for item in spec.get(field) or []
                if is_reserved(item.get("name")) and not _is_injected_name(item.get("name"))
            )
            if clashing:
                raise InjectionConflictError(
                    f"{field} {', '.join(clashing)} use the reserved prefix '{RESERVED_PREFIX}'"
                )

    def _check_conflicts(self, pod_template: dict[str, Any]) -> None:
        spec = pod_template.get("spec") or {}
        for container in application_containers(spec):
            clashing = sorted(e["name"] for e in container.get("env") or [] if e.get("name") in INJECTED_ENV_VARS)
            if clashing:
                raise InjectionConflictError(
                    f"container '{container.get('name')}' already defines {', '.join(clashing)}"
                )
            for mount in container.get("volumeMounts") or []:
                if mount.get("mountPath") == INJECTOR_MOUNT_PATH:
                    raise InjectionConflictError(
                        f"container '{container.get('name')}' already mounts a volume at {INJECTOR_MOUNT_PATH}"
                    )

    def plan(self, pod_template: dict[str, Any], token_ref: SecretReference) -> InjectionPlan:
        """Plan the injection of a pod template.

        Args:
            pod_template: Live pod template (``spec.template`` of a workload)
            token_ref: Secret reference the tracer token is read from

        Returns:
            ``ADD`` if nothing is injected, ``NOOP`` if the injection matches the
            current configuration, ``REPLACE`` otherwise

        Raises:
            InjectionConflictError: If an uninstrumented template already defines
                something the injection would overwrite, or has its own
                elements under the reserved prefix
        """
        state = inspect_pod_template(pod_template)

        if state.marker is None:
            self._check_reserved_names(pod_template)
        if state.marker is None and state.is_empty:
            self._check_conflicts(pod_template)
            action = PlanAction.ADD
        elif self._is_converged(pod_template, state, token_ref):
            return InjectionPlan(action=PlanAction.NOOP)
        else:
            action = PlanAction.REPLACE

        return InjectionPlan(
            action=action,
            add_init_containers=(self.init_container(),),
            add_containers=self.sidecar_containers(),
            remove_container_names=tuple(sorted(state.init_container_names + state.container_names)),
            add_volumes=self.volumes(),
            remove_volume_names=state.volume_names,
            env_vars=self.env_vars(token_ref),
            remove_env_var_names=state.env_var_names,
            volume_mounts=self.volume_mounts(),
            remove_volume_mount_names=state.volume_mount_names,
            marker=self.marker(),
        )

    def plan_removal(self, pod_template: dict[str, Any]) -> InjectionPlan:
        """Plan the removal of an injection using only what is on the template.

        Works regardless of the configuration the injection was made with.
        """
        state = inspect_pod_template(pod_template)
        if state.marker is None and state.is_empty:
            return InjectionPlan(action=PlanAction.NOOP)

        return InjectionPlan(
            action=PlanAction.REMOVE,
            remove_container_names=tuple(sorted(state.init_container_names + state.container_names)),
            remove_volume_names=state.volume_names,
            remove_env_var_names=state.env_var_names,
            remove_volume_mount_names=state.volume_mount_names,
            marker=None,
        )
