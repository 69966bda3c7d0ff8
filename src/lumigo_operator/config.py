"""Runtime configuration for the Lumigo Operator, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

from . import __version__

DEFAULT_INJECTOR_IMAGE = "public.ecr.aws/lumigo/lumigo-autotrace:latest"
DEFAULT_TELEMETRY_PROXY_OTLP_SERVICE = "http://lumigo-telemetry-proxy.lumigo-system.svc.cluster.local"


def split_image_reference(image: str) -> tuple[str, str]:
    """Split a container image reference into repository and tag.

    The tag is whatever follows the last colon, unless that colon comes
    before the last slash, in which case it is a registry port and the
    image has no tag.

    Args:
        image: Image reference, e.g. ``localhost:5000/lumigo-injector:latest``

    Returns:
        Tuple of (repository, tag); tag is an empty string when absent
    """
    last_colon = image.rfind(":")
    last_slash = image.rfind("/")

    if last_colon < 0 or last_slash > last_colon:
        return image, ""

    return image[:last_colon], image[last_colon + 1 :]


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OperatorConfig:
    """Operator-wide settings.

    Everything that influences what gets injected lives here, so that the
    provenance marker can be compared against it.
    """

    operator_version: str = __version__
    injector_image: str = DEFAULT_INJECTOR_IMAGE
    telemetry_proxy_otlp_service: str = DEFAULT_TELEMETRY_PROXY_OTLP_SERVICE
    sidecar_image: str = ""
    reconcile_interval_seconds: float = 30.0
    reconcile_timeout_seconds: float = 60.0
    workload_update_max_attempts: int = 5
    conflict_retry_base_delay_seconds: float = 0.2
    metrics_port: int = 8080
    webhook_host: str | None = None
    webhook_port: int | None = None
    webhook_certfile: str | None = None
    webhook_pkeyfile: str | None = None
    debug: bool = False

    @property
    def injector_repository(self) -> str:
        return split_image_reference(self.injector_image)[0]

    @property
    def injector_tag(self) -> str:
        return split_image_reference(self.injector_image)[1]

    @property
    def injector_image_pinned(self) -> bool:
        """Whether the injector image names a fixed tag or a digest.

        The provenance marker records the image reference, so a moving tag
        such as ``latest`` never causes instrumented workloads to be refreshed.
        """
        return "@" in self.injector_image or self.injector_tag not in ("", "latest")

    @property
    def traces_endpoint(self) -> str:
        return f"{self.telemetry_proxy_otlp_service.rstrip('/')}/v1/traces"

    @property
    def logs_endpoint(self) -> str:
        return f"{self.telemetry_proxy_otlp_service.rstrip('/')}/v1/logs"

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Build the configuration from environment variables."""
        webhook_port = os.getenv("WEBHOOK_PORT")
        return cls(
            operator_version=os.getenv("LUMIGO_OPERATOR_VERSION", __version__),
            injector_image=os.getenv("LUMIGO_INJECTOR_IMAGE", DEFAULT_INJECTOR_IMAGE),
            telemetry_proxy_otlp_service=os.getenv(
                "TELEMETRY_PROXY_OTLP_SERVICE", DEFAULT_TELEMETRY_PROXY_OTLP_SERVICE
            ),
            sidecar_image=os.getenv("TELEMETRY_PROXY_SIDECAR_IMAGE", ""),
            reconcile_interval_seconds=float(os.getenv("RECONCILE_INTERVAL_SECONDS", "30")),
            reconcile_timeout_seconds=float(os.getenv("RECONCILE_TIMEOUT_SECONDS", "60")),
            workload_update_max_attempts=int(os.getenv("WORKLOAD_UPDATE_MAX_ATTEMPTS", "5")),
            conflict_retry_base_delay_seconds=float(os.getenv("CONFLICT_RETRY_BASE_DELAY_SECONDS", "0.2")),
            metrics_port=int(os.getenv("METRICS_PORT", "8080")),
            webhook_host=os.getenv("WEBHOOK_HOST") or None,
            webhook_port=int(webhook_port) if webhook_port else None,
            webhook_certfile=os.getenv("WEBHOOK_CERTFILE") or None,
            webhook_pkeyfile=os.getenv("WEBHOOK_PKEYFILE") or None,
            debug=_env_bool("LUMIGO_DEBUG", False),
        )
