"""Main entry point for the Lumigo Operator."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from . import __version__, handlers, health
from . import logging as structured_logging
from .config import OperatorConfig
from .constants import API_GROUP, FIELD_MANAGER, FINALIZER
from .reconciler import build_reconciler
from .tracing import initialize_tracing, shutdown_tracing

logger = logging.getLogger(__name__)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure the operator."""
    config = OperatorConfig.from_env()

    # Set up structured JSON logging
    structured_logging.setup_structured_logging(debug=config.debug)

    # Configure persistence
    # Use AnnotationsProgressStorage to avoid conflicts with status updates
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage()
    settings.persistence.finalizer = FINALIZER

    settings.posting.level = logging.INFO
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = 4

    if config.webhook_port is not None:
        settings.admission.server = kopf.WebhookServer(
            addr=config.webhook_host or "0.0.0.0",
            port=config.webhook_port,
            certfile=config.webhook_certfile,
            pkeyfile=config.webhook_pkeyfile,
        )
        settings.admission.managed = f"{FIELD_MANAGER}.{API_GROUP}"

    # Start metrics HTTP server with health check endpoints
    health.start_metrics_server(config.metrics_port, is_ready=handlers.is_configured)

    initialize_tracing(service_version=config.operator_version)

    handlers.configure(build_reconciler(config))
    logger.info(
        "Lumigo operator %s started (injector %s, tag %s, telemetry proxy %s)",
        __version__,
        config.injector_repository,
        config.injector_tag or "<none>",
        config.telemetry_proxy_otlp_service,
    )
    if not config.injector_image_pinned:
        logger.warning(
            "Injector image %s is not pinned; workloads are not re-instrumented when the tag moves",
            config.injector_image,
        )


@kopf.on.cleanup()
def cleanup(**_: Any) -> None:
    """Flush pending spans before the operator exits."""
    shutdown_tracing()


def run() -> None:
    """Run the operator across all namespaces."""
    kopf.run(clusterwide=True)
