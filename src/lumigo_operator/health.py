"""Liveness, readiness and Prometheus metrics on one HTTP port."""

from __future__ import annotations

import json
import threading
from typing import Any, Callable

from prometheus_client import make_wsgi_app
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from . import __version__

ReadinessCheck = Callable[[], bool]


def _json_response(payload: dict[str, Any], status: int = 200) -> Response:
    return Response(json.dumps(payload, separators=(",", ":")), mimetype="application/json", status=status)


def create_combined_wsgi_app(is_ready: ReadinessCheck | None = None) -> Any:
    """Build the WSGI app served on the metrics port.

    ``/healthz`` answers as long as the process serves requests. ``/readyz``
    answers 503 until ``is_ready`` returns true; the operator ties it to its
    reconciler being installed. Every other path goes to prometheus_client.

    Args:
        is_ready: Readiness probe; always ready when omitted

    Returns:
        Combined WSGI application
    """
    metrics_app = make_wsgi_app()

    def combined_app(environ: dict[str, Any], start_response: Any) -> Any:
        path = Request(environ).path

        if path == "/healthz":
            response = _json_response({"status": "ok", "version": __version__})
        elif path == "/readyz":
            if is_ready is None or is_ready():
                response = _json_response({"status": "ready"})
            else:
                response = _json_response({"status": "starting"}, status=503)
        else:
            return metrics_app(environ, start_response)
        return response(environ, start_response)

    return combined_app


def start_metrics_server(port: int, is_ready: ReadinessCheck | None = None) -> None:
    """Serve metrics and health checks from a daemon thread."""
    server = make_server("", port, create_combined_wsgi_app(is_ready), threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="metrics-server", daemon=True)
    thread.start()
