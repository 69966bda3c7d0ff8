"""Handler for secrets referenced by Lumigo resources."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..models import LumigoSpec
from ..registry import is_being_deleted
from ..workloads import get_meta
from .shared import get_reconciler

logger = logging.getLogger(__name__)


@kopf.on.event("v1", "secrets")
def handle_secret_event(
    type: str | None,
    namespace: str,
    name: str,
    lumigo_by_namespace: kopf.Index,
    **kwargs: Any,
) -> None:
    """Re-reconcile the Lumigo resources that read their token from this secret.

    The initial listing (``type`` None) is ignored: the resume handlers
    already reconcile everything at startup.
    """
    if type is None:
        return

    for lumigo in lumigo_by_namespace.get(namespace, []):
        if is_being_deleted(lumigo):
            continue
        credentials = LumigoSpec.from_spec(lumigo.get("spec")).credentials
        if credentials.name != name:
            continue
        lumigo_name = get_meta(lumigo).get("name")
        logger.info("Secret %s/%s changed (%s), reconciling Lumigo %s", namespace, name, type, lumigo_name)
        get_reconciler().request_reconcile(namespace, lumigo_name)
