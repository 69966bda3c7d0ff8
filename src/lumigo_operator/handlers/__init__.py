"""Handler modules for the Lumigo operator."""

# Import handlers to register them - all handlers register themselves via @kopf decorators
from . import admission  # noqa: F401
from . import lumigo  # noqa: F401
from . import secrets  # noqa: F401
from .shared import configure, get_reconciler, is_configured

__all__ = ["configure", "get_reconciler", "is_configured"]
