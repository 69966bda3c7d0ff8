"""Exception hierarchy for the Lumigo Operator."""

from __future__ import annotations


class LumigoOperatorError(Exception):
    """Base class for all operator errors."""


class InvalidCredentialsError(LumigoOperatorError, ValueError):
    """The credentials referenced by a Lumigo resource cannot be used.

    The message is user-facing and ends up verbatim in the Error condition.
    """


class SecretNotFoundError(InvalidCredentialsError):
    """The referenced secret does not exist."""


class KeyMissingError(InvalidCredentialsError):
    """The referenced secret exists but lacks the configured key."""


class MalformedTokenError(InvalidCredentialsError):
    """The token stored in the secret does not look like a Lumigo token."""


class InjectionError(LumigoOperatorError):
    """A plan could not be computed or applied to a workload."""


class InjectionConflictError(InjectionError):
    """The workload defines something injection would overwrite."""


class TransientError(LumigoOperatorError):
    """A retriable failure talking to the API server."""


class ReconcileTimeoutError(TransientError):
    """The per-invocation reconcile deadline elapsed."""


class ReconcileError(LumigoOperatorError):
    """An invariant was violated; the reconcile is aborted and requeued."""
