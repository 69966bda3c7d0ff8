"""Validation of the Lumigo token referenced by a Lumigo resource."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from ..constants import TOKEN_CREDENTIAL_KIND, TOKEN_DOCS_URL, TOKEN_PATTERN
from ..exceptions import (
    InvalidCredentialsError,
    KeyMissingError,
    MalformedTokenError,
    SecretNotFoundError,
)

_TOKEN_RE = re.compile(TOKEN_PATTERN)

# (namespace, name) -> decoded secret data, or None when the secret does not exist.
# Any other failure must propagate as an exception.
SecretReader = Callable[[str, str], dict[str, str] | None]


@dataclass(frozen=True)
class SecretReference:
    """Reference to a key of a secret in the resource's own namespace."""

    name: str
    key: str

    @classmethod
    def from_spec(cls, spec: dict[str, Any] | None) -> SecretReference:
        spec = spec or {}
        return cls(name=spec.get("name", "") or "", key=spec.get("key", "") or "")


def is_valid_token(value: str) -> bool:
    return bool(_TOKEN_RE.fullmatch(value))


def validate_token_secret(
    read_secret: SecretReader,
    namespace: str,
    secret_ref: SecretReference,
    credential_kind: str = TOKEN_CREDENTIAL_KIND,
) -> str:
    """Resolve the secret reference and validate the token it holds.

    Args:
        read_secret: Reads a secret's decoded data; returns None if it does not exist
        namespace: Namespace of the Lumigo resource
        secret_ref: Reference to the secret and key holding the token
        credential_kind: Human-readable name of the credential, used in messages

    Returns:
        The token

    Raises:
        SecretNotFoundError: If the secret does not exist
        KeyMissingError: If the secret does not have the key
        MalformedTokenError: If the value is not a Lumigo token
        InvalidCredentialsError: If the reference itself is incomplete
    """
    prefix = f"invalid {credential_kind} secret reference"

    if not secret_ref.name or not secret_ref.key:
        raise InvalidCredentialsError(f"{prefix}: the secret name and key must be set")

    qualified_name = f"{namespace}/{secret_ref.name}"

    data = read_secret(namespace, secret_ref.name)
    if data is None:
        raise SecretNotFoundError(f"{prefix}: cannot retrieve secret '{qualified_name}'")

    if secret_ref.key not in data:
        raise KeyMissingError(
            f"{prefix}: the secret '{qualified_name}' does not have the key '{secret_ref.key}'"
        )

    token = data[secret_ref.key]
    if not is_valid_token(token):
        raise MalformedTokenError(
            f"{prefix}: the value of the field '{secret_ref.key}' of the secret '{qualified_name}' "
            "does not match the expected structure of Lumigo tokens: "
            f"it should be `t_` followed by of 21 alphanumeric characters; see {TOKEN_DOCS_URL} "
            "for instructions on how to retrieve your Lumigo token"
        )

    return token
