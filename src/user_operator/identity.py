"""Encoding of the external user identifier.

The identifier is the only durable handle the operator keeps for a user and
has the form ``<user_pool_id>/<username>``. Neither component may contain the
separator; the declaration layer rejects such usernames before they get here.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import FormatError

SEPARATOR = "/"
EXPECTED_SHAPE = "user_pool_id/username"


@dataclass(frozen=True)
class ResourceIdentity:
    """Composite key of a managed user."""

    pool_id: str
    username: str

    def __post_init__(self) -> None:
        for label, value in (("user_pool_id", self.pool_id), ("username", self.username)):
            if not value:
                raise FormatError(f"{label} must not be empty (expected {EXPECTED_SHAPE})")
            if SEPARATOR in value:
                raise FormatError(
                    f"{label} must not contain '{SEPARATOR}': {value!r} (expected {EXPECTED_SHAPE})"
                )

    def __str__(self) -> str:
        return encode_identity(self.pool_id, self.username)

    @classmethod
    def parse(cls, raw: str) -> ResourceIdentity:
        return decode_identity(raw)


def encode_identity(pool_id: str, username: str) -> str:
    """Serialize an identity as ``pool_id/username``."""
    return f"{pool_id}{SEPARATOR}{username}"


def decode_identity(raw: str) -> ResourceIdentity:
    """Parse ``pool_id/username``.

    Raises:
        FormatError: If the string does not split into exactly two
            non-empty parts.
    """
    parts = raw.split(SEPARATOR)
    if len(parts) != 2 or not all(parts):
        raise FormatError(f"Invalid user identifier {raw!r}, must specify {EXPECTED_SHAPE}")
    return ResourceIdentity(pool_id=parts[0], username=parts[1])
