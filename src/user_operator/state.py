"""Desired and observed state of a managed user.

DesiredState is built fresh from a declaration for every lifecycle call.
ObservedState is rebuilt on every read; only group membership may carry over
from a prior observation, when the group listing fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .identity import ResourceIdentity


class LifecycleState(str, Enum):
    """States of the user lifecycle."""

    ABSENT = "absent"
    CREATING = "creating"
    PRESENT = "present"
    UPDATING = "updating"
    DELETING = "deleting"


class MessageAction(str, Enum):
    """What to do with the welcome message on creation."""

    RESEND = "RESEND"
    SUPPRESS = "SUPPRESS"


class DeliveryMedium(str, Enum):
    """Channels for the welcome message."""

    SMS = "SMS"
    EMAIL = "EMAIL"


class UserStatus(str, Enum):
    """Account status reported by the directory."""

    UNCONFIRMED = "UNCONFIRMED"
    CONFIRMED = "CONFIRMED"
    ARCHIVED = "ARCHIVED"
    COMPROMISED = "COMPROMISED"
    UNKNOWN = "UNKNOWN"
    RESET_REQUIRED = "RESET_REQUIRED"
    FORCE_CHANGE_PASSWORD = "FORCE_CHANGE_PASSWORD"
    EXTERNAL_PROVIDER = "EXTERNAL_PROVIDER"

    @classmethod
    def parse(cls, value: str | None) -> UserStatus:
        """Map a remote status string, falling back to UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Attribute:
    """A name/value pair (user attribute or validation data entry)."""

    name: str
    value: str


class PasswordKind(str, Enum):
    UNSET = "unset"
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class PasswordPolicy:
    """Initial credential of a user: unset, temporary or permanent.

    A single variant replaces two nullable fields, so a user can never be
    declared with both a temporary and a permanent password.
    """

    kind: PasswordKind = PasswordKind.UNSET
    value: str | None = None

    def __post_init__(self) -> None:
        if (self.kind is PasswordKind.UNSET) != (self.value is None):
            raise ValueError(f"Password policy {self.kind.value} has an inconsistent value")

    @classmethod
    def unset(cls) -> PasswordPolicy:
        return cls()

    @classmethod
    def temporary(cls, value: str) -> PasswordPolicy:
        return cls(PasswordKind.TEMPORARY, value)

    @classmethod
    def permanent(cls, value: str) -> PasswordPolicy:
        return cls(PasswordKind.PERMANENT, value)

    @property
    def temporary_password(self) -> str | None:
        return self.value if self.kind is PasswordKind.TEMPORARY else None

    @property
    def permanent_password(self) -> str | None:
        return self.value if self.kind is PasswordKind.PERMANENT else None

    def __repr__(self) -> str:
        # Never render the secret.
        return f"PasswordPolicy(kind={self.kind.value})"


@dataclass(frozen=True)
class DesiredState:
    """Validated target configuration for one user."""

    username: str
    pool_id: str
    password: PasswordPolicy = field(default_factory=PasswordPolicy.unset)
    message_action: MessageAction | None = None
    force_alias_creation: bool = False
    desired_delivery_mediums: frozenset[DeliveryMedium] = frozenset()
    client_metadata: dict[str, str] = field(default_factory=dict)
    validation_data: tuple[Attribute, ...] = ()
    user_attributes: tuple[Attribute, ...] = ()
    groups: frozenset[str] = frozenset()

    @property
    def identity(self) -> ResourceIdentity:
        return ResourceIdentity(pool_id=self.pool_id, username=self.username)

    def immutable_changes(self, other: DesiredState) -> tuple[str, ...]:
        """Names of fields that differ from ``other`` and force replacement."""
        changed: list[str] = []
        if self.username != other.username:
            changed.append("username")
        if self.pool_id != other.pool_id:
            changed.append("user_pool_id")
        if self.validation_data != other.validation_data:
            changed.append("validation_data")
        return tuple(changed)


@dataclass(frozen=True)
class ObservedState:
    """Last known remote snapshot of a user."""

    enabled: bool
    status: UserStatus
    user_attributes: tuple[Attribute, ...] = ()
    groups: frozenset[str] = frozenset()


class GroupListingStatus(str, Enum):
    """Freshness of the group membership in an observation."""

    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class GroupListing:
    """Best-effort group membership read alongside the primary state."""

    groups: frozenset[str]
    status: GroupListingStatus = GroupListingStatus.FRESH
    error: str | None = None


@dataclass(frozen=True)
class ReadResult:
    """Outcome of reading a user.

    ``observed`` is the primary state and is None when the user is gone.
    ``group_listing`` is enrichment and may be stale.
    """

    identity: ResourceIdentity
    state: LifecycleState
    observed: ObservedState | None = None
    group_listing: GroupListing | None = None

    @property
    def present(self) -> bool:
        return self.state is LifecycleState.PRESENT
