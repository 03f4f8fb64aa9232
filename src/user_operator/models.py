"""Pydantic models for user declarations with validation.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Conversion to the DesiredState consumed by the lifecycle
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field, field_validator

from .errors import ConflictingFields
from .state import (
    Attribute,
    DeliveryMedium,
    DesiredState,
    MessageAction,
    PasswordPolicy,
)

# Input validation patterns
VALID_USERNAME_PATTERN = r"^[^\s/]+$"
VALID_USER_POOL_ID_PATTERN = r"^[\w-]+_[0-9a-zA-Z]+$"
VALID_ATTRIBUTE_NAME_PATTERN = r"^[^\s]+$"

MAX_USERNAME_LENGTH = 128
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 256
MAX_ATTRIBUTE_NAME_LENGTH = 32
MAX_ATTRIBUTE_VALUE_LENGTH = 2048


class UserAttributeSpec(BaseModel):
    """A declared name/value pair."""

    model_config = {"extra": "ignore"}

    name: Annotated[
        str,
        Field(
            min_length=1,
            max_length=MAX_ATTRIBUTE_NAME_LENGTH,
            pattern=VALID_ATTRIBUTE_NAME_PATTERN,
        ),
    ]
    value: Annotated[str, Field(max_length=MAX_ATTRIBUTE_VALUE_LENGTH)] = ""

    def to_attribute(self) -> Attribute:
        return Attribute(name=self.name, value=self.value)


Password = Annotated[str, Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)]


class UserSpec(BaseModel):
    """Declared configuration of one user-pool user.

    Keys are camelCase in YAML; snake_case names are accepted as well.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    username: Annotated[
        str,
        Field(min_length=1, max_length=MAX_USERNAME_LENGTH, pattern=VALID_USERNAME_PATTERN),
    ]
    user_pool_id: Annotated[
        str,
        Field(min_length=1, max_length=55, pattern=VALID_USER_POOL_ID_PATTERN, alias="userPoolId"),
    ]
    temporary_password: Password | None = Field(None, alias="temporaryPassword")
    permanent_password: Password | None = Field(None, alias="permanentPassword")
    message_action: MessageAction | None = Field(None, alias="messageAction")
    force_alias_creation: bool = Field(False, alias="forceAliasCreation")
    desired_delivery_mediums: set[DeliveryMedium] = Field(
        default_factory=set, alias="desiredDeliveryMediums"
    )
    client_metadata: dict[str, str] = Field(default_factory=dict, alias="clientMetadata")
    validation_data: list[UserAttributeSpec] = Field(default_factory=list, alias="validationData")
    user_attributes: list[UserAttributeSpec] = Field(default_factory=list, alias="userAttributes")
    groups: set[str] = Field(default_factory=set)

    @field_validator("groups")
    @classmethod
    def validate_groups(cls, v: set[str]) -> set[str]:
        if any(not g.strip() for g in v):
            raise ValueError("group names must not be empty")
        return v

    def password_policy(self) -> PasswordPolicy:
        """Collapse the two password fields into a single variant.

        Raises:
            ConflictingFields: If both passwords are set.
        """
        if self.temporary_password is not None and self.permanent_password is not None:
            raise ConflictingFields(("temporary_password", "permanent_password"))
        if self.temporary_password is not None:
            return PasswordPolicy.temporary(self.temporary_password)
        if self.permanent_password is not None:
            return PasswordPolicy.permanent(self.permanent_password)
        return PasswordPolicy.unset()

    def to_desired_state(self) -> DesiredState:
        """Convert to the lifecycle's DesiredState.

        Raises:
            ConflictingFields: If both passwords are set.
        """
        return DesiredState(
            username=self.username,
            pool_id=self.user_pool_id,
            password=self.password_policy(),
            message_action=self.message_action,
            force_alias_creation=self.force_alias_creation,
            desired_delivery_mediums=frozenset(self.desired_delivery_mediums),
            client_metadata=dict(self.client_metadata),
            validation_data=tuple(a.to_attribute() for a in self.validation_data),
            user_attributes=tuple(a.to_attribute() for a in self.user_attributes),
            groups=frozenset(self.groups),
        )

    def to_stored_dict(self) -> dict[str, object]:
        """Serializable form without credentials, for the state store."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"temporary_password", "permanent_password"},
        )
