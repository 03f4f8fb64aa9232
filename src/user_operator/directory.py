"""Remote directory client.

The lifecycle talks to the directory through the ``DirectoryClient``
protocol: eight named operations, each of which either returns or raises a
``DirectoryError``. A missing user is reported as ``DirectoryNotFoundError``
so that drift can be told apart from every other failure.

``CognitoDirectoryClient`` implements the protocol on top of the boto3
``cognito-idp`` admin API.

SECURITY: Passwords are passed through to the API and never logged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .state import Attribute, DeliveryMedium, MessageAction, UserStatus

logger = logging.getLogger(__name__)

# Error codes that mean the user (or its pool) does not exist
NOT_FOUND_ERROR_CODES = frozenset({"UserNotFoundException", "ResourceNotFoundException"})

# Group calls report a missing group as ResourceNotFoundException, so only
# UserNotFoundException means the user is gone there
GROUP_NOT_FOUND_ERROR_CODES = frozenset({"UserNotFoundException"})

# Page size for group listing (API maximum is 60)
GROUP_LIST_PAGE_SIZE = 60

CONNECT_TIMEOUT_SECONDS = 10
READ_TIMEOUT_SECONDS = 30


class DirectoryError(Exception):
    """A remote directory operation failed."""

    def __init__(self, operation: str, code: str, message: str) -> None:
        self.operation = operation
        self.code = code
        self.message = message
        super().__init__(f"{operation}: {code}: {message}")


class DirectoryNotFoundError(DirectoryError):
    """The user addressed by a remote operation does not exist."""

    pass


@dataclass(frozen=True)
class RemoteUser:
    """A user as returned by the directory."""

    username: str
    enabled: bool
    status: UserStatus
    attributes: tuple[Attribute, ...] = ()


@dataclass(frozen=True)
class CreateUserRequest:
    """Parameters of the CreateUser operation."""

    pool_id: str
    username: str
    temporary_password: str | None = None
    message_action: MessageAction | None = None
    force_alias_creation: bool = False
    desired_delivery_mediums: frozenset[DeliveryMedium] = frozenset()
    client_metadata: dict[str, str] = field(default_factory=dict)
    validation_data: tuple[Attribute, ...] = ()
    user_attributes: tuple[Attribute, ...] = ()

    def __repr__(self) -> str:
        return f"CreateUserRequest(pool_id={self.pool_id!r}, username={self.username!r})"


class DirectoryClient(Protocol):
    """Operations the lifecycle needs from the directory service."""

    def create_user(self, request: CreateUserRequest) -> RemoteUser: ...

    def get_user(self, pool_id: str, username: str) -> RemoteUser: ...

    def set_password(self, pool_id: str, username: str, password: str, permanent: bool) -> None: ...

    def update_attributes(
        self, pool_id: str, username: str, attributes: tuple[Attribute, ...]
    ) -> None: ...

    def add_to_group(self, pool_id: str, username: str, group: str) -> None: ...

    def remove_from_group(self, pool_id: str, username: str, group: str) -> None: ...

    def list_groups_for_user(self, pool_id: str, username: str) -> list[str]: ...

    def delete_user(self, pool_id: str, username: str) -> None: ...


def _to_api_attributes(attributes: Iterable[Attribute]) -> list[dict[str, str]]:
    return [{"Name": a.name, "Value": a.value} for a in attributes]


def _from_api_attributes(raw: Iterable[dict[str, Any]] | None) -> tuple[Attribute, ...]:
    return tuple(Attribute(name=a["Name"], value=a.get("Value", "")) for a in raw or ())


class CognitoDirectoryClient:
    """DirectoryClient backed by the Cognito user pool admin API.

    Every botocore error is translated into a DirectoryError carrying the
    operation name. Retries are left to botocore's own retry handler.
    """

    def __init__(self, client: Any) -> None:
        """Initialize with a boto3 ``cognito-idp`` client.

        Args:
            client: A boto3 client (or a stubbed one in tests).
        """
        self._client = client

    def _invoke(
        self,
        operation: str,
        method: str,
        not_found_codes: frozenset[str] = NOT_FOUND_ERROR_CODES,
        **params: Any,
    ) -> dict[str, Any]:
        logger.debug("Calling directory", extra={"operation": operation})
        try:
            return getattr(self._client, method)(**params)
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "Unknown")
            message = error.get("Message", str(e))
            if code in not_found_codes:
                raise DirectoryNotFoundError(operation, code, message) from e
            raise DirectoryError(operation, code, message) from e
        except BotoCoreError as e:
            raise DirectoryError(operation, type(e).__name__, str(e)) from e

    def create_user(self, request: CreateUserRequest) -> RemoteUser:
        params: dict[str, Any] = {
            "UserPoolId": request.pool_id,
            "Username": request.username,
        }
        if request.temporary_password is not None:
            params["TemporaryPassword"] = request.temporary_password
        if request.message_action is not None:
            params["MessageAction"] = request.message_action.value
        if request.force_alias_creation:
            params["ForceAliasCreation"] = True
        if request.desired_delivery_mediums:
            params["DesiredDeliveryMediums"] = sorted(m.value for m in request.desired_delivery_mediums)
        if request.client_metadata:
            params["ClientMetadata"] = dict(request.client_metadata)
        if request.validation_data:
            params["ValidationData"] = _to_api_attributes(request.validation_data)
        if request.user_attributes:
            params["UserAttributes"] = _to_api_attributes(request.user_attributes)

        response = self._invoke("CreateUser", "admin_create_user", **params)
        user = response.get("User", {})
        return RemoteUser(
            username=user.get("Username", request.username),
            enabled=bool(user.get("Enabled", True)),
            status=UserStatus.parse(user.get("UserStatus")),
            attributes=_from_api_attributes(user.get("Attributes")),
        )

    def get_user(self, pool_id: str, username: str) -> RemoteUser:
        response = self._invoke(
            "GetUser", "admin_get_user", UserPoolId=pool_id, Username=username
        )
        return RemoteUser(
            username=response.get("Username", username),
            enabled=bool(response.get("Enabled", False)),
            status=UserStatus.parse(response.get("UserStatus")),
            attributes=_from_api_attributes(response.get("UserAttributes")),
        )

    def set_password(self, pool_id: str, username: str, password: str, permanent: bool) -> None:
        self._invoke(
            "SetPassword",
            "admin_set_user_password",
            UserPoolId=pool_id,
            Username=username,
            Password=password,
            Permanent=permanent,
        )

    def update_attributes(
        self, pool_id: str, username: str, attributes: tuple[Attribute, ...]
    ) -> None:
        self._invoke(
            "UpdateAttributes",
            "admin_update_user_attributes",
            UserPoolId=pool_id,
            Username=username,
            UserAttributes=_to_api_attributes(attributes),
        )

    def add_to_group(self, pool_id: str, username: str, group: str) -> None:
        self._invoke(
            "AddToGroup",
            "admin_add_user_to_group",
            GROUP_NOT_FOUND_ERROR_CODES,
            UserPoolId=pool_id,
            Username=username,
            GroupName=group,
        )

    def remove_from_group(self, pool_id: str, username: str, group: str) -> None:
        self._invoke(
            "RemoveFromGroup",
            "admin_remove_user_from_group",
            GROUP_NOT_FOUND_ERROR_CODES,
            UserPoolId=pool_id,
            Username=username,
            GroupName=group,
        )

    def list_groups_for_user(self, pool_id: str, username: str) -> list[str]:
        groups: list[str] = []
        params: dict[str, Any] = {
            "UserPoolId": pool_id,
            "Username": username,
            "Limit": GROUP_LIST_PAGE_SIZE,
        }
        while True:
            response = self._invoke("ListGroupsForUser", "admin_list_groups_for_user", **params)
            groups.extend(g["GroupName"] for g in response.get("Groups", []))
            next_token = response.get("NextToken")
            if not next_token:
                return groups
            params["NextToken"] = next_token

    def delete_user(self, pool_id: str, username: str) -> None:
        self._invoke("DeleteUser", "admin_delete_user", UserPoolId=pool_id, Username=username)


def create_directory_client(region: str, endpoint_url: str | None = None) -> DirectoryClient:
    """Build the Cognito-backed client for a region.

    Credentials come from the default boto3 chain (environment, profile,
    container or instance role).
    """
    boto_config = BotoConfig(
        region_name=region,
        connect_timeout=CONNECT_TIMEOUT_SECONDS,
        read_timeout=READ_TIMEOUT_SECONDS,
        retries={"mode": "standard"},
    )
    client = boto3.client(
        "cognito-idp",
        config=boto_config,
        endpoint_url=endpoint_url,
    )
    logger.info(
        "Directory client ready",
        extra={"region": region, "endpoint_url": endpoint_url},
    )
    return CognitoDirectoryClient(client)
