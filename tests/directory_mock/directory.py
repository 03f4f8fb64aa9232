"""In-memory user-pool directory.

Implements the DirectoryClient protocol with enough of the remote behavior
to drive the lifecycle end to end: users keyed by pool and username, group
membership, passwords and account status. Every call is appended to
``calls`` (e.g. ``"AddToGroup:admins"``) before it is executed, so tests can
assert on exact call order, including calls that failed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from user_operator.directory import (
    CreateUserRequest,
    DirectoryError,
    DirectoryNotFoundError,
    RemoteUser,
)
from user_operator.state import Attribute, UserStatus

NOT_FOUND_CODE = "UserNotFoundException"


@dataclass
class MockUser:
    """A user stored in the mock directory."""

    pool_id: str
    username: str
    enabled: bool = True
    status: UserStatus = UserStatus.FORCE_CHANGE_PASSWORD
    attributes: list[Attribute] = field(default_factory=list)
    groups: set[str] = field(default_factory=set)
    password: str | None = None

    def to_remote(self) -> RemoteUser:
        return RemoteUser(
            username=self.username,
            enabled=self.enabled,
            status=self.status,
            attributes=tuple(self.attributes),
        )


@dataclass
class InjectedFailure:
    code: str
    message: str
    remaining: int | None = None


class InMemoryDirectory:
    """Stateful fake of the remote directory."""

    def __init__(self, normalize_username: Callable[[str], str] | None = None) -> None:
        """Initialize an empty directory.

        Args:
            normalize_username: Applied to usernames on creation, to mimic a
                directory that rewrites them (e.g. lower-casing).
        """
        self._normalize = normalize_username or (lambda name: name)
        self.users: dict[tuple[str, str], MockUser] = {}
        self.calls: list[str] = []
        self.create_requests: list[CreateUserRequest] = []
        self._failures: dict[str, InjectedFailure] = {}

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add_user(
        self,
        pool_id: str,
        username: str,
        *,
        attributes: list[Attribute] | None = None,
        groups: set[str] | None = None,
        status: UserStatus = UserStatus.CONFIRMED,
        enabled: bool = True,
    ) -> MockUser:
        """Pre-populate a user without recording a call."""
        user = MockUser(
            pool_id=pool_id,
            username=username,
            enabled=enabled,
            status=status,
            attributes=list(attributes or []),
            groups=set(groups or set()),
        )
        self.users[(pool_id, username)] = user
        return user

    def get(self, pool_id: str, username: str) -> MockUser | None:
        return self.users.get((pool_id, username))

    def fail(
        self,
        operation: str,
        *,
        detail: str | None = None,
        code: str = "InternalErrorException",
        message: str = "simulated failure",
        times: int | None = None,
    ) -> None:
        """Make ``operation`` (optionally only for one group) fail.

        Args:
            operation: Operation name, e.g. ``"AddToGroup"``.
            detail: Group name, to fail only that group's call.
            code: Error code; ``UserNotFoundException`` simulates not-found.
            message: Error message.
            times: Fail this many times, then succeed. None fails forever.
        """
        self._failures[self._label(operation, detail)] = InjectedFailure(code, message, times)

    def clear_failures(self) -> None:
        self._failures.clear()

    def count(self, operation: str) -> int:
        """Number of recorded calls of ``operation`` (any group)."""
        return sum(1 for c in self.calls if c == operation or c.startswith(f"{operation}:"))

    def mutating_calls(self) -> list[str]:
        """Recorded calls minus the reads."""
        return [c for c in self.calls if not c.startswith(("GetUser", "ListGroupsForUser"))]

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _label(operation: str, detail: str | None) -> str:
        return f"{operation}:{detail}" if detail else operation

    def _record(self, operation: str, detail: str | None = None) -> None:
        label = self._label(operation, detail)
        self.calls.append(label)
        for key in (label, operation):
            failure = self._failures.get(key)
            if failure is None:
                continue
            if failure.remaining is not None:
                failure.remaining -= 1
                if failure.remaining <= 0:
                    del self._failures[key]
            if failure.code == NOT_FOUND_CODE:
                raise DirectoryNotFoundError(operation, failure.code, failure.message)
            raise DirectoryError(operation, failure.code, failure.message)

    def _require(self, operation: str, pool_id: str, username: str) -> MockUser:
        user = self.users.get((pool_id, username))
        if user is None:
            raise DirectoryNotFoundError(operation, NOT_FOUND_CODE, "User does not exist.")
        return user

    # ------------------------------------------------------------------
    # DirectoryClient
    # ------------------------------------------------------------------

    def create_user(self, request: CreateUserRequest) -> RemoteUser:
        self._record("CreateUser")
        self.create_requests.append(request)
        username = self._normalize(request.username)
        if (request.pool_id, username) in self.users:
            raise DirectoryError("CreateUser", "UsernameExistsException", "User account already exists")
        user = MockUser(
            pool_id=request.pool_id,
            username=username,
            attributes=list(request.user_attributes),
            password=request.temporary_password,
        )
        self.users[(request.pool_id, username)] = user
        return user.to_remote()

    def get_user(self, pool_id: str, username: str) -> RemoteUser:
        self._record("GetUser")
        return self._require("GetUser", pool_id, username).to_remote()

    def set_password(self, pool_id: str, username: str, password: str, permanent: bool) -> None:
        self._record("SetPassword")
        user = self._require("SetPassword", pool_id, username)
        user.password = password
        user.status = UserStatus.CONFIRMED if permanent else UserStatus.FORCE_CHANGE_PASSWORD

    def update_attributes(
        self, pool_id: str, username: str, attributes: tuple[Attribute, ...]
    ) -> None:
        self._record("UpdateAttributes")
        user = self._require("UpdateAttributes", pool_id, username)
        # Named attributes are overwritten, others are kept
        merged = {a.name: a for a in user.attributes}
        merged.update({a.name: a for a in attributes})
        user.attributes = list(merged.values())

    def add_to_group(self, pool_id: str, username: str, group: str) -> None:
        self._record("AddToGroup", group)
        self._require("AddToGroup", pool_id, username).groups.add(group)

    def remove_from_group(self, pool_id: str, username: str, group: str) -> None:
        self._record("RemoveFromGroup", group)
        self._require("RemoveFromGroup", pool_id, username).groups.discard(group)

    def list_groups_for_user(self, pool_id: str, username: str) -> list[str]:
        self._record("ListGroupsForUser")
        return sorted(self._require("ListGroupsForUser", pool_id, username).groups)

    def delete_user(self, pool_id: str, username: str) -> None:
        self._record("DeleteUser")
        self._require("DeleteUser", pool_id, username)
        del self.users[(pool_id, username)]
