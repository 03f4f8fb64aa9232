"""User lifecycle orchestration.

This module drives one managed user through its lifecycle:

    absent -> creating -> present -> updating -> present -> deleting -> absent

A read that finds the user gone moves it from present to absent (drift).

Every operation issues its remote calls strictly one after another. The
orchestrator holds no state between calls; the identity is the only durable
handle, and desired state is passed in fresh every time.

CREATION ORDER:
1. CreateUser (with the temporary password, if any)
2. AddToGroup for every declared group
3. SetPassword(permanent) if a permanent password is declared
4. Read back

UPDATE ORDER:
1. UpdateAttributes with the full list, if the list changed
2. AddToGroup for each added group, then RemoveFromGroup for each removed one
3. Read back

No call is retried here. A failure after CreateUser leaves the user present
with whatever has been applied so far; the caller can delete it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from .config import GroupFailurePolicy
from .directory import (
    CreateUserRequest,
    DirectoryClient,
    DirectoryError,
    DirectoryNotFoundError,
)
from .errors import (
    PartialUpdateError,
    RemoteCallFailed,
    ReplacementRequired,
    ResourceNotFound,
)
from .identity import ResourceIdentity, decode_identity
from .models import UserSpec
from .provenance import OperationProvenance, ProvenanceLogger, get_provenance_logger
from .set_diff import SetOperation, attributes_changed, reconcile_sets
from .state import (
    DesiredState,
    GroupListing,
    GroupListingStatus,
    LifecycleState,
    ObservedState,
    PasswordKind,
    ReadResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Remote operation names
CREATE_USER = "CreateUser"
GET_USER = "GetUser"
SET_PASSWORD = "SetPassword"
UPDATE_ATTRIBUTES = "UpdateAttributes"
ADD_TO_GROUP = "AddToGroup"
REMOVE_FROM_GROUP = "RemoveFromGroup"
LIST_GROUPS_FOR_USER = "ListGroupsForUser"
DELETE_USER = "DeleteUser"


class PlanAction(str, Enum):
    """Convergence action chosen for a declaration."""

    CREATE = "create"
    REPLACE = "replace"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


@dataclass(frozen=True)
class Plan:
    """Remote mutations needed to converge, in issue order."""

    action: PlanAction
    calls: tuple[str, ...] = ()
    reasons: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return self.action is not PlanAction.NOOP


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of converging one declaration."""

    plan: Plan
    read: ReadResult

    @property
    def identity(self) -> ResourceIdentity:
        return self.read.identity


@dataclass(frozen=True)
class ImportResult:
    """An adopted user: the declaration recovered from the directory."""

    desired: DesiredState
    read: ReadResult


def as_desired_state(spec: UserSpec | DesiredState) -> DesiredState:
    """Accept either a declaration or an already converted DesiredState.

    Raises:
        ConflictingFields: If the declaration sets both passwords.
    """
    if isinstance(spec, DesiredState):
        return spec
    return spec.to_desired_state()


def _call_label(operation: str, detail: str | None) -> str:
    return f"{operation}:{detail}" if detail else operation


class UserLifecycle:
    """Create, read, update, delete and import one directory user at a time.

    The lifecycle is stateless across calls and safe to share between users
    as long as calls for the same user are serialized by the caller.
    """

    def __init__(
        self,
        client: DirectoryClient,
        *,
        group_failure_policy: GroupFailurePolicy = GroupFailurePolicy.CONTINUE,
        provenance: ProvenanceLogger | None = None,
    ) -> None:
        """Initialize the lifecycle.

        Args:
            client: Remote directory client.
            group_failure_policy: Whether an update keeps going after a
                failed call (CONTINUE) or stops at the first one (ABORT).
            provenance: Audit logger, defaults to the global one.
        """
        self._client = client
        self._group_failure_policy = group_failure_policy
        self._provenance = provenance or get_provenance_logger()

    @property
    def group_failure_policy(self) -> GroupFailurePolicy:
        return self._group_failure_policy

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _call(
        self,
        record: OperationProvenance,
        operation: str,
        fn: Callable[..., T],
        *args: Any,
        detail: str | None = None,
    ) -> T:
        label = _call_label(operation, detail)
        record.record_call(label)
        logger.debug("Remote call", extra={"call": label, "identity": record.identity})
        try:
            return fn(*args)
        except DirectoryError:
            record.record_failure(label)
            raise

    def _transition(
        self,
        record: OperationProvenance,
        source: LifecycleState,
        target: LifecycleState,
    ) -> None:
        logger.debug(
            "State transition",
            extra={"identity": record.identity, "from": source.value, "to": target.value},
        )
        record.outcome = target.value

    def _finish(self, record: OperationProvenance, started: float, error: Exception | None) -> None:
        record.duration_seconds = time.monotonic() - started
        if error is not None:
            record.error = str(error)
            record.error_type = type(error).__name__
        self._provenance.log_provenance(record)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, spec: UserSpec | DesiredState) -> ReadResult:
        """Create the user, assign its groups, finalize its password, read it back.

        Raises:
            ConflictingFields: Both passwords declared; nothing was called.
            RemoteCallFailed: Any remote call failed. If the user itself was
                created, ``identity`` on the error names it.
        """
        started = time.monotonic()
        record = self._provenance.start("create")
        error: Exception | None = None
        try:
            desired = as_desired_state(spec)
            record.identity = str(desired.identity)
            return self._create(desired, record)
        except Exception as e:
            error = e
            raise
        finally:
            self._finish(record, started, error)

    def _create(self, desired: DesiredState, record: OperationProvenance) -> ReadResult:
        self._transition(record, LifecycleState.ABSENT, LifecycleState.CREATING)

        request = CreateUserRequest(
            pool_id=desired.pool_id,
            username=desired.username,
            temporary_password=desired.password.temporary_password,
            message_action=desired.message_action,
            force_alias_creation=desired.force_alias_creation,
            desired_delivery_mediums=desired.desired_delivery_mediums,
            client_metadata=desired.client_metadata,
            validation_data=desired.validation_data,
            user_attributes=desired.user_attributes,
        )

        logger.info("Creating user", extra={"identity": record.identity})
        try:
            remote = self._call(record, CREATE_USER, self._client.create_user, request)
        except DirectoryError as e:
            raise RemoteCallFailed(CREATE_USER, desired.identity, e.message) from e

        # The directory may normalize the username; the returned one is authoritative.
        identity = ResourceIdentity(pool_id=desired.pool_id, username=remote.username)
        record.identity = str(identity)
        self._transition(record, LifecycleState.CREATING, LifecycleState.PRESENT)

        for group in sorted(desired.groups):
            try:
                self._call(
                    record,
                    ADD_TO_GROUP,
                    self._client.add_to_group,
                    identity.pool_id,
                    identity.username,
                    group,
                    detail=group,
                )
            except DirectoryError as e:
                raise RemoteCallFailed(ADD_TO_GROUP, identity, f"group {group}: {e.message}") from e
            logger.debug("Added user to group", extra={"identity": str(identity), "group": group})

        if desired.password.kind is PasswordKind.PERMANENT:
            logger.debug("Setting permanent password", extra={"identity": str(identity)})
            try:
                self._call(
                    record,
                    SET_PASSWORD,
                    self._client.set_password,
                    identity.pool_id,
                    identity.username,
                    desired.password.value,
                    True,
                )
            except DirectoryError as e:
                raise RemoteCallFailed(SET_PASSWORD, identity, e.message) from e

        logger.info(
            "Created user",
            extra={"identity": str(identity), "groups": len(desired.groups)},
        )
        return self._read(identity, None, record)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self, identity: ResourceIdentity, prior: ObservedState | None = None) -> ReadResult:
        """Read the user's current state.

        A missing user is not an error: the result is ABSENT. A failed group
        listing is not an error either: groups fall back to ``prior.groups``
        (or empty) and the listing is marked stale.

        Raises:
            RemoteCallFailed: GetUser failed with anything but not-found.
        """
        started = time.monotonic()
        record = self._provenance.start("read", str(identity))
        error: Exception | None = None
        try:
            return self._read(identity, prior, record)
        except Exception as e:
            error = e
            raise
        finally:
            self._finish(record, started, error)

    def _read(
        self,
        identity: ResourceIdentity,
        prior: ObservedState | None,
        record: OperationProvenance,
    ) -> ReadResult:
        try:
            user = self._call(
                record, GET_USER, self._client.get_user, identity.pool_id, identity.username
            )
        except DirectoryNotFoundError:
            logger.warning("User is already gone", extra={"identity": str(identity)})
            record.drift_detected = True
            self._transition(record, LifecycleState.PRESENT, LifecycleState.ABSENT)
            return ReadResult(identity=identity, state=LifecycleState.ABSENT)
        except DirectoryError as e:
            raise RemoteCallFailed(GET_USER, identity, e.message) from e

        try:
            listed = self._call(
                record,
                LIST_GROUPS_FOR_USER,
                self._client.list_groups_for_user,
                identity.pool_id,
                identity.username,
            )
            listing = GroupListing(groups=frozenset(listed))
        except DirectoryError as e:
            logger.warning(
                "Could not list groups for user, keeping previous membership",
                extra={"identity": str(identity), "error": str(e)},
            )
            retained = prior.groups if prior is not None else frozenset()
            listing = GroupListing(
                groups=retained,
                status=GroupListingStatus.STALE,
                error=str(e),
            )

        observed = ObservedState(
            enabled=user.enabled,
            status=user.status,
            user_attributes=user.attributes,
            groups=listing.groups,
        )
        record.outcome = LifecycleState.PRESENT.value
        return ReadResult(
            identity=identity,
            state=LifecycleState.PRESENT,
            observed=observed,
            group_listing=listing,
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(
        self,
        identity: ResourceIdentity,
        previous: UserSpec | DesiredState,
        new: UserSpec | DesiredState,
        prior: ObservedState | None = None,
    ) -> ReadResult:
        """Converge an existing user from ``previous`` to ``new``.

        Raises:
            ConflictingFields: A declaration sets both passwords.
            ReplacementRequired: username, user pool or validation data changed.
            ResourceNotFound: The user disappeared while being updated.
            RemoteCallFailed: A call failed under the ABORT policy.
            PartialUpdateError: Calls failed under the CONTINUE policy; the
                remaining calls were issued and the user was read back.
        """
        started = time.monotonic()
        record = self._provenance.start("update", str(identity))
        error: Exception | None = None
        try:
            return self._update(
                identity, as_desired_state(previous), as_desired_state(new), prior, record
            )
        except Exception as e:
            error = e
            raise
        finally:
            self._finish(record, started, error)

    def _update(
        self,
        identity: ResourceIdentity,
        previous: DesiredState,
        desired: DesiredState,
        prior: ObservedState | None,
        record: OperationProvenance,
    ) -> ReadResult:
        changed = previous.immutable_changes(desired)
        if changed:
            raise ReplacementRequired(identity, changed)

        self._transition(record, LifecycleState.PRESENT, LifecycleState.UPDATING)
        failures: list[RemoteCallFailed] = []

        if attributes_changed(previous.user_attributes, desired.user_attributes):
            logger.info(
                "Updating user attributes",
                extra={"identity": str(identity), "attribute_count": len(desired.user_attributes)},
            )
            self._mutate(
                record,
                identity,
                failures,
                UPDATE_ATTRIBUTES,
                None,
                self._client.update_attributes,
                identity.pool_id,
                identity.username,
                desired.user_attributes,
            )

        delta = reconcile_sets(previous.groups, desired.groups)
        if not delta.is_empty:
            logger.info(
                "Updating group membership",
                extra={
                    "identity": str(identity),
                    "add": sorted(delta.to_add),
                    "remove": sorted(delta.to_remove),
                },
            )
        for op, group in delta.operations():
            if op is SetOperation.ADD:
                operation, fn = ADD_TO_GROUP, self._client.add_to_group
            else:
                operation, fn = REMOVE_FROM_GROUP, self._client.remove_from_group
            self._mutate(
                record,
                identity,
                failures,
                operation,
                group,
                fn,
                identity.pool_id,
                identity.username,
                group,
            )

        self._transition(record, LifecycleState.UPDATING, LifecycleState.PRESENT)
        result = self._read(identity, prior, record)
        if not result.present:
            raise ResourceNotFound("Update", identity)

        if failures:
            raise PartialUpdateError(identity, failures, result)
        return result

    def _mutate(
        self,
        record: OperationProvenance,
        identity: ResourceIdentity,
        failures: list[RemoteCallFailed],
        operation: str,
        detail: str | None,
        fn: Callable[..., Any],
        *args: Any,
    ) -> None:
        try:
            self._call(record, operation, fn, *args, detail=detail)
        except DirectoryNotFoundError as e:
            raise ResourceNotFound(operation, identity) from e
        except DirectoryError as e:
            message = f"group {detail}: {e.message}" if detail else e.message
            failure = RemoteCallFailed(operation, identity, message)
            if self._group_failure_policy is GroupFailurePolicy.ABORT:
                raise failure from e
            failure.__cause__ = e
            logger.error(
                "Remote call failed, continuing with remaining calls",
                extra={"identity": str(identity), "call": _call_label(operation, detail), "error": str(e)},
            )
            failures.append(failure)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, identity: ResourceIdentity) -> bool:
        """Delete the user. Idempotent.

        Returns:
            True if a user was deleted, False if it was already gone.

        Raises:
            RemoteCallFailed: DeleteUser failed with anything but not-found.
        """
        started = time.monotonic()
        record = self._provenance.start("delete", str(identity))
        error: Exception | None = None
        try:
            self._transition(record, LifecycleState.PRESENT, LifecycleState.DELETING)
            try:
                self._call(
                    record,
                    DELETE_USER,
                    self._client.delete_user,
                    identity.pool_id,
                    identity.username,
                )
            except DirectoryNotFoundError:
                logger.info("User already deleted", extra={"identity": str(identity)})
                self._transition(record, LifecycleState.DELETING, LifecycleState.ABSENT)
                return False
            except DirectoryError as e:
                raise RemoteCallFailed(DELETE_USER, identity, e.message) from e
            logger.info("Deleted user", extra={"identity": str(identity)})
            self._transition(record, LifecycleState.DELETING, LifecycleState.ABSENT)
            return True
        except Exception as e:
            error = e
            raise
        finally:
            self._finish(record, started, error)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_user(self, raw_id: str) -> ImportResult:
        """Adopt an existing user from its ``user_pool_id/username`` identifier.

        Raises:
            FormatError: The identifier is malformed.
            ResourceNotFound: No such user in the directory.
            RemoteCallFailed: GetUser failed.
        """
        started = time.monotonic()
        record = self._provenance.start("import", raw_id)
        error: Exception | None = None
        try:
            identity = decode_identity(raw_id)
            result = self._read(identity, None, record)
            if not result.present or result.observed is None:
                raise ResourceNotFound("Import", identity)
            desired = DesiredState(
                username=identity.username,
                pool_id=identity.pool_id,
                user_attributes=result.observed.user_attributes,
                groups=result.observed.groups,
            )
            logger.info("Imported user", extra={"identity": str(identity)})
            return ImportResult(desired=desired, read=result)
        except Exception as e:
            error = e
            raise
        finally:
            self._finish(record, started, error)

    # ------------------------------------------------------------------
    # Plan / apply
    # ------------------------------------------------------------------

    def plan(
        self,
        identity: ResourceIdentity | None,
        previous: UserSpec | DesiredState | None,
        new: UserSpec | DesiredState,
        current: ReadResult | None = None,
    ) -> Plan:
        """Decide how to converge without calling the directory.

        Args:
            identity: Identity of the managed user, None if never created.
            previous: Last applied declaration, None if unknown (e.g. imported).
            new: Declaration to converge to.
            current: A fresh read of ``identity``, if one was taken.

        Raises:
            ConflictingFields: A declaration sets both passwords.
        """
        desired = as_desired_state(new)

        if identity is None:
            return Plan(PlanAction.CREATE, self._create_calls(desired), ("not yet created",))
        if current is not None and not current.present:
            return Plan(PlanAction.CREATE, self._create_calls(desired), ("user no longer exists",))

        baseline = self._baseline(identity, previous, desired, current)
        changed = baseline.immutable_changes(desired)
        if changed:
            return Plan(
                PlanAction.REPLACE,
                (DELETE_USER, *self._create_calls(desired)),
                tuple(f"{name} changed" for name in changed),
            )

        calls: list[str] = []
        reasons: list[str] = []
        if attributes_changed(baseline.user_attributes, desired.user_attributes):
            calls.append(UPDATE_ATTRIBUTES)
            reasons.append("user_attributes changed")
        delta = reconcile_sets(baseline.groups, desired.groups)
        for op, group in delta.operations():
            name = ADD_TO_GROUP if op is SetOperation.ADD else REMOVE_FROM_GROUP
            calls.append(_call_label(name, group))
        if not delta.is_empty:
            reasons.append("groups changed")

        if not calls:
            return Plan(PlanAction.NOOP)
        return Plan(PlanAction.UPDATE, tuple(calls), tuple(reasons))

    @staticmethod
    def _create_calls(desired: DesiredState) -> tuple[str, ...]:
        calls = [CREATE_USER]
        calls.extend(_call_label(ADD_TO_GROUP, g) for g in sorted(desired.groups))
        if desired.password.kind is PasswordKind.PERMANENT:
            calls.append(SET_PASSWORD)
        return tuple(calls)

    @staticmethod
    def _baseline(
        identity: ResourceIdentity,
        previous: UserSpec | DesiredState | None,
        desired: DesiredState,
        current: ReadResult | None,
    ) -> DesiredState:
        """What the user is assumed to look like before converging.

        Without a previous declaration (an imported or partly created user)
        the observation stands in for it. A username that differs from the
        declared one only in case is the directory's normalization of it.
        """
        if previous is not None:
            return as_desired_state(previous)
        observed = current.observed if current is not None else None
        username = identity.username
        if username.casefold() == desired.username.casefold():
            username = desired.username
        return DesiredState(
            username=username,
            pool_id=identity.pool_id,
            validation_data=desired.validation_data,
            user_attributes=observed.user_attributes if observed else (),
            groups=observed.groups if observed else frozenset(),
        )

    def apply(
        self,
        identity: ResourceIdentity | None,
        previous: UserSpec | DesiredState | None,
        new: UserSpec | DesiredState,
        prior: ObservedState | None = None,
    ) -> ApplyResult:
        """Converge the directory to ``new``.

        Reads the user first when its identity is known, recreates it if it
        drifted away, replaces it when an immutable field changed and
        updates it in place otherwise.
        """
        desired = as_desired_state(new)
        current = self.read(identity, prior) if identity is not None else None
        plan = self.plan(identity, previous, desired, current)

        logger.info(
            "Applying plan",
            extra={
                "identity": str(identity or desired.identity),
                "action": plan.action.value,
                "calls": list(plan.calls),
                "reasons": list(plan.reasons),
            },
        )

        match plan.action:
            case PlanAction.CREATE:
                result = self.create(desired)
            case PlanAction.REPLACE if identity is not None:
                self.delete(identity)
                result = self.create(desired)
            case PlanAction.UPDATE if identity is not None and current is not None:
                baseline = self._baseline(identity, previous, desired, current)
                result = self.update(identity, baseline, desired, prior=current.observed)
            case PlanAction.NOOP if current is not None:
                result = current
            case _:
                raise RuntimeError(f"Cannot apply {plan.action.value} plan without an identity")

        return ApplyResult(plan=plan, read=result)
