"""Error taxonomy for the user lifecycle.

Every error raised by the lifecycle carries enough context (operation name,
identity) for the caller to act on it. The remote client's own errors are
chained as ``__cause__`` so the remote error code and message stay available.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .identity import ResourceIdentity


class UserOperatorError(Exception):
    """Base class for lifecycle errors."""

    pass


class RemoteCallFailed(UserOperatorError):
    """A remote directory call failed with anything other than not-found."""

    def __init__(
        self,
        operation: str,
        identity: ResourceIdentity | str | None,
        detail: str,
    ) -> None:
        self.operation = operation
        self.identity = identity
        self.detail = detail
        target = f" for {identity}" if identity else ""
        super().__init__(f"{operation} failed{target}: {detail}")


class ResourceNotFound(UserOperatorError):
    """The remote user does not exist.

    Read and Delete treat this as drift to absent and never raise it.
    Update and Import do, since the resource they act on must exist.
    """

    def __init__(self, operation: str, identity: ResourceIdentity | str) -> None:
        self.operation = operation
        self.identity = identity
        super().__init__(f"{operation}: user {identity} no longer exists")


class FormatError(UserOperatorError, ValueError):
    """Malformed resource identifier."""

    pass


class ConflictingFields(UserOperatorError):
    """Mutually exclusive fields were supplied together."""

    def __init__(self, fields: tuple[str, ...]) -> None:
        self.fields = fields
        super().__init__(f"Fields are mutually exclusive, set at most one of: {', '.join(fields)}")


class ReplacementRequired(UserOperatorError):
    """An immutable field changed; the user must be destroyed and recreated."""

    def __init__(self, identity: ResourceIdentity | str, fields: tuple[str, ...]) -> None:
        self.identity = identity
        self.fields = fields
        super().__init__(
            f"Cannot update {identity} in place, immutable fields changed: {', '.join(fields)}"
        )


class PartialUpdateError(UserOperatorError):
    """An update completed but some of its remote calls failed.

    Attributes:
        failures: The individual call failures, in issue order.
        result: The read result taken after the update finished.
    """

    def __init__(
        self,
        identity: ResourceIdentity | str,
        failures: list[RemoteCallFailed],
        result: Any = None,
    ) -> None:
        self.identity = identity
        self.failures = failures
        self.result = result
        summary = "; ".join(str(f) for f in failures)
        super().__init__(f"Update of {identity} finished with {len(failures)} failed call(s): {summary}")
