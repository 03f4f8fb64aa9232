"""On-disk record of managed users.

For each declaration the store keeps the durable identity
(``user_pool_id/username``) and the last applied declaration, which is the
"previous desired state" of the next reconciliation. Passwords are never
written.

Files are JSON, one per spec name, replaced atomically.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import MAX_STATE_FILE_SIZE_BYTES
from .identity import ResourceIdentity, decode_identity
from .models import UserSpec

logger = logging.getLogger(__name__)

STATE_FILE_SUFFIX = ".json"
STATE_FORMAT_VERSION = 1

# Spec names become file names
VALID_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$"


class StateStoreError(Exception):
    """Raised when the state store cannot be read or written."""

    pass


@dataclass(frozen=True)
class StoredResource:
    """What is remembered about one managed user."""

    name: str
    identity: ResourceIdentity
    applied: UserSpec | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_FORMAT_VERSION,
            "name": self.name,
            "id": str(self.identity),
            "applied": self.applied.to_stored_dict() if self.applied is not None else None,
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredResource:
        applied = data.get("applied")
        return cls(
            name=data["name"],
            identity=decode_identity(data["id"]),
            applied=UserSpec.model_validate(applied) if applied is not None else None,
            updated_at=datetime.fromisoformat(data["updatedAt"]),
        )


class StateStore:
    """Directory of per-spec state files."""

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def _path(self, name: str) -> Path:
        if not re.match(VALID_NAME_PATTERN, name):
            raise StateStoreError(f"Invalid spec name for state store: {name!r}")
        return self._state_dir / f"{name}{STATE_FILE_SUFFIX}"

    def names(self) -> list[str]:
        """Names of all stored resources."""
        if not self._state_dir.is_dir():
            return []
        return sorted(p.stem for p in self._state_dir.glob(f"*{STATE_FILE_SUFFIX}"))

    def load(self, name: str) -> StoredResource | None:
        """Load the record for ``name``, None if there is none.

        Raises:
            StateStoreError: If the file exists but cannot be parsed.
        """
        path = self._path(name)
        if not path.exists():
            return None

        try:
            if path.stat().st_size > MAX_STATE_FILE_SIZE_BYTES:
                raise StateStoreError(
                    f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: {path}"
                )
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StateStoreError(f"Failed to read state file {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Invalid JSON in state file {path}: {e}") from e

        if not isinstance(data, dict):
            raise StateStoreError(f"State file must contain a JSON object: {path}")

        try:
            return StoredResource.from_dict(data)
        except (KeyError, ValueError) as e:
            raise StateStoreError(f"Corrupt state file {path}: {e}") from e

    def save(
        self,
        name: str,
        identity: ResourceIdentity,
        applied: UserSpec | None,
    ) -> StoredResource:
        """Record ``identity`` and the declaration just applied to it."""
        record = StoredResource(name=name, identity=identity, applied=applied)
        path = self._path(name)
        tmp_path = path.with_suffix(f"{STATE_FILE_SUFFIX}.tmp")
        try:
            tmp_path.write_text(json.dumps(record.to_dict(), indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise StateStoreError(f"Failed to write state file {path}: {e}") from e

        logger.debug("Saved state", extra={"spec": name, "identity": str(identity)})
        return record

    def delete(self, name: str) -> bool:
        """Forget ``name``. Returns False if nothing was stored."""
        path = self._path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StateStoreError(f"Failed to delete state file {path}: {e}") from e
        logger.debug("Deleted state", extra={"spec": name})
        return True
