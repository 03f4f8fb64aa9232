"""Configuration management with validation.

Constraints are enforced at configuration load time so that a
misconfigured operator fails at startup rather than mid-reconciliation.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TypeVar

_E = TypeVar("_E", bound=Enum)


class ReconciliationMode(str, Enum):
    """How drift is handled."""

    # Report planned calls only, never mutate the directory
    OBSERVE = "observe"
    # Apply planned calls
    ENFORCE = "enforce"


class GroupFailurePolicy(str, Enum):
    """What an update does when a single group call fails."""

    # Record the failure, issue the remaining calls, report all failures at the end
    CONTINUE = "continue"
    # Stop at the first failed call
    ABORT = "abort"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 60
MAX_RECONCILE_INTERVAL_SECONDS = 3600

# Limits
MAX_SPEC_FILE_SIZE_BYTES = 256 * 1024  # 256KB max spec file
MAX_STATE_FILE_SIZE_BYTES = 256 * 1024
MAX_SPECS_PER_CYCLE = 500

# Input validation patterns
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d+$"
VALID_ENDPOINT_PATTERN = r"^https?://[^\s]+$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    region: str

    # Paths
    specs_dir: Path = field(default_factory=lambda: Path("/specs"))
    state_dir: Path = field(default_factory=lambda: Path("/state"))

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS

    # Behavior
    mode: ReconciliationMode = ReconciliationMode.ENFORCE
    group_failure_policy: GroupFailurePolicy = GroupFailurePolicy.CONTINUE

    # Local directory emulators
    endpoint_url: str | None = None

    # Delete users whose declaration was removed from SPECS_DIR
    prune_removed: bool = False

    # Emit one provenance record per lifecycle operation
    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid region name: {self.region}")

        if self.endpoint_url and not re.match(VALID_ENDPOINT_PATTERN, self.endpoint_url):
            errors.append(f"ENDPOINT_URL must be an http(s) URL: {self.endpoint_url}")

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not self.specs_dir.exists():
            errors.append(f"Specs directory does not exist: {self.specs_dir}")

        if not self.state_dir.exists():
            errors.append(f"State directory does not exist: {self.state_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def dry_run(self) -> bool:
        return self.mode is ReconciliationMode.OBSERVE

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION: Region of the user pools (AWS_DEFAULT_REGION is used as fallback)
            SPECS_DIR: Path to YAML user declarations (default: /specs)
            STATE_DIR: Path to the identity state store (default: /state)
            RECONCILE_INTERVAL: Seconds between reconciliation loops (default: 300)
            RECONCILE_MODE: observe or enforce (default: enforce)
            GROUP_FAILURE_POLICY: continue or abort (default: continue)
            ENDPOINT_URL: Override the directory endpoint, e.g. a local emulator
            PRUNE_REMOVED: Delete users whose spec file was removed (default: false)
            ENABLE_AUDIT_LOGGING: Emit provenance records (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_enum(key: str, enum_cls: type[_E], default: _E) -> _E:
            value = os.environ.get(key)
            if not value:
                return default
            try:
                return enum_cls(value.lower())
            except ValueError as e:
                valid = [m.value for m in enum_cls]
                raise ConfigurationError(f"{key} must be one of {valid}: {value}") from e

        return cls(
            region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION", ""),
            specs_dir=Path(os.environ.get("SPECS_DIR", "/specs")),
            state_dir=Path(os.environ.get("STATE_DIR", "/state")),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            mode=get_enum("RECONCILE_MODE", ReconciliationMode, ReconciliationMode.ENFORCE),
            group_failure_policy=get_enum(
                "GROUP_FAILURE_POLICY", GroupFailurePolicy, GroupFailurePolicy.CONTINUE
            ),
            endpoint_url=os.environ.get("ENDPOINT_URL") or None,
            prune_removed=get_bool("PRUNE_REMOVED", False),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
