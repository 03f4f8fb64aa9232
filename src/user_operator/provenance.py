"""Operation provenance tracking for audit.

Every lifecycle operation (create, read, update, delete, import, apply) is
stamped with a provenance record answering:
- "Which remote calls were issued against this user, in which order?"
- "What was the outcome, and which error stopped it?"
- "What version of the operator was running?"

Records are emitted as structured log entries so they can be queried
wherever the JSON logs end up.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
OPERATOR_VERSION = os.environ.get("OPERATOR_VERSION", "dev")


@dataclass
class OperationProvenance:
    """Provenance record for one lifecycle operation."""

    operation: str
    identity: str = ""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    operator_version: str = OPERATOR_VERSION

    # Remote calls in issue order, e.g. "AddToGroup:admins"
    remote_calls: list[str] = field(default_factory=list)
    failed_calls: list[str] = field(default_factory=list)

    # Outcome: the lifecycle state reached (present, absent)
    outcome: str = ""
    drift_detected: bool = False

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def record_call(self, call: str) -> None:
        self.remote_calls.append(call)

    def record_failure(self, call: str) -> None:
        self.failed_calls.append(call)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs provenance records.

    Disabled loggers still hand out records (so the lifecycle does not need
    to branch), they just never emit them.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._instance_id = os.environ.get("CONTAINER_INSTANCE_ID", "")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self, operation: str, identity: str = "") -> OperationProvenance:
        """Create a new record for an operation about to run."""
        return OperationProvenance(operation=operation, identity=identity)

    def log_provenance(self, provenance: OperationProvenance) -> None:
        """Log a completed provenance record."""
        if not self._enabled:
            return

        log_level = logging.INFO
        if provenance.error:
            log_level = logging.ERROR
        elif provenance.failed_calls or provenance.drift_detected:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Operation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "operation": provenance.operation,
                "identity": provenance.identity,
                "outcome": provenance.outcome,
                "remote_call_count": len(provenance.remote_calls),
                "drift_detected": provenance.drift_detected,
                "operator_version": provenance.operator_version,
                "instance_id": self._instance_id,
                "duration_seconds": provenance.duration_seconds,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
