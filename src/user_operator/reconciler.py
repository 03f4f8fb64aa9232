"""Reconciliation loop over a directory of user declarations.

Each cycle:
1. Discover YAML declarations in SPECS_DIR
2. For each, load the stored identity and last applied declaration
3. Plan (OBSERVE mode) or apply (ENFORCE mode) through the user lifecycle
4. Record the new identity and applied declaration in the state store
5. Optionally delete users whose declaration was removed
6. Wait for the interval or a shutdown signal

Specs are reconciled one after another; a failing spec is reported and the
cycle moves on to the next one. Shutdown takes effect between specs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from . import directory
from .config import Config, ReconciliationMode
from .directory import DirectoryClient
from .errors import (
    ConflictingFields,
    PartialUpdateError,
    RemoteCallFailed,
    ReplacementRequired,
    ResourceNotFound,
    UserOperatorError,
)
from .identity import ResourceIdentity
from .lifecycle import CREATE_USER, PlanAction, UserLifecycle
from .provenance import ProvenanceLogger
from .spec_loader import SpecLoadError, discover_specs, load_spec
from .state_store import StateStore, StateStoreError

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of reconciling one declaration."""

    spec_name: str
    mode: ReconciliationMode = ReconciliationMode.ENFORCE
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    identity: str | None = None
    action: PlanAction | None = None
    drift_found: bool = False
    calls_planned: int = 0
    changes_applied: bool = False
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


class Reconciler:
    """Drives every declaration in SPECS_DIR to convergence on an interval."""

    def __init__(
        self,
        config: Config,
        client: DirectoryClient | None = None,
        store: StateStore | None = None,
    ) -> None:
        """Initialize reconciler with configuration.

        Args:
            config: Validated operator configuration.
            client: Directory client, built from config when omitted.
            store: State store, defaults to one rooted at STATE_DIR.
        """
        self._config = config
        if client is None:
            client = directory.create_directory_client(config.region, config.endpoint_url)
        self._client = client
        self._lifecycle = UserLifecycle(
            self._client,
            group_failure_policy=config.group_failure_policy,
            provenance=ProvenanceLogger(enabled=config.enable_audit_logging),
        )
        self._store = store if store is not None else StateStore(config.state_dir)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    @property
    def lifecycle(self) -> UserLifecycle:
        return self._lifecycle

    @property
    def store(self) -> StateStore:
        return self._store

    async def run(self) -> None:
        """Run the reconciliation loop until shutdown."""
        logger.info(
            "Starting reconciler",
            extra={
                "specs_dir": str(self._config.specs_dir),
                "mode": self._config.mode.value,
                "interval_seconds": self._config.reconcile_interval_seconds,
                "group_failure_policy": self._config.group_failure_policy.value,
            },
        )

        loop = asyncio.get_running_loop()
        while not self._shutdown_event.is_set():
            # Directory calls block; keep them off the event loop
            results = await loop.run_in_executor(None, self.reconcile_all)
            for result in results:
                self._log_result(result)

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._config.reconcile_interval_seconds,
                )
            except TimeoutError:
                # Normal timeout, continue to next cycle
                pass

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def reconcile_all(self) -> list[ReconcileResult]:
        """Run one cycle over every declaration."""
        try:
            specs = discover_specs(self._config.specs_dir)
        except SpecLoadError as e:
            logger.error("Failed to discover specs", extra={"error": str(e)})
            result = ReconcileResult(spec_name="*", mode=self._config.mode, error=e)
            result.end_time = datetime.now(UTC)
            return [result]

        results: list[ReconcileResult] = []
        for name, path in specs.items():
            if self._shutdown_event.is_set():
                break
            results.append(self.reconcile_spec(name, path))

        if self._config.prune_removed and not self._shutdown_event.is_set():
            results.extend(self._prune(set(specs)))

        return results

    def reconcile_spec(self, name: str, path: Path) -> ReconcileResult:
        """Converge one declaration, never raising."""
        result = ReconcileResult(spec_name=name, mode=self._config.mode)

        try:
            spec = load_spec(path)
            stored = self._store.load(name)
            identity = stored.identity if stored is not None else None
            previous = stored.applied if stored is not None else None

            if self._config.dry_run:
                current = self._lifecycle.read(identity) if identity is not None else None
                plan = self._lifecycle.plan(identity, previous, spec, current)
                result.identity = str(identity) if identity else None
                result.action = plan.action
                result.drift_found = plan.has_changes
                result.calls_planned = len(plan.calls)
                if plan.has_changes:
                    logger.info(
                        "OBSERVE mode: drift reported but not remediated",
                        extra={
                            "spec": name,
                            "action": plan.action.value,
                            "calls": list(plan.calls),
                        },
                    )
            else:
                try:
                    applied = self._lifecycle.apply(identity, previous, spec)
                except RemoteCallFailed as e:
                    self._remember_partial_create(name, identity, e)
                    raise
                result.identity = str(applied.identity)
                result.action = applied.plan.action
                result.drift_found = applied.plan.has_changes
                result.calls_planned = len(applied.plan.calls)
                result.changes_applied = applied.plan.has_changes
                self._store.save(name, applied.identity, spec)

        except SpecLoadError as e:
            logger.error("Failed to load spec", extra={"spec": name, "error": str(e)})
            result.error = e
        except StateStoreError as e:
            logger.error("State store error", extra={"spec": name, "error": str(e)})
            result.error = e
        except ConflictingFields as e:
            logger.error("Conflicting fields in spec", extra={"spec": name, "error": str(e)})
            result.error = e
        except PartialUpdateError as e:
            # Keep the previous declaration stored so the failed calls are planned again
            logger.warning(
                "Update partially applied",
                extra={"spec": name, "failed_calls": len(e.failures), "error": str(e)},
            )
            result.identity = str(e.identity)
            result.error = e
        except ReplacementRequired as e:
            logger.error("Replacement required", extra={"spec": name, "error": str(e)})
            result.error = e
        except ResourceNotFound as e:
            logger.warning("User disappeared during reconciliation", extra={"spec": name})
            result.error = e
        except RemoteCallFailed as e:
            logger.error(
                "Directory call failed",
                extra={"spec": name, "operation": e.operation, "error": str(e)},
            )
            result.error = e
        except UserOperatorError as e:
            logger.error("Reconciliation failed", extra={"spec": name, "error": str(e)})
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation", extra={"spec": name})
            result.error = e

        result.end_time = datetime.now(UTC)
        return result

    def _remember_partial_create(
        self,
        name: str,
        known: ResourceIdentity | None,
        error: RemoteCallFailed,
    ) -> None:
        """Record a user that was created before a later creation step failed.

        The stored record has no applied declaration, so the next cycle reads
        the user and converges it from what it observes.
        """
        if error.operation == CREATE_USER or not isinstance(error.identity, ResourceIdentity):
            return
        if error.identity == known:
            return
        logger.warning(
            "User created but not fully configured",
            extra={"spec": name, "identity": str(error.identity), "operation": error.operation},
        )
        try:
            self._store.save(name, error.identity, None)
        except StateStoreError as e:
            logger.error("Failed to record partially created user", extra={"error": str(e)})

    def _prune(self, declared: set[str]) -> list[ReconcileResult]:
        """Delete users whose declaration is gone."""
        results: list[ReconcileResult] = []
        for name in self._store.names():
            if name in declared or self._shutdown_event.is_set():
                continue
            result = ReconcileResult(spec_name=name, mode=self._config.mode, action=PlanAction.DELETE)
            try:
                stored = self._store.load(name)
                if stored is not None:
                    result.identity = str(stored.identity)
                    result.drift_found = True
                    result.calls_planned = 1
                    if self._config.dry_run:
                        logger.info(
                            "OBSERVE mode: removed spec reported but user kept",
                            extra={"spec": name, "identity": str(stored.identity)},
                        )
                    else:
                        self._lifecycle.delete(stored.identity)
                        self._store.delete(name)
                        result.changes_applied = True
            except (StateStoreError, UserOperatorError) as e:
                logger.error("Failed to prune user", extra={"spec": name, "error": str(e)})
                result.error = e
            result.end_time = datetime.now(UTC)
            results.append(result)
        return results

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result."""
        extra = {
            "spec": result.spec_name,
            "identity": result.identity,
            "mode": result.mode.value,
            "action": result.action.value if result.action else None,
            "drift_found": result.drift_found,
            "changes_applied": result.changes_applied,
            "duration_seconds": result.duration_seconds,
        }
        if result.success:
            logger.info("Reconciliation cycle complete", extra=extra)
        else:
            logger.error(
                "Reconciliation cycle failed",
                extra={**extra, "error": str(result.error), "error_type": type(result.error).__name__},
            )
