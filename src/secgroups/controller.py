"""Periodic control loop around the security group reconciler.

Each cycle:
1. Acquire the lock for the configured scope
2. List the provider's security groups
3. Reconcile the store against that snapshot
4. Optionally mark renamed groups dirty so dependents re-sync
5. Log a provenance record for the run

A failed cycle never stops the loop. After MAX_CONSECUTIVE_FAILURES failed
cycles the circuit breaker opens and cycles pause for
CIRCUIT_BREAKER_RESET_SECONDS.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta

from .config import Config
from .errors import SecurityGroupError
from .locks import ScopeLockRegistry
from .provenance import ProvenanceLogger
from .provider import ProviderView
from .reconciler import SecurityGroupReconciler, SyncOutcome
from .service import SecurityGroupService

logger = logging.getLogger(__name__)

# Circuit breaker constants
MAX_CONSECUTIVE_FAILURES = 5
CIRCUIT_BREAKER_RESET_SECONDS = 300  # 5 minutes


class SyncController:
    """Runs reconciliation cycles at the configured interval until shutdown."""

    def __init__(
        self,
        config: Config,
        reconciler: SecurityGroupReconciler,
        provider: ProviderView,
        locks: ScopeLockRegistry,
        provenance_logger: ProvenanceLogger,
        service: SecurityGroupService | None = None,
        provider_name: str = "azure",
    ) -> None:
        self._config = config
        self._reconciler = reconciler
        self._provider = provider
        self._locks = locks
        self._provenance = provenance_logger
        self._service = service
        self._provider_name = provider_name

        self._shutdown_event = asyncio.Event()

        # Circuit breaker state
        self._consecutive_failures = 0
        self._circuit_open_until: datetime | None = None

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def circuit_open(self) -> bool:
        return self._circuit_open_until is not None

    async def reconcile_once(self) -> SyncOutcome:
        """Execute a single reconciliation cycle.

        Hard failures (provider listing, store listing, identity conflict,
        scope lock timeout) do not raise: they come back as an outcome
        whose result status is FAILED.
        """
        provenance = self._provenance.create_provenance(
            project_id=self._config.project_id,
            scope_key=self._config.scope_key,
            provider=self._provider_name,
        )
        start_time = time.monotonic()

        try:
            async with self._locks.hold(self._config.scope_key):
                remote_groups = await self._provider.list_security_groups()
                provenance.remote_count = len(remote_groups)
                outcome = self._reconciler.sync_security_groups(remote_groups)
                if self._config.notify_on_sync and self._service is not None:
                    self._notify_changed(self._service, outcome)
        except SecurityGroupError as e:
            logger.error(
                "Reconciliation run failed",
                extra={
                    "scope_key": self._config.scope_key,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            outcome = SyncOutcome()
            outcome.result.error(e)
            provenance.error_type = type(e).__name__
        else:
            provenance.local_count = len(outcome.local_groups)
            provenance.removed_count = len(outcome.removed)

        provenance.record_result(outcome.result)
        provenance.duration_seconds = round(time.monotonic() - start_time, 3)
        self._provenance.log_provenance(provenance)
        return outcome

    def _notify_changed(self, service: SecurityGroupService, outcome: SyncOutcome) -> None:
        """Mark every group whose synced fields changed as dirty.

        Called with the scope lock held.
        """
        for group_id in outcome.changed_group_ids:
            try:
                service.mark_dirty(group_id)
            except SecurityGroupError as e:
                logger.warning(
                    "Could not notify dependents of renamed security group",
                    extra={"group_id": group_id, "error": str(e)},
                )

    def _record_cycle(self, outcome: SyncOutcome) -> None:
        """Update circuit breaker state after a cycle."""
        if outcome.result.is_error:
            self._consecutive_failures += 1
            if self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                self._circuit_open_until = datetime.now(UTC) + timedelta(
                    seconds=CIRCUIT_BREAKER_RESET_SECONDS
                )
                logger.error(
                    "Circuit breaker opened after consecutive failures",
                    extra={
                        "scope_key": self._config.scope_key,
                        "consecutive_failures": self._consecutive_failures,
                        "reset_seconds": CIRCUIT_BREAKER_RESET_SECONDS,
                    },
                )
        else:
            self._consecutive_failures = 0

    async def _wait(self, timeout: float) -> None:
        """Sleep until timeout or shutdown, whichever comes first."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            pass

    async def run(self) -> None:
        """Run reconciliation cycles until shutdown is requested."""
        logger.info(
            "Starting security group sync",
            extra={
                "project_id": self._config.project_id,
                "scope_key": self._config.scope_key,
                "provider": self._provider_name,
                "interval_seconds": self._config.reconcile_interval_seconds,
            },
        )

        while not self._shutdown_event.is_set():
            if self._circuit_open_until is not None:
                now = datetime.now(UTC)
                if now < self._circuit_open_until:
                    remaining = (self._circuit_open_until - now).total_seconds()
                    logger.warning(
                        "Circuit breaker open, skipping reconciliation",
                        extra={
                            "scope_key": self._config.scope_key,
                            "remaining_seconds": remaining,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )
                    await self._wait(min(remaining, self._config.reconcile_interval_seconds))
                    continue

                logger.info(
                    "Circuit breaker reset, resuming reconciliation",
                    extra={"scope_key": self._config.scope_key},
                )
                self._circuit_open_until = None
                self._consecutive_failures = 0

            outcome = await self.reconcile_once()
            self._record_cycle(outcome)

            await self._wait(self._config.reconcile_interval_seconds)

        logger.info("Security group sync stopped", extra={"scope_key": self._config.scope_key})

    def shutdown(self) -> None:
        """Signal the loop to stop."""
        logger.info("Shutdown requested", extra={"scope_key": self._config.scope_key})
        self._shutdown_event.set()
