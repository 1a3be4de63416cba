"""Periodic trigger for scheduled syncs."""

import asyncio
from datetime import timedelta

import structlog
from pydantic import BaseModel, Field

from wikigen.errors import ConcurrencyConflictError
from wikigen.models.base import utc_now
from wikigen.models.enums import SyncTrigger
from wikigen.services.orchestrator import SyncOrchestrator
from wikigen.services.sync_ledger import SyncLedger
from wikigen.services.warehouse_store import WarehouseStore


class SchedulerPass(BaseModel):
    """What one scheduler iteration did."""

    recovered: int = Field(default=0, ge=0)
    started: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class SyncScheduler:
    def __init__(
        self,
        warehouse_store: WarehouseStore,
        ledger: SyncLedger,
        orchestrator: SyncOrchestrator,
        update_interval: timedelta = timedelta(days=5),
        stale_after: timedelta = timedelta(minutes=180),
        poll_seconds: float = 60.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._warehouses = warehouse_store
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._update_interval = update_interval
        self._stale_after = stale_after
        self._poll_seconds = poll_seconds
        self._logger = logger or structlog.get_logger(__name__)

    async def run_once(self) -> SchedulerPass:
        """Recover abandoned syncs, then start a sync for every stale warehouse."""
        now = utc_now()
        recovered = await self._ledger.recover_stale(now - self._stale_after)
        candidates = await self._warehouses.list_sync_candidates(now - self._update_interval)

        started: list[str] = []
        skipped: list[str] = []
        for warehouse in candidates:
            try:
                if await self._orchestrator.sync_warehouse(warehouse.warehouse_id, SyncTrigger.SCHEDULED):
                    started.append(warehouse.warehouse_id)
                else:
                    skipped.append(warehouse.warehouse_id)
            except ConcurrencyConflictError:
                self._logger.info("scheduled_sync_skipped_running", warehouse_id=warehouse.warehouse_id)
                skipped.append(warehouse.warehouse_id)

        self._logger.info(
            "scheduler_pass_completed",
            recovered=len(recovered),
            candidates=len(candidates),
            started=len(started),
        )
        return SchedulerPass(recovered=len(recovered), started=started, skipped=skipped)

    async def run_forever(self) -> None:
        """Poll until cancelled. An iteration that fails is logged and retried next poll."""
        while True:
            try:
                await self.run_once()
            except Exception as exc:
                self._logger.error("scheduler_pass_failed", error=str(exc), error_type=type(exc).__name__)
            await asyncio.sleep(self._poll_seconds)
