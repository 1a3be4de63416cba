"""Append/finalize ledger of warehouse sync attempts.

An ``in_progress`` row is the cooperative lock for a warehouse. The check and
the insert race between service instances, so the partial unique index on
``(warehouse_id) WHERE status = 'in_progress'`` makes the loser fail at commit
time; that failure surfaces as ConcurrencyConflictError. Finalization is a
conditional update on ``status = 'in_progress'``, so a row can only ever be
finalized once.
"""

from datetime import datetime
from uuid import uuid4

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from wikigen.errors import ConcurrencyConflictError, LedgerStateError
from wikigen.models.base import restore_utc, utc_now
from wikigen.models.enums import SyncStatus, SyncTrigger
from wikigen.models.sync_record import FileChanges, WarehouseSyncRecord
from wikigen.models.tables import SyncRecordRow

_TIMESTAMP_FIELDS = ("start_time", "end_time", "created_at")


class SyncLedger:
    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    async def begin(
        self,
        warehouse_id: str,
        trigger: SyncTrigger,
        from_version: str | None,
    ) -> WarehouseSyncRecord:
        """Open an ``in_progress`` record for a warehouse.

        Raises:
            ConcurrencyConflictError: If a sync is already running for it.
        """
        record = WarehouseSyncRecord(
            record_id=str(uuid4()),
            warehouse_id=warehouse_id,
            status=SyncStatus.IN_PROGRESS,
            trigger=trigger,
            from_version=from_version,
        )
        async with AsyncSession(self._engine) as session:
            running = await session.execute(
                select(SyncRecordRow.record_id).where(
                    SyncRecordRow.warehouse_id == warehouse_id,
                    SyncRecordRow.status == SyncStatus.IN_PROGRESS.value,
                )
            )
            if running.first() is not None:
                self._logger.info("sync_already_running", warehouse_id=warehouse_id)
                raise ConcurrencyConflictError(warehouse_id)
            session.add(self._record_to_row(record))
            try:
                await session.commit()
            except IntegrityError as exc:
                self._logger.info("sync_begin_lost_race", warehouse_id=warehouse_id)
                raise ConcurrencyConflictError(warehouse_id) from exc

        self._logger.info(
            "sync_record_opened",
            record_id=record.record_id,
            warehouse_id=warehouse_id,
            trigger=trigger.value,
            from_version=from_version,
        )
        return record

    async def finalize(
        self,
        record_id: str,
        status: SyncStatus,
        to_version: str | None = None,
        error_message: str | None = None,
        changes: FileChanges | None = None,
    ) -> WarehouseSyncRecord:
        """Close a running record as ``success`` or ``failed``.

        Raises:
            ValueError: If ``status`` is ``in_progress``.
            LedgerStateError: If the record is missing or already finalized.
        """
        if status == SyncStatus.IN_PROGRESS:
            raise ValueError("a sync record can only be finalized as success or failed")

        changes = changes or FileChanges()
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(SyncRecordRow)
                .where(
                    SyncRecordRow.record_id == record_id,
                    SyncRecordRow.status == SyncStatus.IN_PROGRESS.value,
                )
                .values(
                    status=status.value,
                    end_time=utc_now(),
                    to_version=to_version,
                    error_message=error_message,
                    file_count=changes.total,
                    updated_file_count=len(changes.modified),
                    added_file_count=len(changes.added),
                    deleted_file_count=len(changes.deleted),
                )
            )
            if result.rowcount == 0:
                raise LedgerStateError(f"Sync record {record_id} is missing or already finalized")
            await session.commit()
            row = await session.get(SyncRecordRow, record_id)
            finalized = self._row_to_record(row)

        self._logger.info(
            "sync_record_finalized",
            record_id=record_id,
            warehouse_id=finalized.warehouse_id,
            status=status.value,
            to_version=to_version,
            file_count=finalized.file_count,
        )
        return finalized

    async def get(self, record_id: str) -> WarehouseSyncRecord | None:
        async with AsyncSession(self._engine) as session:
            row = await session.get(SyncRecordRow, record_id)
            return self._row_to_record(row) if row is not None else None

    async def get_running(self, warehouse_id: str) -> WarehouseSyncRecord | None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                select(SyncRecordRow).where(
                    SyncRecordRow.warehouse_id == warehouse_id,
                    SyncRecordRow.status == SyncStatus.IN_PROGRESS.value,
                )
            )
            row = result.scalar_one_or_none()
            return self._row_to_record(row) if row is not None else None

    async def is_running(self, warehouse_id: str) -> bool:
        return await self.get_running(warehouse_id) is not None

    async def list_records(self, warehouse_id: str, limit: int = 20) -> list[WarehouseSyncRecord]:
        """Most recent attempts first."""
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                select(SyncRecordRow)
                .where(SyncRecordRow.warehouse_id == warehouse_id)
                .order_by(SyncRecordRow.start_time.desc())
                .limit(limit)
            )
            return [self._row_to_record(r) for r in result.scalars().all()]

    async def recover_stale(self, started_before: datetime) -> list[WarehouseSyncRecord]:
        """Fail running records that started before ``started_before``."""
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                select(SyncRecordRow.record_id).where(
                    SyncRecordRow.status == SyncStatus.IN_PROGRESS.value,
                    SyncRecordRow.start_time < started_before,
                )
            )
            stale_ids = list(result.scalars().all())

        recovered = []
        for record_id in stale_ids:
            try:
                recovered.append(
                    await self.finalize(
                        record_id,
                        SyncStatus.FAILED,
                        error_message="Sync abandoned: no progress before the stale deadline",
                    )
                )
            except LedgerStateError:
                # Finished on its own between the select and the update.
                continue
        if recovered:
            self._logger.warning("stale_syncs_recovered", count=len(recovered))
        return recovered

    def _record_to_row(self, record: WarehouseSyncRecord) -> SyncRecordRow:
        data = record.model_dump()
        data["status"] = record.status.value
        data["trigger"] = record.trigger.value
        return SyncRecordRow.model_validate(data)

    def _row_to_record(self, row: SyncRecordRow) -> WarehouseSyncRecord:
        data = restore_utc(row.model_dump(), *_TIMESTAMP_FIELDS)
        return WarehouseSyncRecord.model_validate(data)
