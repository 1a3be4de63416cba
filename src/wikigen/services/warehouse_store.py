"""Persistence for warehouses, their materialized documents and overviews."""

from datetime import datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from wikigen.errors import NotFoundError, ValidationError
from wikigen.models.base import restore_utc, utc_now
from wikigen.models.document import Document, DocumentOverview
from wikigen.models.enums import ClassifyType, WarehouseStatus
from wikigen.models.tables import DocumentOverviewRecord, DocumentRecord, WarehouseRecord
from wikigen.models.warehouse import Warehouse


class WarehouseStore:
    """Reads and mutates warehouse and document rows.

    Accepts an AsyncEngine via dependency injection so tests can point it at a
    throwaway SQLite file.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    async def register_warehouse(self, warehouse: Warehouse) -> Warehouse:
        """Insert a new warehouse.

        Raises:
            ValidationError: If (organization, name, branch) is already tracked.
        """
        record = self._warehouse_to_record(warehouse)
        async with AsyncSession(self._engine) as session:
            duplicate = await session.execute(
                select(WarehouseRecord.warehouse_id).where(
                    WarehouseRecord.organization_name == warehouse.organization_name,
                    WarehouseRecord.name == warehouse.name,
                    WarehouseRecord.branch == warehouse.branch,
                )
            )
            if duplicate.first() is not None:
                raise ValidationError(
                    f"Warehouse {warehouse.organization_name}/{warehouse.name}@{warehouse.branch} already exists"
                )
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                raise ValidationError(
                    f"Warehouse {warehouse.organization_name}/{warehouse.name}@{warehouse.branch} already exists"
                ) from exc
        self._logger.info(
            "warehouse_registered",
            warehouse_id=warehouse.warehouse_id,
            organization=warehouse.organization_name,
            name=warehouse.name,
            branch=warehouse.branch,
        )
        return warehouse

    async def get_warehouse(self, warehouse_id: str) -> Warehouse | None:
        async with AsyncSession(self._engine) as session:
            record = await session.get(WarehouseRecord, warehouse_id)
            if record is None:
                return None
            return self._record_to_warehouse(record)

    async def require_warehouse(self, warehouse_id: str) -> Warehouse:
        warehouse = await self.get_warehouse(warehouse_id)
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        return warehouse

    async def list_warehouses(self, status: WarehouseStatus | None = None) -> list[Warehouse]:
        async with AsyncSession(self._engine) as session:
            statement = select(WarehouseRecord).order_by(WarehouseRecord.created_at)
            if status is not None:
                statement = statement.where(WarehouseRecord.status == status.value)
            result = await session.execute(statement)
            return [self._record_to_warehouse(r) for r in result.scalars().all()]

    async def update_status(
        self,
        warehouse_id: str,
        status: WarehouseStatus,
        error: str | None = None,
    ) -> None:
        await self._update_warehouse(warehouse_id, status=status.value, error=error)
        self._logger.info("warehouse_status_updated", warehouse_id=warehouse_id, status=status.value)

    async def set_classification(self, warehouse_id: str, classify: ClassifyType | None) -> None:
        await self._update_warehouse(warehouse_id, classify=classify.value if classify else None)

    async def advance_version(self, warehouse_id: str, version: str) -> None:
        """Record the commit the wiki now reflects."""
        await self._update_warehouse(warehouse_id, version=version)
        self._logger.info("warehouse_version_advanced", warehouse_id=warehouse_id, version=version)

    async def save_document(self, document: Document) -> Document:
        """Upsert the document row keyed by warehouse."""
        record = self._document_to_record(document)
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                select(DocumentRecord).where(DocumentRecord.warehouse_id == document.warehouse_id)
            )
            existing = result.scalar_one_or_none()
            if existing:
                existing.git_path = record.git_path
                existing.last_update = record.last_update
                stored = existing
            else:
                session.add(record)
                stored = record
            await session.commit()
            await session.refresh(stored)
            saved = self._record_to_document(stored)
        self._logger.debug("document_saved", warehouse_id=document.warehouse_id, git_path=document.git_path)
        return saved

    async def get_document(self, warehouse_id: str) -> Document | None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(select(DocumentRecord).where(DocumentRecord.warehouse_id == warehouse_id))
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return self._record_to_document(record)

    async def touch_document(self, warehouse_id: str, when: datetime | None = None) -> None:
        """Bump Document.last_update to mark the wiki as freshly synced."""
        async with AsyncSession(self._engine) as session:
            await session.execute(
                update(DocumentRecord)
                .where(DocumentRecord.warehouse_id == warehouse_id)
                .values(last_update=when or utc_now())
            )
            await session.commit()

    async def save_overview(self, overview: DocumentOverview) -> DocumentOverview:
        """Replace the document's overview in one transaction."""
        async with AsyncSession(self._engine) as session:
            async with session.begin():
                await session.execute(
                    delete(DocumentOverviewRecord).where(DocumentOverviewRecord.document_id == overview.document_id)
                )
                session.add(DocumentOverviewRecord.model_validate(overview.model_dump()))
        self._logger.info(
            "overview_saved",
            warehouse_id=overview.warehouse_id,
            document_id=overview.document_id,
            content_length=len(overview.content),
        )
        return overview

    async def get_overview(self, warehouse_id: str) -> DocumentOverview | None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                select(DocumentOverviewRecord).where(DocumentOverviewRecord.warehouse_id == warehouse_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return DocumentOverview.model_validate(restore_utc(record.model_dump(), "created_at"))

    async def list_sync_candidates(self, stale_before: datetime) -> list[Warehouse]:
        """Completed, sync-enabled warehouses whose document is older than ``stale_before``."""
        async with AsyncSession(self._engine) as session:
            statement = (
                select(WarehouseRecord)
                .join(DocumentRecord, DocumentRecord.warehouse_id == WarehouseRecord.warehouse_id)
                .where(
                    WarehouseRecord.status == WarehouseStatus.COMPLETED.value,
                    WarehouseRecord.enable_sync.is_(True),
                    DocumentRecord.last_update < stale_before,
                )
                .order_by(DocumentRecord.last_update)
            )
            result = await session.execute(statement)
            return [self._record_to_warehouse(r) for r in result.scalars().all()]

    async def _update_warehouse(self, warehouse_id: str, **values: object) -> None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(WarehouseRecord).where(WarehouseRecord.warehouse_id == warehouse_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Warehouse {warehouse_id} not found")
            await session.commit()

    def _warehouse_to_record(self, warehouse: Warehouse) -> WarehouseRecord:
        data = warehouse.model_dump()
        data["type"] = warehouse.type.value
        data["status"] = warehouse.status.value
        data["classify"] = warehouse.classify.value if warehouse.classify else None
        return WarehouseRecord.model_validate(data)

    def _record_to_warehouse(self, record: WarehouseRecord) -> Warehouse:
        # Pydantic turns the stored strings back into enums.
        data = restore_utc(record.model_dump(), "created_at")
        return Warehouse.model_validate(data)

    def _document_to_record(self, document: Document) -> DocumentRecord:
        return DocumentRecord.model_validate(document.model_dump())

    def _record_to_document(self, record: DocumentRecord) -> Document:
        data = restore_utc(record.model_dump(), "last_update", "created_at")
        return Document.model_validate(data)
