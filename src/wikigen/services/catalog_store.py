"""Catalog tree store: catalog rows, their generated page, and its provenance.

Uses native async SQLAlchemy with aiosqlite. Every mutation that must be
observed as a unit (a page together with its sources) runs inside one
``session.begin()`` block, so readers see either the old or the new state.
"""

from collections.abc import Iterable
from pathlib import PurePosixPath

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from wikigen.errors import NotFoundError, ValidationError
from wikigen.models.base import restore_utc, utc_now
from wikigen.models.catalog import CatalogTreeNode, DocumentCatalog
from wikigen.models.file_item import DocumentFileItem, DocumentFileItemSource
from wikigen.models.tables import CatalogRecord, FileItemRecord, FileItemSourceRecord
from wikigen.services.catalog_tree import build_forest

# Bound on bound parameters per IN clause; SQLite caps the expression tree depth.
_ADDRESS_BATCH_SIZE = 500


class CatalogStore:
    """Persists catalog nodes and the one page each node owns."""

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    async def create_catalog(self, catalog: DocumentCatalog) -> DocumentCatalog:
        """Insert one catalog node.

        Raises:
            ValidationError: If a live node in the same warehouse already uses
                the name or url. Nothing is written in that case.
        """
        async with AsyncSession(self._engine) as session:
            async with session.begin():
                conflict = await self._find_conflict(session, catalog.warehouse_id, catalog.name, catalog.url)
                if conflict is not None:
                    raise ValidationError(conflict)
                session.add(self._catalog_to_record(catalog))
                try:
                    await session.flush()
                except IntegrityError as exc:
                    raise ValidationError(
                        f"Catalog name '{catalog.name}' or url '{catalog.url}' already exists in warehouse"
                    ) from exc
        self._logger.info(
            "catalog_created",
            catalog_id=catalog.catalog_id,
            warehouse_id=catalog.warehouse_id,
            url=catalog.url,
        )
        return catalog

    async def insert_catalogs(self, catalogs: list[DocumentCatalog]) -> None:
        """Insert a batch of planned nodes in one transaction.

        Callers de-duplicate names and urls up front (see ``taken_keys``); a
        collision here still rolls the whole batch back.
        """
        if not catalogs:
            return
        async with AsyncSession(self._engine) as session:
            try:
                async with session.begin():
                    session.add_all([self._catalog_to_record(c) for c in catalogs])
            except IntegrityError as exc:
                raise ValidationError("Catalog batch contains a duplicate name or url") from exc
        self._logger.debug(
            "catalogs_inserted",
            warehouse_id=catalogs[0].warehouse_id,
            count=len(catalogs),
        )

    async def taken_keys(self, warehouse_id: str) -> tuple[set[str], set[str]]:
        """Names and urls already used by live nodes of a warehouse."""
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                select(CatalogRecord.name, CatalogRecord.url).where(
                    CatalogRecord.warehouse_id == warehouse_id,
                    CatalogRecord.is_deleted.is_(False),
                )
            )
            rows = result.all()
        return {row.name for row in rows}, {row.url for row in rows}

    async def get_catalog(self, catalog_id: str) -> DocumentCatalog | None:
        async with AsyncSession(self._engine) as session:
            record = await session.get(CatalogRecord, catalog_id)
            if record is None:
                return None
            return self._record_to_catalog(record)

    async def require_catalog(self, catalog_id: str) -> DocumentCatalog:
        catalog = await self.get_catalog(catalog_id)
        if catalog is None or catalog.is_deleted:
            raise NotFoundError(f"Catalog {catalog_id} not found")
        return catalog

    async def list_catalogs(self, warehouse_id: str, include_deleted: bool = False) -> list[DocumentCatalog]:
        async with AsyncSession(self._engine) as session:
            statement = select(CatalogRecord).where(CatalogRecord.warehouse_id == warehouse_id)
            if not include_deleted:
                statement = statement.where(CatalogRecord.is_deleted.is_(False))
            statement = statement.order_by(CatalogRecord.order, CatalogRecord.name)
            result = await session.execute(statement)
            return [self._record_to_catalog(r) for r in result.scalars().all()]

    async def update_prompt(self, catalog_id: str, prompt: str) -> None:
        if not prompt.strip():
            raise ValidationError("Prompt cannot be empty")
        await self._update_catalog(catalog_id, prompt=prompt)

    async def upsert_catalog_completed(self, catalog_id: str) -> None:
        """Mark a node completed. Safe to call repeatedly."""
        await self._update_catalog(catalog_id, is_completed=True)

    async def soft_delete_catalog(self, catalog_id: str) -> list[str]:
        """Soft-delete a node and all of its live descendants.

        Returns:
            Ids of the nodes marked deleted, the given node first.
        """
        catalog = await self.require_catalog(catalog_id)
        live = await self.list_catalogs(catalog.warehouse_id)
        children_of: dict[str, list[str]] = {}
        for node in live:
            if node.parent_id is not None:
                children_of.setdefault(node.parent_id, []).append(node.catalog_id)

        doomed: list[str] = []
        seen: set[str] = set()
        stack = [catalog_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            doomed.append(current)
            stack.extend(children_of.get(current, []))

        async with AsyncSession(self._engine) as session:
            async with session.begin():
                await session.execute(
                    update(CatalogRecord)
                    .where(CatalogRecord.catalog_id.in_(doomed))
                    .values(is_deleted=True, deleted_at=utc_now())
                )
        self._logger.info("catalog_deleted", catalog_id=catalog_id, deleted_count=len(doomed))
        return doomed

    async def replace_file_item(
        self,
        catalog_id: str,
        file_item: DocumentFileItem,
        sources: list[DocumentFileItemSource],
    ) -> None:
        """Swap a node's page and provenance for new ones in one transaction.

        The old item is deleted (its sources go with it via ON DELETE CASCADE),
        the new item and sources are inserted, and the node is marked
        completed. Any failure rolls all of it back.
        """
        if file_item.catalog_id != catalog_id:
            raise ValueError("file item belongs to a different catalog")
        if any(source.file_item_id != file_item.file_item_id for source in sources):
            raise ValueError("source rows must reference the new file item")

        async with AsyncSession(self._engine) as session:
            async with session.begin():
                catalog = await session.get(CatalogRecord, catalog_id)
                if catalog is None or catalog.is_deleted:
                    raise NotFoundError(f"Catalog {catalog_id} not found")

                old_ids = select(FileItemRecord.file_item_id).where(FileItemRecord.catalog_id == catalog_id)
                await session.execute(
                    delete(FileItemSourceRecord).where(FileItemSourceRecord.file_item_id.in_(old_ids))
                )
                await session.execute(delete(FileItemRecord).where(FileItemRecord.catalog_id == catalog_id))

                session.add(self._file_item_to_record(file_item))
                await session.flush()

                session.add_all([self._source_to_record(source) for source in sources])
                catalog.is_completed = True
                await session.flush()

        self._logger.info(
            "file_item_replaced",
            catalog_id=catalog_id,
            file_item_id=file_item.file_item_id,
            source_count=len(sources),
        )

    async def get_file_item(self, catalog_id: str) -> DocumentFileItem | None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(select(FileItemRecord).where(FileItemRecord.catalog_id == catalog_id))
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return self._record_to_file_item(record)

    async def get_sources(self, file_item_id: str) -> list[DocumentFileItemSource]:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                select(FileItemSourceRecord)
                .where(FileItemSourceRecord.file_item_id == file_item_id)
                .order_by(FileItemSourceRecord.address)
            )
            return [self._record_to_source(r) for r in result.scalars().all()]

    async def find_catalogs_by_source_paths(self, warehouse_id: str, paths: Iterable[str]) -> list[DocumentCatalog]:
        """Live nodes whose page cites any of ``paths`` or a directory above them."""
        addresses: set[str] = set()
        for path in paths:
            if not path:
                continue
            posix = PurePosixPath(path)
            addresses.add(str(posix))
            # A cited directory is affected by changes to any file inside it.
            addresses.update(str(parent) for parent in posix.parents if str(parent) != ".")
        if not addresses:
            return []

        wanted = sorted(addresses)
        found: dict[str, CatalogRecord] = {}
        async with AsyncSession(self._engine) as session:
            for start in range(0, len(wanted), _ADDRESS_BATCH_SIZE):
                batch = wanted[start : start + _ADDRESS_BATCH_SIZE]
                statement = (
                    select(CatalogRecord)
                    .join(FileItemRecord, FileItemRecord.catalog_id == CatalogRecord.catalog_id)
                    .join(FileItemSourceRecord, FileItemSourceRecord.file_item_id == FileItemRecord.file_item_id)
                    .where(
                        CatalogRecord.warehouse_id == warehouse_id,
                        CatalogRecord.is_deleted.is_(False),
                        FileItemSourceRecord.address.in_(batch),
                    )
                    .distinct()
                )
                result = await session.execute(statement)
                for record in result.scalars().all():
                    found.setdefault(record.catalog_id, record)
            return [self._record_to_catalog(r) for r in found.values()]

    async def mark_embedded(self, file_item_id: str) -> None:
        async with AsyncSession(self._engine) as session:
            await session.execute(
                update(FileItemRecord).where(FileItemRecord.file_item_id == file_item_id).values(is_embedded=True)
            )
            await session.commit()

    async def build_tree(self, warehouse_id: str) -> list[CatalogTreeNode]:
        """Forest of live nodes for a warehouse, ordered by ``order``."""
        return build_forest(await self.list_catalogs(warehouse_id), logger=self._logger)

    async def _find_conflict(self, session: AsyncSession, warehouse_id: str, name: str, url: str) -> str | None:
        result = await session.execute(
            select(CatalogRecord.name, CatalogRecord.url).where(
                CatalogRecord.warehouse_id == warehouse_id,
                CatalogRecord.is_deleted.is_(False),
                or_(CatalogRecord.name == name, CatalogRecord.url == url),
            )
        )
        row = result.first()
        if row is None:
            return None
        if row.name == name:
            return f"Catalog name '{name}' already exists in warehouse"
        return f"Catalog url '{url}' already exists in warehouse"

    async def _update_catalog(self, catalog_id: str, **values: object) -> None:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(CatalogRecord)
                .where(CatalogRecord.catalog_id == catalog_id, CatalogRecord.is_deleted.is_(False))
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Catalog {catalog_id} not found")
            await session.commit()

    def _catalog_to_record(self, catalog: DocumentCatalog) -> CatalogRecord:
        return CatalogRecord.model_validate(catalog.model_dump())

    def _record_to_catalog(self, record: CatalogRecord) -> DocumentCatalog:
        data = restore_utc(record.model_dump(), "created_at", "deleted_at")
        return DocumentCatalog.model_validate(data)

    def _file_item_to_record(self, file_item: DocumentFileItem) -> FileItemRecord:
        data = file_item.model_dump()
        data["item_metadata"] = data.pop("metadata")
        return FileItemRecord.model_validate(data)

    def _record_to_file_item(self, record: FileItemRecord) -> DocumentFileItem:
        data = restore_utc(record.model_dump(), "created_at")
        data["metadata"] = data.pop("item_metadata")
        return DocumentFileItem.model_validate(data)

    def _source_to_record(self, source: DocumentFileItemSource) -> FileItemSourceRecord:
        return FileItemSourceRecord.model_validate(source.model_dump())

    def _record_to_source(self, record: FileItemSourceRecord) -> DocumentFileItemSource:
        data = restore_utc(record.model_dump(), "created_at")
        return DocumentFileItemSource.model_validate(data)
