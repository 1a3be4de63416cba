"""Sync orchestrator: ingestion, incremental sync and bounded page generation.

Page generation fans out to the LLM with at most ``max_concurrent_generations``
calls in flight per run. Finished nodes are persisted by the coordinating
loop itself, one at a time, so the database only ever has one writer per run
and every node is committed independently of its siblings.
"""

import asyncio
from collections import deque
from pathlib import Path
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from wikigen.errors import GenerationError, LedgerStateError, WikiGenError
from wikigen.models.base import utc_now
from wikigen.models.catalog import CatalogDraft, DocumentCatalog
from wikigen.models.document import Document, DocumentOverview
from wikigen.models.enums import SyncStatus, SyncTrigger, WarehouseStatus, WarehouseType
from wikigen.models.sync_record import FileChanges, WarehouseSyncRecord
from wikigen.models.warehouse import Warehouse
from wikigen.services.catalog_planner import CatalogPlanner, flatten_drafts
from wikigen.services.catalog_store import CatalogStore
from wikigen.services.catalog_tree import build_forest, iter_depth_first, render_outline
from wikigen.services.context import GenerationContext, GenerationContextBuilder
from wikigen.services.embedding import FileItemIndexer
from wikigen.services.node_processor import CatalogNodeProcessor, NodeResult, PriorContent
from wikigen.services.overview import OverviewWriter
from wikigen.services.snapshot import SnapshotProvider, working_tree_path
from wikigen.services.sync_ledger import SyncLedger
from wikigen.services.warehouse_store import WarehouseStore

NO_NEW_COMMITS_MESSAGE = "No new commits to sync"


class GenerationOutcome(BaseModel):
    """Per-run tally of generated nodes."""

    succeeded: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    children_created: int = Field(default=0, ge=0)

    def raise_for_failures(self) -> None:
        if self.failed:
            first_id, first_error = next(iter(self.failed.items()))
            raise GenerationError(
                f"{len(self.failed)} catalog node(s) failed to generate; first {first_id}: {first_error}"
            )


class IngestResult(BaseModel):
    warehouse_id: str
    version: str | None
    catalog_count: int = Field(ge=0)
    generated: int = Field(ge=0)

    model_config = {"frozen": True}


class SyncOrchestrator:
    """Drives ingestion and incremental syncs for warehouses.

    All collaborators are injected; snapshot providers are looked up by
    warehouse type.
    """

    def __init__(
        self,
        warehouse_store: WarehouseStore,
        catalog_store: CatalogStore,
        ledger: SyncLedger,
        snapshot_providers: dict[WarehouseType, SnapshotProvider],
        context_builder: GenerationContextBuilder,
        node_processor: CatalogNodeProcessor,
        planner: CatalogPlanner,
        repositories_dir: Path,
        max_concurrent_generations: int = 3,
        max_catalog_depth: int = 4,
        indexer: FileItemIndexer | None = None,
        overview_writer: OverviewWriter | None = None,
        generate_missing_readme: bool = True,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if max_concurrent_generations < 1:
            raise ValueError("max_concurrent_generations must be at least 1")
        self._warehouses = warehouse_store
        self._catalogs = catalog_store
        self._ledger = ledger
        self._providers = snapshot_providers
        self._contexts = context_builder
        self._processor = node_processor
        self._planner = planner
        self._repositories_dir = repositories_dir
        self._max_concurrency = max_concurrent_generations
        self._max_depth = max_catalog_depth
        self._indexer = indexer
        self._overview_writer = overview_writer
        self._generate_missing_readme = generate_missing_readme
        self._logger = logger or structlog.get_logger(__name__)
        self._background: set[asyncio.Task[None]] = set()

    async def sync_warehouse(self, warehouse_id: str, trigger: SyncTrigger = SyncTrigger.MANUAL) -> bool:
        """Open a sync record and start the sync in the background.

        Returns:
            False (without side effects) if the warehouse or its document is
            missing, True once the in-progress record is persisted.

        Raises:
            ConcurrencyConflictError: If a sync is already running for the warehouse.
        """
        warehouse = await self._warehouses.get_warehouse(warehouse_id)
        if warehouse is None:
            self._logger.warning("sync_skipped_missing_warehouse", warehouse_id=warehouse_id)
            return False
        document = await self._warehouses.get_document(warehouse_id)
        if document is None:
            self._logger.warning("sync_skipped_missing_document", warehouse_id=warehouse_id)
            return False

        record = await self._ledger.begin(warehouse_id, trigger, warehouse.version)
        task = asyncio.create_task(self._run_sync(warehouse, document, record))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        self._logger.info("sync_started", warehouse_id=warehouse_id, record_id=record.record_id, trigger=trigger.value)
        return True

    async def wait_idle(self) -> None:
        """Wait until every background sync started by this orchestrator has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run_sync(self, warehouse: Warehouse, document: Document, record: WarehouseSyncRecord) -> None:
        log = self._logger.bind(warehouse_id=warehouse.warehouse_id, record_id=record.record_id)
        try:
            provider = self._provider_for(warehouse)
            snapshot = await provider.refresh(warehouse, Path(document.git_path))

            if not snapshot.has_new_commit:
                await self._warehouses.touch_document(warehouse.warehouse_id)
                await self._ledger.finalize(
                    record.record_id,
                    SyncStatus.SUCCESS,
                    to_version=warehouse.version,
                    error_message=NO_NEW_COMMITS_MESSAGE,
                )
                log.info("sync_completed_no_changes", version=warehouse.version)
                return

            context = await self._contexts.build(warehouse, snapshot.working_tree)
            if not await self._catalogs.list_catalogs(warehouse.warehouse_id):
                await self._plan_catalog(warehouse, context)
            targets = await self._select_targets(warehouse.warehouse_id, snapshot.changes)
            log.info("sync_regenerating", target_count=len(targets), changed_files=snapshot.changes.total)

            outcome = await self.generate_nodes(warehouse.warehouse_id, targets, context, regenerate=True)
            outcome.raise_for_failures()

            await self._warehouses.advance_version(warehouse.warehouse_id, snapshot.commit_id)
            await self._warehouses.touch_document(warehouse.warehouse_id)
            await self._ledger.finalize(
                record.record_id,
                SyncStatus.SUCCESS,
                to_version=snapshot.commit_id,
                changes=snapshot.changes,
            )
            log.info(
                "sync_completed",
                to_version=snapshot.commit_id,
                regenerated=len(outcome.succeeded),
                children_created=outcome.children_created,
            )
        except Exception as exc:
            # Background work: the ledger row is the only place a failure surfaces.
            log.error("sync_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            await self._close_failed_record(record, exc, log)

    async def ingest_warehouse(self, warehouse_id: str) -> IngestResult:
        """Clone or extract a warehouse, plan its catalog and generate every page.

        Ingestion holds the warehouse's sync record for its whole run, so a
        sync cannot start on a half-built wiki and vice versa. Safe to re-run
        after a failure: an existing catalog and overview are kept and only
        incomplete nodes are generated again.

        Raises:
            NotFoundError: If the warehouse does not exist.
            ConcurrencyConflictError: If a sync or another ingestion is running
                for the warehouse.
            SnapshotError, GenerationError: Re-raised after the warehouse is
                marked failed.
        """
        warehouse = await self._warehouses.require_warehouse(warehouse_id)
        record = await self._ledger.begin(warehouse_id, SyncTrigger.INGEST, warehouse.version)

        log = self._logger.bind(warehouse_id=warehouse_id, record_id=record.record_id)
        log.info("ingestion_started", address=warehouse.address, branch=warehouse.branch)
        try:
            await self._warehouses.update_status(warehouse_id, WarehouseStatus.PROCESSING)
            working_tree = working_tree_path(self._repositories_dir, warehouse)
            snapshot = await self._provider_for(warehouse).refresh(warehouse, working_tree)
            existing = await self._warehouses.get_document(warehouse_id)
            document = await self._warehouses.save_document(
                Document(
                    document_id=existing.document_id if existing else str(uuid4()),
                    warehouse_id=warehouse_id,
                    git_path=str(snapshot.working_tree),
                    last_update=existing.last_update if existing else utc_now(),
                )
            )
            context = await self._contexts.build(warehouse, snapshot.working_tree)
            if not context.readme:
                context = await self._with_generated_readme(context, log)

            if context.classify is None:
                classify = await self._planner.classify(context)
                if classify is not None:
                    await self._warehouses.set_classification(warehouse_id, classify)
                    context = context.model_copy(update={"classify": classify})

            if not await self._catalogs.list_catalogs(warehouse_id):
                await self._plan_catalog(warehouse, context)
            catalogs = await self._catalogs.list_catalogs(warehouse_id)
            if self._overview_writer is not None and await self._warehouses.get_overview(warehouse_id) is None:
                await self._write_overview(document, context, catalogs)
            targets = [catalog for catalog in catalogs if not catalog.is_completed]

            outcome = await self.generate_nodes(warehouse_id, targets, context, regenerate=False)
            outcome.raise_for_failures()

            version = snapshot.commit_id or warehouse.version
            if version:
                await self._warehouses.advance_version(warehouse_id, version)
            await self._warehouses.touch_document(warehouse_id)
            await self._warehouses.update_status(warehouse_id, WarehouseStatus.COMPLETED)
        except Exception as exc:
            log.error("ingestion_failed", error=str(exc), error_type=type(exc).__name__)
            try:
                await self._warehouses.update_status(warehouse_id, WarehouseStatus.FAILED, error=str(exc))
            finally:
                await self._close_failed_record(record, exc, log)
            raise
        except asyncio.CancelledError as exc:
            log.warning("ingestion_cancelled")
            await self._close_failed_record(record, exc, log)
            raise

        try:
            await self._ledger.finalize(
                record.record_id,
                SyncStatus.SUCCESS,
                to_version=version,
                changes=snapshot.changes,
            )
        except LedgerStateError as exc:
            # The scheduler fails records it considers abandoned.
            log.warning("ingestion_record_already_closed", error=str(exc))

        result = IngestResult(
            warehouse_id=warehouse_id,
            version=version,
            catalog_count=len(await self._catalogs.list_catalogs(warehouse_id)),
            generated=len(outcome.succeeded),
        )
        log.info("ingestion_completed", version=version, catalog_count=result.catalog_count)
        return result

    async def _with_generated_readme(
        self, context: GenerationContext, log: structlog.stdlib.BoundLogger
    ) -> GenerationContext:
        if self._overview_writer is None or not self._generate_missing_readme:
            return context
        try:
            readme = await self._overview_writer.write_readme(context)
        except GenerationError as exc:
            log.warning("readme_generation_failed", error=str(exc))
            return context
        return context.model_copy(update={"readme": readme})

    async def _write_overview(
        self, document: Document, context: GenerationContext, catalogs: list[DocumentCatalog]
    ) -> None:
        outline = render_outline(build_forest(catalogs, logger=self._logger))
        content = await self._overview_writer.write_overview(context, outline)
        await self._warehouses.save_overview(
            DocumentOverview(
                overview_id=str(uuid4()),
                document_id=document.document_id,
                warehouse_id=document.warehouse_id,
                content=content,
            )
        )

    async def _close_failed_record(
        self, record: WarehouseSyncRecord, exc: BaseException, log: structlog.stdlib.BoundLogger
    ) -> None:
        try:
            await self._ledger.finalize(
                record.record_id,
                SyncStatus.FAILED,
                error_message=str(exc) or type(exc).__name__,
            )
        except Exception as finalize_exc:
            log.error("sync_finalize_failed", error=str(finalize_exc))

    async def generate_nodes(
        self,
        warehouse_id: str,
        targets: list[DocumentCatalog],
        context: GenerationContext,
        regenerate: bool,
    ) -> GenerationOutcome:
        """Generate and persist pages for ``targets`` with bounded concurrency.

        A node that fails is recorded in the outcome and does not stop or roll
        back its siblings. Children the LLM proposes are inserted and queued
        while the catalog is shallower than ``max_catalog_depth``.
        """
        outcome = GenerationOutcome()
        if not targets:
            return outcome

        depths = await self._depths(warehouse_id)
        pending: deque[tuple[DocumentCatalog, int]] = deque(
            (catalog, depths.get(catalog.catalog_id, 1)) for catalog in targets
        )
        running: dict[asyncio.Task[NodeResult], tuple[DocumentCatalog, int]] = {}

        try:
            while pending or running:
                while pending and len(running) < self._max_concurrency:
                    catalog, depth = pending.popleft()
                    prior = await self._prior_content(catalog.catalog_id) if regenerate else None
                    task = asyncio.create_task(self._processor.process_node(catalog, context, prior))
                    running[task] = (catalog, depth)

                done, _ = await asyncio.wait(running.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    catalog, depth = running.pop(task)
                    try:
                        result = task.result()
                        await self.persist_result(warehouse_id, catalog, result)
                    except WikiGenError as exc:
                        outcome.failed[catalog.catalog_id] = str(exc)
                        self._logger.warning(
                            "node_generation_failed",
                            warehouse_id=warehouse_id,
                            catalog_id=catalog.catalog_id,
                            url=catalog.url,
                            error=str(exc),
                        )
                        continue

                    outcome.succeeded.append(catalog.catalog_id)
                    if result.children and depth < self._max_depth:
                        children = await self._insert_children(warehouse_id, catalog, result.children)
                        outcome.children_created += len(children)
                        pending.extend((child, depth + 1) for child in children)
        finally:
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

        self._logger.info(
            "generation_batch_completed",
            warehouse_id=warehouse_id,
            succeeded=len(outcome.succeeded),
            failed=len(outcome.failed),
            children_created=outcome.children_created,
        )
        return outcome

    async def persist_result(self, warehouse_id: str, catalog: DocumentCatalog, result: NodeResult) -> None:
        """Replace the node's page and provenance, then index it when embedding is on."""
        await self._catalogs.replace_file_item(catalog.catalog_id, result.file_item, result.build_sources())
        if self._indexer is None:
            return
        try:
            await self._indexer.index_file_item(warehouse_id, result.file_item)
        except Exception as exc:
            # Embeddings are an optional projection of the page.
            self._logger.warning(
                "file_item_embedding_failed",
                catalog_id=catalog.catalog_id,
                error=str(exc),
            )

    async def _prior_content(self, catalog_id: str) -> PriorContent | None:
        file_item = await self._catalogs.get_file_item(catalog_id)
        if file_item is None:
            return None
        sources = await self._catalogs.get_sources(file_item.file_item_id)
        return PriorContent(content=file_item.content, source_paths=[source.address for source in sources])

    async def _insert_children(
        self,
        warehouse_id: str,
        parent: DocumentCatalog,
        drafts: list[CatalogDraft],
    ) -> list[DocumentCatalog]:
        existing = await self._catalogs.list_catalogs(warehouse_id)
        sibling_urls = {c.url for c in existing if c.parent_id == parent.catalog_id}
        # Regenerated pages tend to re-propose the sub-pages they already have.
        fresh = [draft for draft in drafts if draft.url not in sibling_urls]
        if not fresh:
            return []
        taken_names, taken_urls = await self._catalogs.taken_keys(warehouse_id)
        children = flatten_drafts(fresh, warehouse_id, taken_names, taken_urls, parent_id=parent.catalog_id)
        offset = len(sibling_urls)
        children = [
            child.model_copy(update={"order": child.order + offset}) if child.parent_id == parent.catalog_id else child
            for child in children
        ]
        await self._catalogs.insert_catalogs(children)
        return [child for child in children if child.parent_id == parent.catalog_id]

    async def _plan_catalog(self, warehouse: Warehouse, context: GenerationContext) -> None:
        drafts = await self._planner.plan(context)
        taken_names, taken_urls = await self._catalogs.taken_keys(warehouse.warehouse_id)
        catalogs = flatten_drafts(drafts, warehouse.warehouse_id, taken_names, taken_urls)
        await self._catalogs.insert_catalogs(catalogs)
        self._logger.info("catalog_inserted", warehouse_id=warehouse.warehouse_id, catalog_count=len(catalogs))

    async def _select_targets(self, warehouse_id: str, changes: FileChanges) -> list[DocumentCatalog]:
        catalogs = await self._catalogs.list_catalogs(warehouse_id)
        if changes.full_refresh:
            return catalogs
        affected = {c.catalog_id for c in await self._catalogs.find_catalogs_by_source_paths(warehouse_id, changes.paths)}
        return [c for c in catalogs if c.catalog_id in affected or not c.is_completed]

    async def _depths(self, warehouse_id: str) -> dict[str, int]:
        forest = build_forest(await self._catalogs.list_catalogs(warehouse_id), logger=self._logger)
        return {node.catalog.catalog_id: depth + 1 for depth, node in iter_depth_first(forest)}

    def _provider_for(self, warehouse: Warehouse) -> SnapshotProvider:
        try:
            return self._providers[warehouse.type]
        except KeyError:
            raise WikiGenError(f"No snapshot provider configured for {warehouse.type.value} warehouses") from None
