"""Interactive catalog operations: add a page, regenerate a page."""

from pathlib import Path
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field, field_validator

from wikigen.errors import NotFoundError, ValidationError
from wikigen.models.catalog import DocumentCatalog
from wikigen.services.catalog_store import CatalogStore
from wikigen.services.context import GenerationContext, GenerationContextBuilder
from wikigen.services.embedding import FileItemIndexer
from wikigen.services.node_processor import CatalogNodeProcessor, PriorContent
from wikigen.services.orchestrator import SyncOrchestrator
from wikigen.services.warehouse_store import WarehouseStore


class CreateCatalogInput(BaseModel):
    warehouse_id: str
    name: str
    url: str
    prompt: str
    description: str = ""
    parent_id: str | None = None
    order: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @field_validator("warehouse_id", "name", "url", "prompt")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class DocumentationService:
    """Adds catalog nodes and regenerates pages outside of a sync run.

    Generation failures propagate to the caller unchanged and leave the node
    incomplete; a later sync or ingestion picks it up again.
    """

    def __init__(
        self,
        warehouse_store: WarehouseStore,
        catalog_store: CatalogStore,
        context_builder: GenerationContextBuilder,
        node_processor: CatalogNodeProcessor,
        orchestrator: SyncOrchestrator,
        indexer: FileItemIndexer | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._warehouses = warehouse_store
        self._catalogs = catalog_store
        self._contexts = context_builder
        self._processor = node_processor
        self._orchestrator = orchestrator
        self._indexer = indexer
        self._logger = logger or structlog.get_logger(__name__)

    async def create_catalog_and_generate(self, request: CreateCatalogInput) -> DocumentCatalog:
        """Insert a catalog node and generate its page.

        Raises:
            ValidationError: If a required field is blank, the parent belongs
                to another warehouse, or the name or url is taken.
            NotFoundError: If the warehouse, its document or the parent is missing.
            GenerationError: If page generation fails.
        """
        for field_name in ("warehouse_id", "name", "url", "prompt"):
            if not getattr(request, field_name):
                raise ValidationError(f"{field_name} cannot be empty")

        context = await self._context_for(request.warehouse_id)
        if request.parent_id is not None:
            parent = await self._catalogs.require_catalog(request.parent_id)
            if parent.warehouse_id != request.warehouse_id:
                raise ValidationError(f"Parent catalog {request.parent_id} belongs to another warehouse")

        catalog = await self._catalogs.create_catalog(
            DocumentCatalog(
                catalog_id=str(uuid4()),
                warehouse_id=request.warehouse_id,
                name=request.name,
                url=request.url,
                description=request.description,
                parent_id=request.parent_id,
                order=request.order,
                prompt=request.prompt,
            )
        )

        result = await self._processor.process_node(catalog, context)
        await self._orchestrator.persist_result(request.warehouse_id, catalog, result)
        self._logger.info("catalog_page_generated", catalog_id=catalog.catalog_id, url=catalog.url)
        return await self._catalogs.require_catalog(catalog.catalog_id)

    async def regenerate_file_content(self, catalog_id: str, prompt: str | None = None) -> DocumentCatalog:
        """Regenerate a node's page, optionally with a new prompt.

        The current page and its cited paths are handed to the LLM as prior
        content. The old page stays in place if generation fails.
        """
        catalog = await self._catalogs.require_catalog(catalog_id)
        if prompt is not None:
            await self._catalogs.update_prompt(catalog_id, prompt)
            catalog = catalog.model_copy(update={"prompt": prompt})

        context = await self._context_for(catalog.warehouse_id)
        prior = None
        file_item = await self._catalogs.get_file_item(catalog_id)
        if file_item is not None:
            sources = await self._catalogs.get_sources(file_item.file_item_id)
            prior = PriorContent(content=file_item.content, source_paths=[s.address for s in sources])

        result = await self._processor.process_node(catalog, context, prior)
        await self._orchestrator.persist_result(catalog.warehouse_id, catalog, result)
        self._logger.info("catalog_page_regenerated", catalog_id=catalog_id, prompt_changed=prompt is not None)
        return await self._catalogs.require_catalog(catalog_id)

    async def delete_catalog(self, catalog_id: str) -> list[str]:
        """Soft-delete a node with its descendants and drop their vectors.

        Returns:
            Ids of the deleted nodes.
        """
        deleted = await self._catalogs.soft_delete_catalog(catalog_id)
        if self._indexer is not None:
            await self._indexer.remove_catalogs(deleted)
        return deleted

    async def _context_for(self, warehouse_id: str) -> GenerationContext:
        warehouse = await self._warehouses.require_warehouse(warehouse_id)
        document = await self._warehouses.get_document(warehouse_id)
        if document is None:
            raise NotFoundError(f"Warehouse {warehouse_id} has not been ingested yet")
        return await self._contexts.build(warehouse, Path(document.git_path))
