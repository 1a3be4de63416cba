"""Indexes generated pages into the vector store."""

import structlog

from wikigen.models.file_item import DocumentFileItem
from wikigen.services.catalog_store import CatalogStore
from wikigen.services.chunker import Chunker
from wikigen.services.vector_store import VectorStore


class FileItemIndexer:
    """Chunks a page, replaces its previous vectors and flags it as embedded."""

    def __init__(
        self,
        chunker: Chunker,
        vector_store: VectorStore,
        catalog_store: CatalogStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._chunker = chunker
        self._vector_store = vector_store
        self._catalog_store = catalog_store
        self._logger = logger or structlog.get_logger(__name__)

    async def initialize(self) -> None:
        await self._vector_store.initialize()

    async def index_file_item(self, warehouse_id: str, file_item: DocumentFileItem) -> int:
        """Returns the number of chunks written."""
        chunks = self._chunker.chunk(file_item.content, file_item.file_item_id)
        await self._vector_store.delete_where({"catalog_id": file_item.catalog_id})
        await self._vector_store.add_documents(
            ids=[chunk.chunk_id for chunk in chunks],
            documents=[chunk.text for chunk in chunks],
            metadatas=[
                {
                    "warehouse_id": warehouse_id,
                    "catalog_id": file_item.catalog_id,
                    "file_item_id": file_item.file_item_id,
                    "title": file_item.title,
                    "chunk_index": chunk.chunk_index,
                    "char_start": chunk.char_start,
                    "char_end": chunk.char_end,
                    "line_start": chunk.line_start,
                    "line_end": chunk.line_end,
                }
                for chunk in chunks
            ],
        )
        await self._catalog_store.mark_embedded(file_item.file_item_id)
        self._logger.info(
            "file_item_embedded",
            catalog_id=file_item.catalog_id,
            file_item_id=file_item.file_item_id,
            chunk_count=len(chunks),
        )
        return len(chunks)

    async def remove_catalogs(self, catalog_ids: list[str]) -> None:
        """Drop the vectors of deleted catalog nodes."""
        for catalog_id in catalog_ids:
            await self._vector_store.delete_where({"catalog_id": catalog_id})
        self._logger.info("catalog_vectors_removed", catalog_count=len(catalog_ids))
