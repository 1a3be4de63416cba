"""Integration tests for page embeddings with ChromaDB's default embedding function.

ChromaDB's default function (all-MiniLM-L6-v2) is downloaded and run on first
use, so these are marked slow.
"""

from uuid import uuid4

import chromadb
import pytest

from wikigen.models.catalog import DocumentCatalog
from wikigen.models.file_item import DocumentFileItem
from wikigen.models.warehouse import Warehouse
from wikigen.services.catalog_store import CatalogStore
from wikigen.services.chunker import Chunker
from wikigen.services.embedding import FileItemIndexer
from wikigen.services.vector_store import VectorStore


@pytest.fixture
async def vector_store() -> VectorStore:
    store = VectorStore(client=chromadb.EphemeralClient(), collection_name=f"test_{uuid4().hex[:8]}")
    await store.initialize()
    return store


async def _page(catalog_store: CatalogStore, warehouse: Warehouse, name: str, content: str) -> DocumentFileItem:
    catalog = await catalog_store.create_catalog(
        DocumentCatalog(
            catalog_id=str(uuid4()),
            warehouse_id=warehouse.warehouse_id,
            name=name,
            url=name.lower().replace(" ", "-"),
        )
    )
    item = DocumentFileItem(file_item_id=str(uuid4()), catalog_id=catalog.catalog_id, title=name, content=content)
    await catalog_store.replace_file_item(catalog.catalog_id, item, [])
    return item


@pytest.mark.slow
class TestPageEmbeddings:
    """Indexing real pages with real embeddings."""

    async def test_indexed_page_gets_real_embeddings(
        self, vector_store: VectorStore, catalog_store: CatalogStore, warehouse: Warehouse
    ) -> None:
        item = await _page(catalog_store, warehouse, "Overview", "# Overview\n\nWidgets turn gadgets into widgets.")
        indexer = FileItemIndexer(Chunker(), vector_store, catalog_store)

        await indexer.index_file_item(warehouse.warehouse_id, item)

        stored = await vector_store.get_where({"file_item_id": item.file_item_id})
        result = await vector_store.get_by_ids(stored["ids"])
        embedding = result["embeddings"][0]
        assert len(embedding) == 384
        assert any(value != 0.0 for value in embedding)

    async def test_similar_pages_are_closer(
        self, vector_store: VectorStore, catalog_store: CatalogStore, warehouse: Warehouse
    ) -> None:
        indexer = FileItemIndexer(Chunker(), vector_store, catalog_store)
        pages = {
            "Install": "# Install\n\nInstall the package with pip and configure the database path.",
            "Setup": "# Setup\n\nUse pip to install the package, then set the database location.",
            "Diagrams": "# Diagrams\n\nThe sequence diagram shows how the scheduler wakes up every minute.",
        }
        ids = {}
        for name, content in pages.items():
            item = await _page(catalog_store, warehouse, name, content)
            await indexer.index_file_item(warehouse.warehouse_id, item)
            ids[name] = (await vector_store.get_where({"file_item_id": item.file_item_id}))["ids"][0]

        result = await vector_store.get_by_ids(list(ids.values()))
        embeddings = dict(zip(result["ids"], result["embeddings"]))
        install, setup, diagrams = (embeddings[ids[name]] for name in ("Install", "Setup", "Diagrams"))

        def dot(a, b) -> float:
            return sum(x * y for x, y in zip(a, b))

        assert dot(install, setup) > dot(install, diagrams)
