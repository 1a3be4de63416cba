"""Vector store service for persisting page embeddings to ChromaDB.

ChromaDB's Python client is synchronous, so we use asyncio.to_thread()
to wrap blocking operations and maintain async consistency with other services.
"""

import asyncio
from typing import Any

import chromadb
import structlog
from chromadb.api.types import EmbeddingFunction

Metadata = dict[str, str | int | float | bool]


class VectorStore:
    """Stores page chunks in a ChromaDB collection.

    Accepts a ChromaDB Client via dependency injection to support both
    persistent (PersistentClient) and ephemeral (EphemeralClient) modes.
    When ``embedding_function`` is None the collection uses ChromaDB's default.
    """

    DEFAULT_COLLECTION_NAME = "pages"

    def __init__(
        self,
        client: chromadb.ClientAPI,
        collection_name: str | None = None,
        embedding_function: EmbeddingFunction | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._client = client
        self._collection_name = collection_name or self.DEFAULT_COLLECTION_NAME
        self._embedding_function = embedding_function
        self._logger = logger or structlog.get_logger(__name__)
        self._collection: chromadb.Collection | None = None

    async def initialize(self) -> None:
        """Initialize the collection, creating it if it doesn't exist."""
        kwargs: dict[str, Any] = {"name": self._collection_name}
        if self._embedding_function is not None:
            kwargs["embedding_function"] = self._embedding_function
        self._collection = await asyncio.to_thread(self._client.get_or_create_collection, **kwargs)
        self._logger.info(
            "vector_store_initialized",
            collection_name=self._collection_name,
        )

    def _require_collection(self) -> chromadb.Collection:
        if self._collection is None:
            raise RuntimeError("VectorStore not initialized. Call initialize() first.")
        return self._collection

    async def add_documents(
        self,
        ids: list[str],
        documents: list[str],
        metadatas: list[Metadata] | None = None,
    ) -> None:
        """Upsert texts; the collection's embedding function computes vectors.

        Raises:
            ValueError: If input lists have mismatched lengths.
            RuntimeError: If collection not initialized.
        """
        collection = self._require_collection()
        if not ids:
            return
        if len(ids) != len(documents):
            raise ValueError(f"Mismatched lengths: ids={len(ids)}, documents={len(documents)}")
        if metadatas is not None and len(metadatas) != len(ids):
            raise ValueError(f"Mismatched lengths: ids={len(ids)}, metadatas={len(metadatas)}")

        await asyncio.to_thread(collection.upsert, ids=ids, documents=documents, metadatas=metadatas)
        self._logger.debug("documents_added", collection=self._collection_name, count=len(ids))

    async def delete_where(self, where: Metadata) -> None:
        """Delete every entry whose metadata matches ``where`` (e.g. a catalog id)."""
        collection = self._require_collection()
        await asyncio.to_thread(collection.delete, where=where)
        self._logger.debug("documents_deleted", collection=self._collection_name, where=where)

    async def count(self) -> int:
        return await asyncio.to_thread(self._require_collection().count)

    async def get_by_ids(self, ids: list[str]) -> dict[str, Any]:
        """Retrieve stored entries with their embeddings, texts and metadata."""
        collection = self._require_collection()
        if not ids:
            return {"ids": [], "embeddings": [], "documents": [], "metadatas": []}
        return await asyncio.to_thread(
            collection.get,
            ids=ids,
            include=["embeddings", "documents", "metadatas"],
        )

    async def get_where(self, where: Metadata) -> dict[str, Any]:
        collection = self._require_collection()
        return await asyncio.to_thread(collection.get, where=where, include=["documents", "metadatas"])
