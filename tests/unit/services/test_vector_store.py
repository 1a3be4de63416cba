"""Unit tests for the VectorStore service."""

from uuid import uuid4

import chromadb
import pytest
from chromadb.api.types import Documents, EmbeddingFunction, Embeddings

from wikigen.services.vector_store import VectorStore


class FakeEmbeddingFunction(EmbeddingFunction[Documents]):
    """Deterministic embedding function for testing.

    Generates embeddings based on document length to produce
    consistent, predictable vectors without external dependencies.
    """

    def __init__(self, dim: int = 16) -> None:
        self.dim = dim
        self.call_count = 0

    def __call__(self, input: Documents) -> Embeddings:
        self.call_count += 1
        return [[len(doc) * 0.001 + i * 0.0001 for i in range(self.dim)] for doc in input]


@pytest.fixture
def ephemeral_client() -> chromadb.ClientAPI:
    return chromadb.EphemeralClient()


@pytest.fixture
def fake_embedding_function() -> FakeEmbeddingFunction:
    return FakeEmbeddingFunction()


@pytest.fixture
async def store(ephemeral_client: chromadb.ClientAPI, fake_embedding_function: FakeEmbeddingFunction) -> VectorStore:
    """An initialized store on a collection unique to the test."""
    store = VectorStore(
        client=ephemeral_client,
        collection_name=f"test_{uuid4().hex[:8]}",
        embedding_function=fake_embedding_function,
    )
    await store.initialize()
    return store


class TestVectorStoreInitialization:
    """Tests for VectorStore initialization."""

    async def test_initialize_creates_collection(
        self, ephemeral_client: chromadb.ClientAPI, fake_embedding_function: FakeEmbeddingFunction
    ) -> None:
        name = f"test_{uuid4().hex[:8]}"
        store = VectorStore(client=ephemeral_client, collection_name=name, embedding_function=fake_embedding_function)

        await store.initialize()

        assert name in [getattr(c, "name", c) for c in ephemeral_client.list_collections()]

    def test_default_collection_name(self, ephemeral_client: chromadb.ClientAPI) -> None:
        store = VectorStore(client=ephemeral_client)

        assert store._collection_name == "pages"

    async def test_initialize_is_idempotent(self, store: VectorStore) -> None:
        await store.initialize()

        assert await store.count() == 0

    async def test_operations_require_initialize(self, ephemeral_client: chromadb.ClientAPI) -> None:
        store = VectorStore(client=ephemeral_client, collection_name=f"test_{uuid4().hex[:8]}")

        with pytest.raises(RuntimeError, match="not initialized"):
            await store.add_documents(ids=["a"], documents=["text"])


class TestVectorStoreDocuments:
    """Tests for adding, reading and deleting page chunks."""

    async def test_add_documents_embeds_with_collection_function(
        self, store: VectorStore, fake_embedding_function: FakeEmbeddingFunction
    ) -> None:
        await store.add_documents(
            ids=["chunk-1", "chunk-2"],
            documents=["# Overview", "Widgets turn gadgets into widgets."],
            metadatas=[{"catalog_id": "c1", "chunk_index": 0}, {"catalog_id": "c1", "chunk_index": 1}],
        )

        result = await store.get_by_ids(["chunk-1"])

        assert await store.count() == 2
        assert fake_embedding_function.call_count >= 1
        assert result["documents"] == ["# Overview"]
        assert len(result["embeddings"][0]) == 16
        assert result["metadatas"][0]["chunk_index"] == 0

    async def test_upsert_replaces_existing_id(self, store: VectorStore) -> None:
        await store.add_documents(ids=["chunk-1"], documents=["old text"])
        await store.add_documents(ids=["chunk-1"], documents=["new text"])

        result = await store.get_by_ids(["chunk-1"])

        assert await store.count() == 1
        assert result["documents"] == ["new text"]

    async def test_empty_batch_is_a_no_op(self, store: VectorStore) -> None:
        await store.add_documents(ids=[], documents=[])

        assert await store.count() == 0
        assert (await store.get_by_ids([]))["ids"] == []

    @pytest.mark.parametrize(
        ("documents", "metadatas"),
        [
            (["one"], None),
            (["one", "two"], [{"catalog_id": "c1"}]),
        ],
    )
    async def test_mismatched_lengths_raise(self, store: VectorStore, documents, metadatas) -> None:
        with pytest.raises(ValueError, match="Mismatched lengths"):
            await store.add_documents(ids=["a", "b"], documents=documents, metadatas=metadatas)

    async def test_delete_and_get_where_filter_by_metadata(self, store: VectorStore) -> None:
        await store.add_documents(
            ids=["a-0", "a-1", "b-0"],
            documents=["first", "second", "third"],
            metadatas=[{"catalog_id": "a"}, {"catalog_id": "a"}, {"catalog_id": "b"}],
        )

        assert sorted((await store.get_where({"catalog_id": "a"}))["ids"]) == ["a-0", "a-1"]

        await store.delete_where({"catalog_id": "a"})

        assert await store.count() == 1
        assert (await store.get_where({"catalog_id": "b"}))["documents"] == ["third"]
