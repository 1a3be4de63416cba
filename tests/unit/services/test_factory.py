"""Tests for the service factory module."""

import json
import zipfile
from pathlib import Path
from uuid import uuid4

import httpx
import pytest
from chromadb.api.types import Documents, EmbeddingFunction, Embeddings

from wikigen.config import WikiSettings
from wikigen.models.enums import SyncStatus, SyncTrigger, WarehouseStatus, WarehouseType
from wikigen.models.warehouse import Warehouse
from wikigen.services.factory import WikiServices, create_services, create_test_services, parse_file_pattern
from wikigen.services.snapshot import ArchiveSnapshotProvider

OUTLINE = '<catalog version="1">{"items": [{"title": "Overview", "prompt": "Summarize README.md"}]}</catalog>'


class FakeEmbeddingFunction(EmbeddingFunction[Documents]):
    def __call__(self, input: Documents) -> Embeddings:
        return [[float(len(doc)), 0.0, 1.0] for doc in input]


def _llm_handler(request: httpx.Request) -> httpx.Response:
    messages = json.loads(request.content)["messages"]
    system = messages[0]["content"]
    if "categorizes repositories" in system:
        content = "<classify>classifyName:Applications</classify>"
    elif "table of contents" in system:
        content = OUTLINE
    elif "project overview" in system:
        content = '<overview version="1">\n# Widgets\n\nTurns gadgets into widgets.\n</overview>'
    else:
        content = '<document version="1">\n# Overview\n\nWidgets.\n</document>\n<sources>["README.md"]</sources>'
    return httpx.Response(
        200,
        json={
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 2},
        },
    )


@pytest.fixture
def archive(tmp_path: Path) -> Path:
    path = tmp_path / "widgets.zip"
    with zipfile.ZipFile(path, "w") as bundle:
        bundle.writestr("README.md", "# Widgets\n")
        bundle.writestr("src/app.py", "def convert(gadget):\n    return gadget\n")
    return path


def _test_services(tmp_path: Path, **kwargs) -> WikiServices:
    return create_test_services(
        database_path=tmp_path / "wiki.db",
        repositories_dir=tmp_path / "repositories",
        llm_transport=httpx.MockTransport(_llm_handler),
        snapshot_providers={WarehouseType.FILE: ArchiveSnapshotProvider()},
        **kwargs,
    )


def _archive_warehouse(archive: Path) -> Warehouse:
    return Warehouse(
        warehouse_id=str(uuid4()),
        organization_name="local",
        name="widgets",
        address=str(archive),
        type=WarehouseType.FILE,
    )


class TestCreateServices:
    """Tests for the production factory."""

    async def test_creates_directories_and_schema(self, tmp_path: Path) -> None:
        settings = WikiSettings(
            _env_file=None,
            database_path=tmp_path / "state" / "wiki.db",
            repositories_dir=tmp_path / "repositories",
            vector_store_dir=tmp_path / "semantic",
        )

        services = create_services(settings)
        async with services:
            assert await services.warehouses.list_warehouses() == []

        assert (tmp_path / "repositories").is_dir()
        assert (tmp_path / "state" / "wiki.db").exists()
        assert services.indexer is None
        assert not (tmp_path / "semantic").exists()
        assert services.http_client.is_closed


class TestCreateTestServices:
    """Tests for the test factory and the wired service graph."""

    async def test_ingest_then_sync_an_archive(self, tmp_path: Path, archive: Path) -> None:
        async with _test_services(tmp_path) as services:
            warehouse = await services.warehouses.register_warehouse(_archive_warehouse(archive))

            result = await services.orchestrator.ingest_warehouse(warehouse.warehouse_id)

            assert result.catalog_count == 1
            stored = await services.warehouses.require_warehouse(warehouse.warehouse_id)
            assert stored.status == WarehouseStatus.COMPLETED
            assert stored.version.startswith("archive-")
            assert "gadgets" in (await services.warehouses.get_overview(warehouse.warehouse_id)).content

            assert await services.orchestrator.sync_warehouse(warehouse.warehouse_id) is True
            await services.orchestrator.wait_idle()

            record, ingest_record = await services.ledger.list_records(warehouse.warehouse_id)
            assert ingest_record.trigger == SyncTrigger.INGEST
            assert ingest_record.status == SyncStatus.SUCCESS
            assert record.trigger == SyncTrigger.MANUAL
            assert record.status == SyncStatus.SUCCESS
            assert record.added_file_count == 2
            assert record.to_version.startswith("archive-")

    async def test_embedding_function_enables_indexer(self, tmp_path: Path, archive: Path) -> None:
        async with _test_services(tmp_path, embedding_function=FakeEmbeddingFunction()) as services:
            assert services.indexer is not None
            warehouse = await services.warehouses.register_warehouse(_archive_warehouse(archive))

            await services.orchestrator.ingest_warehouse(warehouse.warehouse_id)

            (catalog,) = await services.catalogs.list_catalogs(warehouse.warehouse_id)
            assert (await services.catalogs.get_file_item(catalog.catalog_id)).is_embedded

    def test_generates_unique_collection_name_by_default(self, tmp_path: Path) -> None:
        first = _test_services(tmp_path / "a", embedding_function=FakeEmbeddingFunction())
        second = _test_services(tmp_path / "b", embedding_function=FakeEmbeddingFunction())

        assert first.indexer._vector_store._collection_name != second.indexer._vector_store._collection_name

    def test_without_embedding_function_no_indexer(self, tmp_path: Path) -> None:
        assert _test_services(tmp_path).indexer is None


class TestParseFilePattern:
    """Tests for parse_file_pattern helper."""

    def test_simple_pattern_without_braces(self) -> None:
        assert parse_file_pattern("*.lock") == ["*.lock"]

    def test_expands_brace_pattern(self) -> None:
        assert parse_file_pattern("*.{png,jpg,gif}") == ["*.png", "*.jpg", "*.gif"]

    def test_expands_with_prefix_and_suffix(self) -> None:
        assert parse_file_pattern("docs/*.{md,txt}.bak") == ["docs/*.md.bak", "docs/*.txt.bak"]

    def test_handles_spaces_in_alternatives(self) -> None:
        assert parse_file_pattern("*.{py, js}") == ["*.py", "*.js"]

    def test_unbalanced_braces_are_left_alone(self) -> None:
        assert parse_file_pattern("*.{py") == ["*.{py"]
        assert parse_file_pattern("*.py}") == ["*.py}"]
