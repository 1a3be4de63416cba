"""Factory functions for creating and wiring the wiki services.

Provides a production factory that builds everything from WikiSettings and a
test factory that takes fakes for the LLM transport and snapshot providers.
"""

from datetime import timedelta
from pathlib import Path
from uuid import uuid4

import chromadb
import httpx
import structlog
from chromadb.api.types import EmbeddingFunction
from sqlalchemy.ext.asyncio import AsyncEngine

from wikigen.config import WikiSettings
from wikigen.models.enums import WarehouseType
from wikigen.services.catalog_planner import CatalogPlanner
from wikigen.services.catalog_store import CatalogStore
from wikigen.services.chunker import Chunker
from wikigen.services.context import GenerationContextBuilder
from wikigen.services.database import create_async_engine_from_path, initialize_schema
from wikigen.services.documentation import DocumentationService
from wikigen.services.embedding import FileItemIndexer
from wikigen.services.file_walker import FileWalker
from wikigen.services.llm_client import LLMClient
from wikigen.services.node_processor import CatalogNodeProcessor
from wikigen.services.orchestrator import SyncOrchestrator
from wikigen.services.overview import OverviewWriter
from wikigen.services.scheduler import SyncScheduler
from wikigen.services.snapshot import ArchiveSnapshotProvider, GitSnapshotProvider, SnapshotProvider
from wikigen.services.sync_ledger import SyncLedger
from wikigen.services.vector_store import VectorStore
from wikigen.services.warehouse_store import WarehouseStore

_TEST_COLLECTION_ID_LENGTH = 8


class WikiServices:
    """The wired service graph plus the resources it owns.

    Use as an async context manager: entering creates the schema (and the
    vector collection when embedding is on); leaving waits for background
    syncs, then closes the HTTP client and disposes the engine.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        http_client: httpx.AsyncClient,
        warehouse_store: WarehouseStore,
        catalog_store: CatalogStore,
        ledger: SyncLedger,
        orchestrator: SyncOrchestrator,
        documentation: DocumentationService,
        scheduler: SyncScheduler,
        indexer: FileItemIndexer | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.engine = engine
        self.http_client = http_client
        self.warehouses = warehouse_store
        self.catalogs = catalog_store
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.documentation = documentation
        self.scheduler = scheduler
        self.indexer = indexer
        self._logger = logger or structlog.get_logger(__name__)

    async def __aenter__(self) -> "WikiServices":
        await initialize_schema(self.engine, logger=self._logger)
        if self.indexer is not None:
            await self.indexer.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.orchestrator.wait_idle()
        finally:
            await self.http_client.aclose()
            await self.engine.dispose()


def _build_services(
    settings: WikiSettings,
    engine: AsyncEngine,
    http_client: httpx.AsyncClient,
    snapshot_providers: dict[WarehouseType, SnapshotProvider],
    chroma_client: chromadb.ClientAPI | None,
    collection_name: str | None,
    embedding_function: EmbeddingFunction | None,
    logger: structlog.stdlib.BoundLogger,
) -> WikiServices:
    warehouse_store = WarehouseStore(engine=engine, logger=logger)
    catalog_store = CatalogStore(engine=engine, logger=logger)
    ledger = SyncLedger(engine=engine, logger=logger)

    llm_client = LLMClient(
        client=http_client,
        endpoint=settings.llm_endpoint,
        model=settings.llm_model,
        api_key=settings.llm_api_key,
        max_retries=settings.llm_max_retries,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        logger=logger,
    )

    file_walker = FileWalker(
        exclude_patterns=[p for pattern in settings.excluded_files for p in parse_file_pattern(pattern)],
        excluded_folders=settings.excluded_folders,
        max_file_size=settings.max_file_size_bytes,
        logger=logger,
    )
    context_builder = GenerationContextBuilder(file_walker=file_walker, language=settings.language, logger=logger)
    node_processor = CatalogNodeProcessor(
        llm_client=llm_client,
        model_name=settings.llm_model,
        max_excerpt_chars=settings.max_excerpt_chars,
        max_excerpt_files=settings.max_excerpt_files,
        max_attempts=settings.generation_attempts,
        retry_delay_seconds=settings.generation_retry_delay_seconds,
        logger=logger,
    )
    planner = CatalogPlanner(
        llm_client=llm_client,
        max_depth=settings.max_catalog_depth,
        max_attempts=settings.generation_attempts,
        retry_delay_seconds=settings.generation_retry_delay_seconds,
        logger=logger,
    )
    overview_writer = OverviewWriter(
        llm_client=llm_client,
        max_attempts=settings.generation_attempts,
        retry_delay_seconds=settings.generation_retry_delay_seconds,
        logger=logger,
    )

    indexer = None
    if settings.embedding_enabled and chroma_client is not None:
        vector_store = VectorStore(
            client=chroma_client,
            collection_name=collection_name,
            embedding_function=embedding_function,
            logger=logger,
        )
        chunker = Chunker(
            chunk_size=settings.embedding_chunk_size,
            chunk_overlap=settings.embedding_chunk_overlap,
            logger=logger,
        )
        indexer = FileItemIndexer(
            chunker=chunker,
            vector_store=vector_store,
            catalog_store=catalog_store,
            logger=logger,
        )

    orchestrator = SyncOrchestrator(
        warehouse_store=warehouse_store,
        catalog_store=catalog_store,
        ledger=ledger,
        snapshot_providers=snapshot_providers,
        context_builder=context_builder,
        node_processor=node_processor,
        planner=planner,
        repositories_dir=settings.repositories_dir,
        max_concurrent_generations=settings.max_concurrent_generations,
        max_catalog_depth=settings.max_catalog_depth,
        indexer=indexer,
        overview_writer=overview_writer,
        generate_missing_readme=settings.generate_missing_readme,
        logger=logger,
    )
    documentation = DocumentationService(
        warehouse_store=warehouse_store,
        catalog_store=catalog_store,
        context_builder=context_builder,
        node_processor=node_processor,
        orchestrator=orchestrator,
        indexer=indexer,
        logger=logger,
    )
    scheduler = SyncScheduler(
        warehouse_store=warehouse_store,
        ledger=ledger,
        orchestrator=orchestrator,
        update_interval=timedelta(days=settings.update_interval_days),
        stale_after=timedelta(minutes=settings.sync_stale_after_minutes),
        poll_seconds=settings.scheduler_poll_seconds,
        logger=logger,
    )

    return WikiServices(
        engine=engine,
        http_client=http_client,
        warehouse_store=warehouse_store,
        catalog_store=catalog_store,
        ledger=ledger,
        orchestrator=orchestrator,
        documentation=documentation,
        scheduler=scheduler,
        indexer=indexer,
        logger=logger,
    )


def create_services(settings: WikiSettings) -> WikiServices:
    """Create the production service graph with persistent storage.

    Args:
        settings: Loaded configuration; paths are created if missing.

    Returns:
        WikiServices to be entered with ``async with``.
    """
    logger = structlog.get_logger(__name__)

    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    settings.repositories_dir.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine_from_path(str(settings.database_path))
    http_client = httpx.AsyncClient(timeout=settings.llm_timeout_seconds)

    chroma_client = None
    if settings.embedding_enabled:
        settings.vector_store_dir.mkdir(parents=True, exist_ok=True)
        chroma_client = chromadb.PersistentClient(path=str(settings.vector_store_dir))

    snapshot_providers: dict[WarehouseType, SnapshotProvider] = {
        WarehouseType.GIT: GitSnapshotProvider(timeout_seconds=settings.git_timeout_seconds, logger=logger),
        WarehouseType.FILE: ArchiveSnapshotProvider(logger=logger),
    }

    return _build_services(
        settings=settings,
        engine=engine,
        http_client=http_client,
        snapshot_providers=snapshot_providers,
        chroma_client=chroma_client,
        collection_name=None,
        embedding_function=None,
        logger=logger,
    )


def create_test_services(
    database_path: Path,
    repositories_dir: Path,
    llm_transport: httpx.AsyncBaseTransport,
    snapshot_providers: dict[WarehouseType, SnapshotProvider],
    max_concurrent_generations: int = 3,
    max_catalog_depth: int = 4,
    embedding_function: EmbeddingFunction | None = None,
    collection_name: str | None = None,
) -> WikiServices:
    """Create a service graph backed by a throwaway database and fakes.

    The LLM endpoint is served by ``llm_transport`` (e.g. httpx.MockTransport)
    with retries disabled. Passing an ``embedding_function`` turns embedding on
    with an ephemeral ChromaDB collection, uniquely named unless given.
    """
    logger = structlog.get_logger(__name__)

    settings = WikiSettings(
        _env_file=None,
        database_path=database_path,
        repositories_dir=repositories_dir,
        llm_endpoint="http://llm.test/v1",
        llm_api_key="test-key",
        llm_model="test-model",
        llm_max_retries=0,
        generation_retry_delay_seconds=0,
        max_concurrent_generations=max_concurrent_generations,
        max_catalog_depth=max_catalog_depth,
        embedding_enabled=embedding_function is not None,
    )
    engine = create_async_engine_from_path(str(database_path))
    http_client = httpx.AsyncClient(transport=llm_transport)

    chroma_client = chromadb.EphemeralClient() if embedding_function is not None else None
    effective_collection_name = collection_name or f"test_{uuid4().hex[:_TEST_COLLECTION_ID_LENGTH]}"

    return _build_services(
        settings=settings,
        engine=engine,
        http_client=http_client,
        snapshot_providers=snapshot_providers,
        chroma_client=chroma_client,
        collection_name=effective_collection_name,
        embedding_function=embedding_function,
        logger=logger,
    )


def parse_file_pattern(pattern: str) -> list[str]:
    """Parse brace-expansion patterns into individual glob patterns.

    Expands patterns like "*.{py,js,ts}" into ["*.py", "*.js", "*.ts"].
    Patterns without braces are returned as single-element lists.

    Args:
        pattern: Glob pattern, possibly with brace expansion.

    Returns:
        List of individual glob patterns.
    """
    if "{" not in pattern or "}" not in pattern:
        return [pattern]

    brace_start = pattern.index("{")
    brace_end = pattern.index("}")

    prefix = pattern[:brace_start]
    suffix = pattern[brace_end + 1 :]
    alternatives = pattern[brace_start + 1 : brace_end].split(",")

    return [f"{prefix}{alt.strip()}{suffix}" for alt in alternatives]
