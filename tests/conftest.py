"""Shared fixtures: a per-test SQLite file database and its stores."""

from collections.abc import AsyncIterator
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from wikigen.models.warehouse import Warehouse
from wikigen.services.catalog_store import CatalogStore
from wikigen.services.database import create_async_engine_from_path, initialize_schema
from wikigen.services.sync_ledger import SyncLedger
from wikigen.services.warehouse_store import WarehouseStore


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed engine with the schema created; disposed after the test."""
    engine = create_async_engine_from_path(str(tmp_path / "wiki.db"))
    await initialize_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def warehouse_store(engine: AsyncEngine) -> WarehouseStore:
    return WarehouseStore(engine=engine)


@pytest.fixture
def catalog_store(engine: AsyncEngine) -> CatalogStore:
    return CatalogStore(engine=engine)


@pytest.fixture
def ledger(engine: AsyncEngine) -> SyncLedger:
    return SyncLedger(engine=engine)


@pytest.fixture
async def warehouse(warehouse_store: WarehouseStore) -> Warehouse:
    """A registered git warehouse that has not been ingested."""
    return await warehouse_store.register_warehouse(
        Warehouse(
            warehouse_id=str(uuid4()),
            organization_name="acme",
            name="widgets",
            address="https://github.com/acme/widgets.git",
        )
    )
