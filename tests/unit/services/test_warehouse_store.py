"""Unit tests for the WarehouseStore service."""

from datetime import timedelta
from uuid import uuid4

import pytest

from wikigen.errors import NotFoundError, ValidationError
from wikigen.models.base import utc_now
from wikigen.models.document import Document, DocumentOverview
from wikigen.models.enums import ClassifyType, WarehouseStatus
from wikigen.models.warehouse import Warehouse
from wikigen.services.warehouse_store import WarehouseStore


def _make_document(warehouse_id: str, last_update=None) -> Document:
    return Document(
        document_id=str(uuid4()),
        warehouse_id=warehouse_id,
        git_path="/tmp/repositories/acme/widgets/main",
        last_update=last_update or utc_now(),
    )


class TestWarehouses:
    """Tests for warehouse registration and updates."""

    async def test_register_and_get(self, warehouse_store: WarehouseStore, warehouse: Warehouse) -> None:
        stored = await warehouse_store.get_warehouse(warehouse.warehouse_id)

        assert stored == warehouse

    async def test_duplicate_registration_is_rejected(
        self, warehouse_store: WarehouseStore, warehouse: Warehouse
    ) -> None:
        duplicate = warehouse.model_copy(update={"warehouse_id": str(uuid4())})

        with pytest.raises(ValidationError, match="already exists"):
            await warehouse_store.register_warehouse(duplicate)

    async def test_same_repository_on_another_branch_is_allowed(
        self, warehouse_store: WarehouseStore, warehouse: Warehouse
    ) -> None:
        other_branch = warehouse.model_copy(update={"warehouse_id": str(uuid4()), "branch": "develop"})

        await warehouse_store.register_warehouse(other_branch)

        assert len(await warehouse_store.list_warehouses()) == 2

    async def test_require_missing_warehouse(self, warehouse_store: WarehouseStore) -> None:
        with pytest.raises(NotFoundError):
            await warehouse_store.require_warehouse(str(uuid4()))

    async def test_status_classification_and_version(
        self, warehouse_store: WarehouseStore, warehouse: Warehouse
    ) -> None:
        await warehouse_store.update_status(warehouse.warehouse_id, WarehouseStatus.FAILED, error="clone failed")
        await warehouse_store.set_classification(warehouse.warehouse_id, ClassifyType.LIBRARIES)
        await warehouse_store.advance_version(warehouse.warehouse_id, "abc123")

        stored = await warehouse_store.require_warehouse(warehouse.warehouse_id)

        assert stored.status == WarehouseStatus.FAILED
        assert stored.error == "clone failed"
        assert stored.classify == ClassifyType.LIBRARIES
        assert stored.version == "abc123"
        assert [w.warehouse_id for w in await warehouse_store.list_warehouses(WarehouseStatus.FAILED)] == [
            warehouse.warehouse_id
        ]

    async def test_updating_missing_warehouse_raises(self, warehouse_store: WarehouseStore) -> None:
        with pytest.raises(NotFoundError):
            await warehouse_store.advance_version(str(uuid4()), "abc123")


class TestDocuments:
    """Tests for document upsert and sync candidates."""

    async def test_save_document_upserts_by_warehouse(
        self, warehouse_store: WarehouseStore, warehouse: Warehouse
    ) -> None:
        first = await warehouse_store.save_document(_make_document(warehouse.warehouse_id))
        second = await warehouse_store.save_document(_make_document(warehouse.warehouse_id))

        stored = await warehouse_store.get_document(warehouse.warehouse_id)

        assert stored.document_id == first.document_id
        assert second.document_id == first.document_id

    async def test_touch_document_moves_last_update(
        self, warehouse_store: WarehouseStore, warehouse: Warehouse
    ) -> None:
        old = utc_now() - timedelta(days=10)
        await warehouse_store.save_document(_make_document(warehouse.warehouse_id, last_update=old))

        await warehouse_store.touch_document(warehouse.warehouse_id)

        stored = await warehouse_store.get_document(warehouse.warehouse_id)
        assert stored.last_update > old + timedelta(days=9)

    async def test_sync_candidates_are_completed_stale_and_enabled(
        self, warehouse_store: WarehouseStore, warehouse: Warehouse
    ) -> None:
        stale = utc_now() - timedelta(days=10)
        await warehouse_store.save_document(_make_document(warehouse.warehouse_id, last_update=stale))

        disabled = await warehouse_store.register_warehouse(
            warehouse.model_copy(update={"warehouse_id": str(uuid4()), "name": "gadgets", "enable_sync": False})
        )
        await warehouse_store.save_document(_make_document(disabled.warehouse_id, last_update=stale))

        fresh = await warehouse_store.register_warehouse(
            warehouse.model_copy(update={"warehouse_id": str(uuid4()), "name": "gizmos"})
        )
        await warehouse_store.save_document(_make_document(fresh.warehouse_id))

        cutoff = utc_now() - timedelta(days=5)
        assert await warehouse_store.list_sync_candidates(cutoff) == []

        for warehouse_id in (warehouse.warehouse_id, disabled.warehouse_id, fresh.warehouse_id):
            await warehouse_store.update_status(warehouse_id, WarehouseStatus.COMPLETED)

        candidates = await warehouse_store.list_sync_candidates(cutoff)
        assert [w.warehouse_id for w in candidates] == [warehouse.warehouse_id]


class TestOverviews:
    """Tests for storing the project overview."""

    async def test_missing_overview_is_none(self, warehouse_store: WarehouseStore, warehouse: Warehouse) -> None:
        assert await warehouse_store.get_overview(warehouse.warehouse_id) is None

    async def test_save_overview_replaces_previous(
        self, warehouse_store: WarehouseStore, warehouse: Warehouse
    ) -> None:
        document = await warehouse_store.save_document(_make_document(warehouse.warehouse_id))
        for content in ("First draft.", "Second draft."):
            await warehouse_store.save_overview(
                DocumentOverview(
                    overview_id=str(uuid4()),
                    document_id=document.document_id,
                    warehouse_id=warehouse.warehouse_id,
                    content=content,
                )
            )

        stored = await warehouse_store.get_overview(warehouse.warehouse_id)

        assert stored.content == "Second draft."
        assert stored.document_id == document.document_id
