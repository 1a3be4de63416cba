from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

from wikigen.models.enums import WarehouseStatus, WarehouseType
from wikigen.models.warehouse import Warehouse


def _make_warehouse(**overrides) -> Warehouse:
    values = {
        "warehouse_id": str(uuid4()),
        "organization_name": "acme",
        "name": "widgets",
        "address": "https://github.com/acme/widgets.git",
    }
    values.update(overrides)
    return Warehouse(**values)


def test_warehouse_has_expected_defaults() -> None:
    warehouse = _make_warehouse()

    assert warehouse.branch == "main"
    assert warehouse.type == WarehouseType.GIT
    assert warehouse.status == WarehouseStatus.PENDING
    assert warehouse.version is None
    assert warehouse.enable_sync is True
    assert warehouse.has_credentials is False


def test_warehouse_normalizes_uuid_identifier() -> None:
    raw = uuid4()
    warehouse = _make_warehouse(warehouse_id=raw)

    assert warehouse.warehouse_id == str(raw)
    assert UUID(warehouse.warehouse_id) == raw


def test_blank_version_is_treated_as_missing() -> None:
    warehouse = _make_warehouse(version="  ")

    assert warehouse.version is None


@pytest.mark.parametrize("field", ["organization_name", "name", "address", "branch"])
def test_warehouse_rejects_blank_required_text(field: str) -> None:
    with pytest.raises(ValidationError):
        _make_warehouse(**{field: ""})


def test_password_is_hidden_from_repr() -> None:
    warehouse = _make_warehouse(git_user_name="bot", git_password="s3cret-token")

    assert warehouse.has_credentials is True
    assert "s3cret-token" not in repr(warehouse)


def test_warehouse_is_immutable() -> None:
    warehouse = _make_warehouse()

    with pytest.raises(ValidationError):
        warehouse.version = "abc123"
