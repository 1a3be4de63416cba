from datetime import datetime
from uuid import uuid4

import pytest
from pydantic import ValidationError

from wikigen.models.catalog import CatalogDraft, DocumentCatalog


def _make_catalog(**overrides) -> DocumentCatalog:
    values = {
        "catalog_id": str(uuid4()),
        "warehouse_id": str(uuid4()),
        "name": "Getting Started",
        "url": "getting-started",
        "prompt": "Explain how to install and run the project.",
    }
    values.update(overrides)
    return DocumentCatalog(**values)


def test_catalog_has_expected_defaults() -> None:
    catalog = _make_catalog()

    assert catalog.parent_id is None
    assert catalog.order == 0
    assert catalog.is_completed is False
    assert catalog.is_deleted is False
    assert catalog.deleted_at is None


def test_empty_parent_id_means_root() -> None:
    catalog = _make_catalog(parent_id="")

    assert catalog.parent_id is None


def test_catalog_cannot_be_its_own_parent() -> None:
    catalog_id = str(uuid4())

    with pytest.raises(ValidationError, match="own parent"):
        _make_catalog(catalog_id=catalog_id, parent_id=catalog_id)


def test_catalog_rejects_negative_order() -> None:
    with pytest.raises(ValidationError):
        _make_catalog(order=-1)


def test_catalog_strips_name_and_url() -> None:
    catalog = _make_catalog(name="  Overview ", url=" overview ")

    assert catalog.name == "Overview"
    assert catalog.url == "overview"


def test_catalog_rejects_naive_deleted_at() -> None:
    with pytest.raises(ValidationError):
        _make_catalog(is_deleted=True, deleted_at=datetime.now())


def test_catalog_draft_ignores_unknown_keys() -> None:
    draft = CatalogDraft.model_validate(
        {
            "name": "API",
            "url": "api",
            "prompt": "Describe the API.",
            "icon": "book",
            "children": [{"name": "Auth", "url": "auth"}],
        }
    )

    assert draft.children[0].name == "Auth"
    assert draft.children[0].children == []
