from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from wikigen.models.document import Document, DocumentOverview


def test_document_has_expected_defaults() -> None:
    document = Document(
        document_id=str(uuid4()),
        warehouse_id=str(uuid4()),
        git_path="/var/wiki/repositories/acme/widgets/main",
        last_update=datetime.now(timezone.utc),
    )

    assert document.schema_version == Document.SCHEMA_VERSION
    assert document.to_record()["schema_version"] == Document.SCHEMA_VERSION


def test_document_requires_timezone_aware_last_update() -> None:
    with pytest.raises(ValidationError):
        Document(
            document_id=str(uuid4()),
            warehouse_id=str(uuid4()),
            git_path="/tmp/repo",
            last_update=datetime.now(),
        )


def test_document_rejects_blank_git_path() -> None:
    with pytest.raises(ValidationError):
        Document(
            document_id=str(uuid4()),
            warehouse_id=str(uuid4()),
            git_path="   ",
            last_update=datetime.now(timezone.utc),
        )


def test_document_record_round_trip() -> None:
    document = Document(
        document_id=str(uuid4()),
        warehouse_id=str(uuid4()),
        git_path="/tmp/repo",
        last_update=datetime.now(timezone.utc),
    )

    restored = Document.from_record(document.to_record())
    assert restored == document


def test_overview_rejects_blank_content() -> None:
    with pytest.raises(ValidationError):
        DocumentOverview(
            overview_id=str(uuid4()),
            document_id=str(uuid4()),
            warehouse_id=str(uuid4()),
            content="  \n",
        )


def test_overview_has_expected_defaults() -> None:
    overview = DocumentOverview(
        overview_id=str(uuid4()),
        document_id=str(uuid4()),
        warehouse_id=str(uuid4()),
        content="# Widgets\n\nTurns gadgets into widgets.",
    )

    assert overview.schema_version == DocumentOverview.SCHEMA_VERSION
    assert overview.created_at.tzinfo is not None
