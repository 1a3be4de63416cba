"""SQLModel table definitions for database persistence.

Table classes are kept apart from the frozen pydantic domain models in
``wikigen.models``: the ORM needs mutable rows, while the domain models stay
immutable and strictly validated. Field names match the domain models so the
stores can convert with ``model_dump()`` / ``model_validate()``. Enum fields
are stored as their string values.

Invariants that must hold across concurrent writers live here as constraints
rather than in application code:

* catalog ``(warehouse_id, url)`` and ``(warehouse_id, name)`` are unique among
  rows that are not soft-deleted (partial unique indexes);
* a catalog node owns at most one file item (unique ``catalog_id``);
* a document has at most one overview (unique ``document_id``);
* provenance rows cascade-delete with their file item;
* at most one ``in_progress`` sync record exists per warehouse.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, ForeignKey, Index, String, text
from sqlmodel import Field, SQLModel


class WarehouseRecord(SQLModel, table=True):
    __tablename__ = "warehouses"
    __table_args__ = (
        Index(
            "uq_warehouses_org_name_branch",
            "organization_name",
            "name",
            "branch",
            unique=True,
        ),
    )

    warehouse_id: str = Field(primary_key=True)
    schema_version: str
    organization_name: str
    name: str
    description: str = ""
    address: str
    branch: str
    git_user_name: str | None = None
    git_password: str | None = None
    type: str
    status: str = Field(index=True)
    error: str | None = None
    version: str | None = None
    classify: str | None = None
    enable_sync: bool = True
    created_at: datetime


class DocumentRecord(SQLModel, table=True):
    __tablename__ = "documents"

    document_id: str = Field(primary_key=True)
    schema_version: str
    warehouse_id: str = Field(foreign_key="warehouses.warehouse_id", unique=True)
    git_path: str
    last_update: datetime = Field(index=True)
    created_at: datetime


class DocumentOverviewRecord(SQLModel, table=True):
    __tablename__ = "document_overviews"

    overview_id: str = Field(primary_key=True)
    schema_version: str
    document_id: str = Field(foreign_key="documents.document_id", unique=True)
    warehouse_id: str = Field(index=True, foreign_key="warehouses.warehouse_id")
    content: str
    created_at: datetime


class CatalogRecord(SQLModel, table=True):
    """Flat, self-referencing catalog rows.

    ``parent_id`` carries no foreign key: orphans are tolerated and surface as
    extra roots when the tree is rebuilt.
    """

    __tablename__ = "document_catalogs"
    __table_args__ = (
        Index(
            "uq_document_catalogs_warehouse_url_live",
            "warehouse_id",
            "url",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
        Index(
            "uq_document_catalogs_warehouse_name_live",
            "warehouse_id",
            "name",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    catalog_id: str = Field(primary_key=True)
    schema_version: str
    warehouse_id: str = Field(index=True, foreign_key="warehouses.warehouse_id")
    name: str
    url: str
    description: str = ""
    parent_id: str | None = Field(default=None, index=True)
    order: int = 0
    prompt: str = ""
    is_completed: bool = False
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime


class FileItemRecord(SQLModel, table=True):
    __tablename__ = "document_file_items"

    file_item_id: str = Field(primary_key=True)
    schema_version: str
    catalog_id: str = Field(foreign_key="document_catalogs.catalog_id", unique=True)
    title: str
    description: str = ""
    content: str
    size: int = 0
    request_token: int = 0
    response_token: int = 0
    # ``metadata`` is reserved on declarative classes.
    item_metadata: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    extra: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    is_embedded: bool = False
    created_at: datetime


class FileItemSourceRecord(SQLModel, table=True):
    __tablename__ = "document_file_item_sources"

    source_id: str = Field(primary_key=True)
    schema_version: str
    file_item_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("document_file_items.file_item_id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    address: str = Field(index=True)
    name: str
    created_at: datetime


class SyncRecordRow(SQLModel, table=True):
    __tablename__ = "warehouse_sync_records"
    __table_args__ = (
        Index(
            "uq_warehouse_sync_records_running",
            "warehouse_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    record_id: str = Field(primary_key=True)
    schema_version: str
    warehouse_id: str = Field(index=True, foreign_key="warehouses.warehouse_id")
    status: str
    trigger: str
    start_time: datetime
    end_time: datetime | None = None
    from_version: str | None = None
    to_version: str | None = None
    error_message: str | None = None
    file_count: int = 0
    updated_file_count: int = 0
    added_file_count: int = 0
    deleted_file_count: int = 0
    created_at: datetime
