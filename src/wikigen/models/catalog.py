from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from wikigen.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_non_empty_text,
    ensure_optional_uuid_str,
    ensure_uuid_str,
    utc_now,
)


class DocumentCatalog(RecordModel):
    """One node of a warehouse's documentation table of contents.

    The tree is stored flat: each row points at its parent through
    ``parent_id`` and trees are rebuilt in memory when needed.
    """

    SCHEMA_VERSION: ClassVar[str] = "document_catalog.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    catalog_id: str
    warehouse_id: str
    name: str
    url: str
    description: str = ""
    parent_id: str | None = None
    order: int = Field(default=0, ge=0)
    prompt: str = ""
    is_completed: bool = False
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("catalog_id", "warehouse_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("parent_id", mode="before")
    @classmethod
    def _normalize_parent_id(cls, value: Any) -> str | None:
        return ensure_optional_uuid_str(value)

    @field_validator("name", "url")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value").strip()

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "created_at")

    @field_validator("deleted_at", mode="before")
    @classmethod
    def _validate_deleted_at(cls, value: Any) -> datetime | None:
        if value is None:
            return None
        return coerce_aware_datetime(value, "deleted_at")

    @model_validator(mode="after")
    def _validate_parent(self) -> "DocumentCatalog":
        if self.parent_id == self.catalog_id:
            raise ValueError("catalog cannot be its own parent")
        return self


class CatalogDraft(BaseModel):
    """A catalog node proposed by the LLM that has not been persisted yet."""

    name: str
    url: str
    prompt: str = ""
    description: str = ""
    children: list["CatalogDraft"] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="ignore")


class CatalogTreeNode(BaseModel):
    """Ephemeral in-memory tree node built from flat catalog rows."""

    catalog: DocumentCatalog
    children: list["CatalogTreeNode"] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)
