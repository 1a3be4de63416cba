from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, ClassVar

from pydantic import Field, field_validator, model_validator

from wikigen.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_extra_dict,
    ensure_non_empty_text,
    ensure_uuid_str,
    utc_now,
)


class DocumentFileItem(RecordModel):
    """Generated Markdown page bound to exactly one catalog node."""

    SCHEMA_VERSION: ClassVar[str] = "document_file_item.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    file_item_id: str
    catalog_id: str
    title: str
    description: str = ""
    content: str
    size: int = Field(default=0, ge=0)
    request_token: int = Field(default=0, ge=0)
    response_token: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)
    is_embedded: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("file_item_id", "catalog_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("title")
    @classmethod
    def _ensure_title(cls, value: str) -> str:
        return ensure_non_empty_text(value, "title")

    @field_validator("metadata", "extra", mode="before")
    @classmethod
    def _normalize_dicts(cls, value: Any) -> dict[str, Any]:
        return ensure_extra_dict(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "created_at")

    @model_validator(mode="before")
    @classmethod
    def _default_size(cls, data: Any) -> Any:
        if isinstance(data, dict) and "size" not in data and isinstance(data.get("content"), str):
            data = dict(data)
            data["size"] = len(data["content"])
        return data


class DocumentFileItemSource(RecordModel):
    """Provenance edge: one repository file that informed a page."""

    SCHEMA_VERSION: ClassVar[str] = "document_file_item_source.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    source_id: str
    file_item_id: str
    address: str
    name: str
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("source_id", "file_item_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        value = ensure_non_empty_text(value, "address").strip()
        if PurePosixPath(value).is_absolute():
            raise ValueError("address must be relative to the working tree")
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "created_at")
