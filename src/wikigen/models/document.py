from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field, field_validator

from wikigen.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_non_empty_text,
    ensure_uuid_str,
    utc_now,
)


class Document(RecordModel):
    """The materialized working tree of a warehouse and its sync freshness."""

    SCHEMA_VERSION: ClassVar[str] = "document.v2"

    schema_version: str = Field(default=SCHEMA_VERSION)
    document_id: str
    warehouse_id: str
    git_path: str
    last_update: datetime
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("document_id", "warehouse_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("git_path")
    @classmethod
    def _ensure_git_path(cls, value: str) -> str:
        return ensure_non_empty_text(value, "git_path")

    @field_validator("last_update", "created_at", mode="before")
    @classmethod
    def _validate_timestamps(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "timestamp")


class DocumentOverview(RecordModel):
    """Front-page overview of a warehouse's wiki; one per document."""

    SCHEMA_VERSION: ClassVar[str] = "document_overview.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    overview_id: str
    document_id: str
    warehouse_id: str
    content: str
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("overview_id", "document_id", "warehouse_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("content")
    @classmethod
    def _ensure_content(cls, value: str) -> str:
        return ensure_non_empty_text(value, "content")

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "created_at")
