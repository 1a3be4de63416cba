from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from wikigen.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_uuid_str,
    utc_now,
)
from wikigen.models.enums import SyncStatus, SyncTrigger


class FileChanges(BaseModel):
    """Repository paths touched between two snapshots."""

    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    full_refresh: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)

    @property
    def paths(self) -> set[str]:
        return {*self.added, *self.modified, *self.deleted}


class WarehouseSyncRecord(RecordModel):
    """Audit row for one sync attempt.

    Created as ``in_progress`` and finalized exactly once as ``success`` or
    ``failed``; the ledger never mutates a finalized row.
    """

    SCHEMA_VERSION: ClassVar[str] = "warehouse_sync_record.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    record_id: str
    warehouse_id: str
    status: SyncStatus = SyncStatus.IN_PROGRESS
    trigger: SyncTrigger = SyncTrigger.MANUAL
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    from_version: str | None = None
    to_version: str | None = None
    error_message: str | None = None
    file_count: int = Field(default=0, ge=0)
    updated_file_count: int = Field(default=0, ge=0)
    added_file_count: int = Field(default=0, ge=0)
    deleted_file_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("record_id", "warehouse_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("start_time", "created_at", mode="before")
    @classmethod
    def _validate_timestamps(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "timestamp")

    @field_validator("end_time", mode="before")
    @classmethod
    def _validate_end_time(cls, value: Any) -> datetime | None:
        if value is None:
            return None
        return coerce_aware_datetime(value, "end_time")

    @model_validator(mode="after")
    def _validate_finalization(self) -> "WarehouseSyncRecord":
        if self.status == SyncStatus.IN_PROGRESS and self.end_time is not None:
            raise ValueError("an in-progress sync cannot have an end_time")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self

    @property
    def is_running(self) -> bool:
        return self.status == SyncStatus.IN_PROGRESS
