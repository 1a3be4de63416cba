from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field, ValidationInfo, field_validator

from wikigen.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_non_empty_text,
    ensure_uuid_str,
    utc_now,
)
from wikigen.models.enums import ClassifyType, WarehouseStatus, WarehouseType


class Warehouse(RecordModel):
    """A tracked source repository and the state of its generated wiki."""

    SCHEMA_VERSION: ClassVar[str] = "warehouse.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    warehouse_id: str
    organization_name: str
    name: str
    description: str = ""
    address: str
    branch: str = "main"
    git_user_name: str | None = None
    git_password: str | None = Field(default=None, repr=False)
    type: WarehouseType = WarehouseType.GIT
    status: WarehouseStatus = WarehouseStatus.PENDING
    error: str | None = None
    version: str | None = None
    classify: ClassifyType | None = None
    enable_sync: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("warehouse_id", mode="before")
    @classmethod
    def _normalize_warehouse_id(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("organization_name", "name", "address", "branch")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value").strip()

    @field_validator("version", mode="before")
    @classmethod
    def _blank_version_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "created_at")

    @property
    def has_credentials(self) -> bool:
        return bool(self.git_user_name and self.git_password)
