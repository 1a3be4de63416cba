from wikigen.models.catalog import CatalogDraft, CatalogTreeNode, DocumentCatalog
from wikigen.models.document import Document, DocumentOverview
from wikigen.models.enums import (
    ClassifyType,
    SyncStatus,
    SyncTrigger,
    WarehouseStatus,
    WarehouseType,
)
from wikigen.models.file_item import DocumentFileItem, DocumentFileItemSource
from wikigen.models.sync_record import FileChanges, WarehouseSyncRecord
from wikigen.models.warehouse import Warehouse

__all__ = [
    "Warehouse",
    "Document",
    "DocumentOverview",
    "DocumentCatalog",
    "CatalogDraft",
    "CatalogTreeNode",
    "DocumentFileItem",
    "DocumentFileItemSource",
    "WarehouseSyncRecord",
    "FileChanges",
    "ClassifyType",
    "SyncStatus",
    "SyncTrigger",
    "WarehouseStatus",
    "WarehouseType",
]
