from enum import StrEnum


class WarehouseType(StrEnum):
    GIT = "git"
    FILE = "file"


class WarehouseStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class SyncTrigger(StrEnum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"
    INGEST = "ingest"


class ClassifyType(StrEnum):
    APPLICATIONS = "Applications"
    FRAMEWORKS = "Frameworks"
    LIBRARIES = "Libraries"
    DEVELOPMENT_TOOLS = "DevelopmentTools"
    CLI_TOOLS = "CLITools"
    DEVOPS_CONFIGURATION = "DevOpsConfiguration"
    DOCUMENTATION = "Documentation"
