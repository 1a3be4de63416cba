"""Error taxonomy shared by the generation and sync services."""


class WikiGenError(Exception):
    """Base class for every error raised deliberately by wikigen."""


class NotFoundError(WikiGenError):
    """A warehouse, document or catalog node does not exist."""


class ValidationError(WikiGenError):
    """Input was rejected before any side effect took place."""


class GenerationError(WikiGenError):
    """The LLM call failed or its answer could not be parsed."""


class LLMRequestError(GenerationError):
    """The completion endpoint could not be reached or kept failing."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SnapshotError(WikiGenError):
    """Cloning, pulling or extracting a repository failed."""


class ConcurrencyConflictError(WikiGenError):
    """A sync is already in progress for the warehouse."""

    def __init__(self, warehouse_id: str) -> None:
        super().__init__(f"A sync is already in progress for warehouse {warehouse_id}")
        self.warehouse_id = warehouse_id


class LedgerStateError(WikiGenError):
    """A sync record was finalized twice or does not exist."""
