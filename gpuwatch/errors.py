"""Exception types shared across the pipeline."""


class GPUWatchError(Exception):
    """Base class for pipeline errors."""


class ConnectorError(GPUWatchError):
    """A single retailer lookup failed (network, timeout, rate limit, parse)."""


class ConnectorConfigError(GPUWatchError):
    """A connector cannot run at all, e.g. missing credentials or unknown source.

    Raised before any offer is produced; the ingest job fails and the queue
    retries it.
    """


class PersistenceError(GPUWatchError):
    """Storing one offer failed."""

    def __init__(self, gpu_id: int, retailer: str, cause: Exception):
        self.gpu_id = gpu_id
        self.retailer = retailer
        self.cause = cause
        super().__init__(f"DB upsert error ({gpu_id}/{retailer}): {cause}")


class NotificationError(GPUWatchError):
    """The email provider rejected a message or could not be reached."""


class CatalogValidationError(GPUWatchError):
    """Catalog or watch input failed validation.

    Attributes:
        errors: List of {"field": ..., "message": ...} dicts
    """

    def __init__(self, errors: list[dict[str, str]]):
        self.errors = errors
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        super().__init__(f"Invalid input: {summary}")
