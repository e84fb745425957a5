"""Error taxonomy of the context retrieval pipeline."""


class ContextError(Exception):
    """Base class for all context pipeline errors."""


class ClientRequestError(ContextError):
    """A backend request failed at the transport level or returned a non-2xx status.

    Attributes:
        status_code: HTTP status of the failed response, None for transport failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchError(ClientRequestError):
    """Fetching a source document failed.

    Attributes:
        timed_out: True if no response arrived within the fetch timeout.
    """

    def __init__(self, message: str, status_code: int | None = None, timed_out: bool = False) -> None:
        super().__init__(message, status_code=status_code)
        self.timed_out = timed_out


class ValidationError(ContextError):
    """Document content or a source URL was rejected before processing."""


class EmbeddingError(ClientRequestError):
    """The embedding provider failed; no partial result is returned."""


class VectorStoreError(ClientRequestError):
    """An upsert, search, delete or count against the vector store failed."""


class ContextNotFoundError(ContextError):
    """No context document exists for the requested id or scope."""
