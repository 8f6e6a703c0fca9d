class QueryServiceError(Exception):
    """Base class for failures raised while executing a query."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class LoadError(QueryServiceError):
    """A dataset could not be fetched or parsed into a relation."""


class SchemaError(QueryServiceError):
    """A relation was declared twice or a row does not fit its relation."""


class QueryExecutionError(QueryServiceError):
    """The engine rejected the statement. Carries the engine message verbatim."""


class ResourceExceeded(QueryServiceError):
    """The statement ran past the row ceiling or the execution timeout."""


class QueryCancelled(QueryServiceError):
    pass


class InvalidTransition(QueryServiceError):
    """A query record update would move the record backwards or out of a terminal state."""
