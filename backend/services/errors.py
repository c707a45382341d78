"""
Error taxonomy for record resolution and evaluation storage.

Only SourceUnavailable escapes the record resolver. MalformedSource is
raised by source parsers and absorbed by the resolver, which logs it and
moves on to the next source. NotFoundError and ConflictError are raised
by the evaluation service and mapped to HTTP statuses by the API layer.
"""


class RecordServiceError(Exception):
    """Base class for errors raised by the backend services."""


class SourceUnavailable(RecordServiceError):
    """
    A configured store could not be queried (or is required but not configured).

    From the record resolver this is only ever raised for the primary
    workflow store.

    Attributes:
        source: Name of the source that failed.
        cause: The underlying transport or server error.
    """

    def __init__(self, source: str, cause: Exception | None = None):
        self.source = source
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Source '{source}' is unavailable{detail}")


class MalformedSource(RecordServiceError):
    """A file or document exists but does not have the expected shape."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Malformed source {location}: {reason}")


class NotFoundError(RecordServiceError):
    """A requested participant, patient or evaluation set does not exist."""


class ConflictError(RecordServiceError):
    """A record with the same identity already exists."""
