"""Custom exception hierarchy for the restore utility."""

from typing import Any, Optional


class RestoreError(Exception):
    """Base exception for all restore errors."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize restore error.

        Args:
            message: Error message
            correlation_id: Optional correlation ID for tracing
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.correlation_id:
            parts.append(f"[correlation_id={self.correlation_id}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigurationError(RestoreError):
    """Configuration-related errors."""

    pass


class TransportFailure(RestoreError):
    """Network or auth failure talking to object storage or the search engine."""

    pass


class S3Error(TransportFailure):
    """S3-related errors."""

    pass


class ArchiveNotFound(S3Error):
    """Archive object does not exist in the bucket."""

    pass


class SearchEngineError(TransportFailure):
    """Elasticsearch request failed at the transport level."""

    pass


class CorruptArchive(RestoreError):
    """Invalid, truncated or checksum-invalid gzip framing."""

    pass


class MalformedEntry(RestoreError):
    """Object key does not have the <index>/<project> shape."""

    pass


class PartialIndexFailure(RestoreError):
    """At least one operation of a bulk flush was rejected."""

    def __init__(
        self,
        message: str,
        *,
        failure: Optional[dict[str, Any]] = None,
        failed_count: int = 0,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize partial index failure.

        Args:
            message: Error message
            failure: Structured detail of the first failed operation
            failed_count: Number of failed operations in the flush
            correlation_id: Optional correlation ID for tracing
            context: Optional context dictionary with additional details
        """
        super().__init__(message, correlation_id=correlation_id, context=context)
        self.failure = failure or {}
        self.failed_count = failed_count
