"""Byte-counting wrapper around a raw object stream."""

from typing import Any


class CountingReader:
    """Delegates reads to a source stream and counts the bytes returned.

    The count only grows on successful reads; errors from the source propagate
    unchanged. One instance belongs to exactly one import.
    """

    def __init__(self, source: Any) -> None:
        """Initialize counting reader.

        Args:
            source: Object exposing read(size), e.g. a botocore StreamingBody
        """
        self._source = source
        self._bytes_read = 0

    @property
    def bytes_read(self) -> int:
        """Total number of bytes returned so far."""
        return self._bytes_read

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes from the source (all remaining if size < 0)."""
        if size is None or size < 0:
            data = self._source.read()
        else:
            data = self._source.read(size)
        if data:
            self._bytes_read += len(data)
        return data

    def close(self) -> None:
        close = getattr(self._source, "close", None)
        if close is not None:
            close()
