"""Gzip decompression of archive streams."""

import gzip
import zlib
from typing import Optional

import structlog

from index_restore.counting_reader import CountingReader
from index_restore.exceptions import CorruptArchive
from utils.logging import get_logger

# Errors raised by gzip/zlib for bad magic, bad CRC or length, truncation and
# invalid deflate data.
GZIP_ERRORS = (gzip.BadGzipFile, EOFError, zlib.error)


class GzipStream:
    """Inflates a gzip-compressed byte stream.

    The header is parsed on construction, so a stream that is not gzip at all
    fails before any document is produced. Concatenated members are read as
    one logical stream.
    """

    def __init__(
        self,
        source: CountingReader,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Open the gzip stream.

        Args:
            source: Counting reader over the raw object body
            logger: Optional logger instance

        Raises:
            CorruptArchive: If the stream is empty or has no valid gzip header
        """
        self.logger = logger or get_logger("decompressor")
        self._source = source
        self._gzip = gzip.GzipFile(fileobj=source, mode="rb")

        try:
            head = self._gzip.peek(1)
        except GZIP_ERRORS as e:
            raise CorruptArchive(
                f"Invalid gzip header: {e}",
                context={"bytes_read": source.bytes_read},
            ) from e

        if not head and source.bytes_read == 0:
            raise CorruptArchive("Archive is empty, expected a gzip header")

        self.logger.debug("Gzip stream opened", compressed_bytes_read=source.bytes_read)

    def read(self, size: int = -1) -> bytes:
        """Read decompressed bytes.

        Raises:
            CorruptArchive: If the compressed stream is truncated or invalid
        """
        try:
            return self._gzip.read(size)
        except GZIP_ERRORS as e:
            raise self._corrupt(e) from e

    def readline(self) -> bytes:
        """Read one decompressed line including its newline, b"" at end of stream.

        Raises:
            CorruptArchive: If the compressed stream is truncated or invalid
        """
        try:
            return self._gzip.readline()
        except GZIP_ERRORS as e:
            raise self._corrupt(e) from e

    def close(self) -> None:
        self._gzip.close()

    def _corrupt(self, error: Exception) -> CorruptArchive:
        return CorruptArchive(
            f"Corrupt gzip stream: {error}",
            context={"bytes_read": self._source.bytes_read},
        )
