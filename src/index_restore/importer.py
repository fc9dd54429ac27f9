"""Streaming import of one archive into Elasticsearch."""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import structlog
from botocore.exceptions import BotoCoreError

from index_restore.archive import ArchiveRef
from index_restore.bulk import BulkBatch, CommitController
from index_restore.config import RestoreConfig
from index_restore.counting_reader import CountingReader
from index_restore.decompressor import GzipStream
from index_restore.exceptions import RestoreError, S3Error
from index_restore.line_framer import LineFramer
from index_restore.metrics import RestoreMetrics
from index_restore.progress_tracker import ProgressTracker
from index_restore.s3_client import S3Client
from utils.logging import get_logger


class BulkClient(Protocol):
    """Source of fresh bulk batches."""

    def new_bulk(self) -> BulkBatch: ...


@dataclass
class ImportResult:
    """Outcome of a completed import."""

    index: str
    project: str
    key: str
    target_index: str
    lines_read: int
    documents_submitted: int
    flushes: int
    bytes_read: int
    bytes_total: Optional[int]
    elapsed_seconds: float

    @property
    def blank_lines(self) -> int:
        return self.lines_read - self.documents_submitted


class ArchiveImporter:
    """Restores archives by streaming them through the bulk API.

    Every import owns its own reader, decompressor, batch and progress
    tracker, so separate imports can run concurrently.
    """

    def __init__(
        self,
        s3_client: S3Client,
        bulk_client: BulkClient,
        restore_config: Optional[RestoreConfig] = None,
        progress_factory: Optional[Callable[[], ProgressTracker]] = None,
        metrics: Optional[RestoreMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize archive importer.

        Args:
            s3_client: S3 client for the archive bucket
            bulk_client: Elasticsearch bulk client
            restore_config: Import pipeline configuration
            progress_factory: Creates one progress tracker per import
            metrics: Optional Prometheus metrics
            logger: Optional logger instance
        """
        self.s3_client = s3_client
        self.bulk_client = bulk_client
        self.restore_config = restore_config or RestoreConfig()
        self.logger = logger or get_logger("importer")
        self.progress_factory = progress_factory or (lambda: ProgressTracker(logger=self.logger))
        self.metrics = metrics

    def import_archive(self, ref: ArchiveRef, target_index: Optional[str] = None) -> ImportResult:
        """Stream one archive into Elasticsearch.

        Args:
            ref: Archive to restore
            target_index: Destination index (defaults to the archive's index)

        Returns:
            ImportResult with line, document, flush and byte counts

        Raises:
            ArchiveNotFound: If the archive does not exist
            TransportFailure: On any S3 or Elasticsearch transport error
            CorruptArchive: If the gzip stream is invalid or truncated
            PartialIndexFailure: If a bulk flush reports rejected operations
        """
        config = self.restore_config
        key = ref.key(config.archive_extension)
        index = target_index or ref.index
        title = f"Restoring index: {ref.index} ({ref.project})"
        log = self.logger.bind(index=ref.index, project=ref.project, target_index=index)

        progress = self.progress_factory()
        controller = CommitController(
            new_bulk=self.bulk_client.new_bulk,
            index=index,
            threshold=config.batch_size,
            id_strategy=config.id_strategy,
            flush_retries=config.flush_retries,
            flush_retry_delay=config.flush_retry_delay,
            on_flush=self._on_flush(index),
            logger=log,
        )

        started = time.monotonic()
        reader: Optional[CountingReader] = None
        bytes_total: Optional[int] = None
        status = "failure"
        log.info(title, key=key)

        try:
            with self.s3_client.open_object(key) as obj:
                bytes_total = obj.content_length
                progress.start(title, bytes_total)
                reader = CountingReader(obj.body)

                try:
                    framer = LineFramer(GzipStream(reader, logger=log))
                    for line in framer:
                        controller.add(line)
                        controller.commit()
                        progress.update(reader.bytes_read)
                    controller.commit(force=True)
                except BotoCoreError as e:
                    raise S3Error(
                        f"Failed reading archive stream: {e}",
                        context={"key": obj.key, "bytes_read": reader.bytes_read},
                    ) from e

            status = "success"
        except RestoreError as e:
            log.error(
                "Import failed",
                error_type=type(e).__name__,
                error=e.message,
                documents_submitted=controller.operations_submitted,
                flushes=controller.flush_count,
            )
            if self.metrics is not None:
                self.metrics.record_error(type(e).__name__)
            raise
        finally:
            elapsed = time.monotonic() - started
            progress.finish(success=status == "success")
            if self.metrics is not None:
                self.metrics.record_import(
                    index, status, reader.bytes_read if reader else 0, elapsed
                )

        result = ImportResult(
            index=ref.index,
            project=ref.project,
            key=key,
            target_index=index,
            lines_read=framer.lines_read,
            documents_submitted=controller.operations_submitted,
            flushes=controller.flush_count,
            bytes_read=reader.bytes_read,
            bytes_total=bytes_total,
            elapsed_seconds=elapsed,
        )
        log.info(
            "Import completed",
            lines_read=result.lines_read,
            documents=result.documents_submitted,
            flushes=result.flushes,
            bytes_read=result.bytes_read,
            elapsed=f"{elapsed:.1f}s",
        )
        return result

    def _on_flush(self, index: str) -> Optional[Callable[[int, float], None]]:
        if self.metrics is None:
            return None
        metrics = self.metrics

        def record(operations: int, duration: float) -> None:
            metrics.record_flush(index, operations, duration)

        return record
