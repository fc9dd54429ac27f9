"""Bulk batch accumulation and the commit state machine."""

import json
import time
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from index_restore.config import DEFAULT_BATCH_SIZE
from index_restore.exceptions import PartialIndexFailure, SearchEngineError
from utils.checksum import ChecksumCalculator
from utils.logging import get_logger
from utils.retry import RetryConfig, retry_sync

BulkSender = Callable[[list[Any]], dict[str, Any]]


class BulkResponse:
    """Per-operation results of one bulk request."""

    def __init__(self, items: Optional[list[dict[str, Any]]] = None, took: int = 0) -> None:
        """Initialize bulk response.

        Args:
            items: One result dict per operation, e.g. {"_index": ..., "status": 201}
            took: Server-side processing time in milliseconds
        """
        self.items = items or []
        self.took = took

    @classmethod
    def from_api(cls, body: dict[str, Any]) -> "BulkResponse":
        """Build from an Elasticsearch bulk response body.

        Each entry of body["items"] is keyed by its op type ({"index": {...}}).
        """
        items = []
        for entry in body.get("items", []):
            for op_type, result in entry.items():
                items.append({"op_type": op_type, **result})
        return cls(items=items, took=body.get("took", 0))

    def failed(self) -> list[dict[str, Any]]:
        """Return operations that carry an error or a non-2xx status."""
        return [
            item
            for item in self.items
            if item.get("error") is not None or not 200 <= int(item.get("status", 200)) <= 299
        ]


class BulkBatch:
    """Ordered list of index operations sent together in one bulk request."""

    def __init__(
        self,
        send: BulkSender,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize bulk batch.

        Args:
            send: Callable taking the NDJSON operation lines and returning the
                bulk response body
            logger: Optional logger instance
        """
        self._send = send
        self.logger = logger or get_logger("bulk")
        self._operations: list[Any] = []
        self._actions = 0

    @property
    def number_of_actions(self) -> int:
        return self._actions

    def add(self, index: str, document: bytes, doc_id: Optional[str] = None) -> None:
        """Append one index operation.

        Args:
            index: Target index name
            document: Raw JSON document body, passed through untouched
            doc_id: Optional document id (engine-assigned when None)
        """
        action: dict[str, Any] = {"_index": index}
        if doc_id is not None:
            action["_id"] = doc_id
        self._operations.append({"index": action})
        self._operations.append(document)
        self._actions += 1

    def do(self) -> BulkResponse:
        """Send the whole batch in one bulk request.

        An empty batch succeeds without a request.

        Raises:
            SearchEngineError: If the request fails at the transport level
        """
        if not self._actions:
            return BulkResponse()
        return BulkResponse.from_api(self._send(self._operations))


class CommitState(str, Enum):
    """States of the commit controller."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


def flush_required(pending: int, threshold: int, force: bool) -> bool:
    """Decide whether a pending batch must be flushed now.

    Args:
        pending: Operations in the pending batch
        threshold: Maximum operations accumulated before a flush
        force: True at end of stream

    Returns:
        True if the batch should be flushed
    """
    return force or pending >= threshold


class CommitController:
    """Owns the pending batch and decides when it is flushed.

    IDLE -> ACCUMULATING on the first operation of a fresh batch,
    ACCUMULATING -> FLUSHING -> IDLE when the threshold is reached or the
    flush is forced. Any failure during a flush is fatal.
    """

    def __init__(
        self,
        new_bulk: Callable[[], BulkBatch],
        index: str,
        threshold: int = DEFAULT_BATCH_SIZE,
        id_strategy: str = "content_hash",
        flush_retries: int = 0,
        flush_retry_delay: float = 1.0,
        on_flush: Optional[Callable[[int, float], None]] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize commit controller.

        Args:
            new_bulk: Factory for fresh bulk batches
            index: Target index name for every operation
            threshold: Operation count that triggers a flush
            id_strategy: 'content_hash' for SHA-256 ids, 'auto' for engine-assigned ids
            flush_retries: Extra attempts for a flush that failed at the transport level
            flush_retry_delay: Initial backoff delay between flush attempts
            on_flush: Optional callback(operations, duration_seconds) after each flush
            logger: Optional logger instance
        """
        if threshold < 1:
            raise ValueError(f"Threshold must be at least 1, got {threshold}")

        self.new_bulk = new_bulk
        self.index = index
        self.threshold = threshold
        self.id_strategy = id_strategy
        self.on_flush = on_flush
        self.logger = logger or get_logger("commit_controller")
        self.checksum_calculator = ChecksumCalculator()

        self.retry_config: Optional[RetryConfig] = None
        if flush_retries > 0:
            self.retry_config = RetryConfig(
                max_attempts=flush_retries + 1,
                initial_delay=flush_retry_delay,
                max_delay=30.0,
                retryable_exceptions=(SearchEngineError,),
            )

        self._batch: Optional[BulkBatch] = None
        self._state = CommitState.IDLE
        self.operations_submitted = 0
        self.flush_count = 0

    @property
    def state(self) -> CommitState:
        return self._state

    @property
    def pending_count(self) -> int:
        """Operations in the pending batch (0 when idle)."""
        return self._batch.number_of_actions if self._batch is not None else 0

    def add(self, line: bytes) -> bool:
        """Queue one trimmed record.

        Args:
            line: Trimmed NDJSON line

        Returns:
            False if the line was blank and discarded, True otherwise
        """
        if not line:
            return False

        if self._batch is None:
            self._batch = self.new_bulk()
            self._state = CommitState.ACCUMULATING

        doc_id = None
        if self.id_strategy == "content_hash":
            doc_id = self.checksum_calculator.calculate_sha256(line)

        self._batch.add(self.index, line, doc_id=doc_id)
        return True

    def commit(self, force: bool = False) -> bool:
        """Flush the pending batch if the threshold is reached or force is set.

        With no pending batch a forced commit is a no-op that succeeds.

        Args:
            force: Flush regardless of the batch size (end of stream)

        Returns:
            True if a bulk request was sent

        Raises:
            SearchEngineError: If the bulk request fails at the transport level
            PartialIndexFailure: If any operation in the flush was rejected
        """
        if self._batch is None:
            return False

        pending = self._batch.number_of_actions
        if not flush_required(pending, self.threshold, force):
            return False

        self._state = CommitState.FLUSHING
        started = time.monotonic()

        if self.retry_config is not None:
            response = retry_sync(self._batch.do, config=self.retry_config, logger=self.logger)
        else:
            response = self._batch.do()

        duration = time.monotonic() - started
        self.flush_count += 1
        self.operations_submitted += pending

        failed = response.failed()
        if failed:
            detail = json.dumps(failed[0], indent=2, default=str)
            raise PartialIndexFailure(
                f"Bulk flush had failed index requests: {detail}",
                failure=failed[0],
                failed_count=len(failed),
                context={
                    "index": self.index,
                    "operations": pending,
                    "failed": len(failed),
                    "flush": self.flush_count,
                },
            )

        self.logger.debug(
            "Bulk flush completed",
            index=self.index,
            operations=pending,
            flush=self.flush_count,
            forced=force,
            duration=f"{duration:.3f}s",
            took_ms=response.took,
        )

        self._batch = None
        self._state = CommitState.IDLE

        if self.on_flush is not None:
            self.on_flush(pending, duration)

        return True
