"""End-to-end tests of the streaming import pipeline with in-memory archives."""

import gzip
import threading
from typing import Callable
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError, ReadTimeoutError

from conftest import RecordingBulk, make_archive, make_documents
from index_restore.archive import ArchiveRef
from index_restore.bulk import BulkBatch, CommitController
from index_restore.config import RestoreConfig
from index_restore.exceptions import (
    ArchiveNotFound,
    CorruptArchive,
    PartialIndexFailure,
    S3Error,
    SearchEngineError,
)
from index_restore.importer import ArchiveImporter
from index_restore.metrics import RestoreMetrics
from index_restore.progress_tracker import ProgressTracker
from index_restore.s3_client import S3Client

REF = ArchiveRef(index="logs", project="prod")
KEY = "logs/prod.ndjson.gz"


class FakeBulkClient:
    def __init__(self, send: Callable) -> None:
        self.send = send

    def new_bulk(self) -> BulkBatch:
        return BulkBatch(send=self.send)


class RecordingProgress(ProgressTracker):
    """Progress tracker that remembers every reported value."""

    def __init__(self) -> None:
        super().__init__(quiet=True)
        self.reported: list[int] = []

    def update(self, bytes_read: int) -> None:
        super().update(bytes_read)
        self.reported.append(self.bytes_read)


def _importer(
    s3: S3Client,
    bulk: Callable,
    batch_size: int = 4000,
    progress: ProgressTracker = None,
    **config,
) -> ArchiveImporter:
    return ArchiveImporter(
        s3_client=s3,
        bulk_client=FakeBulkClient(bulk),
        restore_config=RestoreConfig(batch_size=batch_size, **config),
        progress_factory=(lambda: progress) if progress else (lambda: ProgressTracker(quiet=True)),
    )


def test_scenario_a_three_lines_threshold_two(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    """3 lines with threshold 2 flush as 2 then 1."""
    s3 = s3_with_objects({KEY: make_archive(make_documents(3))})

    result = _importer(s3, recording_bulk, batch_size=2).import_archive(REF)

    assert recording_bulk.flush_sizes == [2, 1]
    assert result.flushes == 2
    assert result.documents_submitted == 3
    assert result.lines_read == 3


def test_scenario_b_all_blank_lines(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    """Only blank lines: the end-of-stream forced commit is invoked once and is a no-op.

    With no pending batch nothing is sent, so no bulk request is made and no
    flush is counted; the import still succeeds.
    """
    s3 = s3_with_objects({KEY: make_archive(["", "   ", "\t"])})

    with patch.object(
        CommitController, "commit", autospec=True, side_effect=CommitController.commit
    ) as commit:
        result = _importer(s3, recording_bulk).import_archive(REF)

    forced = [c for c in commit.call_args_list if c.kwargs.get("force")]
    assert len(forced) == 1
    assert result.flushes == 0
    assert recording_bulk.calls == []
    assert result.documents_submitted == 0
    assert result.lines_read == 3
    assert result.blank_lines == 3


def test_scenario_c_corrupt_header(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    """A broken gzip header aborts before anything is flushed."""
    data = bytearray(make_archive(make_documents(10)))
    data[0] = 0x00
    s3 = s3_with_objects({KEY: bytes(data)})

    with pytest.raises(CorruptArchive):
        _importer(s3, recording_bulk, batch_size=1).import_archive(REF)

    assert recording_bulk.calls == []


def test_scenario_d_partial_failure_after_prior_success(s3_with_objects) -> None:
    """One rejected operation out of 4000 aborts after that flush."""
    bulk = RecordingBulk(fail_on_call=2, failed_positions=(1234,))
    s3 = s3_with_objects({KEY: make_archive(make_documents(10000))})

    with pytest.raises(PartialIndexFailure) as exc_info:
        _importer(s3, bulk).import_archive(REF)

    assert bulk.flush_sizes == [4000, 4000]
    assert exc_info.value.failed_count == 1
    assert exc_info.value.failure["status"] == 400


def test_accounting_non_blank_lines_equal_operations(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    """Every non-blank line becomes exactly one operation."""
    lines = []
    for i, doc in enumerate(make_documents(57)):
        lines.append(doc)
        if i % 5 == 0:
            lines.append("   ")
    s3 = s3_with_objects({KEY: make_archive(lines)})

    result = _importer(s3, recording_bulk, batch_size=7).import_archive(REF)

    sent_documents = [op for call in recording_bulk.calls for op in call[1::2]]
    assert sum(recording_bulk.flush_sizes) == 57 == result.documents_submitted
    assert sent_documents == [doc.encode() for doc in make_documents(57)]


@pytest.mark.parametrize("line_count, threshold", [(12, 4), (12, 1), (4000, 4000)])
def test_flush_count_for_exact_multiples(s3_with_objects, line_count: int, threshold: int) -> None:
    bulk = RecordingBulk()
    s3 = s3_with_objects({KEY: make_archive(make_documents(line_count))})

    result = _importer(s3, bulk, batch_size=threshold).import_archive(REF)

    assert result.flushes == line_count // threshold
    assert all(size == threshold for size in bulk.flush_sizes)


@pytest.mark.parametrize("line_count, threshold", [(13, 4), (1, 4000), (4001, 4000)])
def test_flush_count_for_non_multiples(s3_with_objects, line_count: int, threshold: int) -> None:
    bulk = RecordingBulk()
    s3 = s3_with_objects({KEY: make_archive(make_documents(line_count))})

    result = _importer(s3, bulk, batch_size=threshold).import_archive(REF)

    assert result.flushes == line_count // threshold + 1
    assert bulk.flush_sizes[-1] == line_count % threshold
    assert max(bulk.flush_sizes) <= threshold


def test_progress_monotonic_and_bounded(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    """Progress is reported per line, never decreases and ends at the content length."""
    data = make_archive(make_documents(5000))
    s3 = s3_with_objects({KEY: data})
    progress = RecordingProgress()

    result = _importer(s3, recording_bulk, progress=progress).import_archive(REF)

    assert len(progress.reported) == 5000
    assert progress.reported == sorted(progress.reported)
    assert max(progress.reported) <= len(data)
    assert progress.bytes_total == len(data)
    assert result.bytes_read == len(data)


def test_final_line_without_newline(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    s3 = s3_with_objects({KEY: gzip.compress(b'{"a": 1}\n{"a": 2}')})
    result = _importer(s3, recording_bulk).import_archive(REF)
    assert result.documents_submitted == 2


def test_truncated_archive_aborts_mid_stream(s3_with_objects) -> None:
    """Truncation aborts the import; earlier flushes stay committed."""
    bulk = RecordingBulk()
    data = make_archive(make_documents(20000))
    s3 = s3_with_objects({KEY: data[: len(data) * 3 // 4]})

    with pytest.raises(CorruptArchive):
        _importer(s3, bulk, batch_size=100).import_archive(REF)

    assert bulk.calls
    assert all(size == 100 for size in bulk.flush_sizes)


def test_search_engine_transport_failure(s3_with_objects) -> None:
    def unavailable(operations):
        raise SearchEngineError("Bulk request failed: connection refused")

    s3 = s3_with_objects({KEY: make_archive(make_documents(3))})
    with pytest.raises(SearchEngineError):
        _importer(s3, unavailable).import_archive(REF)


def timed_out(amt=None):
    raise ReadTimeoutError(endpoint_url="https://s3.example.com")


def test_stream_read_failure_is_transport_failure(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    """A botocore read timeout mid-stream surfaces as S3Error."""
    s3 = s3_with_objects({KEY: make_archive(make_documents(3))})
    get_object = s3.client.get_object.side_effect

    def failing_get_object(Bucket, Key):
        response = get_object(Bucket=Bucket, Key=Key)
        response["Body"].read = timed_out
        return response

    s3.client.get_object.side_effect = failing_get_object

    with pytest.raises(S3Error, match="Failed reading archive stream"):
        _importer(s3, recording_bulk).import_archive(REF)


def test_missing_archive(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    s3 = s3_with_objects({})
    s3.client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")

    with pytest.raises(ArchiveNotFound):
        _importer(s3, recording_bulk).import_archive(REF)


def test_body_released_on_failure(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    bodies = []
    s3 = s3_with_objects({KEY: b"not gzip at all"})
    get_object = s3.client.get_object.side_effect

    def tracking_get_object(Bucket, Key):
        response = get_object(Bucket=Bucket, Key=Key)
        bodies.append(response["Body"])
        return response

    s3.client.get_object.side_effect = tracking_get_object

    with pytest.raises(CorruptArchive):
        _importer(s3, recording_bulk).import_archive(REF)

    assert bodies and bodies[0].closed


def test_target_index_override(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    s3 = s3_with_objects({KEY: make_archive(make_documents(2))})

    result = _importer(s3, recording_bulk).import_archive(REF, target_index="logs-restored")

    assert result.target_index == "logs-restored"
    assert recording_bulk.calls[0][0]["index"]["_index"] == "logs-restored"


def test_content_hash_ids_make_reruns_idempotent(s3_with_objects) -> None:
    """Re-running the same archive produces the same document ids."""
    s3 = s3_with_objects({KEY: make_archive(make_documents(5))})
    first, second = RecordingBulk(), RecordingBulk()

    _importer(s3, first).import_archive(REF)
    _importer(s3, second).import_archive(REF)

    ids = lambda bulk: [op["index"]["_id"] for op in bulk.calls[0][0::2]]
    assert ids(first) == ids(second)
    assert len(set(ids(first))) == 5


def test_metrics_recorded(s3_with_objects, recording_bulk: RecordingBulk) -> None:
    s3 = s3_with_objects({KEY: make_archive(make_documents(5))})
    metrics = RestoreMetrics()
    importer = ArchiveImporter(
        s3_client=s3,
        bulk_client=FakeBulkClient(recording_bulk),
        restore_config=RestoreConfig(batch_size=2),
        progress_factory=lambda: ProgressTracker(quiet=True),
        metrics=metrics,
    )

    importer.import_archive(REF)

    registry = metrics.registry
    assert registry.get_sample_value("index_restore_flushes_total", {"index": "logs"}) == 3
    assert registry.get_sample_value("index_restore_documents_indexed_total", {"index": "logs"}) == 5
    assert registry.get_sample_value("index_restore_imports_total", {"status": "success"}) == 1


def test_concurrent_imports_are_independent(s3_with_objects) -> None:
    """Two imports on separate threads share no batch or counter."""
    s3 = s3_with_objects(
        {
            "logs/prod.ndjson.gz": make_archive(make_documents(300)),
            "metrics/dev.ndjson.gz": make_archive(make_documents(120)),
        }
    )
    bulks = {"logs": RecordingBulk(), "metrics": RecordingBulk()}
    results = {}

    def run(ref: ArchiveRef) -> None:
        results[ref.index] = _importer(s3, bulks[ref.index], batch_size=50).import_archive(ref)

    threads = [
        threading.Thread(target=run, args=(ArchiveRef("logs", "prod"),)),
        threading.Thread(target=run, args=(ArchiveRef("metrics", "dev"),)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results["logs"].documents_submitted == 300
    assert results["metrics"].documents_submitted == 120
    assert sum(bulks["logs"].flush_sizes) == 300
    assert sum(bulks["metrics"].flush_sizes) == 120
