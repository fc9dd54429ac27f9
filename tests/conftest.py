"""Pytest configuration and shared fixtures."""

import gzip
import io
from typing import Any, Callable, Optional
from unittest.mock import MagicMock

import pytest

from index_restore.config import S3Config
from index_restore.s3_client import S3Client


class FakeBody(io.BytesIO):
    """In-memory stand-in for a botocore StreamingBody."""

    def read(self, amt: Optional[int] = None) -> bytes:  # type: ignore[override]
        return super().read(-1 if amt is None else amt)


def make_archive(lines: list[str]) -> bytes:
    """Gzip NDJSON lines the way the exporter writes them."""
    return gzip.compress("".join(f"{line}\n" for line in lines).encode("utf-8"))


def make_documents(count: int) -> list[str]:
    return [f'{{"id": {i}, "message": "event {i}"}}' for i in range(count)]


class RecordingBulk:
    """Fake Elasticsearch bulk endpoint recording every request."""

    def __init__(self, fail_on_call: Optional[int] = None, failed_positions: tuple[int, ...] = (0,)) -> None:
        self.calls: list[list[Any]] = []
        self.fail_on_call = fail_on_call
        self.failed_positions = failed_positions

    @property
    def flush_sizes(self) -> list[int]:
        return [len(ops) // 2 for ops in self.calls]

    def __call__(self, operations: list[Any]) -> dict[str, Any]:
        self.calls.append(list(operations))
        items = []
        for position, action in enumerate(operations[0::2]):
            result: dict[str, Any] = {"_index": action["index"]["_index"], "status": 201}
            if len(self.calls) == self.fail_on_call and position in self.failed_positions:
                result = {
                    "_index": action["index"]["_index"],
                    "status": 400,
                    "error": {"type": "mapper_parsing_exception", "reason": "failed to parse"},
                }
            items.append({"index": result})
        errors = any("error" in item["index"] for item in items)
        return {"took": 3, "errors": errors, "items": items}


@pytest.fixture
def s3_config() -> S3Config:
    """Create test S3 configuration."""
    return S3Config(bucket="test-bucket", region="us-east-1")


@pytest.fixture
def recording_bulk() -> RecordingBulk:
    return RecordingBulk()


@pytest.fixture
def s3_with_objects(s3_config: S3Config) -> Callable[[dict[str, bytes]], S3Client]:
    """Build an S3Client whose boto3 client serves the given objects."""

    def build(objects: dict[str, bytes]) -> S3Client:
        client = S3Client(s3_config)
        boto_client = MagicMock()

        def get_object(Bucket: str, Key: str) -> dict[str, Any]:
            data = objects[Key]
            return {"Body": FakeBody(data), "ContentLength": len(data)}

        boto_client.get_object.side_effect = get_object
        client._client = boto_client
        return client

    return build
