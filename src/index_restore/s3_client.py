"""S3 client for listing, checking and streaming archives."""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from structlog import BoundLogger

from index_restore.config import S3Config
from index_restore.exceptions import ArchiveNotFound, S3Error
from utils.logging import get_logger


@dataclass
class ObjectPage:
    """One page of a marker-paginated bucket listing."""

    entries: list[dict[str, Any]] = field(default_factory=list)
    next_marker: Optional[str] = None
    is_truncated: bool = False


@dataclass
class ObjectStream:
    """Open object body with its declared content length."""

    key: str
    body: Any
    content_length: Optional[int]


MISSING_OBJECT_CODES = ("404", "NoSuchKey", "NotFound")


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


class S3Client:
    """Read-only access to the archive bucket."""

    def __init__(
        self,
        config: S3Config,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        """Initialize S3 client.

        Args:
            config: Object storage configuration
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or get_logger("s3")
        self._client: Optional[Any] = None

    @property
    def client(self) -> Any:
        """The boto3 S3 client, created on first use."""
        if self._client is not None:
            return self._client

        try:
            session = boto3.Session(**(self.config.get_credentials() or {}))
            self._client = session.client(
                "s3",
                region_name=self.config.region,
                endpoint_url=self.config.endpoint or None,
            )
        except (ValueError, BotoCoreError) as e:
            raise S3Error(
                f"Cannot create S3 client: {e}",
                context={"bucket": self.config.bucket, "endpoint": self.config.endpoint},
            ) from e

        self.logger.debug(
            "S3 client ready",
            bucket=self.config.bucket,
            endpoint=self.config.endpoint or "AWS S3",
            region=self.config.region,
        )
        return self._client

    def full_key(self, s3_key: str) -> str:
        """Prepend the configured prefix to a key, avoiding double slashes."""
        s3_key = s3_key.lstrip("/")
        prefix = self.config.prefix.strip("/")
        if not prefix or s3_key.startswith(prefix + "/"):
            return s3_key
        return f"{prefix}/{s3_key}"

    def relative_key(self, full_key: str) -> str:
        """Strip the configured prefix and any leading slash from a listed key."""
        prefix = self.config.prefix.strip("/")
        if prefix and full_key.startswith(prefix + "/"):
            full_key = full_key[len(prefix) + 1 :]
        return full_key.lstrip("/")

    def _failure(self, operation: str, error: Exception, **context: Any) -> S3Error:
        context = {"bucket": self.config.bucket, **context}
        if isinstance(error, ClientError):
            code = _error_code(error)
            return S3Error(f"S3 {operation} failed: {code}", context={**context, "error_code": code})
        return S3Error(f"Boto3 error during {operation}: {error}", context=context)

    def list_page(self, prefix: str = "", marker: Optional[str] = None) -> ObjectPage:
        """List one page of objects after the given marker.

        Args:
            prefix: Key prefix (relative to the configured prefix)
            marker: Pagination marker returned by the previous page

        Returns:
            ObjectPage with entries ('key', 'size', 'last_modified'), the next
            marker and whether more pages follow

        Raises:
            S3Error: If listing fails
        """
        full_prefix = self.full_key(prefix) if prefix else self.config.prefix.lstrip("/")
        params: dict[str, Any] = {"Bucket": self.config.bucket, "Prefix": full_prefix}
        if marker:
            params["Marker"] = marker

        try:
            response = self.client.list_objects(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._failure("list_objects", e, prefix=full_prefix, marker=marker) from e

        entries = [
            {
                "key": obj["Key"],
                "size": obj.get("Size", 0),
                "last_modified": obj.get("LastModified"),
            }
            for obj in response.get("Contents", [])
        ]
        is_truncated = bool(response.get("IsTruncated", False))

        # NextMarker is only returned with a delimiter; fall back to the last key
        next_marker = response.get("NextMarker")
        if is_truncated and not next_marker and entries:
            next_marker = entries[-1]["key"]

        return ObjectPage(entries=entries, next_marker=next_marker, is_truncated=is_truncated)

    def iter_objects(self, prefix: str = "") -> Iterator[dict[str, Any]]:
        """Iterate over every object under prefix, following pagination markers.

        Raises:
            S3Error: If any page fails to list
        """
        marker: Optional[str] = None
        pages = 0
        while True:
            page = self.list_page(prefix, marker)
            pages += 1
            yield from page.entries
            if not page.is_truncated or not page.next_marker:
                break
            marker = page.next_marker

        self.logger.debug("S3 listing finished", bucket=self.config.bucket, pages=pages)

    @contextmanager
    def open_object(self, s3_key: str) -> Iterator[ObjectStream]:
        """Open an object for streaming; the body is closed on every exit path.

        Args:
            s3_key: Object key (relative to the configured prefix)

        Yields:
            ObjectStream with the raw body and its content length

        Raises:
            ArchiveNotFound: If the object does not exist
            S3Error: If the request fails
        """
        full_key = self.full_key(s3_key)
        self.logger.debug("Opening object", bucket=self.config.bucket, key=full_key)
        try:
            response = self.client.get_object(Bucket=self.config.bucket, Key=full_key)
        except ClientError as e:
            if _error_code(e) in MISSING_OBJECT_CODES:
                raise ArchiveNotFound(
                    f"Archive not found: {full_key}",
                    context={"bucket": self.config.bucket, "key": full_key},
                ) from e
            raise self._failure("get_object", e, key=full_key) from e
        except BotoCoreError as e:
            raise self._failure("get_object", e, key=full_key) from e

        body = response["Body"]
        try:
            yield ObjectStream(
                key=full_key,
                body=body,
                content_length=response.get("ContentLength"),
            )
        finally:
            body.close()

    def object_exists(self, s3_key: str) -> bool:
        """Whether the object exists, via a HEAD request.

        Raises:
            S3Error: If the request fails for any reason other than a missing object
        """
        full_key = self.full_key(s3_key)
        try:
            self.client.head_object(Bucket=self.config.bucket, Key=full_key)
        except ClientError as e:
            if _error_code(e) in MISSING_OBJECT_CODES:
                return False
            raise self._failure("head_object", e, key=full_key) from e
        except BotoCoreError as e:
            raise self._failure("head_object", e, key=full_key) from e
        return True
