"""Archive references and bucket enumeration helpers."""

from dataclasses import dataclass
from typing import Optional

import structlog

from index_restore.config import DEFAULT_ARCHIVE_EXTENSION
from index_restore.exceptions import ArchiveNotFound, MalformedEntry
from index_restore.s3_client import S3Client
from utils.logging import get_logger


@dataclass(frozen=True)
class ArchiveRef:
    """One exported index/project pair."""

    index: str
    project: str

    def key(self, extension: str = DEFAULT_ARCHIVE_EXTENSION) -> str:
        """Object key of the archive: <index>/<project><extension>."""
        return f"{self.index}/{self.project}{extension}"

    @classmethod
    def from_key(
        cls,
        key: str,
        extension: str = DEFAULT_ARCHIVE_EXTENSION,
    ) -> "ArchiveRef":
        """Parse a (prefix-relative) object key.

        Raises:
            MalformedEntry: If the key is not <index>/<project><extension>
        """
        if not key.endswith(extension):
            raise MalformedEntry(
                f"Unknown file: {key}",
                context={"key": key, "expected_extension": extension},
            )
        parts = archive_path(key, extension).split("/")
        if len(parts) != 2 or not all(parts):
            raise MalformedEntry(
                f"Unknown file: {key}",
                context={"key": key, "reason": "expected <index>/<project>"},
            )
        return cls(index=parts[0], project=parts[1])


@dataclass(frozen=True)
class ArchiveEntry:
    """A listed archive with its size."""

    ref: ArchiveRef
    key: str
    size: int

    @property
    def size_mb(self) -> float:
        return self.size / 1000000.0


def archive_path(key: str, extension: str = DEFAULT_ARCHIVE_EXTENSION) -> str:
    """Key without its archive extension and leading slash."""
    if key.endswith(extension):
        key = key[: -len(extension)]
    return key.lstrip("/")


def parse_keywords(keyword: str) -> list[str]:
    """Split a comma-separated keyword string into trimmed, non-empty fragments."""
    return [fragment.strip() for fragment in keyword.split(",") if fragment.strip()]


def matches_keywords(path: str, keywords: list[str]) -> bool:
    """True if every keyword fragment is a substring of path."""
    return all(fragment in path for fragment in keywords)


class ArchiveCatalog:
    """Searches and checks archives in the bucket."""

    def __init__(
        self,
        s3_client: S3Client,
        extension: str = DEFAULT_ARCHIVE_EXTENSION,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize archive catalog.

        Args:
            s3_client: S3 client for the archive bucket
            extension: Archive key suffix
            logger: Optional logger instance
        """
        self.s3_client = s3_client
        self.extension = extension
        self.logger = logger or get_logger("catalog")

    def search(self, keywords: list[str]) -> list[ArchiveEntry]:
        """Find archives whose path contains every keyword fragment.

        Keys that are not archives or not shaped <index>/<project> are logged
        and skipped.

        Args:
            keywords: Keyword fragments, e.g. from parse_keywords()

        Returns:
            Matching archives in listing order

        Raises:
            S3Error: If listing the bucket fails
        """
        self.logger.info("Searching bucket", keywords=keywords, bucket=self.s3_client.config.bucket)

        matches = []
        for obj in self.s3_client.iter_objects():
            key = self.s3_client.relative_key(obj["key"])
            if not key.endswith(self.extension):
                self.logger.warning("Unknown file found", key=obj["key"])
                continue

            if not matches_keywords(archive_path(key, self.extension), keywords):
                continue

            try:
                ref = ArchiveRef.from_key(key, self.extension)
            except MalformedEntry as e:
                self.logger.warning("Unknown file found", key=obj["key"], error=e.message)
                continue

            entry = ArchiveEntry(ref=ref, key=obj["key"], size=obj.get("size", 0))
            self.logger.info(
                "Archive found",
                index=ref.index,
                project=ref.project,
                size_mb=f"{entry.size_mb:.2f}",
            )
            matches.append(entry)

        return matches

    def check(self, ref: ArchiveRef) -> str:
        """Verify that the archive for ref exists.

        Returns:
            The archive key

        Raises:
            ArchiveNotFound: If the archive does not exist
            S3Error: If the check fails
        """
        key = ref.key(self.extension)
        self.logger.info("Checking archive", index=ref.index, project=ref.project, key=key)
        if not self.s3_client.object_exists(key):
            raise ArchiveNotFound(
                f"Archive not found: {key}",
                context={"bucket": self.s3_client.config.bucket, "key": key},
            )
        return key
