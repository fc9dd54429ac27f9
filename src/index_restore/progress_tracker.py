"""Byte-based progress tracking for archive imports."""

import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from utils.logging import get_logger


class ProgressTracker:
    """Tracks and displays import progress against the archive's content length.

    Updates are cheap and rate-limited; the tracker never raises into the
    import pipeline.
    """

    def __init__(
        self,
        quiet: bool = False,
        update_interval: float = 5.0,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize progress tracker.

        Args:
            quiet: If True, suppress progress output (for cron)
            update_interval: Minimum seconds between progress updates
            logger: Optional logger instance
        """
        self.quiet = quiet
        self.update_interval = update_interval
        self.logger = logger or get_logger("progress")

        self.title: Optional[str] = None
        self.start_time: Optional[datetime] = None
        self.last_update_time: Optional[float] = None

        self.bytes_total: Optional[int] = None
        self.bytes_read: int = 0
        self.bytes_per_second: float = 0.0
        self._start_monotonic: Optional[float] = None

    @property
    def indeterminate(self) -> bool:
        """True when the total size is unknown."""
        return not self.bytes_total or self.bytes_total <= 0

    def start(self, title: str, bytes_total: Optional[int] = None) -> None:
        """Start tracking progress.

        Args:
            title: Human-readable description of the import
            bytes_total: Expected compressed size in bytes (None or 0 if unknown)
        """
        self.title = title
        self.start_time = datetime.now(timezone.utc)
        self._start_monotonic = time.monotonic()
        self.last_update_time = self._start_monotonic
        self.bytes_total = bytes_total if bytes_total and bytes_total > 0 else None
        self.bytes_read = 0
        self.bytes_per_second = 0.0

        if not self.quiet:
            self.logger.info(title, bytes_total=self.bytes_total)

    def update(self, bytes_read: int) -> None:
        """Record the bytes consumed so far.

        Lower values than already seen are ignored and values past the
        declared total are clamped to it.

        Args:
            bytes_read: Cumulative compressed bytes consumed
        """
        if bytes_read <= self.bytes_read:
            return

        if self.bytes_total is not None:
            bytes_read = min(bytes_read, self.bytes_total)
        self.bytes_read = bytes_read

        now = time.monotonic()
        if self._start_monotonic is not None:
            elapsed = now - self._start_monotonic
            if elapsed > 0:
                self.bytes_per_second = self.bytes_read / elapsed

        if not self.quiet:
            if self.last_update_time is None or (now - self.last_update_time) >= self.update_interval:
                self._display_progress()
                self.last_update_time = now

    def finish(self, success: bool = True) -> None:
        """Finish tracking and display final summary.

        Args:
            success: Whether the import was successful
        """
        if not self.quiet and self.start_time is not None:
            self._display_finish(success)

    def get_progress_percentage(self) -> float:
        """Get current progress percentage.

        Returns:
            Progress percentage (0.0 to 100.0), or 0.0 if the total is unknown
        """
        if self.indeterminate:
            return 0.0
        return min(100.0, (self.bytes_read / self.bytes_total) * 100)

    def get_eta(self) -> Optional[timedelta]:
        """Get estimated time remaining, or None if it cannot be calculated."""
        if self.indeterminate or self.bytes_per_second <= 0:
            return None
        remaining = self.bytes_total - self.bytes_read
        if remaining <= 0:
            return None
        return timedelta(seconds=int(remaining / self.bytes_per_second))

    def render(self) -> str:
        """Render the current progress as a single status line."""
        parts = []
        if self.indeterminate:
            parts.append(f"Read: {_format_bytes(self.bytes_read)}")
        else:
            parts.append(
                f"Read: {_format_bytes(self.bytes_read)} / {_format_bytes(self.bytes_total)} "
                f"({self.get_progress_percentage():.1f}%)"
            )
        parts.append(f"Rate: {_format_bytes(int(self.bytes_per_second))}/s")
        eta = self.get_eta()
        parts.append(f"ETA: {eta if eta is not None else 'N/A'}")
        return " | ".join(parts)

    def _display_progress(self) -> None:
        self.logger.info("Progress", title=self.title, message=self.render())

    def _display_finish(self, success: bool) -> None:
        elapsed = datetime.now(timezone.utc) - self.start_time
        elapsed_str = str(elapsed).split(".")[0]

        status = "completed" if success else "failed"
        self.logger.info(
            f"Import {status}",
            title=self.title,
            bytes_read=self.bytes_read,
            bytes_total=self.bytes_total,
            elapsed=elapsed_str,
        )


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    elif size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.2f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"
