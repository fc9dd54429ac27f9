"""Prometheus metrics for monitoring restores."""

from typing import Optional

import structlog
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    start_http_server,
)

from utils.logging import get_logger


class RestoreMetrics:
    """Prometheus metrics for the import pipeline."""

    def __init__(
        self,
        logger: Optional[structlog.BoundLogger] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            logger: Optional logger instance
            registry: Optional Prometheus registry (a private one by default)
        """
        self.logger = logger or get_logger("metrics")
        self.registry = registry or CollectorRegistry()

        self.documents_indexed_total = Counter(
            "index_restore_documents_indexed_total",
            "Total number of documents sent in successful bulk flushes",
            ["index"],
            registry=self.registry,
        )

        self.flushes_total = Counter(
            "index_restore_flushes_total",
            "Total number of bulk flushes",
            ["index"],
            registry=self.registry,
        )

        self.bytes_read_total = Counter(
            "index_restore_bytes_read_total",
            "Total compressed bytes read from object storage",
            ["index"],
            registry=self.registry,
        )

        self.imports_total = Counter(
            "index_restore_imports_total",
            "Total number of imports by outcome",
            ["status"],
            registry=self.registry,
        )

        self.errors_total = Counter(
            "index_restore_errors_total",
            "Total number of fatal errors by type",
            ["type"],
            registry=self.registry,
        )

        self.flush_duration_seconds = Histogram(
            "index_restore_flush_duration_seconds",
            "Duration of bulk flushes in seconds",
            ["index"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

        self.import_duration_seconds = Histogram(
            "index_restore_import_duration_seconds",
            "Duration of whole imports in seconds",
            buckets=[1.0, 10.0, 60.0, 300.0, 900.0, 1800.0, 3600.0, 7200.0],
            registry=self.registry,
        )

    def record_flush(self, index: str, operations: int, duration: float) -> None:
        self.flushes_total.labels(index=index).inc()
        self.documents_indexed_total.labels(index=index).inc(operations)
        self.flush_duration_seconds.labels(index=index).observe(duration)

    def record_import(self, index: str, status: str, bytes_read: int, duration: float) -> None:
        self.imports_total.labels(status=status).inc()
        self.bytes_read_total.labels(index=index).inc(bytes_read)
        self.import_duration_seconds.observe(duration)

    def record_error(self, error_type: str) -> None:
        self.errors_total.labels(type=error_type).inc()

    def start_server(self, port: int) -> None:
        """Expose metrics over HTTP on the given port."""
        start_http_server(port, registry=self.registry)
        self.logger.info("Metrics server started", port=port)
