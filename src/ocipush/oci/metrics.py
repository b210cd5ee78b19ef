"""OpenTelemetry instrumentation for lock and publish operations.

The library only uses the OpenTelemetry API; with no SDK configured every
span and instrument is a no-op.

Metrics Emitted:
    Counters:
        - ocipush_operations_total: Operations by type, status, and registry
    Histograms:
        - ocipush_operation_duration_seconds: Operation duration distribution
        - ocipush_blob_size_bytes: Uploaded blob sizes

Trace Spans:
    - ocipush.lock: Tag to digest resolution
    - ocipush.publish: Full image or index publish
    - ocipush.upload_blob: Individual blob upload

Example:
    >>> metrics = get_publish_metrics()
    >>> with metrics.operation_timer("publish", "ghcr.io"):
    ...     client.write_image(ref, image)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.metrics import Counter, Histogram
    from opentelemetry.trace import Span, Tracer

logger = structlog.get_logger(__name__)


class PublishMetrics:
    """OpenTelemetry tracer and meter for registry operations.

    Label Conventions:
        - operation: lock, publish, upload_blob
        - status: success, failure
        - registry: Registry hostname
    """

    OPERATIONS_TOTAL = "ocipush_operations_total"
    OPERATION_DURATION_SECONDS = "ocipush_operation_duration_seconds"
    BLOB_SIZE_BYTES = "ocipush_blob_size_bytes"

    SPAN_LOCK = "ocipush.lock"
    SPAN_PUBLISH = "ocipush.publish"
    SPAN_UPLOAD_BLOB = "ocipush.upload_blob"

    def __init__(self, name: str = "ocipush", version: str = "0.1.0") -> None:
        self._meter = metrics.get_meter(name, version)
        self._tracer: Tracer = trace.get_tracer(name)
        self._operations_counter: Counter | None = None
        self._duration_histogram: Histogram | None = None
        self._size_histogram: Histogram | None = None

    @property
    def operations_counter(self) -> Counter:
        if self._operations_counter is None:
            self._operations_counter = self._meter.create_counter(
                self.OPERATIONS_TOTAL,
                unit="1",
                description="Total number of registry operations by type, status, and registry",
            )
        return self._operations_counter

    @property
    def duration_histogram(self) -> Histogram:
        if self._duration_histogram is None:
            self._duration_histogram = self._meter.create_histogram(
                self.OPERATION_DURATION_SECONDS,
                unit="s",
                description="Duration of registry operations in seconds",
            )
        return self._duration_histogram

    @property
    def size_histogram(self) -> Histogram:
        if self._size_histogram is None:
            self._size_histogram = self._meter.create_histogram(
                self.BLOB_SIZE_BYTES,
                unit="By",
                description="Size of uploaded blobs in bytes",
            )
        return self._size_histogram

    def record_operation(self, operation: str, registry: str, *, success: bool) -> None:
        """Count one completed operation."""
        self.operations_counter.add(
            1,
            attributes={
                "operation": operation,
                "registry": registry,
                "status": "success" if success else "failure",
            },
        )
        logger.debug("operation_recorded", operation=operation, registry=registry, success=success)

    def record_blob_size(self, registry: str, size_bytes: int) -> None:
        self.size_histogram.record(size_bytes, attributes={"registry": registry})

    @contextmanager
    def operation_timer(self, operation: str, registry: str) -> Generator[None, None, None]:
        """Record duration and success/failure of the enclosed block."""
        start = time.monotonic()
        success = False
        try:
            yield
            success = True
        finally:
            self.duration_histogram.record(
                time.monotonic() - start,
                attributes={"operation": operation, "registry": registry},
            )
            self.record_operation(operation, registry, success=success)

    @contextmanager
    def create_span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        """Create a trace span, recording any exception raised inside it.

        Example:
            >>> with metrics.create_span(PublishMetrics.SPAN_PUBLISH, {"reference": ref}) as span:
            ...     span.set_attribute("publish.kind", "image")
        """
        with self._tracer.start_as_current_span(name) as span:
            for key, value in (attributes or {}).items():
                span.set_attribute(key, value)
            try:
                yield span
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


_default_metrics: PublishMetrics | None = None


def get_publish_metrics() -> PublishMetrics:
    """Return the process-wide PublishMetrics instance."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = PublishMetrics()
    return _default_metrics


def set_publish_metrics(metrics_instance: PublishMetrics | None) -> None:
    """Replace the process-wide instance (tests pass a mock or None)."""
    global _default_metrics
    _default_metrics = metrics_instance


__all__ = ["PublishMetrics", "get_publish_metrics", "set_publish_metrics"]
