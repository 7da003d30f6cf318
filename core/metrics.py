"""Per-run metric model and capture primitives.

This module defines everything a single (format, size, iteration)
observation can carry:

- :class:`Metric` / :data:`METRICS`: the fixed set of tracked metrics,
  with display label, unit, scoring direction and category.
- :class:`RunResult`: the immutable record of one run.
- :class:`ServerMetrics`: metrics reported by the server in response
  headers (serialize time, payload size, heap/GC/CPU deltas).
- :class:`NetworkTiming`: client-side network breakdown, every field
  nullable when the transport cannot observe it.
- :class:`ResourceSnapshot` / :class:`ResourceSampler`: the injected
  heap/GC/CPU introspection capability.
- :class:`LongTaskObserver`: the long-task feed recorded during decode.

Null convention:
    A metric the environment cannot capture is ``None``, never ``0`` and
    never an exception. Header values that are missing, unparsable or
    non-finite parse to ``None``.

Example:
    >>> from core.metrics import ServerMetrics
    >>> server = ServerMetrics.from_headers({
    ...     "X-Serialize-Nanos": "2500000",
    ...     "X-Event-Count": "1000",
    ...     "X-Heap-Delta": "NaN",
    ... })
    >>> server.serialize_ms
    2.5
    >>> server.heap_delta is None
    True
"""

import math
import time
from collections.abc import Mapping
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from core.formats import FormatId


# ---------------------------------------------------------------------------
# Metric Vocabulary
# ---------------------------------------------------------------------------


class Category(str, Enum):
    """Top-level judgement axis a metric belongs to."""

    SPEED = "speed"
    EFFICIENCY = "efficiency"
    STABILITY = "stability"
    RESOURCES = "resources"
    INFO = "info"


class Metric(str, Enum):
    """Tracked metric. The value is the field name on an aggregate row."""

    END_TO_END = "end_to_end"
    PARSE = "parse"
    SERIALIZE = "serialize"
    TTFB = "ttfb"
    DOWNLOAD = "download"
    DNS = "dns"
    CONNECT = "connect"
    PAYLOAD = "payload"
    SERVER_PAYLOAD = "server_payload"
    TRANSFER = "transfer"
    BYTES_PER_RECORD = "bytes_per_record"
    SERVER_HEAP_BEFORE = "server_heap_before"
    SERVER_HEAP_AFTER = "server_heap_after"
    SERVER_HEAP_DELTA = "server_heap_delta"
    SERVER_GC_COUNT = "server_gc_count"
    SERVER_GC_TIME = "server_gc_time"
    SERVER_CPU_TIME = "server_cpu_time"
    CLIENT_HEAP_BEFORE = "client_heap_before"
    CLIENT_HEAP_AFTER = "client_heap_after"
    CLIENT_HEAP_DELTA = "client_heap_delta"
    LONG_TASK_COUNT = "long_task_count"
    LONG_TASK_TOTAL = "long_task_total"
    EVENT_COUNT = "event_count"


class MetricInfo(BaseModel):
    """Display and scoring metadata for a :class:`Metric`.

    Attributes:
        run_field: Attribute of :class:`RunResult` holding the raw value.
        label: Display label.
        unit: ``"ms"``, ``"ns"``, ``"bytes"`` or ``"count"``.
        lower_is_better: Scoring direction.
        category: Category the metric is displayed under.
        description: One-line explanation.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    run_field: str
    label: str
    unit: str
    lower_is_better: bool = True
    category: Category
    description: str


def _info(
    run_field: str,
    label: str,
    unit: str,
    category: Category,
    description: str,
    lower_is_better: bool = True,
) -> MetricInfo:
    return MetricInfo(
        run_field=run_field,
        label=label,
        unit=unit,
        lower_is_better=lower_is_better,
        category=category,
        description=description,
    )


METRICS: Mapping[Metric, MetricInfo] = {
    # Timing
    Metric.END_TO_END: _info(
        "end_to_end_ms", "End-to-End", "ms", Category.SPEED,
        "Total time from request start to parsed data ready",
    ),
    Metric.PARSE: _info(
        "parse_ms", "Parse Time", "ms", Category.SPEED,
        "Client-side deserialization time",
    ),
    Metric.SERIALIZE: _info(
        "server_serialize_ms", "Server Serialize", "ms", Category.SPEED,
        "Server-side serialization time",
    ),
    Metric.TTFB: _info(
        "ttfb_ms", "TTFB", "ms", Category.SPEED,
        "Time to first byte: server processing plus network latency",
    ),
    Metric.DOWNLOAD: _info(
        "download_ms", "Download Time", "ms", Category.SPEED,
        "Time to transfer the response body",
    ),
    Metric.DNS: _info(
        "dns_ms", "DNS Lookup", "ms", Category.SPEED,
        "DNS resolution time",
    ),
    Metric.CONNECT: _info(
        "connect_ms", "Connect Time", "ms", Category.SPEED,
        "TCP/TLS connection time",
    ),
    # Size
    Metric.PAYLOAD: _info(
        "payload_bytes", "Payload Size", "bytes", Category.EFFICIENCY,
        "Uncompressed response size as observed by the client",
    ),
    Metric.SERVER_PAYLOAD: _info(
        "server_payload_bytes", "Server Payload", "bytes", Category.EFFICIENCY,
        "Payload size as sent by the server",
    ),
    Metric.TRANSFER: _info(
        "transfer_size", "Transfer Size", "bytes", Category.EFFICIENCY,
        "Bytes actually transferred (after compression, if any)",
    ),
    Metric.BYTES_PER_RECORD: _info(
        "bytes_per_record", "Bytes/Record", "bytes", Category.EFFICIENCY,
        "Payload bytes per calendar event",
    ),
    # Server memory
    Metric.SERVER_HEAP_BEFORE: _info(
        "server_heap_used_before", "Server Heap (Before)", "bytes",
        Category.RESOURCES, "Server heap usage before serialization",
    ),
    Metric.SERVER_HEAP_AFTER: _info(
        "server_heap_used_after", "Server Heap (After)", "bytes",
        Category.RESOURCES, "Server heap usage after serialization",
    ),
    Metric.SERVER_HEAP_DELTA: _info(
        "server_heap_delta", "Server Heap Delta", "bytes",
        Category.RESOURCES, "Memory allocated during serialization",
    ),
    Metric.SERVER_GC_COUNT: _info(
        "server_gc_count", "Server GC Count", "count", Category.RESOURCES,
        "GC cycles during serialization",
    ),
    Metric.SERVER_GC_TIME: _info(
        "server_gc_time_ms", "Server GC Time", "ms", Category.RESOURCES,
        "Total GC pause time during serialization",
    ),
    Metric.SERVER_CPU_TIME: _info(
        "server_cpu_time_nanos", "Server CPU Time", "ns", Category.RESOURCES,
        "Thread CPU time consumed by serialization",
    ),
    # Client memory
    Metric.CLIENT_HEAP_BEFORE: _info(
        "client_heap_before", "Client Heap (Before)", "bytes",
        Category.RESOURCES, "Client heap usage before parsing",
    ),
    Metric.CLIENT_HEAP_AFTER: _info(
        "client_heap_after", "Client Heap (After)", "bytes",
        Category.RESOURCES, "Client heap usage after parsing",
    ),
    Metric.CLIENT_HEAP_DELTA: _info(
        "client_heap_delta", "Client Heap Delta", "bytes",
        Category.RESOURCES, "Memory allocated during parsing",
    ),
    # Stability
    Metric.LONG_TASK_COUNT: _info(
        "long_task_count", "Long Tasks", "count", Category.STABILITY,
        "Long tasks observed during parsing",
    ),
    Metric.LONG_TASK_TOTAL: _info(
        "long_task_total_ms", "Long Task Time", "ms", Category.STABILITY,
        "Total duration of long tasks during parsing",
    ),
    # Meta
    Metric.EVENT_COUNT: _info(
        "event_count", "Event Count", "count", Category.INFO,
        "Calendar events in the response",
        lower_is_better=False,
    ),
}


def to_number(value: object) -> float | None:
    """Coerce a raw value to a finite float, or ``None``.

    Example:
        >>> to_number("42")
        42.0
        >>> to_number("inf") is None
        True
        >>> to_number(None) is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed: float = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def bytes_per_record(
    payload_bytes: float | None, event_count: float | None,
) -> float | None:
    """Derive payload bytes per record; ``None`` if either operand is 0/missing."""
    if not payload_bytes or not event_count:
        return None
    return payload_bytes / event_count


# ---------------------------------------------------------------------------
# Server Metrics (response headers)
# ---------------------------------------------------------------------------

HEADER_SERIALIZE_NANOS: str = "X-Serialize-Nanos"
HEADER_PAYLOAD_BYTES: str = "X-Payload-Bytes"
HEADER_FORMAT: str = "X-Format"
HEADER_HEAP_BEFORE: str = "X-Heap-Used-Before"
HEADER_HEAP_AFTER: str = "X-Heap-Used-After"
HEADER_HEAP_DELTA: str = "X-Heap-Delta"
HEADER_GC_COUNT: str = "X-GC-Count"
HEADER_GC_TIME_MS: str = "X-GC-Time-Ms"
HEADER_CPU_TIME_NANOS: str = "X-CPU-Time-Nanos"
HEADER_EVENT_COUNT: str = "X-Event-Count"

METRIC_HEADERS: tuple[str, ...] = (
    HEADER_SERIALIZE_NANOS,
    HEADER_PAYLOAD_BYTES,
    HEADER_FORMAT,
    HEADER_HEAP_BEFORE,
    HEADER_HEAP_AFTER,
    HEADER_HEAP_DELTA,
    HEADER_GC_COUNT,
    HEADER_GC_TIME_MS,
    HEADER_CPU_TIME_NANOS,
    HEADER_EVENT_COUNT,
)


class ServerMetrics(BaseModel):
    """Server-side measurements of one encode call.

    Attributes:
        serialize_nanos: Wall-clock encode duration in nanoseconds.
        payload_bytes: Encoded payload size as produced by the server.
        heap_used_before: Heap in use before the encode, bytes.
        heap_used_after: Heap in use after the encode, bytes.
        heap_delta: ``heap_used_after - heap_used_before``; negative when
            a collection freed memory mid-call.
        gc_count: GC cycles completed during the call.
        gc_time_ms: GC pause time accumulated during the call.
        cpu_time_nanos: Thread CPU time consumed by the call.
        event_count: Records encoded.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    serialize_nanos: float | None = None
    payload_bytes: float | None = None
    heap_used_before: float | None = None
    heap_used_after: float | None = None
    heap_delta: float | None = None
    gc_count: float | None = None
    gc_time_ms: float | None = None
    cpu_time_nanos: float | None = None
    event_count: float | None = None

    @property
    def serialize_ms(self) -> float | None:
        """Encode duration converted from nanoseconds to milliseconds."""
        if self.serialize_nanos is None:
            return None
        return self.serialize_nanos / 1e6

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ServerMetrics":
        """Parse the ``X-*`` metric headers of a benchmark response.

        Header lookup is case-insensitive. Missing or non-finite values
        become ``None``.
        """
        lowered: dict[str, str] = {k.lower(): v for k, v in headers.items()}

        def _get(name: str) -> float | None:
            return to_number(lowered.get(name.lower()))

        return cls(
            serialize_nanos=_get(HEADER_SERIALIZE_NANOS),
            payload_bytes=_get(HEADER_PAYLOAD_BYTES),
            heap_used_before=_get(HEADER_HEAP_BEFORE),
            heap_used_after=_get(HEADER_HEAP_AFTER),
            heap_delta=_get(HEADER_HEAP_DELTA),
            gc_count=_get(HEADER_GC_COUNT),
            gc_time_ms=_get(HEADER_GC_TIME_MS),
            cpu_time_nanos=_get(HEADER_CPU_TIME_NANOS),
            event_count=_get(HEADER_EVENT_COUNT),
        )


# ---------------------------------------------------------------------------
# Client Network Timing
# ---------------------------------------------------------------------------


class NetworkTiming(BaseModel):
    """Client-observed network breakdown of one request.

    Every field is ``None`` when the transport cannot observe it (the
    in-process transport observes none of them).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ttfb_ms: float | None = None
    download_ms: float | None = None
    dns_ms: float | None = None
    connect_ms: float | None = None
    transfer_size: float | None = None


# ---------------------------------------------------------------------------
# Resource Sampling
# ---------------------------------------------------------------------------


class ResourceSnapshot(BaseModel):
    """Point-in-time heap/GC/CPU reading. Any field may be ``None``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    heap_used: int | None = None
    gc_count: int | None = None
    gc_time_ms: float | None = None
    cpu_time_nanos: int | None = None


class ResourceSampler(Protocol):
    """Injected heap/GC/CPU introspection capability."""

    def snapshot(self) -> ResourceSnapshot:
        """Take a reading. Must not raise when a field is unsupported."""
        ...


class NullResourceSampler:
    """Sampler for environments without introspection. Always all-null."""

    def snapshot(self) -> ResourceSnapshot:
        return ResourceSnapshot()


def snapshot_delta(
    before: float | None, after: float | None,
) -> float | None:
    """Return ``after - before``, or ``None`` if either side is missing."""
    if before is None or after is None:
        return None
    return after - before


# ---------------------------------------------------------------------------
# Long Task Observer
# ---------------------------------------------------------------------------


class LongTask(BaseModel):
    """A single long-running client task."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    duration_ms: float = Field(ge=0.0)
    start_ms: float


class LongTaskObserver:
    """Collects long tasks observed while a run decodes its payload.

    Timestamps are relative to the observer's creation, measured with
    ``time.perf_counter_ns()``.

    **NOT thread-safe.** One observer per run, used by the run loop only.

    Args:
        threshold_ms: Minimum duration for a task to count as long.
            Default 50 ms.

    Example:
        >>> observer = LongTaskObserver(threshold_ms=50.0)
        >>> observer.observe(duration_ms=10.0)   # too short, ignored
        >>> observer.observe(duration_ms=75.0)
        >>> observer.count, observer.total_ms
        (1, 75.0)
    """

    __slots__ = ("_threshold_ms", "_origin_ns", "_tasks", "_connected")

    def __init__(self, threshold_ms: float = 50.0) -> None:
        self._threshold_ms: float = threshold_ms
        self._origin_ns: int = time.perf_counter_ns()
        self._tasks: list[LongTask] = []
        self._connected: bool = True

    def now_ms(self) -> float:
        """Milliseconds elapsed since the observer was created."""
        return (time.perf_counter_ns() - self._origin_ns) / 1e6

    def observe(self, duration_ms: float, start_ms: float | None = None) -> None:
        """Feed one task. Ignored below the threshold or after disconnect."""
        if not self._connected or duration_ms < self._threshold_ms:
            return
        start: float = self.now_ms() - duration_ms if start_ms is None else start_ms
        self._tasks.append(LongTask(duration_ms=duration_ms, start_ms=start))

    def disconnect(self) -> None:
        """Stop accepting tasks."""
        self._connected = False

    @property
    def tasks(self) -> tuple[LongTask, ...]:
        return tuple(self._tasks)

    @property
    def count(self) -> int:
        return len(self._tasks)

    @property
    def total_ms(self) -> float:
        return sum(task.duration_ms for task in self._tasks)


# ---------------------------------------------------------------------------
# Run Result
# ---------------------------------------------------------------------------


class RunStatus(str, Enum):
    """Outcome of a single run."""

    OK = "ok"
    ERROR = "error"


class RunResult(BaseModel):
    """One (format, size, iteration) observation.

    Created once per executed run, immutable afterwards. When
    ``status`` is ``error`` the numeric fields may still hold whatever
    was observed before the failure, but the aggregator ignores them and
    only tallies the error.

    Attributes:
        format_id: Format measured.
        size: Dataset size preset id.
        iteration: 1-based iteration number.
        status: ``ok`` or ``error``.
        status_code: HTTP-style status code, when a response was received.
        message: Raw failure message for ``error`` runs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    format_id: FormatId
    size: str = Field(min_length=1)
    iteration: int = Field(ge=1)
    status: RunStatus
    status_code: int | None = None
    message: str | None = None

    # Speed
    end_to_end_ms: float | None = None
    parse_ms: float | None = None
    server_serialize_ms: float | None = None
    ttfb_ms: float | None = None
    download_ms: float | None = None
    dns_ms: float | None = None
    connect_ms: float | None = None

    # Efficiency
    payload_bytes: float | None = None
    server_payload_bytes: float | None = None
    transfer_size: float | None = None
    bytes_per_record: float | None = None

    # Server resources
    server_heap_used_before: float | None = None
    server_heap_used_after: float | None = None
    server_heap_delta: float | None = None
    server_gc_count: float | None = None
    server_gc_time_ms: float | None = None
    server_cpu_time_nanos: float | None = None

    # Client resources
    client_heap_before: float | None = None
    client_heap_after: float | None = None
    client_heap_delta: float | None = None

    # Stability
    long_task_count: float | None = None
    long_task_total_ms: float | None = None

    # Meta
    event_count: float | None = None

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.OK

    def metric_value(self, metric: Metric) -> float | None:
        """Raw value of ``metric`` for this run, ``None`` if absent."""
        return to_number(getattr(self, METRICS[metric].run_field))


# ---------------------------------------------------------------------------
# Display Formatting
# ---------------------------------------------------------------------------


def format_bytes(value: float | None) -> str:
    """Human-readable byte count, 1024 base.

    Example:
        >>> format_bytes(512)
        '512 B'
        >>> format_bytes(1536)
        '1.5 KB'
        >>> format_bytes(-2_097_152)
        '-2.00 MB'
    """
    if value is None or not math.isfinite(value):
        return "-"
    magnitude: float = abs(value)
    if magnitude < 1024:
        return f"{round(value)} B"
    if magnitude < 1024**2:
        return f"{value / 1024:.1f} KB"
    if magnitude < 1024**3:
        return f"{value / 1024**2:.2f} MB"
    return f"{value / 1024**3:.2f} GB"


def format_metric_value(value: float | None, metric: Metric) -> str:
    """Format a raw metric value with its unit, ``-`` when missing.

    Nanosecond metrics are shown in milliseconds.
    """
    if value is None or not math.isfinite(value):
        return "-"

    unit: str = METRICS[metric].unit
    if unit == "bytes":
        return format_bytes(value)
    if unit == "ms":
        return f"{value:.2f} ms"
    if unit == "ns":
        return f"{value / 1e6:.2f} ms"
    if unit == "count":
        return f"{round(value):,}"
    return str(value)
