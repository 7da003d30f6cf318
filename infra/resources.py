"""Python resource sampling and server-side encode measurement.

Provides the interpreter-level implementation of
:class:`core.metrics.ResourceSampler` and the ``measure_encode`` helper
the serving side uses to produce the ``X-*`` metric headers.

Sources:
    ============  ==================================================
    Field         Source
    ============  ==================================================
    heap_used     ``tracemalloc.get_traced_memory()`` (None unless
                  tracing)
    gc_count      sum of ``gc.get_stats()[*]["collections"]``
    gc_time_ms    :class:`GcPauseTimer` on ``gc.callbacks``
    cpu_time      ``time.thread_time_ns()`` (thread-local)
    ============  ==================================================

Thread safety:
    Samplers are **NOT thread-safe**. The GC pause timer is installed
    process-wide; it only accumulates, so a stray collection on another
    thread inflates ``gc_time_ms`` but never corrupts it.

Example:
    >>> from infra.resources import PythonResourceSampler, measure_encode
    >>> sampler = PythonResourceSampler(trace_heap=False)
    >>> measurement = measure_encode(codec, events, sampler)
    >>> measurement.headers()["X-Event-Count"]
    '1000'
    >>> sampler.close()
"""

import gc
import logging
import time
import tracemalloc
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from core.formats import Codec, FormatId
from core.metrics import (
    HEADER_CPU_TIME_NANOS,
    HEADER_EVENT_COUNT,
    HEADER_FORMAT,
    HEADER_GC_COUNT,
    HEADER_GC_TIME_MS,
    HEADER_HEAP_AFTER,
    HEADER_HEAP_BEFORE,
    HEADER_HEAP_DELTA,
    HEADER_PAYLOAD_BYTES,
    HEADER_SERIALIZE_NANOS,
    ResourceSampler,
    ResourceSnapshot,
    snapshot_delta,
)
from core.records import CalendarEvent

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# GC Pause Timer
# ---------------------------------------------------------------------------


class GcPauseTimer:
    """Accumulates garbage collector pause time via ``gc.callbacks``.

    Example:
        >>> timer = GcPauseTimer()
        >>> timer.install()
        >>> gc.collect()
        >>> timer.total_ms > 0
        True
        >>> timer.uninstall()
    """

    __slots__ = ("_started_ns", "_total_ns", "_installed")

    def __init__(self) -> None:
        self._started_ns: int | None = None
        self._total_ns: int = 0
        self._installed: bool = False

    def _callback(self, phase: str, info: dict) -> None:
        if phase == "start":
            self._started_ns = time.perf_counter_ns()
        elif phase == "stop" and self._started_ns is not None:
            self._total_ns += time.perf_counter_ns() - self._started_ns
            self._started_ns = None

    def install(self) -> None:
        if not self._installed:
            gc.callbacks.append(self._callback)
            self._installed = True

    def uninstall(self) -> None:
        if self._installed:
            gc.callbacks.remove(self._callback)
            self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def total_ms(self) -> float:
        """Total pause time observed since creation, milliseconds."""
        return self._total_ns / 1e6


# ---------------------------------------------------------------------------
# Samplers
# ---------------------------------------------------------------------------


class PythonResourceSampler:
    """CPython heap/GC/CPU sampler.

    Args:
        trace_heap: Start ``tracemalloc`` if it is not already tracing.
            Heap readings are ``None`` while tracing is off. Tracing
            slows allocation-heavy code noticeably; leave it off when
            timing is what matters.

    Call :meth:`close` to remove the GC callback and stop any tracing
    this sampler started.
    """

    def __init__(self, trace_heap: bool = False) -> None:
        self._owns_tracing: bool = False
        if trace_heap and not tracemalloc.is_tracing():
            tracemalloc.start()
            self._owns_tracing = True
        self._timer: GcPauseTimer = GcPauseTimer()
        self._timer.install()

    def snapshot(self) -> ResourceSnapshot:
        heap_used: int | None = None
        if tracemalloc.is_tracing():
            heap_used, _ = tracemalloc.get_traced_memory()

        return ResourceSnapshot(
            heap_used=heap_used,
            gc_count=sum(gen["collections"] for gen in gc.get_stats()),
            gc_time_ms=self._timer.total_ms,
            cpu_time_nanos=time.thread_time_ns(),
        )

    def close(self) -> None:
        self._timer.uninstall()
        if self._owns_tracing:
            tracemalloc.stop()
            self._owns_tracing = False


# ---------------------------------------------------------------------------
# Encode Measurement
# ---------------------------------------------------------------------------


class EncodeMeasurement(BaseModel):
    """Result of one measured server-side encode.

    Attributes:
        format_id: Format encoded.
        payload: Encoded bytes.
        serialize_nanos: Monotonic wall-clock duration of the encode.
        event_count: Records encoded.
        before: Sampler reading before the encode.
        after: Sampler reading after the encode.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    format_id: FormatId
    payload: bytes
    serialize_nanos: int = Field(ge=0)
    event_count: int = Field(ge=0)
    before: ResourceSnapshot
    after: ResourceSnapshot

    def headers(self) -> dict[str, str]:
        """Build the ``X-*`` metric headers. Null measurements are omitted."""
        headers: dict[str, str] = {
            HEADER_SERIALIZE_NANOS: str(self.serialize_nanos),
            HEADER_PAYLOAD_BYTES: str(len(self.payload)),
            HEADER_FORMAT: self.format_id.value,
            HEADER_EVENT_COUNT: str(self.event_count),
        }
        optional: dict[str, float | None] = {
            HEADER_HEAP_BEFORE: self.before.heap_used,
            HEADER_HEAP_AFTER: self.after.heap_used,
            HEADER_HEAP_DELTA: snapshot_delta(
                self.before.heap_used, self.after.heap_used,
            ),
            HEADER_GC_COUNT: snapshot_delta(
                self.before.gc_count, self.after.gc_count,
            ),
            HEADER_GC_TIME_MS: snapshot_delta(
                self.before.gc_time_ms, self.after.gc_time_ms,
            ),
            HEADER_CPU_TIME_NANOS: snapshot_delta(
                self.before.cpu_time_nanos, self.after.cpu_time_nanos,
            ),
        }
        for name, value in optional.items():
            if value is not None:
                headers[name] = str(value)
        return headers


def measure_encode(
    codec: Codec,
    records: Sequence[CalendarEvent],
    sampler: ResourceSampler,
) -> EncodeMeasurement:
    """Encode ``records`` while measuring time, heap, GC and CPU.

    Args:
        codec: Codec to run.
        records: Records to encode.
        sampler: Resource sampler read before and after the call.

    Returns:
        :class:`EncodeMeasurement`.

    Raises:
        EncodeError: Propagated from the codec.
    """
    before: ResourceSnapshot = sampler.snapshot()
    start_ns: int = time.perf_counter_ns()
    payload: bytes = codec.encode(records)
    elapsed_ns: int = time.perf_counter_ns() - start_ns
    after: ResourceSnapshot = sampler.snapshot()

    logger.debug(
        "Encoded %d events as %s: %d bytes in %.3f ms",
        len(records), codec.format_id.value, len(payload), elapsed_ns / 1e6,
    )

    return EncodeMeasurement(
        format_id=codec.format_id,
        payload=payload,
        serialize_nanos=elapsed_ns,
        event_count=len(records),
        before=before,
        after=after,
    )
