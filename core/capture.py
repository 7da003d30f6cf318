"""Single-run capture: fetch, decode and measure one (format, size) pair.

:class:`RunCapture` is the run boundary. It asks a :class:`Transport` for
an encoded payload, decodes it with the registered codec, and folds the
server headers, network timing, client heap readings and long-task feed
into one immutable :class:`~core.metrics.RunResult`.

Failure handling:
    :class:`~core.errors.TransportError` and
    :class:`~core.errors.DecodeError` are caught here and recorded as an
    ``error`` result carrying the raw message. Nothing is retried and no
    per-run failure escapes :meth:`RunCapture.run`.

Timing model:
    - end-to-end: request start until the decode returns
    - parse: the decode call only
    - client heap: sampled before the request and after the decode

Thread safety:
    **NOT thread-safe.** One capture drives one transport, sequentially.
"""

import logging
import time
from collections.abc import Mapping
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from core.errors import DecodeError, TransportError
from core.formats import CodecRegistry, FormatId
from core.metrics import (
    LongTaskObserver,
    NetworkTiming,
    ResourceSampler,
    ResourceSnapshot,
    RunResult,
    RunStatus,
    ServerMetrics,
    bytes_per_record,
    snapshot_delta,
)
from core.records import CalendarEvent, DatasetSizePreset

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transport Contract
# ---------------------------------------------------------------------------

DEFAULT_SERVER_BASE: str = "http://localhost:8090"


class TransportResponse(BaseModel):
    """A successful benchmark response as seen by the client.

    Attributes:
        status_code: HTTP-style status code (2xx).
        body: Raw encoded payload.
        headers: Response headers, including the ``X-*`` metric headers.
        network: Client-observed network timing (nulls when unobservable).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status_code: int = Field(default=200, ge=100, le=599)
    body: bytes
    headers: Mapping[str, str] = Field(default_factory=dict)
    network: NetworkTiming = Field(default_factory=NetworkTiming)


class Transport(Protocol):
    """Delivers encoded payloads for a (format, size) request."""

    @property
    def description(self) -> str:
        """Short human description, recorded in the report."""
        ...

    def fetch(
        self, format_id: FormatId, size: DatasetSizePreset,
    ) -> TransportResponse:
        """Fetch one payload. Raises ``TransportError`` on failure."""
        ...

    def request_gc(self) -> None:
        """Ask the server side to collect garbage. Advisory only."""
        ...

    def close(self) -> None:
        """Release any held connections."""
        ...


# ---------------------------------------------------------------------------
# Run Capture
# ---------------------------------------------------------------------------


class RunCapture:
    """Executes and measures single runs against a transport.

    Args:
        transport: Payload source.
        codecs: Registry used to decode payloads on the client side.
        sampler: Client-side resource sampler (heap readings).
        long_task_threshold_ms: Decode steps at least this long are
            recorded as long tasks. Default 50 ms.

    Example:
        >>> capture = RunCapture(transport, registry, NullResourceSampler())
        >>> result = capture.run(FormatId.CBOR, resolve_size("small"), 1)
        >>> result.status
        <RunStatus.OK: 'ok'>
    """

    def __init__(
        self,
        transport: Transport,
        codecs: CodecRegistry,
        sampler: ResourceSampler,
        long_task_threshold_ms: float = 50.0,
    ) -> None:
        self._transport: Transport = transport
        self._codecs: CodecRegistry = codecs
        self._sampler: ResourceSampler = sampler
        self._long_task_threshold_ms: float = long_task_threshold_ms

    def run(
        self,
        format_id: FormatId,
        size: DatasetSizePreset,
        iteration: int,
    ) -> RunResult:
        """Execute one run and return its immutable result.

        Args:
            format_id: Format to request. Must be registered.
            size: Dataset size preset to request.
            iteration: 1-based iteration number.

        Returns:
            ``ok`` result with every observable metric, or ``error``
            result with the raw failure message.

        Raises:
            KeyError: If ``format_id`` has no registered codec.
        """
        codec = self._codecs[format_id]
        observer: LongTaskObserver = LongTaskObserver(
            threshold_ms=self._long_task_threshold_ms,
        )
        heap_before: ResourceSnapshot = self._sampler.snapshot()
        start_ns: int = time.perf_counter_ns()

        try:
            response: TransportResponse = self._transport.fetch(format_id, size)
        except TransportError as exc:
            observer.disconnect()
            logger.warning(
                "Run failed: format=%s size=%s iteration=%d status=%s: %s",
                format_id.value, size.id, iteration, exc.status_code, exc.message,
            )
            return RunResult(
                format_id=format_id,
                size=size.id,
                iteration=iteration,
                status=RunStatus.ERROR,
                status_code=exc.status_code,
                message=exc.message,
                end_to_end_ms=(time.perf_counter_ns() - start_ns) / 1e6,
                client_heap_before=heap_before.heap_used,
                long_task_count=0,
                long_task_total_ms=0.0,
            )

        parse_start_ms: float = observer.now_ms()
        parse_start_ns: int = time.perf_counter_ns()
        failure: str | None = None
        try:
            records: list[CalendarEvent] = codec.decode(response.body)
        except DecodeError as exc:
            failure = str(exc)
        parse_end_ns: int = time.perf_counter_ns()
        heap_after: ResourceSnapshot = self._sampler.snapshot()

        parse_ms: float = (parse_end_ns - parse_start_ns) / 1e6
        observer.observe(duration_ms=parse_ms, start_ms=parse_start_ms)
        observer.disconnect()

        server: ServerMetrics = ServerMetrics.from_headers(response.headers)
        network: NetworkTiming = response.network
        payload_bytes: int = len(response.body)

        if failure is not None:
            logger.warning(
                "Decode failed: format=%s size=%s iteration=%d: %s",
                format_id.value, size.id, iteration, failure,
            )
        else:
            logger.debug(
                "Run ok: format=%s size=%s iteration=%d records=%d",
                format_id.value, size.id, iteration, len(records),
            )

        return RunResult(
            format_id=format_id,
            size=size.id,
            iteration=iteration,
            status=RunStatus.OK if failure is None else RunStatus.ERROR,
            status_code=response.status_code,
            message=failure,
            end_to_end_ms=(parse_end_ns - start_ns) / 1e6,
            parse_ms=parse_ms,
            server_serialize_ms=server.serialize_ms,
            ttfb_ms=network.ttfb_ms,
            download_ms=network.download_ms,
            dns_ms=network.dns_ms,
            connect_ms=network.connect_ms,
            payload_bytes=payload_bytes,
            server_payload_bytes=server.payload_bytes,
            transfer_size=network.transfer_size,
            bytes_per_record=bytes_per_record(payload_bytes, server.event_count),
            server_heap_used_before=server.heap_used_before,
            server_heap_used_after=server.heap_used_after,
            server_heap_delta=server.heap_delta,
            server_gc_count=server.gc_count,
            server_gc_time_ms=server.gc_time_ms,
            server_cpu_time_nanos=server.cpu_time_nanos,
            client_heap_before=heap_before.heap_used,
            client_heap_after=heap_after.heap_used,
            client_heap_delta=snapshot_delta(
                heap_before.heap_used, heap_after.heap_used,
            ),
            long_task_count=observer.count,
            long_task_total_ms=observer.total_ms,
            event_count=server.event_count,
        )
