"""Transports delivering encoded payloads to the run loop.

Two implementations of :class:`core.capture.Transport`:

- :class:`LocalTransport`: encodes in-process with
  :func:`infra.resources.measure_encode`. No network, so every network
  timing field is ``None``.
- :class:`HttpTransport`: talks to a benchmark server over HTTP via
  ``httpx``.

HTTP interface:
    - ``GET {base}/api/bench?format={id}&size={preset}`` returns the
      encoded payload with the ``X-*`` metric headers.
    - ``POST {base}/api/gc`` asks the server to collect garbage.

HTTP timing:
    ============  ==================================================
    Field         Source
    ============  ==================================================
    connect_ms    httpcore ``connect_tcp`` (+ ``start_tls``) trace
                  events; ``None`` when a pooled connection is reused
    ttfb_ms       request headers sent -> response headers received
                  (falls back to request start when no trace fires)
    download_ms   response headers received -> body read
    transfer      raw bytes downloaded (pre-decompression)
    dns_ms        always ``None``; not observable through httpx
    ============  ==================================================
"""

import gc
import logging
import time

import httpx

from core.capture import DEFAULT_SERVER_BASE, TransportResponse
from core.errors import EncodeError, TransportError
from core.formats import CodecRegistry, FormatId
from core.metrics import NetworkTiming, NullResourceSampler, ResourceSampler
from core.records import DEFAULT_SEED, CalendarEvent, DatasetSizePreset, generate_events
from infra.resources import EncodeMeasurement, measure_encode

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Local (in-process)
# ---------------------------------------------------------------------------


class LocalTransport:
    """Encodes payloads in the current interpreter.

    Generated datasets are cached per record count so that generation
    cost never lands inside a measured run.

    **NOT thread-safe.**

    Args:
        codecs: Registry used for the server-side encode.
        sampler: Server-side resource sampler. Defaults to all-null.
        seed: Fixture generator seed.

    Example:
        >>> transport = LocalTransport(build_codec_registry())
        >>> response = transport.fetch(FormatId.CBOR, resolve_size("small"))
        >>> response.headers["X-Event-Count"]
        '1000'
    """

    def __init__(
        self,
        codecs: CodecRegistry,
        sampler: ResourceSampler | None = None,
        seed: int = DEFAULT_SEED,
    ) -> None:
        self._codecs: CodecRegistry = codecs
        self._sampler: ResourceSampler = sampler or NullResourceSampler()
        self._seed: int = seed
        self._datasets: dict[int, list[CalendarEvent]] = {}

    @property
    def description(self) -> str:
        return "local (in-process)"

    def dataset(self, size: DatasetSizePreset) -> list[CalendarEvent]:
        """Return (and cache) the generated records for ``size``."""
        records: list[CalendarEvent] | None = self._datasets.get(size.count)
        if records is None:
            records = generate_events(count=size.count, seed=self._seed)
            self._datasets[size.count] = records
        return records

    def fetch(
        self, format_id: FormatId, size: DatasetSizePreset,
    ) -> TransportResponse:
        try:
            codec = self._codecs[format_id]
        except KeyError as exc:
            raise TransportError(
                f"Unknown format: {format_id.value}", status_code=400,
            ) from exc

        records: list[CalendarEvent] = self.dataset(size)
        try:
            measurement: EncodeMeasurement = measure_encode(
                codec, records, self._sampler,
            )
        except EncodeError as exc:
            raise TransportError(str(exc), status_code=500) from exc

        return TransportResponse(
            status_code=200,
            body=measurement.payload,
            headers={
                "Content-Type": codec.content_type,
                **measurement.headers(),
            },
            network=NetworkTiming(),
        )

    def request_gc(self) -> None:
        collected: int = gc.collect()
        logger.debug("Local GC collected %d objects", collected)

    def close(self) -> None:
        self._datasets.clear()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

_CONNECT_STARTED: str = "connection.connect_tcp.started"
_CONNECT_COMPLETE: str = "connection.connect_tcp.complete"
_TLS_COMPLETE: str = "connection.start_tls.complete"
_HEADERS_SENT_SUFFIX: str = ".send_request_headers.complete"
_HEADERS_RECEIVED_SUFFIX: str = ".receive_response_headers.complete"


class _TraceRecorder:
    """Records httpcore trace event timestamps for one request."""

    __slots__ = ("marks",)

    def __init__(self) -> None:
        self.marks: dict[str, int] = {}

    def __call__(self, event_name: str, info: dict) -> None:
        self.marks[event_name] = time.perf_counter_ns()

    def first(self, suffix: str) -> int | None:
        for name, stamp in self.marks.items():
            if name.endswith(suffix):
                return stamp
        return None


def _ms_between(start_ns: int | None, end_ns: int | None) -> float | None:
    if start_ns is None or end_ns is None or end_ns < start_ns:
        return None
    return (end_ns - start_ns) / 1e6


class HttpTransport:
    """Fetches payloads from a benchmark server.

    **NOT thread-safe.** One request at a time.

    Args:
        base_url: Server base URL, e.g. ``http://localhost:8090``.
        timeout: Per-request timeout in seconds.
        client: Pre-built client (tests inject one with
            ``httpx.MockTransport``). Owned by the caller when given.

    Example:
        >>> transport = HttpTransport("http://localhost:8090")
        >>> response = transport.fetch(FormatId.ARROW, resolve_size("large"))
        >>> transport.close()
    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_BASE,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url: str = base_url.rstrip("/")
        self._owns_client: bool = client is None
        self._client: httpx.Client = client or httpx.Client(timeout=timeout)

    @property
    def description(self) -> str:
        return f"http ({self._base_url})"

    @property
    def base_url(self) -> str:
        return self._base_url

    def fetch(
        self, format_id: FormatId, size: DatasetSizePreset,
    ) -> TransportResponse:
        url: str = f"{self._base_url}/api/bench"
        params: dict[str, str] = {"format": format_id.value, "size": size.id}
        trace: _TraceRecorder = _TraceRecorder()

        start_ns: int = time.perf_counter_ns()
        try:
            with self._client.stream(
                "GET", url, params=params, extensions={"trace": trace},
            ) as response:
                headers_ns: int = time.perf_counter_ns()
                body: bytes = response.read()
                done_ns: int = time.perf_counter_ns()
                downloaded: int = response.num_bytes_downloaded
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            message: str = body.decode("utf-8", errors="replace").strip()
            raise TransportError(
                message or response.reason_phrase or f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        connect_end: int | None = (
            trace.marks.get(_TLS_COMPLETE) or trace.marks.get(_CONNECT_COMPLETE)
        )
        headers_received: int = trace.first(_HEADERS_RECEIVED_SUFFIX) or headers_ns
        headers_sent: int = trace.first(_HEADERS_SENT_SUFFIX) or start_ns

        network: NetworkTiming = NetworkTiming(
            ttfb_ms=_ms_between(headers_sent, headers_received),
            download_ms=_ms_between(headers_received, done_ns),
            dns_ms=None,
            connect_ms=_ms_between(trace.marks.get(_CONNECT_STARTED), connect_end),
            transfer_size=downloaded or None,
        )

        return TransportResponse(
            status_code=response.status_code,
            body=body,
            headers=dict(response.headers),
            network=network,
        )

    def request_gc(self) -> None:
        """POST ``/api/gc``. Failures are logged at DEBUG and ignored."""
        try:
            response: httpx.Response = self._client.post(f"{self._base_url}/api/gc")
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            logger.debug("GC request failed: %s", exc)
            return
        if not response.is_success:
            logger.debug("GC request returned HTTP %d", response.status_code)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

