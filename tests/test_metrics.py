"""Unit tests for core.metrics module.

Tests metric metadata, numeric coercion, header parsing, the long task
observer, RunResult accessors and display formatting.
"""

import math

import pytest
from pydantic import ValidationError

from core.formats import FormatId
from core.metrics import (
    HEADER_EVENT_COUNT,
    HEADER_HEAP_DELTA,
    HEADER_PAYLOAD_BYTES,
    HEADER_SERIALIZE_NANOS,
    METRICS,
    Category,
    LongTaskObserver,
    Metric,
    NullResourceSampler,
    ResourceSnapshot,
    RunResult,
    RunStatus,
    ServerMetrics,
    bytes_per_record,
    format_bytes,
    format_metric_value,
    snapshot_delta,
    to_number,
)


# ---------------------------------------------------------------------------
# Metric Metadata
# ---------------------------------------------------------------------------


class TestMetricMetadata:
    """Tests for the METRICS table."""

    def test_every_metric_described(self) -> None:
        """Each Metric has metadata pointing at a RunResult field."""
        assert set(METRICS) == set(Metric)
        for info in METRICS.values():
            assert info.run_field in RunResult.model_fields

    def test_event_count_is_informational(self) -> None:
        """event_count is neither lower-is-better nor scored."""
        info = METRICS[Metric.EVENT_COUNT]
        assert info.lower_is_better is False
        assert info.category is Category.INFO

    def test_units(self) -> None:
        """Units drive display formatting."""
        assert METRICS[Metric.END_TO_END].unit == "ms"
        assert METRICS[Metric.PAYLOAD].unit == "bytes"
        assert METRICS[Metric.SERVER_CPU_TIME].unit == "ns"


# ---------------------------------------------------------------------------
# Coercion Helpers
# ---------------------------------------------------------------------------


class TestToNumber:
    """Tests for to_number coercion."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("42", 42.0), (" 1.5 ", 1.5), (7, 7.0), ("-3", -3.0)],
    )
    def test_parses_numbers(self, raw: object, expected: float) -> None:
        """Numeric strings and numbers become floats."""
        assert to_number(raw) == expected

    @pytest.mark.parametrize(
        "raw", [None, "", "abc", "nan", "inf", True, float("nan"), object()],
    )
    def test_rejects_missing_and_non_finite(self, raw: object) -> None:
        """Missing, unparsable, non-finite and boolean values are None."""
        assert to_number(raw) is None


class TestBytesPerRecord:
    """Tests for bytes_per_record derivation."""

    def test_divides(self) -> None:
        """Payload bytes divided by event count."""
        assert bytes_per_record(1000, 10) == 100.0

    @pytest.mark.parametrize(
        ("payload", "count"), [(0, 10), (1000, 0), (None, 10), (1000, None)],
    )
    def test_zero_or_missing_operand(
        self, payload: float | None, count: float | None,
    ) -> None:
        """Either operand zero or missing yields None."""
        assert bytes_per_record(payload, count) is None


class TestSnapshotDelta:
    """Tests for snapshot_delta."""

    def test_difference(self) -> None:
        assert snapshot_delta(100, 60) == -40

    def test_missing_side(self) -> None:
        assert snapshot_delta(None, 60) is None
        assert snapshot_delta(100, None) is None

    def test_null_sampler(self) -> None:
        """NullResourceSampler reports every field as None."""
        assert NullResourceSampler().snapshot() == ResourceSnapshot()


# ---------------------------------------------------------------------------
# Server Metrics
# ---------------------------------------------------------------------------


class TestServerMetrics:
    """Tests for ServerMetrics.from_headers."""

    def test_parses_headers(self) -> None:
        """Known X-* headers are parsed to floats."""
        metrics: ServerMetrics = ServerMetrics.from_headers({
            HEADER_SERIALIZE_NANOS: "2500000",
            HEADER_PAYLOAD_BYTES: "4096",
            HEADER_HEAP_DELTA: "-2048",
            HEADER_EVENT_COUNT: "1000",
        })
        assert metrics.serialize_nanos == 2_500_000
        assert math.isclose(metrics.serialize_ms, 2.5)  # type: ignore[arg-type]
        assert metrics.payload_bytes == 4096
        assert metrics.heap_delta == -2048
        assert metrics.event_count == 1000

    def test_case_insensitive_lookup(self) -> None:
        """Header names are matched case-insensitively."""
        metrics: ServerMetrics = ServerMetrics.from_headers(
            {"x-event-count": "12", "X-GC-COUNT": "3"},
        )
        assert metrics.event_count == 12
        assert metrics.gc_count == 3

    def test_missing_and_garbage_are_none(self) -> None:
        """Absent or unparsable headers become None."""
        metrics: ServerMetrics = ServerMetrics.from_headers(
            {HEADER_SERIALIZE_NANOS: "fast"},
        )
        assert metrics.serialize_nanos is None
        assert metrics.serialize_ms is None
        assert metrics.payload_bytes is None


# ---------------------------------------------------------------------------
# Long Task Observer
# ---------------------------------------------------------------------------


class TestLongTaskObserver:
    """Tests for LongTaskObserver."""

    def test_ignores_short_tasks(self) -> None:
        """Tasks below the threshold are not recorded."""
        observer: LongTaskObserver = LongTaskObserver(threshold_ms=50.0)
        observer.observe(duration_ms=49.9)
        assert observer.count == 0
        assert observer.total_ms == 0

    def test_records_long_tasks(self) -> None:
        """Tasks at or above the threshold are summed."""
        observer: LongTaskObserver = LongTaskObserver(threshold_ms=50.0)
        observer.observe(duration_ms=50.0, start_ms=1.0)
        observer.observe(duration_ms=75.0, start_ms=60.0)
        assert observer.count == 2
        assert observer.total_ms == 125.0
        assert observer.tasks[1].start_ms == 60.0

    def test_disconnect_stops_recording(self) -> None:
        """No tasks are accepted after disconnect()."""
        observer: LongTaskObserver = LongTaskObserver(threshold_ms=10.0)
        observer.disconnect()
        observer.observe(duration_ms=100.0)
        assert observer.count == 0

    def test_default_start_is_relative(self) -> None:
        """Without start_ms the task is back-dated from now."""
        observer: LongTaskObserver = LongTaskObserver(threshold_ms=1.0)
        observer.observe(duration_ms=5.0)
        assert observer.tasks[0].start_ms <= observer.now_ms()


# ---------------------------------------------------------------------------
# RunResult
# ---------------------------------------------------------------------------


class TestRunResult:
    """Tests for RunResult model."""

    def test_metric_value_maps_field(self) -> None:
        """metric_value reads the metric's run field."""
        result: RunResult = RunResult(
            format_id=FormatId.CBOR,
            size="small",
            iteration=1,
            status=RunStatus.OK,
            end_to_end_ms=12.5,
            server_serialize_ms=1.25,
        )
        assert result.ok is True
        assert result.metric_value(Metric.END_TO_END) == 12.5
        assert result.metric_value(Metric.SERIALIZE) == 1.25
        assert result.metric_value(Metric.TTFB) is None

    def test_error_status(self) -> None:
        """An error run is not ok."""
        result: RunResult = RunResult(
            format_id=FormatId.ARROW,
            size="small",
            iteration=2,
            status=RunStatus.ERROR,
            status_code=500,
            message="boom",
        )
        assert result.ok is False

    def test_iteration_is_one_based(self) -> None:
        """iteration=0 is rejected."""
        with pytest.raises(ValidationError):
            RunResult(
                format_id=FormatId.CBOR,
                size="small",
                iteration=0,
                status=RunStatus.OK,
            )


# ---------------------------------------------------------------------------
# Display Formatting
# ---------------------------------------------------------------------------


class TestFormatBytes:
    """Tests for format_bytes."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (0, "0 B"),
            (512, "512 B"),
            (1536, "1.5 KB"),
            (2_097_152, "2.00 MB"),
            (3 * 1024**3, "3.00 GB"),
            (-2_097_152, "-2.00 MB"),
            (None, "-"),
            (float("nan"), "-"),
        ],
    )
    def test_thresholds(self, value: float | None, expected: str) -> None:
        assert format_bytes(value) == expected


class TestFormatMetricValue:
    """Tests for format_metric_value."""

    def test_milliseconds(self) -> None:
        assert format_metric_value(12.345, Metric.END_TO_END) == "12.35 ms"

    def test_nanoseconds_shown_as_ms(self) -> None:
        assert format_metric_value(2_500_000, Metric.SERVER_CPU_TIME) == "2.50 ms"

    def test_bytes(self) -> None:
        assert format_metric_value(2048, Metric.PAYLOAD) == "2.0 KB"

    def test_count_rounded(self) -> None:
        assert format_metric_value(1234.6, Metric.EVENT_COUNT) == "1,235"

    def test_missing(self) -> None:
        assert format_metric_value(None, Metric.PARSE) == "-"
