"""Unit tests for core.anomalies module.

Tests each detection rule in isolation, configurable thresholds and the
data quality grade.
"""

import pytest
from pydantic import ValidationError

from core.aggregator import AggregateRow, Stats, calculate_stats
from core.anomalies import (
    AnomalyConfig,
    AnomalyReport,
    AnomalyType,
    DataQuality,
    Severity,
    detect_anomalies,
    grade_data_quality,
)
from core.formats import FormatId


def _row(
    format_id: FormatId = FormatId.CBOR,
    size: str = "small",
    end_to_end: list[float] | None = None,
    ttfb: list[float] | None = None,
    heap_delta: list[float] | None = None,
) -> AggregateRow:
    stats: dict[str, Stats] = {}
    if end_to_end is not None:
        stats["end_to_end"] = calculate_stats(end_to_end)
    if ttfb is not None:
        stats["ttfb"] = calculate_stats(ttfb)
    if heap_delta is not None:
        stats["server_heap_delta"] = calculate_stats(heap_delta)
    return AggregateRow(size=size, format_id=format_id, **stats)


def _types(report: AnomalyReport) -> list[AnomalyType]:
    return [a.type for a in report.warnings + report.errors]


# ---------------------------------------------------------------------------
# Individual Rules
# ---------------------------------------------------------------------------


class TestLowSampleSize:
    """Tests for the low_sample_size rule."""

    def test_fires_below_minimum(self) -> None:
        """iterations=1 fires low_sample_size."""
        report: AnomalyReport = detect_anomalies({}, iterations=1)
        assert _types(report) == [AnomalyType.LOW_SAMPLE_SIZE]
        assert report.warnings[0].severity is Severity.WARNING
        assert "Only 1 iteration(s)" in report.warnings[0].message

    def test_silent_at_minimum(self) -> None:
        """iterations=3 does not fire."""
        report: AnomalyReport = detect_anomalies({}, iterations=3)
        assert report.of_type(AnomalyType.LOW_SAMPLE_SIZE) == []


class TestZeroVariance:
    """Tests for the zero_variance rule."""

    def test_identical_values_fire(self) -> None:
        """Identical end-to-end values with count > 1 fire."""
        rows = {"small": [_row(end_to_end=[5.0, 5.0, 5.0], ttfb=[1.0])]}
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        found = report.of_type(AnomalyType.ZERO_VARIANCE)
        assert len(found) == 1
        assert "CBOR in small" in found[0].message
        assert "3 runs" in found[0].message

    def test_single_sample_silent(self) -> None:
        """A single sample has zero variance but does not fire."""
        rows = {"small": [_row(end_to_end=[5.0], ttfb=[1.0])]}
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        assert report.of_type(AnomalyType.ZERO_VARIANCE) == []


class TestGcInterference:
    """Tests for the gc_interference rule."""

    def test_large_negative_delta_is_info(self) -> None:
        """Heap delta mean below -1 MB is an info finding."""
        rows = {"small": [_row(
            end_to_end=[5.0, 6.0], ttfb=[1.0], heap_delta=[-2_097_152.0],
        )]}
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        found = report.of_type(AnomalyType.GC_INTERFERENCE)
        assert len(found) == 1
        assert found[0].severity is Severity.INFO
        assert "-2.00 MB" in found[0].message

    def test_small_negative_delta_silent(self) -> None:
        """A small negative delta does not fire."""
        rows = {"small": [_row(
            end_to_end=[5.0, 6.0], ttfb=[1.0], heap_delta=[-1000.0],
        )]}
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        assert report.of_type(AnomalyType.GC_INTERFERENCE) == []


class TestMissingTtfb:
    """Tests for the missing_ttfb rule."""

    def test_all_null_ttfb_fires(self) -> None:
        """No row with a TTFB sample fires once."""
        rows = {
            "small": [_row(end_to_end=[1.0, 2.0]), _row(FormatId.ARROW, end_to_end=[1.0, 2.0])],
        }
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        assert len(report.of_type(AnomalyType.MISSING_TTFB)) == 1

    def test_some_ttfb_silent(self) -> None:
        """One row with TTFB is enough."""
        rows = {
            "small": [_row(end_to_end=[1.0, 2.0], ttfb=[0.5]), _row(FormatId.ARROW, end_to_end=[1.0, 2.0])],
        }
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        assert report.of_type(AnomalyType.MISSING_TTFB) == []

    def test_no_rows_silent(self) -> None:
        """No rows at all does not fire."""
        assert detect_anomalies({}, iterations=5).of_type(AnomalyType.MISSING_TTFB) == []


class TestInvertedScaling:
    """Tests for the inverted_scaling rule."""

    def test_smaller_size_much_slower_fires(self) -> None:
        """small mean > 1.5x medium mean fires."""
        rows = {
            "small": [_row(end_to_end=[20.0, 20.5], ttfb=[1.0])],
            "medium": [_row(size="medium", end_to_end=[10.0, 10.5], ttfb=[1.0])],
        }
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        found = report.of_type(AnomalyType.INVERTED_SCALING)
        assert len(found) == 1
        assert "small (20.25ms) is slower than medium (10.25ms)" in found[0].message

    def test_sizes_ordered_by_count(self) -> None:
        """Comparison follows record count, not mapping order."""
        rows = {
            "large": [_row(size="large", end_to_end=[50.0, 51.0], ttfb=[1.0])],
            "small": [_row(end_to_end=[5.0, 5.5], ttfb=[1.0])],
        }
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        assert report.of_type(AnomalyType.INVERTED_SCALING) == []

    def test_normal_scaling_silent(self) -> None:
        """Modest slowdown below the factor does not fire."""
        rows = {
            "small": [_row(end_to_end=[14.0, 14.5], ttfb=[1.0])],
            "medium": [_row(size="medium", end_to_end=[10.0, 10.5], ttfb=[1.0])],
        }
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        assert report.of_type(AnomalyType.INVERTED_SCALING) == []


class TestHighVariance:
    """Tests for the high_variance rule."""

    def test_high_cv_fires(self) -> None:
        """CV above 50 % fires."""
        rows = {"small": [_row(end_to_end=[1.0, 100.0], ttfb=[1.0])]}
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        found = report.of_type(AnomalyType.HIGH_VARIANCE)
        assert len(found) == 1
        assert "coefficient of variation" in found[0].message

    def test_low_cv_silent(self) -> None:
        """Tight samples do not fire."""
        rows = {"small": [_row(end_to_end=[10.0, 10.5, 11.0], ttfb=[1.0])]}
        report: AnomalyReport = detect_anomalies(rows, iterations=3)
        assert report.of_type(AnomalyType.HIGH_VARIANCE) == []


# ---------------------------------------------------------------------------
# Configuration & Grade
# ---------------------------------------------------------------------------


class TestAnomalyConfig:
    """Tests for configurable thresholds."""

    def test_custom_cv_threshold(self) -> None:
        """Lowering the CV threshold makes modest spread fire."""
        rows = {"small": [_row(end_to_end=[10.0, 12.0], ttfb=[1.0])]}
        config: AnomalyConfig = AnomalyConfig(high_cv_percent=5.0)
        report: AnomalyReport = detect_anomalies(rows, iterations=3, config=config)
        assert len(report.of_type(AnomalyType.HIGH_VARIANCE)) == 1

    def test_custom_min_iterations(self) -> None:
        """Raising min_iterations widens low_sample_size."""
        config: AnomalyConfig = AnomalyConfig(min_iterations=10)
        report: AnomalyReport = detect_anomalies({}, iterations=5, config=config)
        assert _types(report) == [AnomalyType.LOW_SAMPLE_SIZE]

    def test_invalid_thresholds_rejected(self) -> None:
        """Out-of-range thresholds are rejected."""
        with pytest.raises(ValidationError):
            AnomalyConfig(inverted_scaling_factor=0.5)
        with pytest.raises(ValidationError):
            AnomalyConfig(gc_interference_bytes=100.0)


class TestDataQuality:
    """Tests for the data quality grade."""

    @pytest.mark.parametrize(
        ("warnings", "errors", "expected"),
        [
            (0, 0, DataQuality.GOOD),
            (1, 0, DataQuality.ACCEPTABLE),
            (3, 0, DataQuality.ACCEPTABLE),
            (4, 0, DataQuality.FAIR),
            (0, 1, DataQuality.POOR),
            (9, 1, DataQuality.POOR),
        ],
    )
    def test_grade(self, warnings: int, errors: int, expected: DataQuality) -> None:
        assert grade_data_quality(warnings, errors) is expected

    def test_clean_session_is_good(self) -> None:
        """Well-behaved rows grade good."""
        rows = {"small": [_row(end_to_end=[10.0, 10.5, 11.0], ttfb=[1.0])]}
        report: AnomalyReport = detect_anomalies(rows, iterations=5)
        assert report.warnings == []
        assert report.data_quality is DataQuality.GOOD

    def test_many_findings_fair(self) -> None:
        """More than three warnings grade fair."""
        rows = {
            "small": [
                _row(FormatId.CBOR, end_to_end=[5.0, 5.0]),
                _row(FormatId.ARROW, end_to_end=[7.0, 7.0]),
                _row(FormatId.ORGJSON, end_to_end=[9.0, 9.0]),
            ],
        }
        report: AnomalyReport = detect_anomalies(rows, iterations=1)
        # low_sample_size + 3 x zero_variance + missing_ttfb
        assert len(report.warnings) == 5
        assert report.data_quality is DataQuality.FAIR
