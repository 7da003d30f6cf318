"""Measurement-validity checks over aggregated results.

:func:`detect_anomalies` is a pure function: it inspects the aggregate
rows of a session and annotates them with structured findings. It never
raises on partial data and never discards anything.

Rules (each independent, several may fire):

    ====================  ========  =====================================
    Type                  Severity  Fires when
    ====================  ========  =====================================
    low_sample_size       warning   iterations < min_iterations (3)
    zero_variance         warning   end-to-end stddev == 0, count > 1
    gc_interference       info      server heap delta mean < -1 MB
    missing_ttfb          warning   no row has a TTFB sample
    inverted_scaling      warning   mean at a size > 1.5x the mean at
                                    the next larger size
    high_variance         warning   end-to-end CV > 50 %
    ====================  ========  =====================================

Data quality grade:
    ``poor`` if any error, ``fair`` if more than three warnings,
    ``acceptable`` if any warning, otherwise ``good``. Info-severity
    notes are filed with the warnings and count toward the grade.
"""

import logging
from collections.abc import Mapping, Sequence
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from core.aggregator import AggregateRow
from core.formats import FormatId, format_label
from core.metrics import format_bytes
from core.records import resolve_size

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AnomalyType(str, Enum):
    LOW_SAMPLE_SIZE = "low_sample_size"
    ZERO_VARIANCE = "zero_variance"
    GC_INTERFERENCE = "gc_interference"
    MISSING_TTFB = "missing_ttfb"
    INVERTED_SCALING = "inverted_scaling"
    HIGH_VARIANCE = "high_variance"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DataQuality(str, Enum):
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    FAIR = "fair"
    POOR = "poor"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class AnomalyConfig(BaseModel):
    """Detector thresholds.

    Attributes:
        min_iterations: Fewer iterations than this is a low sample size.
        gc_interference_bytes: Server heap delta mean below this value
            suggests a collection ran during the encode.
        inverted_scaling_factor: A size slower than this multiple of the
            next larger size is inverted scaling.
        high_cv_percent: Coefficient of variation above this is high
            variance.
        fair_warning_count: More warnings than this grades ``fair``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_iterations: int = Field(default=3, ge=1)
    gc_interference_bytes: float = Field(default=-1_000_000.0, lt=0)
    inverted_scaling_factor: float = Field(default=1.5, gt=1.0)
    high_cv_percent: float = Field(default=50.0, gt=0)
    fair_warning_count: int = Field(default=3, ge=0)


DEFAULT_ANOMALY_CONFIG: AnomalyConfig = AnomalyConfig()


# ---------------------------------------------------------------------------
# Result Models
# ---------------------------------------------------------------------------


class Anomaly(BaseModel):
    """One finding."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: AnomalyType
    message: str
    severity: Severity


class AnomalyReport(BaseModel):
    """All findings of a session plus an overall grade.

    ``errors`` is reserved for fatal-class findings; no current rule
    emits one.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    warnings: list[Anomaly] = Field(default_factory=list)
    errors: list[Anomaly] = Field(default_factory=list)
    data_quality: DataQuality = DataQuality.GOOD

    def of_type(self, anomaly_type: AnomalyType) -> list[Anomaly]:
        return [
            a for a in self.warnings + self.errors if a.type == anomaly_type
        ]


def grade_data_quality(
    warnings: int,
    errors: int,
    config: AnomalyConfig = DEFAULT_ANOMALY_CONFIG,
) -> DataQuality:
    """Grade a session from its finding counts."""
    if errors > 0:
        return DataQuality.POOR
    if warnings > config.fair_warning_count:
        return DataQuality.FAIR
    if warnings > 0:
        return DataQuality.ACCEPTABLE
    return DataQuality.GOOD


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def detect_anomalies(
    rows_by_size: Mapping[str, Sequence[AggregateRow]],
    iterations: int,
    config: AnomalyConfig = DEFAULT_ANOMALY_CONFIG,
) -> AnomalyReport:
    """Run every rule over a session's aggregate rows.

    Args:
        rows_by_size: Aggregate rows keyed by size id.
        iterations: Measured iterations per (size, format).
        config: Thresholds.

    Returns:
        :class:`AnomalyReport` with findings and data-quality grade.

    Example:
        >>> report = detect_anomalies({}, iterations=1)
        >>> [a.type.value for a in report.warnings]
        ['low_sample_size']
        >>> report.data_quality
        <DataQuality.ACCEPTABLE: 'acceptable'>
    """
    warnings: list[Anomaly] = []
    errors: list[Anomaly] = []

    if iterations < config.min_iterations:
        warnings.append(Anomaly(
            type=AnomalyType.LOW_SAMPLE_SIZE,
            message=(
                f"Only {iterations} iteration(s) run. Statistical measures "
                f"like stddev and p95 may be unreliable. Recommend 5+ "
                f"iterations."
            ),
            severity=Severity.WARNING,
        ))

    for size, rows in rows_by_size.items():
        for row in rows:
            e2e = row.end_to_end
            if e2e.stddev == 0 and e2e.count > 1:
                warnings.append(Anomaly(
                    type=AnomalyType.ZERO_VARIANCE,
                    message=(
                        f"{format_label(row.format_id.value)} in {size} has "
                        f"zero variance despite {e2e.count} runs - data may "
                        f"be cached or stale."
                    ),
                    severity=Severity.WARNING,
                ))

    for size, rows in rows_by_size.items():
        for row in rows:
            heap_delta: float | None = row.server_heap_delta.mean
            if heap_delta is not None and heap_delta < config.gc_interference_bytes:
                warnings.append(Anomaly(
                    type=AnomalyType.GC_INTERFERENCE,
                    message=(
                        f"{format_label(row.format_id.value)} in {size} shows "
                        f"significant negative heap delta "
                        f"({format_bytes(heap_delta)}) - GC likely ran "
                        f"during measurement."
                    ),
                    severity=Severity.INFO,
                ))

    all_rows: list[AggregateRow] = [
        row for rows in rows_by_size.values() for row in rows
    ]
    if all_rows and all(
        row.ttfb.mean is None or row.ttfb.count == 0 for row in all_rows
    ):
        warnings.append(Anomaly(
            type=AnomalyType.MISSING_TTFB,
            message=(
                "All TTFB measurements are null. Network timing is not "
                "observable through the configured transport."
            ),
            severity=Severity.WARNING,
        ))

    warnings.extend(_inverted_scaling(rows_by_size, config))

    for size, rows in rows_by_size.items():
        for row in rows:
            mean: float | None = row.end_to_end.mean
            stddev: float | None = row.end_to_end.stddev
            if mean and stddev and mean > 0:
                cv: float = stddev / mean * 100
                if cv > config.high_cv_percent:
                    warnings.append(Anomaly(
                        type=AnomalyType.HIGH_VARIANCE,
                        message=(
                            f"{format_label(row.format_id.value)} in {size} "
                            f"has {cv:.1f}% coefficient of variation - "
                            f"results are highly inconsistent."
                        ),
                        severity=Severity.WARNING,
                    ))

    quality: DataQuality = grade_data_quality(len(warnings), len(errors), config)
    if warnings:
        logger.info(
            "Detected %d anomalies, data quality: %s",
            len(warnings), quality.value,
        )

    return AnomalyReport(warnings=warnings, errors=errors, data_quality=quality)


def _inverted_scaling(
    rows_by_size: Mapping[str, Sequence[AggregateRow]],
    config: AnomalyConfig,
) -> list[Anomaly]:
    """Compare each format's mean across sizes ordered by record count."""
    sizes: list[str] = sorted(rows_by_size, key=lambda s: resolve_size(s).count)

    means: dict[FormatId, list[tuple[str, float]]] = {}
    for size in sizes:
        for row in rows_by_size[size]:
            mean: float | None = row.end_to_end.mean
            series: list[tuple[str, float]] = means.setdefault(row.format_id, [])
            if mean is not None:
                series.append((size, mean))

    found: list[Anomaly] = []
    for format_id, series in means.items():
        for (small, small_mean), (large, large_mean) in zip(series, series[1:]):
            if small_mean > large_mean * config.inverted_scaling_factor:
                found.append(Anomaly(
                    type=AnomalyType.INVERTED_SCALING,
                    message=(
                        f"{format_label(format_id.value)}: {small} "
                        f"({small_mean:.2f}ms) is slower than {large} "
                        f"({large_mean:.2f}ms) - possible cold start or "
                        f"caching issue."
                    ),
                    severity=Severity.WARNING,
                ))
    return found
