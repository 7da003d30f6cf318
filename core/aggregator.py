"""Statistical aggregation of repeated runs.

Runs are accumulated into one :class:`MetricBucket` per (size, format)
and summarized into read-only :class:`AggregateRow` snapshots, one
:class:`Stats` per tracked metric.

Statistics semantics:
    - mean: arithmetic
    - median: midpoint average for even-count samples
    - p95 / p99: nearest-rank, ``sorted[floor(q * (n - 1))]``, no
      interpolation
    - stddev / variance: population form (divide by ``n``)

    NaN, infinities and ``None`` are dropped before computing, and
    ``count`` is the number of values that survived. A metric with no
    valid samples yields an all-null :class:`Stats` with ``count == 0``.

Failed runs:
    An ``error`` run contributes no numeric sample; it only increments
    the bucket's error counter. A format that failed every iteration
    still gets a row, with null stats and a visible error count.

Example:
    >>> from core.aggregator import calculate_stats
    >>> stats = calculate_stats([10, 20, 30, 40, 50])
    >>> stats.p95, stats.median
    (40.0, 30.0)
"""

import logging
import math
import statistics
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field

from core.formats import FormatId, format_sort_key
from core.metrics import METRICS, Metric, RunResult

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Summary Statistics
# ---------------------------------------------------------------------------


class Stats(BaseModel):
    """Summary statistics of one metric's sample set.

    All values are ``None`` when ``count == 0``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mean: float | None = None
    median: float | None = None
    p95: float | None = None
    p99: float | None = None
    stddev: float | None = None
    variance: float | None = None
    min: float | None = None
    max: float | None = None
    count: int = Field(default=0, ge=0)


EMPTY_STATS: Stats = Stats()


def nearest_rank_percentile(sorted_values: list[float], quantile: float) -> float:
    """Return the nearest-rank percentile of an ascending sample.

    Index is ``floor(quantile * (n - 1))``.

    Args:
        sorted_values: Pre-sorted values (ascending). Must not be empty.
        quantile: Quantile in [0.0, 1.0], e.g. 0.95 for P95.

    Raises:
        ValueError: If sorted_values is empty or quantile is out of range.

    Example:
        >>> nearest_rank_percentile([10.0, 20.0, 30.0, 40.0, 50.0], 0.95)
        40.0
        >>> nearest_rank_percentile([10.0, 20.0, 30.0, 40.0, 50.0], 1.0)
        50.0
    """
    if not sorted_values:
        raise ValueError("sorted_values must not be empty")
    if not 0.0 <= quantile <= 1.0:
        raise ValueError(f"quantile must be in [0.0, 1.0], got {quantile}")

    index: int = math.floor(quantile * (len(sorted_values) - 1))
    return sorted_values[index]


def calculate_stats(values: Iterable[float | None]) -> Stats:
    """Summarize a sample set, ignoring ``None`` and non-finite values.

    Args:
        values: Raw samples; may contain ``None``, NaN or infinities.

    Returns:
        :class:`Stats`, all-null with ``count=0`` if nothing is usable.
    """
    clean: list[float] = sorted(
        float(v) for v in values
        if v is not None and math.isfinite(v)
    )
    if not clean:
        return EMPTY_STATS

    variance: float = statistics.pvariance(clean)

    return Stats(
        mean=statistics.fmean(clean),
        median=statistics.median(clean),
        p95=nearest_rank_percentile(clean, 0.95),
        p99=nearest_rank_percentile(clean, 0.99),
        stddev=math.sqrt(variance),
        variance=variance,
        min=clean[0],
        max=clean[-1],
        count=len(clean),
    )


# ---------------------------------------------------------------------------
# Bucket & Row
# ---------------------------------------------------------------------------


class MetricBucket:
    """Raw samples for one (size, format) pair, before summarization.

    **NOT thread-safe.** Single writer: the run loop.

    Attributes:
        size: Dataset size preset id.
        format_id: Format measured.
        values: Per-metric sample lists, successful runs only.
        errors: Number of failed runs.
    """

    __slots__ = ("size", "format_id", "values", "errors")

    def __init__(self, size: str, format_id: FormatId) -> None:
        self.size: str = size
        self.format_id: FormatId = format_id
        self.values: dict[Metric, list[float]] = {m: [] for m in METRICS}
        self.errors: int = 0

    def add(self, result: RunResult) -> None:
        """Fold one run into the bucket."""
        if not result.ok:
            self.errors += 1
            return
        for metric in METRICS:
            value: float | None = result.metric_value(metric)
            if value is not None:
                self.values[metric].append(value)

    def summarize(self) -> "AggregateRow":
        """Snapshot the bucket as an :class:`AggregateRow`."""
        stats: dict[str, Stats] = {
            metric.value: calculate_stats(samples)
            for metric, samples in self.values.items()
        }
        return AggregateRow(
            size=self.size,
            format_id=self.format_id,
            errors=self.errors,
            **stats,
        )


class AggregateRow(BaseModel):
    """Read-only summary of one (size, format) pair.

    One :class:`Stats` field per :class:`~core.metrics.Metric`, named by
    the metric's value, plus the error count.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    size: str
    format_id: FormatId
    errors: int = Field(default=0, ge=0)

    end_to_end: Stats = EMPTY_STATS
    parse: Stats = EMPTY_STATS
    serialize: Stats = EMPTY_STATS
    ttfb: Stats = EMPTY_STATS
    download: Stats = EMPTY_STATS
    dns: Stats = EMPTY_STATS
    connect: Stats = EMPTY_STATS
    payload: Stats = EMPTY_STATS
    server_payload: Stats = EMPTY_STATS
    transfer: Stats = EMPTY_STATS
    bytes_per_record: Stats = EMPTY_STATS
    server_heap_before: Stats = EMPTY_STATS
    server_heap_after: Stats = EMPTY_STATS
    server_heap_delta: Stats = EMPTY_STATS
    server_gc_count: Stats = EMPTY_STATS
    server_gc_time: Stats = EMPTY_STATS
    server_cpu_time: Stats = EMPTY_STATS
    client_heap_before: Stats = EMPTY_STATS
    client_heap_after: Stats = EMPTY_STATS
    client_heap_delta: Stats = EMPTY_STATS
    long_task_count: Stats = EMPTY_STATS
    long_task_total: Stats = EMPTY_STATS
    event_count: Stats = EMPTY_STATS

    def stats(self, metric: Metric) -> Stats:
        """Return the :class:`Stats` of ``metric``."""
        return getattr(self, metric.value)

    def mean(self, metric: Metric) -> float | None:
        """Shortcut for ``stats(metric).mean``."""
        return self.stats(metric).mean


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class Aggregator:
    """Accumulates runs keyed by (size, format) and emits aggregate rows.

    Sizes are reported in first-seen order. Within a size, rows follow
    the canonical format order, unknown ids last alphabetically.

    **NOT thread-safe.** Single writer: the run loop.

    Example:
        >>> aggregator = Aggregator()
        >>> aggregator.add_all(results)
        >>> rows = aggregator.rows()["small"]
        >>> rows[0].end_to_end.mean
        12.5
    """

    def __init__(self) -> None:
        self._buckets: dict[tuple[str, FormatId], MetricBucket] = {}

    def reset(self) -> None:
        """Discard all buckets (start of a session)."""
        self._buckets.clear()

    def add(self, result: RunResult) -> None:
        """Append one run to its (size, format) bucket."""
        key: tuple[str, FormatId] = (result.size, result.format_id)
        bucket: MetricBucket | None = self._buckets.get(key)
        if bucket is None:
            bucket = MetricBucket(size=result.size, format_id=result.format_id)
            self._buckets[key] = bucket
        bucket.add(result)

    def add_all(self, results: Iterable[RunResult]) -> None:
        for result in results:
            self.add(result)

    @property
    def sizes(self) -> list[str]:
        """Size ids in first-seen order."""
        seen: dict[str, None] = {}
        for size, _ in self._buckets:
            seen.setdefault(size, None)
        return list(seen)

    def bucket(self, size: str, format_id: FormatId) -> MetricBucket | None:
        return self._buckets.get((size, format_id))

    def rows_for(self, size: str) -> list[AggregateRow]:
        """Aggregate rows for one size, canonical format order."""
        buckets: list[MetricBucket] = [
            b for (s, _), b in self._buckets.items() if s == size
        ]
        buckets.sort(key=lambda b: format_sort_key(b.format_id.value))
        return [b.summarize() for b in buckets]

    def rows(self) -> dict[str, list[AggregateRow]]:
        """Aggregate rows for every size, keyed by size id."""
        result: dict[str, list[AggregateRow]] = {
            size: self.rows_for(size) for size in self.sizes
        }
        logger.debug(
            "Aggregated %d buckets across %d sizes",
            len(self._buckets), len(result),
        )
        return result
