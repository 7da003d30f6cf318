"""Multi-criteria composite scoring of aggregated results.

Metrics differ in unit, scale and direction, so every metric is first
normalized across formats onto [0, 1] and only then combined.

Algorithm:
    1. **Normalize** each metric's per-format mean for one size:
       ``(max - v) / (max - min)`` (lower is better). All-equal values
       score 1. A format with no value is excluded, not zero-scored.
    2. **Category score**: weighted average of the sub-metrics that
       produced a normalized value, the weight denominator renormalized
       to the weights actually used. No usable sub-metric: ``None``.
    3. **Stability** uses derived inputs: end-to-end variance, the
       p99-to-mean ratio of end-to-end time (``None`` when either is
       non-positive) and the mean long-task time.
    4. **Overall per size**: category weights, renormalized over the
       non-null categories.
    5. **Across sizes**: unweighted mean of per-size scores.
    6. **Winners**: strictly highest final score; ties go to the first
       format encountered.

Default weights:
    ============  =====  ==========================================
    Category      Wt     Sub-metrics
    ============  =====  ==========================================
    speed         0.35   end_to_end .50, parse .20, ttfb .15,
                         download .10, server_serialize .05
    efficiency    0.25   payload .50, bytes_per_record .30,
                         transfer .20
    stability     0.20   end_to_end_variance .40,
                         p99_to_mean_ratio .30, long_task_impact .30
    resources     0.20   server_heap_delta .30, server_cpu_time .25,
                         client_heap_delta .25, server_gc_time .20
    ============  =====  ==========================================

Example:
    >>> from core.scoring import normalize_score
    >>> normalize_score(10.0, [10.0, 20.0, 30.0])
    1.0
    >>> normalize_score(30.0, [10.0, 20.0, 30.0])
    0.0
    >>> normalize_score(5.0, [5.0, 5.0])
    1.0
"""

import logging
import math
from collections.abc import Callable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.aggregator import AggregateRow, Stats
from core.formats import FormatId, format_label
from core.metrics import Category, Metric

logger: logging.Logger = logging.getLogger(__name__)

SCORED_CATEGORIES: tuple[Category, ...] = (
    Category.SPEED,
    Category.EFFICIENCY,
    Category.STABILITY,
    Category.RESOURCES,
)

OVERALL: str = "overall"
"""Ranking key for the overall score."""


# ---------------------------------------------------------------------------
# Sub-metric Sources
# ---------------------------------------------------------------------------


def p99_to_mean_ratio(stats: Stats) -> float | None:
    """Return ``p99 / mean``, or ``None`` if either is missing or <= 0."""
    if stats.mean is None or stats.p99 is None:
        return None
    if stats.mean <= 0 or stats.p99 <= 0:
        return None
    return stats.p99 / stats.mean


def _mean_of(metric: Metric) -> Callable[[AggregateRow], float | None]:
    def _extract(row: AggregateRow) -> float | None:
        return row.mean(metric)
    return _extract


SUB_METRIC_SOURCES: Mapping[Category, Mapping[str, Callable[[AggregateRow], float | None]]] = {
    Category.SPEED: {
        "end_to_end": _mean_of(Metric.END_TO_END),
        "ttfb": _mean_of(Metric.TTFB),
        "parse": _mean_of(Metric.PARSE),
        "download": _mean_of(Metric.DOWNLOAD),
        "server_serialize": _mean_of(Metric.SERIALIZE),
    },
    Category.EFFICIENCY: {
        "payload": _mean_of(Metric.PAYLOAD),
        "bytes_per_record": _mean_of(Metric.BYTES_PER_RECORD),
        "transfer": _mean_of(Metric.TRANSFER),
    },
    Category.STABILITY: {
        "end_to_end_variance": lambda row: row.end_to_end.variance,
        "p99_to_mean_ratio": lambda row: p99_to_mean_ratio(row.end_to_end),
        "long_task_impact": _mean_of(Metric.LONG_TASK_TOTAL),
    },
    Category.RESOURCES: {
        "server_heap_delta": _mean_of(Metric.SERVER_HEAP_DELTA),
        "client_heap_delta": _mean_of(Metric.CLIENT_HEAP_DELTA),
        "server_gc_time": _mean_of(Metric.SERVER_GC_TIME),
        "server_cpu_time": _mean_of(Metric.SERVER_CPU_TIME),
    },
}
"""Where each category's sub-metric values come from on an aggregate row."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ScoringConfig(BaseModel):
    """Category and sub-metric weights.

    Every weight table must sum to 1.0 and only name known sub-metrics.

    Example:
        >>> config = ScoringConfig()
        >>> config.category_weights[Category.SPEED]
        0.35
        >>> ScoringConfig(category_weights={Category.SPEED: 1.0})
        Traceback (most recent call last):
            ...
        pydantic_core._pydantic_core.ValidationError: ...
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    category_weights: dict[Category, float] = Field(
        default_factory=lambda: {
            Category.SPEED: 0.35,
            Category.EFFICIENCY: 0.25,
            Category.STABILITY: 0.20,
            Category.RESOURCES: 0.20,
        },
        description="Weight of each category in the overall score",
    )
    speed_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "end_to_end": 0.50,
            "ttfb": 0.15,
            "parse": 0.20,
            "download": 0.10,
            "server_serialize": 0.05,
        },
        description="Speed sub-metric weights",
    )
    efficiency_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "payload": 0.50,
            "bytes_per_record": 0.30,
            "transfer": 0.20,
        },
        description="Efficiency sub-metric weights",
    )
    stability_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "end_to_end_variance": 0.40,
            "p99_to_mean_ratio": 0.30,
            "long_task_impact": 0.30,
        },
        description="Stability sub-metric weights",
    )
    resources_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "server_heap_delta": 0.30,
            "client_heap_delta": 0.25,
            "server_gc_time": 0.20,
            "server_cpu_time": 0.25,
        },
        description="Resources sub-metric weights",
    )

    def sub_weights(self, category: Category) -> dict[str, float]:
        """Return the sub-metric weights of a scored category."""
        return {
            Category.SPEED: self.speed_weights,
            Category.EFFICIENCY: self.efficiency_weights,
            Category.STABILITY: self.stability_weights,
            Category.RESOURCES: self.resources_weights,
        }[category]

    @model_validator(mode="after")
    def validate_weights(self) -> "ScoringConfig":
        """Ensure every weight table is known, non-negative and sums to 1."""
        tables: dict[str, tuple[dict, set]] = {
            "category_weights": (
                self.category_weights, set(SCORED_CATEGORIES),
            ),
        }
        for category in SCORED_CATEGORIES:
            tables[f"{category.value}_weights"] = (
                self.sub_weights(category),
                set(SUB_METRIC_SOURCES[category]),
            )

        for name, (weights, known) in tables.items():
            unknown: set = set(weights) - known
            if unknown:
                raise ValueError(
                    f"{name} has unknown keys: {sorted(str(k) for k in unknown)}"
                )
            if any(w < 0 for w in weights.values()):
                raise ValueError(f"{name} must not contain negative weights")
            total: float = sum(weights.values())
            if not math.isclose(total, 1.0, abs_tol=1e-6):
                raise ValueError(f"{name} must sum to 1.0, got {total:.4f}")
        return self


DEFAULT_SCORING: ScoringConfig = ScoringConfig()


# ---------------------------------------------------------------------------
# Result Models
# ---------------------------------------------------------------------------


class CategoryScores(BaseModel):
    """Per-category scores in [0, 1], ``None`` when not computable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    speed: float | None = None
    efficiency: float | None = None
    stability: float | None = None
    resources: float | None = None

    def get(self, category: Category) -> float | None:
        return getattr(self, category.value)


class FormatScore(BaseModel):
    """Scores of one format, for one size or averaged across sizes.

    Attributes:
        format_id: Format scored.
        label: Display label.
        categories: Category scores.
        overall: Weighted overall score.
        errors: Failed runs behind this score.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    format_id: FormatId
    label: str
    categories: CategoryScores = Field(default_factory=CategoryScores)
    overall: float | None = None
    errors: int = Field(default=0, ge=0)

    def score(self, key: str) -> float | None:
        """Score by ranking key: a category value or ``"overall"``."""
        if key == OVERALL:
            return self.overall
        return self.categories.get(Category(key))


class Winner(BaseModel):
    """The best format for one category (or overall)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    format_id: FormatId
    label: str
    score: float


class RankEntry(BaseModel):
    """One line of a ranking. Unscored formats rank last."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rank: int = Field(ge=1)
    format_id: FormatId
    label: str
    score: float | None = None
    errors: int = Field(default=0, ge=0)


class ScoringReport(BaseModel):
    """Full scoring output of one session.

    Attributes:
        by_size: Per-size format scores, keyed by size id.
        overall: Scores averaged across sizes, one per format.
        category_winners: Winner per category (``None`` if nobody scored).
        overall_winner: Winner by overall score.
        rankings: Ranked formats per category value and ``"overall"``.
        weights: Weights used.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    by_size: dict[str, list[FormatScore]] = Field(default_factory=dict)
    overall: list[FormatScore] = Field(default_factory=list)
    category_winners: dict[Category, Winner | None] = Field(default_factory=dict)
    overall_winner: Winner | None = None
    rankings: dict[str, list[RankEntry]] = Field(default_factory=dict)
    weights: ScoringConfig = Field(default_factory=ScoringConfig)

    def overall_for(self, format_id: FormatId) -> FormatScore | None:
        """Cross-size score of one format."""
        for score in self.overall:
            if score.format_id == format_id:
                return score
        return None


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_score(
    value: float | None,
    all_values: Sequence[float | None],
    lower_is_better: bool = True,
) -> float | None:
    """Map ``value`` onto [0, 1] relative to ``all_values``.

    Args:
        value: Value to score.
        all_values: Every format's value for the same metric and size.
            ``None`` and non-finite entries are ignored.
        lower_is_better: Scoring direction.

    Returns:
        Normalized score, ``1.0`` when all valid values tie, or ``None``
        when ``value`` is missing or nothing is comparable.
    """
    valid: list[float] = [
        v for v in all_values if v is not None and math.isfinite(v)
    ]
    if not valid or value is None or not math.isfinite(value):
        return None

    low: float = min(valid)
    high: float = max(valid)
    if low == high:
        return 1.0

    if lower_is_better:
        return (high - value) / (high - low)
    return (value - low) / (high - low)


def _weighted_average(pairs: list[tuple[float, float]]) -> float | None:
    """Average of ``(score, weight)`` pairs over the weights present."""
    weight_sum: float = sum(w for _, w in pairs)
    if weight_sum <= 0:
        return None
    return sum(s * w for s, w in pairs) / weight_sum


def calculate_category_scores(
    row: AggregateRow,
    rows: Sequence[AggregateRow],
    config: ScoringConfig = DEFAULT_SCORING,
) -> CategoryScores:
    """Score one row against every row of the same size.

    Args:
        row: Row being scored.
        rows: All rows of the size, ``row`` included.
        config: Weights.

    Returns:
        :class:`CategoryScores` for ``row``.
    """
    scores: dict[str, float | None] = {}

    for category in SCORED_CATEGORIES:
        pairs: list[tuple[float, float]] = []
        for name, weight in config.sub_weights(category).items():
            if weight == 0:
                continue
            extract = SUB_METRIC_SOURCES[category][name]
            score: float | None = normalize_score(
                extract(row), [extract(other) for other in rows],
            )
            if score is not None:
                pairs.append((score, weight))
        scores[category.value] = _weighted_average(pairs)

    return CategoryScores(**scores)


def calculate_overall_score(
    categories: CategoryScores,
    config: ScoringConfig = DEFAULT_SCORING,
) -> float | None:
    """Combine category scores, renormalized over non-null categories."""
    pairs: list[tuple[float, float]] = []
    for category, weight in config.category_weights.items():
        score: float | None = categories.get(category)
        if score is not None and math.isfinite(score):
            pairs.append((score, weight))
    return _weighted_average(pairs)


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


# ---------------------------------------------------------------------------
# Winners & Rankings
# ---------------------------------------------------------------------------


def pick_winner(scores: Sequence[FormatScore], key: str) -> Winner | None:
    """Strictly highest score for ``key``; first encountered wins ties."""
    best: FormatScore | None = None
    best_score: float = -math.inf
    for entry in scores:
        value: float | None = entry.score(key)
        if value is not None and value > best_score:
            best, best_score = entry, value
    if best is None:
        return None
    return Winner(format_id=best.format_id, label=best.label, score=best_score)


def rank_formats(scores: Sequence[FormatScore], key: str) -> list[RankEntry]:
    """Rank formats by descending ``key`` score, unscored ones last.

    Ties keep iteration order.
    """
    scored: list[FormatScore] = [s for s in scores if s.score(key) is not None]
    unscored: list[FormatScore] = [s for s in scores if s.score(key) is None]
    scored.sort(key=lambda s: -s.score(key))  # type: ignore[operator]

    return [
        RankEntry(
            rank=position,
            format_id=entry.format_id,
            label=entry.label,
            score=entry.score(key),
            errors=entry.errors,
        )
        for position, entry in enumerate(scored + unscored, start=1)
    ]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def calculate_scoring(
    rows_by_size: Mapping[str, Sequence[AggregateRow]],
    config: ScoringConfig = DEFAULT_SCORING,
) -> ScoringReport:
    """Score every format per size and across sizes.

    Args:
        rows_by_size: Aggregate rows keyed by size id.
        config: Weights.

    Returns:
        Fully populated :class:`ScoringReport`. Never raises on partial
        or empty data; missing values only shrink the weight pool.

    Example:
        >>> report = calculate_scoring(aggregator.rows())
        >>> report.category_winners[Category.SPEED].format_id
        <FormatId.CBOR: 'cbor'>
    """
    by_size: dict[str, list[FormatScore]] = {}
    format_order: dict[FormatId, None] = {}

    for size, rows in rows_by_size.items():
        size_scores: list[FormatScore] = []
        for row in rows:
            format_order.setdefault(row.format_id, None)
            categories: CategoryScores = calculate_category_scores(
                row, rows, config,
            )
            size_scores.append(
                FormatScore(
                    format_id=row.format_id,
                    label=format_label(row.format_id.value),
                    categories=categories,
                    overall=calculate_overall_score(categories, config),
                    errors=row.errors,
                )
            )
        by_size[size] = size_scores

    overall: list[FormatScore] = []
    for format_id in format_order:
        per_size: list[FormatScore] = [
            score
            for scores in by_size.values()
            for score in scores
            if score.format_id == format_id
        ]
        present: list[FormatScore] = [s for s in per_size if s.overall is not None]
        averaged: dict[str, float | None] = {
            category.value: _mean([
                s.categories.get(category)
                for s in present
                if s.categories.get(category) is not None
            ])
            for category in SCORED_CATEGORIES
        }
        overall.append(
            FormatScore(
                format_id=format_id,
                label=format_label(format_id.value),
                categories=CategoryScores(**averaged),
                overall=_mean([s.overall for s in present]),
                errors=sum(s.errors for s in per_size),
            )
        )

    category_winners: dict[Category, Winner | None] = {
        category: pick_winner(overall, category.value)
        for category in SCORED_CATEGORIES
    }
    overall_winner: Winner | None = pick_winner(overall, OVERALL)

    rankings: dict[str, list[RankEntry]] = {
        category.value: rank_formats(overall, category.value)
        for category in SCORED_CATEGORIES
    }
    rankings[OVERALL] = rank_formats(overall, OVERALL)

    logger.info(
        "Scored %d formats across %d sizes, overall winner: %s",
        len(overall),
        len(by_size),
        overall_winner.label if overall_winner else "none",
    )

    return ScoringReport(
        by_size=by_size,
        overall=overall,
        category_winners=category_winners,
        overall_winner=overall_winner,
        rankings=rankings,
        weights=config,
    )
