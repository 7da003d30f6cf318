"""Unit tests for core.scoring module.

Tests min-max normalization, weight validation, category scoring with
weight renormalization, winner selection and rankings, and end-to-end
scoring over aggregated runs.
"""

import math

import pytest
from pydantic import ValidationError

from core.aggregator import AggregateRow, Aggregator, Stats, calculate_stats
from core.formats import FormatId
from core.metrics import Category, RunResult, RunStatus
from core.scoring import (
    OVERALL,
    CategoryScores,
    FormatScore,
    ScoringConfig,
    ScoringReport,
    calculate_category_scores,
    calculate_overall_score,
    calculate_scoring,
    normalize_score,
    p99_to_mean_ratio,
    pick_winner,
    rank_formats,
)


def _row(format_id: FormatId, errors: int = 0, **means: float) -> AggregateRow:
    """Row whose named metrics each hold a single sample."""
    stats: dict[str, Stats] = {
        name: calculate_stats([value]) for name, value in means.items()
    }
    return AggregateRow(size="small", format_id=format_id, errors=errors, **stats)


def _score(
    format_id: FormatId, overall: float | None, errors: int = 0, **categories: float,
) -> FormatScore:
    return FormatScore(
        format_id=format_id,
        label=format_id.value,
        categories=CategoryScores(**categories),
        overall=overall,
        errors=errors,
    )


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeScore:
    """Tests for normalize_score."""

    def test_lower_is_better(self) -> None:
        """Best value scores 1, worst 0, linear in between."""
        values: list[float] = [10.0, 20.0, 30.0]
        assert normalize_score(10.0, values) == 1.0
        assert normalize_score(20.0, values) == 0.5
        assert normalize_score(30.0, values) == 0.0

    def test_higher_is_better(self) -> None:
        """Direction flips with lower_is_better=False."""
        assert normalize_score(30.0, [10.0, 30.0], lower_is_better=False) == 1.0

    def test_tie_scores_one(self) -> None:
        """All-equal values score 1.0 for everyone."""
        assert normalize_score(5.0, [5.0, 5.0, 5.0]) == 1.0

    def test_null_value_excluded(self) -> None:
        """A missing value gets no score."""
        assert normalize_score(None, [1.0, 2.0]) is None

    def test_nulls_ignored_in_range(self) -> None:
        """Null peers do not affect min/max."""
        assert normalize_score(10.0, [10.0, None, 20.0]) == 1.0

    def test_no_comparable_values(self) -> None:
        """Nothing valid to compare against yields None."""
        assert normalize_score(1.0, [None, float("nan")]) is None

    def test_result_in_unit_interval(self) -> None:
        """Scores stay in [0, 1]."""
        values: list[float] = [3.0, 7.5, 1.2, 9.9]
        for value in values:
            score: float | None = normalize_score(value, values)
            assert score is not None
            assert 0.0 <= score <= 1.0


class TestP99ToMeanRatio:
    """Tests for p99_to_mean_ratio."""

    def test_ratio(self) -> None:
        stats: Stats = Stats(mean=10.0, p99=15.0, count=5)
        assert p99_to_mean_ratio(stats) == 1.5

    @pytest.mark.parametrize(
        ("mean", "p99"), [(None, 1.0), (1.0, None), (0.0, 1.0), (1.0, -1.0)],
    )
    def test_non_positive_or_missing(
        self, mean: float | None, p99: float | None,
    ) -> None:
        assert p99_to_mean_ratio(Stats(mean=mean, p99=p99)) is None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestScoringConfig:
    """Tests for ScoringConfig validation."""

    def test_defaults_sum_to_one(self) -> None:
        """Default weight tables are valid."""
        config: ScoringConfig = ScoringConfig()
        assert math.isclose(sum(config.category_weights.values()), 1.0)
        for category in (
            Category.SPEED, Category.EFFICIENCY, Category.STABILITY, Category.RESOURCES,
        ):
            assert math.isclose(sum(config.sub_weights(category).values()), 1.0)

    def test_default_values(self) -> None:
        """Spot-check documented defaults."""
        config: ScoringConfig = ScoringConfig()
        assert config.category_weights[Category.SPEED] == 0.35
        assert config.speed_weights["end_to_end"] == 0.50
        assert config.efficiency_weights["payload"] == 0.50
        assert config.stability_weights["end_to_end_variance"] == 0.40
        assert config.resources_weights["server_heap_delta"] == 0.30

    def test_sum_not_one_rejected(self) -> None:
        """A table not summing to 1 is rejected."""
        with pytest.raises(ValidationError, match="must sum to 1.0"):
            ScoringConfig(category_weights={Category.SPEED: 1.0, Category.EFFICIENCY: 0.5})

    def test_unknown_sub_metric_rejected(self) -> None:
        """Unknown sub-metric names are rejected."""
        with pytest.raises(ValidationError, match="unknown keys"):
            ScoringConfig(efficiency_weights={"payload": 0.5, "compression": 0.5})

    def test_negative_weight_rejected(self) -> None:
        """Negative weights are rejected."""
        with pytest.raises(ValidationError, match="negative"):
            ScoringConfig(efficiency_weights={
                "payload": 1.2, "bytes_per_record": -0.2, "transfer": 0.0,
            })

    def test_custom_weights_accepted(self) -> None:
        """A valid custom table is accepted."""
        config: ScoringConfig = ScoringConfig(
            efficiency_weights={"payload": 1.0},
        )
        assert config.sub_weights(Category.EFFICIENCY) == {"payload": 1.0}


# ---------------------------------------------------------------------------
# Category & Overall Scores
# ---------------------------------------------------------------------------


class TestCategoryScores:
    """Tests for calculate_category_scores."""

    def test_identical_end_to_end_ties(self) -> None:
        """Same end-to-end mean across formats: speed sub-score 1.0 for all."""
        rows: list[AggregateRow] = [
            _row(FormatId.CBOR, end_to_end=10.0),
            _row(FormatId.ARROW, end_to_end=10.0),
        ]
        for row in rows:
            assert calculate_category_scores(row, rows).speed == 1.0

    def test_weight_renormalization(self) -> None:
        """Null sub-metrics drop out and remaining weights renormalize."""
        rows: list[AggregateRow] = [
            _row(FormatId.CBOR, end_to_end=10.0, parse=4.0, serialize=1.0),
            _row(FormatId.ARROW, end_to_end=20.0, parse=2.0, serialize=3.0),
        ]
        # ttfb and download are null for everyone.
        cbor: CategoryScores = calculate_category_scores(rows[0], rows)
        # end_to_end 1.0 * .50, parse 0.0 * .20, serialize 1.0 * .05
        expected: float = (0.50 * 1.0 + 0.20 * 0.0 + 0.05 * 1.0) / 0.75
        assert math.isclose(cbor.speed, expected)  # type: ignore[arg-type]

    def test_no_usable_sub_metric_is_null(self) -> None:
        """A category with no usable sub-metric is None, not 0."""
        rows: list[AggregateRow] = [
            _row(FormatId.CBOR, end_to_end=10.0),
            _row(FormatId.ARROW, end_to_end=20.0),
        ]
        scores: CategoryScores = calculate_category_scores(rows[0], rows)
        assert scores.efficiency is None
        assert scores.resources is None

    def test_all_failed_row_excluded(self) -> None:
        """A row with no samples scores None and does not shift peers."""
        failed: AggregateRow = AggregateRow(
            size="small", format_id=FormatId.FLATBUFFERS, errors=3,
        )
        rows: list[AggregateRow] = [
            _row(FormatId.CBOR, end_to_end=10.0),
            _row(FormatId.ARROW, end_to_end=20.0),
            failed,
        ]
        assert calculate_category_scores(failed, rows).speed is None
        assert calculate_category_scores(rows[0], rows).speed == 1.0
        assert calculate_category_scores(rows[1], rows).speed == 0.0

    def test_long_task_null_not_zero(self) -> None:
        """A null long-task mean is excluded, not treated as zero."""
        rows: list[AggregateRow] = [
            _row(FormatId.CBOR, long_task_total=100.0),
            _row(FormatId.ARROW),
        ]
        assert calculate_category_scores(rows[0], rows).stability == 1.0
        assert calculate_category_scores(rows[1], rows).stability is None


class TestOverallScore:
    """Tests for calculate_overall_score."""

    def test_renormalizes_over_present_categories(self) -> None:
        """Missing categories shrink the weight pool."""
        categories: CategoryScores = CategoryScores(speed=1.0, efficiency=0.0)
        expected: float = 0.35 / (0.35 + 0.25)
        assert math.isclose(calculate_overall_score(categories), expected)  # type: ignore[arg-type]

    def test_all_null(self) -> None:
        """No category scores means no overall score."""
        assert calculate_overall_score(CategoryScores()) is None


# ---------------------------------------------------------------------------
# Winners & Rankings
# ---------------------------------------------------------------------------


class TestWinnersAndRankings:
    """Tests for pick_winner and rank_formats."""

    def test_strictly_greater_wins(self) -> None:
        """Ties go to the first format encountered."""
        scores: list[FormatScore] = [
            _score(FormatId.CBOR, 0.8),
            _score(FormatId.ARROW, 0.8),
        ]
        winner = pick_winner(scores, OVERALL)
        assert winner is not None
        assert winner.format_id is FormatId.CBOR

    def test_no_winner_when_unscored(self) -> None:
        """Nobody scored means no winner."""
        assert pick_winner([_score(FormatId.CBOR, None)], OVERALL) is None

    def test_category_key(self) -> None:
        """Category keys select the category score."""
        scores: list[FormatScore] = [
            _score(FormatId.CBOR, 0.5, speed=0.2),
            _score(FormatId.ARROW, 0.4, speed=0.9),
        ]
        winner = pick_winner(scores, Category.SPEED.value)
        assert winner is not None
        assert winner.format_id is FormatId.ARROW

    def test_ranking_puts_unscored_last(self) -> None:
        """Null scores rank after every scored format."""
        scores: list[FormatScore] = [
            _score(FormatId.FLATBUFFERS, None, errors=3),
            _score(FormatId.CBOR, 0.3),
            _score(FormatId.ARROW, 0.9),
        ]
        ranking = rank_formats(scores, OVERALL)
        assert [e.format_id for e in ranking] == [
            FormatId.ARROW, FormatId.CBOR, FormatId.FLATBUFFERS,
        ]
        assert [e.rank for e in ranking] == [1, 2, 3]
        assert ranking[-1].errors == 3
        assert ranking[-1].score is None


# ---------------------------------------------------------------------------
# End-to-end Scoring
# ---------------------------------------------------------------------------


def _runs(format_id: FormatId, end_to_end: list[float], payload: float) -> list[RunResult]:
    return [
        RunResult(
            format_id=format_id,
            size="small",
            iteration=i,
            status=RunStatus.OK,
            end_to_end_ms=value,
            parse_ms=value / 2,
            payload_bytes=payload,
        )
        for i, value in enumerate(end_to_end, start=1)
    ]


class TestCalculateScoring:
    """Tests for calculate_scoring over aggregated runs."""

    def test_fastest_format_wins_speed(self) -> None:
        """3 formats x 3 iterations, CBOR 2x faster: CBOR wins speed."""
        aggregator: Aggregator = Aggregator()
        aggregator.add_all(_runs(FormatId.CBOR, [10.0, 11.0, 12.0], 1000))
        aggregator.add_all(_runs(FormatId.ARROW, [20.0, 22.0, 24.0], 800))
        aggregator.add_all(_runs(FormatId.ORGJSON, [21.0, 23.0, 25.0], 3000))

        report: ScoringReport = calculate_scoring(aggregator.rows())

        speed = report.category_winners[Category.SPEED]
        assert speed is not None
        assert speed.format_id is FormatId.CBOR
        efficiency = report.category_winners[Category.EFFICIENCY]
        assert efficiency is not None
        assert efficiency.format_id is FormatId.ARROW
        assert report.overall_winner is not None
        assert len(report.overall) == 3
        assert set(report.rankings) == {
            "speed", "efficiency", "stability", "resources", OVERALL,
        }

    def test_failed_format_ranked_last_with_errors(self) -> None:
        """A format that failed every run is unscored and ranked last."""
        aggregator: Aggregator = Aggregator()
        aggregator.add_all(_runs(FormatId.CBOR, [10.0, 11.0, 12.0], 1000))
        aggregator.add_all(_runs(FormatId.ORGJSON, [20.0, 21.0, 22.0], 3000))
        aggregator.add_all(
            RunResult(
                format_id=FormatId.ARROW,
                size="small",
                iteration=i,
                status=RunStatus.ERROR,
                message="boom",
            )
            for i in (1, 2, 3)
        )

        report: ScoringReport = calculate_scoring(aggregator.rows())

        arrow = report.overall_for(FormatId.ARROW)
        assert arrow is not None
        assert arrow.overall is None
        assert arrow.errors == 3
        last = report.rankings[OVERALL][-1]
        assert last.format_id is FormatId.ARROW
        assert last.errors == 3

    def test_scores_averaged_across_sizes(self) -> None:
        """Cross-size overall is the mean of per-size overall scores."""
        rows_by_size: dict[str, list[AggregateRow]] = {
            "small": [
                _row(FormatId.CBOR, end_to_end=10.0),
                _row(FormatId.ARROW, end_to_end=20.0),
            ],
            "large": [
                _row(FormatId.CBOR, end_to_end=40.0),
                _row(FormatId.ARROW, end_to_end=30.0),
            ],
        }
        report: ScoringReport = calculate_scoring(rows_by_size)
        cbor = report.overall_for(FormatId.CBOR)
        assert cbor is not None
        assert cbor.overall is not None
        per_size: list[float] = [
            s.overall
            for scores in report.by_size.values()
            for s in scores
            if s.format_id is FormatId.CBOR and s.overall is not None
        ]
        assert math.isclose(cbor.overall, sum(per_size) / len(per_size))

    def test_empty_input(self) -> None:
        """No rows yields an empty report, never a crash."""
        report: ScoringReport = calculate_scoring({})
        assert report.overall == []
        assert report.overall_winner is None
        assert all(w is None for w in report.category_winners.values())
