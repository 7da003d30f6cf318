"""Report formatting and JSON persistence for benchmark sessions.

Renders a :class:`~core.session.BenchmarkReport` as a fixed-width ASCII
summary and round-trips it through JSON.

Table layout:
    - Header block: environment, transport, iterations, sizes, quality
    - Per size: key metric means per format
    - Category scores (averaged across sizes) and winners
    - Overall ranking with error counts
    - Anomaly list

Example:
    >>> from scripts.report_utils import format_comparison_table
    >>> print(format_comparison_table(report))
"""

import logging
from pathlib import Path

from core.aggregator import AggregateRow
from core.formats import format_label, format_sort_key
from core.metrics import METRICS, Metric, format_metric_value
from core.scoring import OVERALL, SCORED_CATEGORIES, FormatScore, RankEntry
from core.session import BenchmarkReport

logger: logging.Logger = logging.getLogger(__name__)

TABLE_WIDTH: int = 70

KEY_METRICS: tuple[Metric, ...] = (
    Metric.END_TO_END,
    Metric.PARSE,
    Metric.SERIALIZE,
    Metric.PAYLOAD,
    Metric.BYTES_PER_RECORD,
)


# ---------------------------------------------------------------------------
# Table Formatting
# ---------------------------------------------------------------------------


def _format_score(score: float | None) -> str:
    return "-" if score is None else f"{score:.3f}"


def _size_section(size_label: str, rows: list[AggregateRow]) -> list[str]:
    lines: list[str] = []
    lines.append(f"SIZE: {size_label}")
    lines.append("-" * TABLE_WIDTH)

    header: str = f"{'Format':<16}"
    for metric in KEY_METRICS:
        header += f" {METRICS[metric].label[:11]:>11}"
    header += f" {'Errors':>6}"
    lines.append(header)

    for row in sorted(rows, key=lambda r: format_sort_key(r.format_id.value)):
        line: str = f"{format_label(row.format_id.value):<16}"
        for metric in KEY_METRICS:
            line += f" {format_metric_value(row.mean(metric), metric):>11}"
        line += f" {row.errors:>6}"
        lines.append(line)

    lines.append("")
    return lines


def _scores_section(scores: list[FormatScore]) -> list[str]:
    lines: list[str] = []
    lines.append("CATEGORY SCORES (averaged across sizes, 1.0 = best)")
    lines.append("-" * TABLE_WIDTH)

    header: str = f"{'Format':<16}"
    for category in SCORED_CATEGORIES:
        header += f" {category.value.capitalize():>10}"
    header += f" {'Overall':>10}"
    lines.append(header)

    for score in scores:
        line: str = f"{score.label:<16}"
        for category in SCORED_CATEGORIES:
            line += f" {_format_score(score.categories.get(category)):>10}"
        line += f" {_format_score(score.overall):>10}"
        lines.append(line)

    lines.append("")
    return lines


def _ranking_section(ranking: list[RankEntry]) -> list[str]:
    lines: list[str] = []
    lines.append("OVERALL RANKING")
    lines.append("-" * TABLE_WIDTH)
    for entry in ranking:
        errors: str = f"  [{entry.errors} error(s)]" if entry.errors else ""
        lines.append(
            f"  {entry.rank:>2}. {entry.label:<16} "
            f"{_format_score(entry.score):>8}{errors}"
        )
    lines.append("")
    return lines


def format_comparison_table(report: BenchmarkReport) -> str:
    """Generate formatted ASCII summary of a benchmark report.

    Args:
        report: Completed session report.

    Returns:
        Formatted multi-line string.

    Example:
        >>> table = format_comparison_table(report)
        >>> "OVERALL RANKING" in table
        True
    """
    lines: list[str] = []

    lines.append("=" * TABLE_WIDTH)
    lines.append("SERIALIZATION BENCHMARK RESULTS")
    lines.append("=" * TABLE_WIDTH)
    lines.append(f"Environment:  {report.environment}")
    lines.append(f"Transport:    {report.transport}")
    lines.append(f"Iterations:   {report.iterations} (warmup {report.warmup}, discarded)")
    lines.append(
        "Sizes:        "
        + ", ".join(f"{s.id} ({s.count:,})" for s in report.sizes)
    )
    lines.append(f"Runs:         {len(report.runs)} ({report.error_count} failed)")
    lines.append(f"Data quality: {report.anomalies.data_quality.value.upper()}")
    lines.append("=" * TABLE_WIDTH)
    lines.append("")

    labels: dict[str, str] = {s.id: s.label for s in report.sizes}
    for size, rows in report.aggregates.items():
        lines.extend(_size_section(labels.get(size, size), rows))

    scoring = report.scoring
    if scoring.overall:
        lines.extend(_scores_section(scoring.overall))

    lines.append("WINNERS")
    lines.append("-" * TABLE_WIDTH)
    for category in SCORED_CATEGORIES:
        winner = scoring.category_winners.get(category)
        text: str = (
            f"{winner.label} ({winner.score:.3f})" if winner is not None else "-"
        )
        lines.append(f"  {category.value.capitalize() + ':':<12} {text}")
    overall = scoring.overall_winner
    lines.append(
        f"  {'Overall:':<12} "
        + (f"{overall.label} ({overall.score:.3f})" if overall is not None else "-")
    )
    lines.append("")

    ranking: list[RankEntry] = scoring.rankings.get(OVERALL, [])
    if ranking:
        lines.extend(_ranking_section(ranking))

    lines.append("=" * TABLE_WIDTH)
    findings = report.anomalies.errors + report.anomalies.warnings
    if findings:
        lines.append("Anomalies:")
        for anomaly in findings:
            lines.append(f"  - [{anomaly.severity.value}] {anomaly.message}")
    else:
        lines.append("Anomalies:    none")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# JSON Serialization
# ---------------------------------------------------------------------------


def report_to_json(report: BenchmarkReport) -> str:
    """Serialize BenchmarkReport to JSON string."""
    return report.model_dump_json(indent=2)


def report_from_json(json_str: str) -> BenchmarkReport:
    """Deserialize BenchmarkReport from JSON string."""
    return BenchmarkReport.model_validate_json(json_str)


def write_report(report: BenchmarkReport, path: str | Path) -> Path:
    """Write the JSON report, creating parent directories.

    Returns:
        The resolved output path.
    """
    target: Path = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(report_to_json(report), encoding="utf-8")
    logger.info("Report written to %s", target)
    return target
