"""Benchmark session: warmup, measured runs, aggregation and report.

A session runs sizes x iterations x formats strictly sequentially, one
request at a time, so that server-side heap/GC/CPU deltas are
attributable to a single encode.

Execution order::

    warmup 1..W:   for size: for format: run      (results discarded)
    for size:
        for iteration 1..N:
            advisory GC request (+ settle delay)
            for format: run

Aggregation, scoring and anomaly detection start only after the last
run completes.

Timeout:
    The deadline is checked before every run. A run in flight is never
    cancelled; once the deadline has passed the session aborts with
    :class:`~core.errors.SessionTimeoutError` and produces no report.

Configuration:
    :meth:`SessionConfig.from_env` reads ``BENCH_ITERATIONS``,
    ``BENCH_WARMUP``, ``BENCH_TIMEOUT_MS``, ``BENCH_SERVER_BASE`` and
    ``BENCH_REPORT_PATH``. Call ``dotenv.load_dotenv()`` first to honor
    a ``.env`` file.

Example:
    >>> registry = build_codec_registry()
    >>> session = BenchmarkSession(
    ...     config=SessionConfig(iterations=3, warmup=0, sizes=["small"]),
    ...     transport=LocalTransport(registry),
    ...     codecs=registry,
    ... )
    >>> report = session.run()
    >>> report.scoring.overall_winner is not None
    True
"""

import logging
import math
import os
import platform
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.aggregator import AggregateRow, Aggregator
from core.anomalies import (
    DEFAULT_ANOMALY_CONFIG,
    AnomalyConfig,
    AnomalyReport,
    detect_anomalies,
)
from core.capture import DEFAULT_SERVER_BASE, RunCapture, Transport
from core.errors import SessionTimeoutError, TransportError
from core.formats import CodecRegistry, FormatId
from core.metrics import NullResourceSampler, ResourceSampler, RunResult
from core.records import DatasetSizePreset, resolve_size
from core.scoring import DEFAULT_SCORING, ScoringConfig, ScoringReport, calculate_scoring

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_REPORT_PATH: str = "reports/benchmark-report.json"


class SessionConfig(BaseModel):
    """Configuration for one benchmark session.

    Attributes:
        iterations: Measured iterations per (size, format).
        warmup: Warmup iterations over every size, results discarded.
        sizes: Size preset ids or explicit record counts.
        formats: Formats to run, in run order.
        timeout_s: Session-wide deadline in seconds.
        request_gc: Send an advisory GC request before each iteration.
        gc_settle_s: Delay after the GC request.
        long_task_threshold_ms: Decode steps at least this long count as
            long tasks.
        trace_heap: Enable ``tracemalloc`` heap readings. Adds
            allocation overhead to every timed step.
        server_base: Benchmark server base URL (HTTP transport).
        report_path: Where the JSON report is written.

    Example:
        >>> config = SessionConfig(iterations=3)
        >>> config.warmup
        2
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    iterations: int = Field(default=5, gt=0, description="Measured iterations")
    warmup: int = Field(default=2, ge=0, description="Warmup iterations")
    sizes: list[str] = Field(
        default_factory=lambda: ["small", "medium", "large"],
        min_length=1,
        description="Size preset ids or explicit record counts",
    )
    formats: list[FormatId] = Field(
        default_factory=lambda: list(FormatId),
        min_length=1,
        description="Formats to run, in run order",
    )
    timeout_s: float = Field(
        default=600.0, gt=0.0, description="Session deadline (seconds)",
    )
    request_gc: bool = Field(
        default=True, description="Advisory GC request before each iteration",
    )
    gc_settle_s: float = Field(
        default=0.1, ge=0.0, description="Delay after the GC request (seconds)",
    )
    long_task_threshold_ms: float = Field(
        default=50.0, gt=0.0, description="Long task threshold (ms)",
    )
    trace_heap: bool = Field(
        default=False,
        description=(
            "Enable tracemalloc heap readings. Slows allocation-heavy "
            "code; heap metrics are null when off."
        ),
    )
    server_base: str = Field(
        default=DEFAULT_SERVER_BASE, min_length=1, description="Server base URL",
    )
    report_path: str = Field(
        default=DEFAULT_REPORT_PATH, min_length=1, description="JSON report path",
    )

    @field_validator("sizes")
    @classmethod
    def validate_sizes(cls, sizes: list[str]) -> list[str]:
        """Normalize to resolved preset ids, dropping duplicates."""
        resolved: dict[str, None] = {}
        for size in sizes:
            resolved.setdefault(resolve_size(size).id, None)
        return list(resolved)

    @field_validator("formats")
    @classmethod
    def validate_formats(cls, formats: list[FormatId]) -> list[FormatId]:
        if len(set(formats)) != len(formats):
            raise ValueError("formats must not contain duplicates")
        return formats

    @property
    def size_presets(self) -> list[DatasetSizePreset]:
        return [resolve_size(size) for size in self.sizes]

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> "SessionConfig":
        """Build a config from ``BENCH_*`` environment variables.

        Args:
            environ: Variables to read. Defaults to ``os.environ``.
            **overrides: Field values taking precedence over the
                environment (e.g. from CLI flags).

        Raises:
            ValueError: If a numeric variable is not an integer.
            pydantic.ValidationError: If a value is out of range.
        """
        env: Mapping[str, str] = os.environ if environ is None else environ
        values: dict[str, object] = {}

        def _int(name: str) -> int | None:
            raw: str | None = env.get(name)
            if raw is None or not raw.strip():
                return None
            try:
                return int(raw)
            except ValueError as exc:
                raise ValueError(f"{name} must be an integer, got {raw!r}") from exc

        iterations: int | None = _int("BENCH_ITERATIONS")
        if iterations is not None:
            values["iterations"] = iterations
        warmup: int | None = _int("BENCH_WARMUP")
        if warmup is not None:
            values["warmup"] = warmup
        timeout_ms: int | None = _int("BENCH_TIMEOUT_MS")
        if timeout_ms is not None:
            values["timeout_s"] = timeout_ms / 1000.0
        if env.get("BENCH_SERVER_BASE"):
            values["server_base"] = env["BENCH_SERVER_BASE"]
        if env.get("BENCH_REPORT_PATH"):
            values["report_path"] = env["BENCH_REPORT_PATH"]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


class BenchmarkReport(BaseModel):
    """Everything a session produced. JSON round-trippable.

    Attributes:
        generated_at: UTC time the report was built.
        environment: Interpreter and platform description.
        transport: Transport description.
        iterations: Measured iterations per (size, format).
        warmup: Warmup iterations run.
        sizes: Size presets, in run order.
        formats: Formats, in run order.
        runs: Every measured run, in execution order.
        aggregates: Aggregate rows keyed by size id.
        scoring: Scoring output.
        anomalies: Anomaly findings.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    generated_at: datetime
    environment: str
    transport: str
    iterations: int = Field(gt=0)
    warmup: int = Field(ge=0)
    sizes: list[DatasetSizePreset]
    formats: list[FormatId]
    runs: list[RunResult]
    aggregates: dict[str, list[AggregateRow]]
    scoring: ScoringReport
    anomalies: AnomalyReport

    @property
    def error_count(self) -> int:
        return sum(1 for run in self.runs if not run.ok)


def describe_environment() -> str:
    """Short interpreter/platform description for reports."""
    return (
        f"{platform.python_implementation()} {platform.python_version()}, "
        f"{platform.system()} {platform.machine()}, {os.cpu_count()} CPU"
    )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class BenchmarkSession:
    """Runs one full benchmark session and builds the report.

    **NOT thread-safe.** A session owns its aggregator; call :meth:`run`
    from one thread.

    Args:
        config: Session configuration.
        transport: Payload source.
        codecs: Registry used for client-side decoding.
        sampler: Client-side resource sampler. Defaults to all-null.
        scoring: Scoring weights.
        anomaly_config: Anomaly thresholds.
        clock: Monotonic clock in seconds (injectable for tests).
        sleep: Sleep function used for the GC settle delay.

    Raises:
        ValueError: If a configured format has no registered codec.
    """

    def __init__(
        self,
        config: SessionConfig,
        transport: Transport,
        codecs: CodecRegistry,
        sampler: ResourceSampler | None = None,
        scoring: ScoringConfig = DEFAULT_SCORING,
        anomaly_config: AnomalyConfig = DEFAULT_ANOMALY_CONFIG,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        missing: list[str] = [f.value for f in config.formats if f not in codecs]
        if missing:
            raise ValueError(f"No codec registered for formats: {missing}")

        self._config: SessionConfig = config
        self._transport: Transport = transport
        self._scoring: ScoringConfig = scoring
        self._anomaly_config: AnomalyConfig = anomaly_config
        self._clock: Callable[[], float] = clock
        self._sleep: Callable[[float], None] = sleep
        self._capture: RunCapture = RunCapture(
            transport=transport,
            codecs=codecs,
            sampler=sampler or NullResourceSampler(),
            long_task_threshold_ms=config.long_task_threshold_ms,
        )
        self._aggregator: Aggregator = Aggregator()
        self._deadline: float = math.inf

    @property
    def config(self) -> SessionConfig:
        return self._config

    def _check_deadline(self) -> None:
        if self._clock() > self._deadline:
            raise SessionTimeoutError(
                f"Benchmark session exceeded {self._config.timeout_s:.1f}s"
            )

    def _request_gc(self) -> None:
        try:
            self._transport.request_gc()
        except TransportError as exc:
            logger.debug("Advisory GC request failed: %s", exc)
        if self._config.gc_settle_s > 0:
            self._sleep(self._config.gc_settle_s)

    def warmup(self) -> int:
        """Run warmup iterations over every size; returns runs executed.

        The session deadline applies only while :meth:`run` is active.
        """
        executed: int = 0
        for round_no in range(1, self._config.warmup + 1):
            for size in self._config.size_presets:
                logger.info("Warmup %d: %s...", round_no, size.id)
                for format_id in self._config.formats:
                    self._check_deadline()
                    self._capture.run(format_id, size, round_no)
                    executed += 1
        return executed

    def measure(self) -> list[RunResult]:
        """Run the measured iterations; returns every run in order.

        The session deadline applies only while :meth:`run` is active.
        """
        runs: list[RunResult] = []
        iterations: int = self._config.iterations
        for size in self._config.size_presets:
            for iteration in range(1, iterations + 1):
                logger.info(
                    "Running %s iteration %d/%d...", size.id, iteration, iterations,
                )
                if self._config.request_gc:
                    self._request_gc()
                for format_id in self._config.formats:
                    self._check_deadline()
                    runs.append(self._capture.run(format_id, size, iteration))
        return runs

    def run(self) -> BenchmarkReport:
        """Execute warmup and measured runs, then build the report.

        Raises:
            SessionTimeoutError: If the deadline passes before the last
                run starts.
        """
        self._deadline = self._clock() + self._config.timeout_s
        self._aggregator.reset()

        try:
            if self._config.warmup > 0:
                logger.info("Running %d warmup iteration(s)...", self._config.warmup)
                self.warmup()
                logger.info("Warmup complete")

            runs: list[RunResult] = self.measure()
        finally:
            self._deadline = math.inf

        self._aggregator.add_all(runs)
        aggregates: dict[str, list[AggregateRow]] = self._aggregator.rows()
        scoring: ScoringReport = calculate_scoring(aggregates, self._scoring)
        anomalies: AnomalyReport = detect_anomalies(
            aggregates, self._config.iterations, self._anomaly_config,
        )

        failed: int = sum(1 for run in runs if not run.ok)
        logger.info(
            "Session complete: %d runs, %d failed, data quality %s",
            len(runs), failed, anomalies.data_quality.value,
        )

        return BenchmarkReport(
            generated_at=datetime.now(timezone.utc),
            environment=describe_environment(),
            transport=self._transport.description,
            iterations=self._config.iterations,
            warmup=self._config.warmup,
            sizes=self._config.size_presets,
            formats=list(self._config.formats),
            runs=runs,
            aggregates=aggregates,
            scoring=scoring,
            anomalies=anomalies,
        )
