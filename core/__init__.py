"""Core domain layer for the serialization benchmark.

This package provides the record model, format identifiers and codec
contract, run metrics, aggregation, scoring, anomaly detection and the
session driver. Models are Pydantic-based with frozen configuration for
immutability. Nothing here touches a network or a codec library.
"""

from core.aggregator import AggregateRow, Aggregator, Stats, calculate_stats
from core.anomalies import AnomalyConfig, AnomalyReport, detect_anomalies
from core.capture import RunCapture, Transport, TransportResponse
from core.errors import (
    BenchmarkError,
    DecodeError,
    EncodeError,
    SessionTimeoutError,
    TransportError,
)
from core.formats import Codec, CodecRegistry, FormatId
from core.metrics import Metric, RunResult, RunStatus
from core.records import CalendarEvent, DatasetSizePreset, generate_events, resolve_size
from core.scoring import ScoringConfig, ScoringReport, calculate_scoring
from core.session import BenchmarkReport, BenchmarkSession, SessionConfig

__all__: list[str] = [
    "AggregateRow",
    "Aggregator",
    "AnomalyConfig",
    "AnomalyReport",
    "BenchmarkError",
    "BenchmarkReport",
    "BenchmarkSession",
    "CalendarEvent",
    "Codec",
    "CodecRegistry",
    "DatasetSizePreset",
    "DecodeError",
    "EncodeError",
    "FormatId",
    "Metric",
    "RunCapture",
    "RunResult",
    "RunStatus",
    "ScoringConfig",
    "ScoringReport",
    "SessionConfig",
    "SessionTimeoutError",
    "Stats",
    "Transport",
    "TransportError",
    "TransportResponse",
    "calculate_scoring",
    "calculate_stats",
    "detect_anomalies",
    "generate_events",
    "resolve_size",
]
