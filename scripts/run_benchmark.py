"""Serialization benchmark runner.

Runs a full session (warmup, measured iterations, aggregation, scoring
and anomaly detection) over the selected formats and dataset sizes,
prints the comparison table and writes the JSON report.

Configuration precedence: CLI flags > environment (``BENCH_*``, a
``.env`` file is honored) > defaults.

Usage:
    python -m scripts.run_benchmark
    python -m scripts.run_benchmark --iterations 10 --sizes small medium
    python -m scripts.run_benchmark --formats cbor messagepack arrow
    python -m scripts.run_benchmark --transport http --server-base http://localhost:8090

Output:
    Formatted table to stdout, progress logs to stderr, JSON report to
    ``--report-path``.
    Exit code 0 on success, 1 if the session timed out or was
    interrupted, 2 on invalid configuration.
"""

import argparse
import logging
import sys

from dotenv import load_dotenv
from pydantic import ValidationError

from core.capture import Transport
from core.errors import SessionTimeoutError
from core.formats import FORMAT_ORDER, FormatId, parse_format
from core.session import BenchmarkReport, BenchmarkSession, SessionConfig
from infra.codecs import build_codec_registry
from infra.resources import PythonResourceSampler
from infra.transport import HttpTransport, LocalTransport
from scripts.report_utils import format_comparison_table, write_report

logger: logging.Logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser. Unset flags stay ``None``."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Benchmark wire formats: encode, transfer and decode",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Measured iterations per size and format (default: 5)",
    )
    parser.add_argument(
        "--warmup",
        type=int,
        default=None,
        help="Warmup iterations, results discarded (default: 2)",
    )
    parser.add_argument(
        "--sizes",
        nargs="+",
        default=None,
        help="Size presets or record counts (default: small medium large)",
    )
    parser.add_argument(
        "--formats",
        nargs="+",
        default=None,
        help=(
            "Formats to run (default: all). Choices: "
            + ", ".join(f.value for f in FORMAT_ORDER)
        ),
    )
    parser.add_argument(
        "--transport",
        choices=("local", "http"),
        default="local",
        help="Encode in-process or fetch from a server (default: local)",
    )
    parser.add_argument(
        "--server-base",
        type=str,
        default=None,
        help="Benchmark server base URL (default: http://localhost:8090)",
    )
    parser.add_argument(
        "--report-path",
        type=str,
        default=None,
        help="JSON report output path (default: reports/benchmark-report.json)",
    )
    parser.add_argument(
        "--tracemalloc",
        action="store_true",
        help="Enable heap readings via tracemalloc (slows timed steps)",
    )
    parser.add_argument(
        "--no-gc",
        action="store_true",
        help="Skip the advisory GC request before each iteration",
    )
    return parser


def build_config(args: argparse.Namespace) -> SessionConfig:
    """Merge CLI flags over the ``BENCH_*`` environment.

    Raises:
        ValueError: On an unknown format or a malformed variable.
        pydantic.ValidationError: On out-of-range values.
    """
    formats: list[FormatId] | None = None
    if args.formats is not None:
        formats = []
        for name in args.formats:
            format_id: FormatId | None = parse_format(name)
            if format_id is None:
                raise ValueError(f"Unknown format: {name}")
            formats.append(format_id)

    return SessionConfig.from_env(
        iterations=args.iterations,
        warmup=args.warmup,
        sizes=args.sizes,
        formats=formats,
        server_base=args.server_base,
        report_path=args.report_path,
        trace_heap=args.tracemalloc or None,
        request_gc=False if args.no_gc else None,
    )


def main() -> None:
    """Run one benchmark session and report."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    args: argparse.Namespace = build_parser().parse_args()

    try:
        config: SessionConfig = build_config(args)
    except (ValueError, ValidationError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    codecs = build_codec_registry()
    sampler: PythonResourceSampler = PythonResourceSampler(
        trace_heap=config.trace_heap,
    )
    server_sampler: PythonResourceSampler | None = None
    transport: Transport
    if args.transport == "http":
        transport = HttpTransport(
            base_url=config.server_base, timeout=config.timeout_s,
        )
    else:
        server_sampler = PythonResourceSampler(trace_heap=config.trace_heap)
        transport = LocalTransport(codecs, sampler=server_sampler)

    logger.info(
        "Benchmark: %d iteration(s), %d warmup, sizes=%s, formats=%s, transport=%s",
        config.iterations,
        config.warmup,
        ",".join(config.sizes),
        ",".join(f.value for f in config.formats),
        transport.description,
    )

    try:
        session: BenchmarkSession = BenchmarkSession(
            config=config,
            transport=transport,
            codecs=codecs,
            sampler=sampler,
        )
        report: BenchmarkReport = session.run()
    except SessionTimeoutError as exc:
        logger.error("Benchmark aborted: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, no report written")
        sys.exit(1)
    finally:
        transport.close()
        sampler.close()
        if server_sampler is not None:
            server_sampler.close()

    print(format_comparison_table(report))
    write_report(report, config.report_path)

    if report.error_count:
        logger.warning(
            "%d of %d runs failed, see report for details",
            report.error_count, len(report.runs),
        )


if __name__ == "__main__":
    main()
