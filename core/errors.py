"""Exception hierarchy for the wire format benchmark.

Per-run failures (:class:`EncodeError`, :class:`DecodeError`,
:class:`TransportError`) are captured at the run boundary and recorded as
an ``error`` :class:`~core.metrics.RunResult`. They are never retried and
never escape a session.

:class:`SessionTimeoutError` is the only failure that aborts a whole
session.

Unavailable measurements (e.g. heap introspection without
``tracemalloc``) are not errors at all: they are represented as ``None``.
"""


class BenchmarkError(Exception):
    """Base class for all benchmark failures."""


class EncodeError(BenchmarkError):
    """A codec could not encode records (type or range violation).

    Raised, for example, when ``attendees`` does not fit the int32
    column of the Arrow or FlatBuffers schema.
    """


class DecodeError(BenchmarkError):
    """A codec could not decode a payload (malformed or truncated)."""


class TransportError(BenchmarkError):
    """A benchmark request failed or returned a non-success status.

    Args:
        message: Raw failure message (response body or transport error).
        status_code: HTTP-style status code when a response was received,
            ``None`` when the request never completed.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.status_code: int | None = status_code


class SessionTimeoutError(BenchmarkError, TimeoutError):
    """The benchmark session exceeded its deadline and was aborted."""
