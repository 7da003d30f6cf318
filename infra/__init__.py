"""Infrastructure layer for the serialization benchmark.

This package provides the concrete codecs (backed by msgpack, cbor2,
flatbuffers and pyarrow), the CPython resource sampler, and the local
and HTTP transports.
"""

from infra.codecs import build_codec_registry
from infra.resources import PythonResourceSampler, measure_encode
from infra.transport import HttpTransport, LocalTransport

__all__: list[str] = [
    "HttpTransport",
    "LocalTransport",
    "PythonResourceSampler",
    "build_codec_registry",
    "measure_encode",
]
