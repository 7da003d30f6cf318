"""Format identifiers and the codec contract.

The benchmark compares a closed set of seven serialization formats. Each
format is paired with a declared content type and a display label, and is
implemented by a :class:`Codec`: an object that can encode a record
sequence to bytes and decode those bytes back to an equivalent sequence.

Codec contract:
    - ``encode(records) -> bytes`` raises :class:`~core.errors.EncodeError`
      on type or range violations.
    - ``decode(payload) -> records`` raises
      :class:`~core.errors.DecodeError` on malformed or truncated input.
    - ``decode(encode(r)) == r`` field-for-field for every generated
      record. The whole benchmark is only valid if this round-trip holds.

    The contract constrains semantics only. Whether a format is
    schema-based or schema-less, textual or binary, row- or
    column-oriented is invisible here.

Registry:
    :class:`CodecRegistry` is an immutable mapping built once at startup
    (see :func:`infra.codecs.build_codec_registry`) and passed explicitly
    to the run loop. There is no process-wide singleton.

Example:
    >>> from core.formats import FormatId, FORMATS, parse_format
    >>> FORMATS[FormatId.CBOR].content_type
    'application/cbor'
    >>> parse_format("MessagePack")
    <FormatId.MESSAGEPACK: 'messagepack'>
"""

from collections.abc import Iterator, Mapping, Sequence
from enum import Enum
from types import MappingProxyType
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from core.records import CalendarEvent


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FormatId(str, Enum):
    """Identifier of a serialization format under comparison.

    Declaration order is the canonical display and iteration order.
    """

    ORGJSON = "orgjson"
    JACKSONSTREAM = "jacksonstream"
    FLEXBUFFERS = "flexbuffers"
    FLATBUFFERS = "flatbuffers"
    MESSAGEPACK = "messagepack"
    CBOR = "cbor"
    ARROW = "arrow"


# ---------------------------------------------------------------------------
# Format Metadata
# ---------------------------------------------------------------------------


class FormatInfo(BaseModel):
    """Static description of a format.

    Attributes:
        id: Format identifier.
        label: Human-readable label.
        content_type: MIME type declared on the wire.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: FormatId = Field(description="Format identifier")
    label: str = Field(description="Human-readable label")
    content_type: str = Field(description="Declared MIME content type")


JSON_CONTENT_TYPE: str = "application/json; charset=utf-8"

FORMATS: Mapping[FormatId, FormatInfo] = MappingProxyType({
    FormatId.ORGJSON: FormatInfo(
        id=FormatId.ORGJSON,
        label="org.json",
        content_type=JSON_CONTENT_TYPE,
    ),
    FormatId.JACKSONSTREAM: FormatInfo(
        id=FormatId.JACKSONSTREAM,
        label="Jackson Streaming",
        content_type=JSON_CONTENT_TYPE,
    ),
    FormatId.FLEXBUFFERS: FormatInfo(
        id=FormatId.FLEXBUFFERS,
        label="FlexBuffers",
        content_type="application/x-flexbuffers",
    ),
    FormatId.FLATBUFFERS: FormatInfo(
        id=FormatId.FLATBUFFERS,
        label="FlatBuffers",
        content_type="application/x-flatbuffers",
    ),
    FormatId.MESSAGEPACK: FormatInfo(
        id=FormatId.MESSAGEPACK,
        label="MessagePack",
        content_type="application/x-msgpack",
    ),
    FormatId.CBOR: FormatInfo(
        id=FormatId.CBOR,
        label="CBOR",
        content_type="application/cbor",
    ),
    FormatId.ARROW: FormatInfo(
        id=FormatId.ARROW,
        label="Apache Arrow",
        content_type="application/vnd.apache.arrow.stream",
    ),
})

FORMAT_ORDER: tuple[FormatId, ...] = tuple(FormatId)


def parse_format(value: str) -> FormatId | None:
    """Look up a format by identifier, case-insensitively.

    Args:
        value: Format identifier such as ``"cbor"`` or ``"ARROW"``.

    Returns:
        The matching :class:`FormatId`, or ``None`` if unknown.
    """
    wanted: str = value.strip().lower()
    for format_id in FormatId:
        if format_id.value == wanted:
            return format_id
    return None


def format_label(format_id: str) -> str:
    """Return the display label for a format id, or the id itself."""
    parsed: FormatId | None = parse_format(format_id)
    if parsed is None:
        return format_id
    return FORMATS[parsed].label


def format_sort_key(format_id: str) -> tuple[int, str]:
    """Sort key placing known formats in canonical order, unknown ones last."""
    parsed: FormatId | None = parse_format(format_id)
    if parsed is None:
        return (len(FORMAT_ORDER), format_id)
    return (FORMAT_ORDER.index(parsed), format_id)


# ---------------------------------------------------------------------------
# Codec Contract
# ---------------------------------------------------------------------------


class Codec(Protocol):
    """Uniform interface every format implementation satisfies."""

    @property
    def format_id(self) -> FormatId:
        """Format this codec implements."""
        ...

    @property
    def content_type(self) -> str:
        """Declared MIME content type of encoded payloads."""
        ...

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        """Encode records to bytes. Raises ``EncodeError``."""
        ...

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        """Decode bytes to records. Raises ``DecodeError``."""
        ...


class CodecRegistry(Mapping[FormatId, Codec]):
    """Immutable format -> codec lookup built once at startup.

    Args:
        codecs: Codec instances to register. Each is keyed by its own
            ``format_id``; registering two codecs for the same format is
            an error.

    Raises:
        ValueError: On duplicate registration.

    Example:
        >>> registry = CodecRegistry([JsonTreeCodec(), CborCodec()])
        >>> registry[FormatId.CBOR].content_type
        'application/cbor'
        >>> FormatId.ARROW in registry
        False
    """

    __slots__ = ("_codecs",)

    def __init__(self, codecs: Sequence[Codec]) -> None:
        table: dict[FormatId, Codec] = {}
        for codec in codecs:
            if codec.format_id in table:
                raise ValueError(
                    f"duplicate codec for format {codec.format_id.value}"
                )
            table[codec.format_id] = codec
        ordered: dict[FormatId, Codec] = {
            format_id: table[format_id]
            for format_id in FORMAT_ORDER
            if format_id in table
        }
        self._codecs: Mapping[FormatId, Codec] = MappingProxyType(ordered)

    def __getitem__(self, format_id: FormatId) -> Codec:
        return self._codecs[format_id]

    def __iter__(self) -> Iterator[FormatId]:
        return iter(self._codecs)

    def __len__(self) -> int:
        return len(self._codecs)

    def __repr__(self) -> str:
        ids: str = ", ".join(f.value for f in self._codecs)
        return f"CodecRegistry([{ids}])"
