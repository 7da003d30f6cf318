"""Concrete codecs for the seven benchmarked wire formats.

Each class satisfies :class:`core.formats.Codec`. Schema-less formats
(JSON, MessagePack, CBOR, FlexBuffers) carry one map per record keyed by
the camelCase wire names from :data:`core.records.WIRE_FIELDS`.
Schema-based formats (FlatBuffers, Arrow) fix the wire types:
``attendees`` and ``priority`` are int32, identifiers and timestamps
int64.

Error mapping:
    Library-specific failures are re-raised as
    :class:`~core.errors.EncodeError` / :class:`~core.errors.DecodeError`
    with the original exception chained. Payloads that parse but do not
    validate as calendar events are decode errors too.

Example:
    >>> from infra.codecs import build_codec_registry
    >>> from core.formats import FormatId
    >>> from core.records import generate_events
    >>> registry = build_codec_registry()
    >>> codec = registry[FormatId.MESSAGEPACK]
    >>> events = generate_events(count=10)
    >>> codec.decode(codec.encode(events)) == events
    True
"""

import json
import logging
import struct
from collections.abc import Sequence

import cbor2
import flatbuffers
import msgpack
import pyarrow as pa
from flatbuffers import flexbuffers
from pydantic import TypeAdapter, ValidationError

from core.errors import DecodeError, EncodeError
from core.formats import FORMATS, CodecRegistry, FormatId
from core.records import CalendarEvent
from infra import calendar_fb as fb

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared Helpers
# ---------------------------------------------------------------------------

INT32_MIN: int = -(2**31)
INT32_MAX: int = 2**31 - 1
INT64_MIN: int = -(2**63)
INT64_MAX: int = 2**63 - 1

_INT32_FIELDS: tuple[str, ...] = ("attendees", "priority")
_INT64_FIELDS: tuple[str, ...] = (
    "id", "start_time", "end_time", "created_at", "updated_at",
)


def check_wire_ranges(records: Sequence[CalendarEvent], format_id: FormatId) -> None:
    """Raise :class:`EncodeError` if an integer field overflows its wire type.

    Args:
        records: Records about to be encoded.
        format_id: Format, used in the error message.

    Raises:
        EncodeError: On the first out-of-range field.
    """
    for event in records:
        for name in _INT32_FIELDS:
            value: int = getattr(event, name)
            if not INT32_MIN <= value <= INT32_MAX:
                raise EncodeError(
                    f"{format_id.value}: event {event.id} field '{name}' "
                    f"= {value} does not fit int32"
                )
        for name in _INT64_FIELDS:
            value = getattr(event, name)
            if not INT64_MIN <= value <= INT64_MAX:
                raise EncodeError(
                    f"{format_id.value}: event {event.id} field '{name}' "
                    f"= {value} does not fit int64"
                )


def records_from_wire(items: object, format_id: FormatId) -> list[CalendarEvent]:
    """Validate decoded wire maps as calendar events.

    Raises:
        DecodeError: If ``items`` is not a list of valid event maps.
    """
    if not isinstance(items, list):
        raise DecodeError(
            f"{format_id.value}: expected a list of events, "
            f"got {type(items).__name__}"
        )
    try:
        return [CalendarEvent.model_validate(item) for item in items]
    except ValidationError as exc:
        raise DecodeError(f"{format_id.value}: invalid event: {exc}") from exc


class _BaseCodec:
    """Supplies ``content_type`` from the format table."""

    format_id: FormatId

    @property
    def content_type(self) -> str:
        return FORMATS[self.format_id].content_type

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


class JsonTreeCodec(_BaseCodec):
    """DOM-style JSON: build a dict tree, then serialize it."""

    format_id = FormatId.ORGJSON

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        tree: list[dict[str, object]] = [event.to_wire() for event in records]
        try:
            return json.dumps(tree, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncodeError(f"{self.format_id.value}: {exc}") from exc

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        try:
            tree: object = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecodeError(f"{self.format_id.value}: {exc}") from exc
        return records_from_wire(tree, self.format_id)


_EVENT_LIST: TypeAdapter[list[CalendarEvent]] = TypeAdapter(list[CalendarEvent])


class JsonStreamCodec(_BaseCodec):
    """Streaming JSON: serialize models directly, no intermediate tree."""

    format_id = FormatId.JACKSONSTREAM

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        return _EVENT_LIST.dump_json(list(records), by_alias=True)

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        try:
            return _EVENT_LIST.validate_json(payload)
        except ValidationError as exc:
            raise DecodeError(f"{self.format_id.value}: {exc}") from exc


# ---------------------------------------------------------------------------
# MessagePack & CBOR
# ---------------------------------------------------------------------------


class MessagePackCodec(_BaseCodec):
    format_id = FormatId.MESSAGEPACK

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        check_wire_ranges(records, self.format_id)
        try:
            return msgpack.packb([event.to_wire() for event in records])
        except (TypeError, ValueError, OverflowError) as exc:
            raise EncodeError(f"{self.format_id.value}: {exc}") from exc

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        try:
            items: object = msgpack.unpackb(payload, raw=False)
        except (msgpack.exceptions.UnpackException, ValueError, TypeError) as exc:
            raise DecodeError(f"{self.format_id.value}: {exc}") from exc
        return records_from_wire(items, self.format_id)


class CborCodec(_BaseCodec):
    format_id = FormatId.CBOR

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        try:
            return cbor2.dumps([event.to_wire() for event in records])
        except cbor2.CBOREncodeError as exc:
            raise EncodeError(f"{self.format_id.value}: {exc}") from exc

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        try:
            items: object = cbor2.loads(payload)
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise DecodeError(f"{self.format_id.value}: {exc}") from exc
        return records_from_wire(items, self.format_id)


# ---------------------------------------------------------------------------
# FlexBuffers
# ---------------------------------------------------------------------------


class FlexBuffersCodec(_BaseCodec):
    """Schema-less FlexBuffers vector of maps."""

    format_id = FormatId.FLEXBUFFERS

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        check_wire_ranges(records, self.format_id)
        try:
            return bytes(flexbuffers.Dumps([event.to_wire() for event in records]))
        except (TypeError, ValueError, OverflowError, struct.error) as exc:
            raise EncodeError(f"{self.format_id.value}: {exc}") from exc

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        if not payload:
            raise DecodeError(f"{self.format_id.value}: empty payload")
        try:
            items: object = flexbuffers.Loads(payload)
        except (
            AssertionError, IndexError, KeyError, TypeError, ValueError,
            UnicodeDecodeError, struct.error,
        ) as exc:
            # flexbuffers validates offsets and key types with assert
            raise DecodeError(f"{self.format_id.value}: {exc!r}") from exc
        return records_from_wire(items, self.format_id)


# ---------------------------------------------------------------------------
# FlatBuffers
# ---------------------------------------------------------------------------


class FlatBuffersCodec(_BaseCodec):
    """Schema-based FlatBuffers ``CalendarEventList`` root table."""

    format_id = FormatId.FLATBUFFERS

    def __init__(self, initial_size: int = 1024) -> None:
        self._initial_size: int = initial_size

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        check_wire_ranges(records, self.format_id)
        builder: flatbuffers.Builder = flatbuffers.Builder(self._initial_size)

        event_offsets: list[int] = []
        for event in records:
            title: int = builder.CreateString(event.title)
            location: int = builder.CreateString(event.location)
            organizer: int = builder.CreateString(event.organizer)
            description: int = builder.CreateString(event.description)
            timezone: int = builder.CreateString(event.timezone)
            tags: int = fb.create_offset_vector(
                builder, [builder.CreateString(t) for t in event.tags],
            )
            resources: int = fb.create_offset_vector(
                builder, [builder.CreateString(r) for r in event.resources],
            )

            fb.CalendarEventStart(builder)
            fb.CalendarEventAddId(builder, event.id)
            fb.CalendarEventAddTitle(builder, title)
            fb.CalendarEventAddLocation(builder, location)
            fb.CalendarEventAddOrganizer(builder, organizer)
            fb.CalendarEventAddStartTime(builder, event.start_time)
            fb.CalendarEventAddEndTime(builder, event.end_time)
            fb.CalendarEventAddAttendees(builder, event.attendees)
            fb.CalendarEventAddAllDay(builder, event.all_day)
            fb.CalendarEventAddDescription(builder, description)
            fb.CalendarEventAddTags(builder, tags)
            fb.CalendarEventAddResources(builder, resources)
            fb.CalendarEventAddCreatedAt(builder, event.created_at)
            fb.CalendarEventAddUpdatedAt(builder, event.updated_at)
            fb.CalendarEventAddPriority(builder, event.priority)
            fb.CalendarEventAddTimezone(builder, timezone)
            event_offsets.append(fb.CalendarEventEnd(builder))

        events_vector: int = fb.create_offset_vector(builder, event_offsets)
        fb.CalendarEventListStart(builder)
        fb.CalendarEventListAddEvents(builder, events_vector)
        builder.Finish(fb.CalendarEventListEnd(builder))
        return bytes(builder.Output())

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        if len(payload) < 8:
            raise DecodeError(
                f"{self.format_id.value}: payload too short ({len(payload)} bytes)"
            )
        try:
            root: fb.CalendarEventList = fb.CalendarEventList.GetRootAs(payload, 0)
            events: list[CalendarEvent] = []
            for i in range(root.EventsLength()):
                table: fb.CalendarEvent | None = root.Events(i)
                if table is None:
                    continue
                events.append(self._to_event(table))
            return events
        except (IndexError, struct.error, UnicodeDecodeError, TypeError) as exc:
            raise DecodeError(f"{self.format_id.value}: {exc}") from exc
        except ValidationError as exc:
            raise DecodeError(f"{self.format_id.value}: invalid event: {exc}") from exc

    @staticmethod
    def _text(value: bytes | None) -> str:
        return value.decode("utf-8") if value is not None else ""

    def _to_event(self, table: fb.CalendarEvent) -> CalendarEvent:
        return CalendarEvent(
            id=table.Id(),
            title=self._text(table.Title()),
            location=self._text(table.Location()),
            organizer=self._text(table.Organizer()),
            start_time=table.StartTime(),
            end_time=table.EndTime(),
            attendees=table.Attendees(),
            all_day=table.AllDay(),
            description=self._text(table.Description()),
            tags=[self._text(table.Tags(j)) for j in range(table.TagsLength())],
            resources=[
                self._text(table.Resources(j))
                for j in range(table.ResourcesLength())
            ],
            created_at=table.CreatedAt(),
            updated_at=table.UpdatedAt(),
            priority=table.Priority(),
            timezone=self._text(table.Timezone()),
        )


# ---------------------------------------------------------------------------
# Apache Arrow
# ---------------------------------------------------------------------------

ARROW_SCHEMA: pa.Schema = pa.schema([
    pa.field("id", pa.int64()),
    pa.field("title", pa.utf8()),
    pa.field("location", pa.utf8()),
    pa.field("organizer", pa.utf8()),
    pa.field("startTime", pa.int64()),
    pa.field("endTime", pa.int64()),
    pa.field("attendees", pa.int32()),
    pa.field("allDay", pa.bool_()),
    pa.field("description", pa.utf8()),
    pa.field("tags", pa.list_(pa.field("tag", pa.utf8()))),
    pa.field("resources", pa.list_(pa.field("resource", pa.utf8()))),
    pa.field("createdAt", pa.int64()),
    pa.field("updatedAt", pa.int64()),
    pa.field("priority", pa.int32()),
    pa.field("timezone", pa.utf8()),
])


class ArrowCodec(_BaseCodec):
    """Column-oriented Arrow IPC stream holding one record batch."""

    format_id = FormatId.ARROW

    def encode(self, records: Sequence[CalendarEvent]) -> bytes:
        check_wire_ranges(records, self.format_id)
        rows: list[dict[str, object]] = [event.to_wire() for event in records]
        try:
            batch: pa.RecordBatch = pa.RecordBatch.from_pylist(
                rows, schema=ARROW_SCHEMA,
            )
            sink: pa.BufferOutputStream = pa.BufferOutputStream()
            with pa.ipc.new_stream(sink, ARROW_SCHEMA) as writer:
                writer.write_batch(batch)
            return sink.getvalue().to_pybytes()
        except (pa.ArrowException, TypeError, ValueError, OverflowError) as exc:
            raise EncodeError(f"{self.format_id.value}: {exc}") from exc

    def decode(self, payload: bytes) -> list[CalendarEvent]:
        try:
            reader: pa.ipc.RecordBatchStreamReader = pa.ipc.open_stream(
                pa.py_buffer(payload),
            )
            table: pa.Table = reader.read_all()
        except (pa.ArrowException, ValueError, OSError) as exc:
            raise DecodeError(f"{self.format_id.value}: {exc}") from exc
        return records_from_wire(table.to_pylist(), self.format_id)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def build_codec_registry() -> CodecRegistry:
    """Build the immutable registry of all seven codecs.

    Returns:
        :class:`CodecRegistry` in canonical format order.
    """
    registry: CodecRegistry = CodecRegistry([
        JsonTreeCodec(),
        JsonStreamCodec(),
        FlexBuffersCodec(),
        FlatBuffersCodec(),
        MessagePackCodec(),
        CborCodec(),
        ArrowCodec(),
    ])
    logger.debug("Built codec registry: %r", registry)
    return registry
