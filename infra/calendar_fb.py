"""FlatBuffers tables for the calendar event schema.

Hand-maintained in the layout ``flatc --python`` emits for::

    namespace bench;

    table CalendarEvent {
      id: long;            // slot 0
      title: string;       // slot 1
      location: string;    // slot 2
      organizer: string;   // slot 3
      startTime: long;     // slot 4
      endTime: long;       // slot 5
      attendees: int;      // slot 6
      allDay: bool;        // slot 7
      description: string; // slot 8
      tags: [string];      // slot 9
      resources: [string]; // slot 10
      createdAt: long;     // slot 11
      updatedAt: long;     // slot 12
      priority: int;       // slot 13
      timezone: string;    // slot 14
    }

    table CalendarEventList {
      events: [CalendarEvent];
    }

    root_type CalendarEventList;

Strings are returned as ``bytes``; callers decode UTF-8.
"""

import flatbuffers
from flatbuffers.number_types import (
    BoolFlags,
    Int32Flags,
    Int64Flags,
    UOffsetTFlags,
)


# ---------------------------------------------------------------------------
# CalendarEvent
# ---------------------------------------------------------------------------


class CalendarEvent:
    __slots__ = ["_tab"]

    def Init(self, buf: bytes, pos: int) -> None:
        self._tab = flatbuffers.table.Table(buf, pos)

    def _offset(self, vtable_offset: int) -> int:
        return UOffsetTFlags.py_type(self._tab.Offset(vtable_offset))

    def _int64(self, vtable_offset: int) -> int:
        o = self._offset(vtable_offset)
        if o != 0:
            return self._tab.Get(Int64Flags, o + self._tab.Pos)
        return 0

    def _int32(self, vtable_offset: int) -> int:
        o = self._offset(vtable_offset)
        if o != 0:
            return self._tab.Get(Int32Flags, o + self._tab.Pos)
        return 0

    def _string(self, vtable_offset: int) -> bytes | None:
        o = self._offset(vtable_offset)
        if o != 0:
            return self._tab.String(o + self._tab.Pos)
        return None

    def _string_at(self, vtable_offset: int, j: int) -> bytes:
        o = self._offset(vtable_offset)
        if o != 0:
            a = self._tab.Vector(o)
            return self._tab.String(a + UOffsetTFlags.py_type(j * 4))
        return b""

    def _length(self, vtable_offset: int) -> int:
        o = self._offset(vtable_offset)
        if o != 0:
            return self._tab.VectorLen(o)
        return 0

    def Id(self) -> int:
        return self._int64(4)

    def Title(self) -> bytes | None:
        return self._string(6)

    def Location(self) -> bytes | None:
        return self._string(8)

    def Organizer(self) -> bytes | None:
        return self._string(10)

    def StartTime(self) -> int:
        return self._int64(12)

    def EndTime(self) -> int:
        return self._int64(14)

    def Attendees(self) -> int:
        return self._int32(16)

    def AllDay(self) -> bool:
        o = self._offset(18)
        if o != 0:
            return bool(self._tab.Get(BoolFlags, o + self._tab.Pos))
        return False

    def Description(self) -> bytes | None:
        return self._string(20)

    def Tags(self, j: int) -> bytes:
        return self._string_at(22, j)

    def TagsLength(self) -> int:
        return self._length(22)

    def Resources(self, j: int) -> bytes:
        return self._string_at(24, j)

    def ResourcesLength(self) -> int:
        return self._length(24)

    def CreatedAt(self) -> int:
        return self._int64(26)

    def UpdatedAt(self) -> int:
        return self._int64(28)

    def Priority(self) -> int:
        return self._int32(30)

    def Timezone(self) -> bytes | None:
        return self._string(32)


def CalendarEventStart(builder: flatbuffers.Builder) -> None:
    builder.StartObject(15)


def CalendarEventAddId(builder: flatbuffers.Builder, value: int) -> None:
    builder.PrependInt64Slot(0, value, 0)


def CalendarEventAddTitle(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(1, UOffsetTFlags.py_type(offset), 0)


def CalendarEventAddLocation(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(2, UOffsetTFlags.py_type(offset), 0)


def CalendarEventAddOrganizer(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(3, UOffsetTFlags.py_type(offset), 0)


def CalendarEventAddStartTime(builder: flatbuffers.Builder, value: int) -> None:
    builder.PrependInt64Slot(4, value, 0)


def CalendarEventAddEndTime(builder: flatbuffers.Builder, value: int) -> None:
    builder.PrependInt64Slot(5, value, 0)


def CalendarEventAddAttendees(builder: flatbuffers.Builder, value: int) -> None:
    builder.PrependInt32Slot(6, value, 0)


def CalendarEventAddAllDay(builder: flatbuffers.Builder, value: bool) -> None:
    builder.PrependBoolSlot(7, value, 0)


def CalendarEventAddDescription(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(8, UOffsetTFlags.py_type(offset), 0)


def CalendarEventAddTags(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(9, UOffsetTFlags.py_type(offset), 0)


def CalendarEventAddResources(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(10, UOffsetTFlags.py_type(offset), 0)


def CalendarEventAddCreatedAt(builder: flatbuffers.Builder, value: int) -> None:
    builder.PrependInt64Slot(11, value, 0)


def CalendarEventAddUpdatedAt(builder: flatbuffers.Builder, value: int) -> None:
    builder.PrependInt64Slot(12, value, 0)


def CalendarEventAddPriority(builder: flatbuffers.Builder, value: int) -> None:
    builder.PrependInt32Slot(13, value, 0)


def CalendarEventAddTimezone(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(14, UOffsetTFlags.py_type(offset), 0)


def CalendarEventEnd(builder: flatbuffers.Builder) -> int:
    return builder.EndObject()


# ---------------------------------------------------------------------------
# CalendarEventList
# ---------------------------------------------------------------------------


class CalendarEventList:
    __slots__ = ["_tab"]

    @classmethod
    def GetRootAs(cls, buf: bytes, offset: int = 0) -> "CalendarEventList":
        n = flatbuffers.encode.Get(flatbuffers.packer.uoffset, buf, offset)
        x = cls()
        x.Init(buf, n + offset)
        return x

    def Init(self, buf: bytes, pos: int) -> None:
        self._tab = flatbuffers.table.Table(buf, pos)

    def Events(self, j: int) -> CalendarEvent | None:
        o = UOffsetTFlags.py_type(self._tab.Offset(4))
        if o != 0:
            x = self._tab.Vector(o)
            x += UOffsetTFlags.py_type(j) * 4
            x = self._tab.Indirect(x)
            obj = CalendarEvent()
            obj.Init(self._tab.Bytes, x)
            return obj
        return None

    def EventsLength(self) -> int:
        o = UOffsetTFlags.py_type(self._tab.Offset(4))
        if o != 0:
            return self._tab.VectorLen(o)
        return 0


def CalendarEventListStart(builder: flatbuffers.Builder) -> None:
    builder.StartObject(1)


def CalendarEventListAddEvents(builder: flatbuffers.Builder, offset: int) -> None:
    builder.PrependUOffsetTRelativeSlot(0, UOffsetTFlags.py_type(offset), 0)


def CalendarEventListEnd(builder: flatbuffers.Builder) -> int:
    return builder.EndObject()


def create_offset_vector(builder: flatbuffers.Builder, offsets: list[int]) -> int:
    """Write a vector of table/string offsets; returns the vector offset."""
    builder.StartVector(4, len(offsets), 4)
    for offset in reversed(offsets):
        builder.PrependUOffsetTRelative(offset)
    return builder.EndVector()
