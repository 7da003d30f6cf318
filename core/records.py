"""Calendar event record model, fixture generator and dataset size presets.

Every format in the benchmark serializes the same fixed record type,
:class:`CalendarEvent`. Records are produced by a deterministic generator
seeded from ``seed + count`` so that a given dataset size always yields the
same sequence, on the server and in tests alike.

Wire naming:
    Field names on the wire are camelCase (``startTime``, ``allDay``,
    ``createdAt``) for every schema-less format. Python attributes are
    snake_case. :meth:`CalendarEvent.to_wire` and ``model_validate`` bridge
    the two.

Example:
    >>> from core.records import generate_events, resolve_size
    >>> preset = resolve_size("small")
    >>> preset.count
    1000
    >>> events = generate_events(count=3)
    >>> events[0].id
    1
    >>> events == generate_events(count=3)  # deterministic
    True
"""

import random

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Record Model
# ---------------------------------------------------------------------------


class CalendarEvent(BaseModel):
    """A single calendar event, the record type every codec round-trips.

    Integer fields carry the domain of the widest schema-based wire type
    that stores them: ``attendees`` and ``priority`` are int32 on the wire,
    identifiers and epoch-millisecond timestamps are int64. The model itself
    does not enforce those ranges; codecs with a bounded wire type raise
    :class:`~core.errors.EncodeError` instead.

    Example:
        >>> event = CalendarEvent(
        ...     id=1, title="Standup 1", location="Zoom",
        ...     organizer="user1@example.com", start_time=0, end_time=1,
        ...     attendees=3, all_day=False, description="Event 1 details",
        ...     tags=["team"], resources=[], created_at=0, updated_at=0,
        ...     priority=1, timezone="UTC",
        ... )
        >>> event.to_wire()["allDay"]
        False
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: int
    title: str
    location: str
    organizer: str
    start_time: int = Field(description="Start, epoch milliseconds")
    end_time: int = Field(description="End, epoch milliseconds")
    attendees: int
    all_day: bool
    description: str
    tags: list[str]
    resources: list[str]
    created_at: int = Field(description="Creation time, epoch milliseconds")
    updated_at: int = Field(description="Last update, epoch milliseconds")
    priority: int
    timezone: str

    def to_wire(self) -> dict[str, object]:
        """Return the camelCase dict used by schema-less formats."""
        return self.model_dump(by_alias=True)


WIRE_FIELDS: tuple[str, ...] = tuple(
    field.alias or name for name, field in CalendarEvent.model_fields.items()
)
"""camelCase wire field names in declaration order."""


# ---------------------------------------------------------------------------
# Fixture Generator
# ---------------------------------------------------------------------------

DEFAULT_SEED: int = 42

_BASE_TIME_MS: int = 1_700_000_000_000

_TITLES: tuple[str, ...] = (
    "Standup", "Planning", "1:1", "Design Review", "Incident Review",
    "Roadmap", "Sprint Demo", "Retro", "All Hands", "Ops Sync",
)
_LOCATIONS: tuple[str, ...] = (
    "Room 1", "Room 2", "Room 3", "HQ", "Remote", "Zoom",
)
_TAGS: tuple[str, ...] = (
    "team", "urgent", "customer", "internal", "release", "oncall",
)
_RESOURCES: tuple[str, ...] = (
    "Projector", "Whiteboard", "Conference Phone", "Screen Share",
)
_TIMEZONES: tuple[str, ...] = (
    "UTC", "America/Los_Angeles", "Europe/London", "Asia/Kolkata",
)


def _pick_many(
    pool: tuple[str, ...], rng: random.Random, count: int,
) -> list[str]:
    return [pool[rng.randrange(len(pool))] for _ in range(count)]


def generate_events(count: int, seed: int = DEFAULT_SEED) -> list[CalendarEvent]:
    """Generate ``count`` deterministic calendar events.

    The random stream is seeded with ``seed + count``, so the small,
    medium and large presets are independent sequences, each stable
    across calls.

    Args:
        count: Number of events to generate. Must be >= 0.
        seed: Base seed. Default 42.

    Returns:
        Ordered list of :class:`CalendarEvent` with ids ``1..count``.

    Raises:
        ValueError: If count is negative.

    Example:
        >>> events = generate_events(count=2)
        >>> [e.id for e in events]
        [1, 2]
        >>> 2 <= len(events[0].tags) <= 3
        True
    """
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")

    rng: random.Random = random.Random(seed + count)
    events: list[CalendarEvent] = []

    for i in range(count):
        start: int = _BASE_TIME_MS + i * 900_000 + rng.randrange(300_000)
        end: int = start + 1_800_000 + rng.randrange(300_000)
        attendees: int = 1 + rng.randrange(25)
        all_day: bool = rng.randrange(20) == 0
        priority: int = 1 + rng.randrange(5)
        title: str = f"{_TITLES[rng.randrange(len(_TITLES))]} {i + 1}"
        location: str = _LOCATIONS[rng.randrange(len(_LOCATIONS))]
        organizer: str = f"user{rng.randrange(500) + 1}@example.com"
        tags: list[str] = _pick_many(_TAGS, rng, 2 + rng.randrange(2))
        resources: list[str] = _pick_many(
            _RESOURCES, rng, 1 + rng.randrange(2),
        )
        timezone: str = _TIMEZONES[rng.randrange(len(_TIMEZONES))]

        events.append(
            CalendarEvent(
                id=i + 1,
                title=title,
                location=location,
                organizer=organizer,
                start_time=start,
                end_time=end,
                attendees=attendees,
                all_day=all_day,
                description=f"Event {i + 1} details",
                tags=tags,
                resources=resources,
                created_at=start - 3_600_000,
                updated_at=start - 1_800_000,
                priority=priority,
                timezone=timezone,
            )
        )

    return events


# ---------------------------------------------------------------------------
# Dataset Size Presets
# ---------------------------------------------------------------------------


class DatasetSizePreset(BaseModel):
    """A named record-count tier used to test scaling behaviour.

    Attributes:
        id: Preset identifier (``"small"``, ``"medium"``, ``"large"`` or
            the decimal string of an explicit count).
        label: Human-readable label.
        count: Number of records in the dataset.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1, description="Preset identifier")
    label: str = Field(description="Human-readable label")
    count: int = Field(gt=0, description="Record count")


SMALL: DatasetSizePreset = DatasetSizePreset(
    id="small", label="Small (1k)", count=1_000,
)
MEDIUM: DatasetSizePreset = DatasetSizePreset(
    id="medium", label="Medium (10k)", count=10_000,
)
LARGE: DatasetSizePreset = DatasetSizePreset(
    id="large", label="Large (50k)", count=50_000,
)

SIZE_PRESETS: tuple[DatasetSizePreset, ...] = (SMALL, MEDIUM, LARGE)
"""Named presets, smallest first."""

_PRESETS_BY_ID: dict[str, DatasetSizePreset] = {p.id: p for p in SIZE_PRESETS}


def resolve_size(size: str | int | None) -> DatasetSizePreset:
    """Resolve a size identifier to a :class:`DatasetSizePreset`.

    Named presets are matched case-insensitively after trimming. A
    positive integer (or its decimal string) yields an explicit preset.
    Blank, unparsable or non-positive values fall back to ``small``.

    Args:
        size: Preset name, explicit record count, or ``None``.

    Returns:
        The matching preset.

    Example:
        >>> resolve_size(" MEDIUM ").count
        10000
        >>> resolve_size("250").id
        '250'
        >>> resolve_size("bogus").id
        'small'
    """
    if size is None:
        return SMALL

    if isinstance(size, int):
        count: int = size
    else:
        trimmed: str = size.strip().lower()
        if not trimmed:
            return SMALL
        if trimmed in _PRESETS_BY_ID:
            return _PRESETS_BY_ID[trimmed]
        try:
            count = int(trimmed)
        except ValueError:
            return SMALL

    if count <= 0:
        return SMALL
    return DatasetSizePreset(id=str(count), label=f"Custom ({count:,})", count=count)
