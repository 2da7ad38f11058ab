"""
Data Models
Dataclasses for all entities. These are pure Python objects, no database logic.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, List, Optional


# Provenance sources written into schedule_items.source
SOURCE_FLIGHTS = 'advancing_flights'
SOURCE_LODGING = 'advancing_lodging'
SOURCE_CATERING = 'advancing_catering'
SOURCE_FIELDS = 'advancing_fields'
SOURCE_GRID = 'advancing_grid'


def from_row(cls, row: Dict[str, Any]):
    """Build a dataclass from a store row, ignoring columns the model does not carry."""
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in row.items() if k in names})


@dataclass
class Show:
    """A single show date at a venue"""
    id: Optional[str] = None
    org_id: Optional[str] = None
    title: str = ''
    date: Optional[date] = None
    doors_at: Optional[datetime] = None
    set_time: Optional[datetime] = None
    venue: Optional[str] = None
    city: Optional[str] = None


@dataclass
class AdvancingSession:
    """Groups the advancing fields negotiated for one show"""
    id: Optional[str] = None
    show_id: Optional[str] = None
    title: Optional[str] = None


@dataclass
class Flight:
    """Flight logistics record (arrival into or departure from the show city)"""
    id: Optional[str] = None
    show_id: Optional[str] = None
    direction: str = 'arrival'
    person_id: Optional[str] = None
    airline: Optional[str] = None
    flight_number: Optional[str] = None
    passenger_name: Optional[str] = None
    depart_airport_code: Optional[str] = None
    depart_city: Optional[str] = None
    depart_at: Optional[datetime] = None
    arrival_airport_code: Optional[str] = None
    arrival_city: Optional[str] = None
    arrival_at: Optional[datetime] = None
    notes: Optional[str] = None
    auto_schedule: bool = True


@dataclass
class Lodging:
    """Hotel record; person_id None means shared by the whole party"""
    id: Optional[str] = None
    show_id: Optional[str] = None
    person_id: Optional[str] = None
    hotel_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    check_in_at: Optional[datetime] = None
    check_out_at: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass
class Catering:
    """Catering record"""
    id: Optional[str] = None
    show_id: Optional[str] = None
    provider_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    service_at: Optional[datetime] = None
    guest_count: Optional[int] = None
    notes: Optional[str] = None


@dataclass
class ScheduleItem:
    """Calendar entry; auto-generated entries point back to their source record"""
    id: Optional[str] = None
    show_id: Optional[str] = None
    title: str = ''
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    item_type: Optional[str] = 'custom'
    visibility: str = 'all'
    person_id: Optional[str] = None
    auto_generated: bool = False
    source: Optional[str] = None
    source_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class AdvancingField:
    """One negotiated value in an advancing session"""
    id: Optional[str] = None
    session_id: Optional[str] = None
    section: str = ''
    field_name: str = ''
    field_type: str = 'text'
    value: Any = None
    party_type: str = 'from_us'
    status: str = 'pending'
    sort_order: int = 0


@dataclass(frozen=True)
class SourceTag:
    """(source, source_ref) provenance pair"""
    source: str
    source_ref: str


@dataclass
class EventSpec:
    """A calendar event implied by a logistics record, before it is written"""
    title: str
    starts_at: Optional[datetime]
    item_type: str = 'custom'
    ends_at: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    person_id: Optional[str] = None


@dataclass
class TimelineEvent:
    """Projection input: anything that occupies time on the day view"""
    id: str
    time: datetime
    title: str
    type: str = 'schedule'
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    person_id: Optional[str] = None
    person_name: Optional[str] = None


@dataclass
class TimeSlot:
    label: str
    items: List[TimelineEvent] = field(default_factory=list)


@dataclass
class DayProjection:
    slots: List[TimeSlot] = field(default_factory=list)
    full_day_grid: List[TimeSlot] = field(default_factory=list)


@dataclass
class ItemLayout:
    """Pixel placement of one event on the continuous timeline"""
    event: TimelineEvent
    top: float
    height: float
    duration_minutes: int
    lane: int = 0
    lane_count: int = 1


@dataclass
class SyncResult:
    """Explicit success/failure result of a synchronisation step"""
    success: bool = True
    error: Optional[str] = None
    created: int = 0
    deleted: int = 0
    skipped: int = 0
    failed_deletes: int = 0


@dataclass
class GridSaveResult:
    """Aggregate result of a batched grid save; succeeded writes are not rolled back"""
    success: bool = True
    inserted: int = 0
    updated: int = 0
    failed_updates: int = 0
    errors: List[str] = field(default_factory=list)
