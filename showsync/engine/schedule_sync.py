"""
Schedule Sync Engine - Derived Calendar Events

Keeps schedule_items consistent with the logistics records they are derived
from. Every auto-generated item carries (source, source_ref) pointing back
at its record; a sync replaces that tag's whole slice (delete, then
recreate), so re-running with the same record is idempotent in count and
content while item ids change.

Manual items (auto_generated = false) are never touched.

The delete and recreate steps are separate statements. A failure between
them leaves fewer items until the next edit of the record re-runs the sync.
"""

import logging
from datetime import datetime, time
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from showsync.bus.events import (
    bus,
    EVENT_FLIGHT_SAVED, EVENT_FLIGHT_DELETED,
    EVENT_LODGING_SAVED, EVENT_LODGING_DELETED,
    EVENT_CATERING_SAVED, EVENT_CATERING_DELETED,
    EVENT_ADVANCING_FIELDS_SAVED, EVENT_GRID_SAVED,
    EVENT_SCHEDULE_SYNCED, EVENT_SCHEDULE_SYNC_FAILED,
)
from showsync.config import config
from showsync.db.store import store as default_store, StoreError
from showsync.engine import grid_codec
from showsync.engine.time_extract import extract_time
from showsync.engine.timeutil import as_date, as_datetime, at_local, get_timezone, plus_minutes
from showsync.logging_config import log_call
from showsync.models import (
    AdvancingField, Catering, EventSpec, Flight, Lodging, ScheduleItem,
    SourceTag, SyncResult, from_row,
    SOURCE_CATERING, SOURCE_FIELDS, SOURCE_FLIGHTS, SOURCE_GRID, SOURCE_LODGING,
)

logger = logging.getLogger(__name__)

SCHEDULE_TABLE = 'schedule_items'
FLIGHTS_TABLE = 'advancing_flights'
LODGING_TABLE = 'advancing_lodging'
CATERING_TABLE = 'advancing_catering'
FIELDS_TABLE = 'advancing_fields'
SESSIONS_TABLE = 'advancing_sessions'
SHOWS_TABLE = 'shows'

# Field types the advancing scan looks at
_SCANNED_FIELD_TYPES = ('time', 'text')

# Wall-clock defaults for date-only hotel grid values
_HOTEL_CHECK_IN_TIME = time(15, 0)
_HOTEL_CHECK_OUT_TIME = time(11, 0)


def _resolve_store(store):
    return default_store if store is None else store


def tag_for(source: str, record_id) -> SourceTag:
    return SourceTag(source=source, source_ref=str(record_id))


# =============================================================================
# GENERIC WRITER
# =============================================================================

def _item_fields(event: EventSpec, starts_at: datetime, tag: SourceTag, show_id: str) -> Dict:
    return {
        'show_id': show_id,
        'title': event.title,
        'starts_at': starts_at,
        'ends_at': as_datetime(event.ends_at),
        'location': event.location,
        'notes': event.notes,
        'item_type': event.item_type,
        'person_id': event.person_id,
        'visibility': 'all',
        'auto_generated': True,
        'source': tag.source,
        'source_ref': tag.source_ref,
    }


def sync_derived_events(
    tag: SourceTag,
    desired: List[EventSpec],
    show_id: Optional[str] = None,
    store=None
) -> SyncResult:
    """
    Replace every schedule item tagged with tag by the desired events.

    Events without a resolvable starts_at are skipped silently. If any stale
    item can't be deleted, nothing is recreated: the stale item keeps the
    slice non-empty and a duplicate would break the one-set-per-tag rule.
    """
    store = _resolve_store(store)
    result = SyncResult()

    if not show_id and any(as_datetime(e.starts_at) is not None for e in desired):
        logger.error(f"sync_derived_events: {tag} has events but no show_id")
        return SyncResult(success=False, error="show_id is required to create items")

    try:
        existing = store.list_by_tag(SCHEDULE_TABLE, tag.source, tag.source_ref)
    except StoreError as e:
        logger.error(f"sync_derived_events: listing {tag} failed: {e}")
        return SyncResult(success=False, error=str(e))

    for row in existing:
        if not row.get('auto_generated'):
            continue
        try:
            if store.delete_by_id(SCHEDULE_TABLE, row['id']):
                result.deleted += 1
        except StoreError as e:
            result.failed_deletes += 1
            logger.error(f"sync_derived_events: deleting item {row['id']} of {tag} failed: {e}")

    if result.failed_deletes:
        result.success = False
        result.error = f"{result.failed_deletes} stale item(s) could not be deleted"
        return result

    to_create = []
    for event in desired:
        starts_at = as_datetime(event.starts_at)
        if starts_at is None:
            result.skipped += 1
            logger.debug(f"sync_derived_events: {tag} '{event.title}' has no start time, skipped")
            continue
        to_create.append(_item_fields(event, starts_at, tag, show_id))

    if to_create:
        try:
            created = store.insert_many(SCHEDULE_TABLE, to_create)
        except StoreError as e:
            logger.error(f"sync_derived_events: creating {len(to_create)} item(s) for {tag} failed: {e}")
            return SyncResult(success=False, error=str(e), deleted=result.deleted, skipped=result.skipped)
        result.created = len(created)

    logger.info(
        f"Synced {tag.source}/{tag.source_ref}: "
        f"{result.deleted} removed, {result.created} created, {result.skipped} skipped"
    )
    return result


def remove_derived_events(tag: SourceTag, store=None) -> SyncResult:
    """Deletion cascade: a sync with no desired events."""
    return sync_derived_events(tag, [], store=store)


# =============================================================================
# EVENT BUILDERS (pure)
# =============================================================================

def _flight_title(flight: Flight) -> str:
    label = 'Arrival' if flight.direction == 'arrival' else 'Departure'
    if flight.flight_number and flight.airline:
        ident = f"{flight.flight_number} ({flight.airline})"
    else:
        ident = flight.flight_number or flight.airline or 'Flight'
    return f"✈ {ident} {label}"


def flight_events(flight: Flight) -> List[EventSpec]:
    """One event spanning departure to arrival, or nothing."""
    if not flight.auto_schedule:
        return []
    starts_at = as_datetime(flight.depart_at)
    if starts_at is None:
        return []
    departure = flight.depart_airport_code or flight.depart_city or ''
    arrival = flight.arrival_airport_code or flight.arrival_city or ''
    notes = flight.passenger_name or None
    if flight.notes:
        notes = f"{notes}\n{flight.notes}" if notes else flight.notes
    return [EventSpec(
        title=_flight_title(flight),
        starts_at=starts_at,
        ends_at=as_datetime(flight.arrival_at),
        location=f"{departure} → {arrival}",
        notes=notes,
        item_type=flight.direction,
        person_id=flight.person_id,
    )]


def lodging_events(lodging: Lodging, marker_minutes: Optional[int] = None) -> List[EventSpec]:
    """Check-in and check-out markers for shared lodging; individual rooms emit nothing."""
    if lodging.person_id:
        return []
    marker_minutes = marker_minutes or config.LODGING_MARKER_MINUTES
    name = lodging.hotel_name or 'Hotel'
    location = lodging.hotel_name or lodging.address

    events = []
    for label, moment in (('check-in', lodging.check_in_at), ('check-out', lodging.check_out_at)):
        starts_at = as_datetime(moment)
        events.append(EventSpec(
            title=f"Hotel {label}: {name}",
            starts_at=starts_at,
            ends_at=plus_minutes(starts_at, marker_minutes) if starts_at else None,
            location=location,
            notes=lodging.address if lodging.hotel_name else None,
            item_type='hotel',
        ))
    return events


def catering_events(catering: Catering, marker_minutes: Optional[int] = None) -> List[EventSpec]:
    """One fixed-length marker at the service time."""
    marker_minutes = marker_minutes or config.CATERING_MARKER_MINUTES
    starts_at = as_datetime(catering.service_at)
    notes = f"{catering.guest_count} guests" if catering.guest_count else None
    return [EventSpec(
        title=f"Catering: {catering.provider_name or 'Catering'}",
        starts_at=starts_at,
        ends_at=plus_minutes(starts_at, marker_minutes) if starts_at else None,
        location=catering.address or catering.provider_name,
        notes=notes,
        item_type='catering',
    )]


def _field_value(field: AdvancingField, key: str):
    value = field.value
    if isinstance(value, dict):
        return value.get(key)
    return value


def _field_moment(field: AdvancingField, show_date, tz: ZoneInfo) -> Optional[datetime]:
    if field.field_type == 'time':
        raw = _field_value(field, 'time')
        if not isinstance(raw, str):
            return None
        moment = as_datetime(raw, tz) if 'T' in raw or ' ' in raw.strip() else None
        if moment is not None:
            return moment
        clock = extract_time(raw)
    elif field.field_type == 'text':
        clock = extract_time(_field_value(field, 'text'))
    else:
        return None

    if clock is None or show_date is None:
        return None
    return at_local(show_date, clock, tz)


def advancing_events(
    fields: Iterable[AdvancingField],
    show_date,
    tz: Optional[ZoneInfo] = None
) -> List[EventSpec]:
    """
    Candidate events from time/text advancing fields.

    time fields are read directly; text fields go through extract_time and a
    wall-clock match is placed on the show's date in tz.
    """
    tz = tz or get_timezone()
    show_date = as_date(show_date)
    events = []
    for field in fields:
        if field.field_type not in _SCANNED_FIELD_TYPES or field.value is None:
            continue
        moment = _field_moment(field, show_date, tz)
        if moment is None:
            continue
        events.append(EventSpec(
            title=field.field_name,
            starts_at=moment,
            notes=f"Auto-generated from advancing: {field.section} ({field.party_type})",
            item_type='custom',
        ))
    return events


def _grid_moment(date_value, time_value, tz: ZoneInfo) -> Optional[datetime]:
    day = as_date(date_value)
    clock = extract_time(time_value)
    if day is None or clock is None:
        return None
    return at_local(day, clock, tz)


def _hotel_moment(value, default_clock: time, tz: ZoneInfo) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    if 'T' in value:
        return as_datetime(value, tz)
    day = as_date(value)
    return at_local(day, default_clock, tz) if day else None


def travel_grid_events(
    people: List[Dict],
    arrivals: Dict[str, Dict],
    departures: Dict[str, Dict],
    hotels: Dict[str, Dict],
    tz: Optional[ZoneInfo] = None
) -> List[EventSpec]:
    """
    Arrival, departure and hotel items for each assigned person from the
    decoded travel grids (rows keyed by person id).
    """
    tz = tz or get_timezone()
    events = []
    for person in people:
        person_id = str(person['person_id'])
        name = person.get('name') or 'Unknown'

        row = arrivals.get(person_id, {})
        starts_at = _grid_moment(row.get('arrivalDate'), row.get('arrivalTime'), tz)
        if starts_at:
            number = row.get('flightNumber')
            origin = row.get('fromCity')
            events.append(EventSpec(
                title=f"✈ {name} - Arrival",
                starts_at=starts_at,
                location=f"{row['toCity']} Airport" if row.get('toCity') else None,
                notes=f"Flight {number}" + (f" from {origin}" if origin else '') if number else None,
                item_type='arrival',
                person_id=person_id,
            ))

        row = departures.get(person_id, {})
        starts_at = _grid_moment(row.get('departureDate'), row.get('departureTime'), tz)
        if starts_at:
            number = row.get('flightNumber')
            destination = row.get('toCity')
            events.append(EventSpec(
                title=f"✈ {name} - Departure",
                starts_at=starts_at,
                location=f"{row['fromCity']} Airport" if row.get('fromCity') else None,
                notes=f"Flight {number}" + (f" to {destination}" if destination else '') if number else None,
                item_type='departure',
                person_id=person_id,
            ))

        row = hotels.get(person_id, {})
        starts_at = _hotel_moment(row.get('checkIn'), _HOTEL_CHECK_IN_TIME, tz)
        if starts_at:
            events.append(EventSpec(
                title=f"🏨 {name} - Hotel",
                starts_at=starts_at,
                ends_at=_hotel_moment(row.get('checkOut'), _HOTEL_CHECK_OUT_TIME, tz),
                location=row.get('name') or 'Hotel',
                notes=row.get('address') or None,
                item_type='hotel',
                person_id=person_id,
            ))
    return events


# =============================================================================
# PER-RECORD SYNC
# =============================================================================

@log_call
def sync_flight(flight: Flight, store=None) -> SyncResult:
    return sync_derived_events(tag_for(SOURCE_FLIGHTS, flight.id), flight_events(flight), flight.show_id, store)


@log_call
def sync_lodging(lodging: Lodging, store=None) -> SyncResult:
    return sync_derived_events(tag_for(SOURCE_LODGING, lodging.id), lodging_events(lodging), lodging.show_id, store)


@log_call
def sync_catering(catering: Catering, store=None) -> SyncResult:
    return sync_derived_events(tag_for(SOURCE_CATERING, catering.id), catering_events(catering), catering.show_id, store)


def _load_session_show(session_id: str, store):
    """(session_row, show_row) or raises LookupError naming what is missing."""
    session = store.get_by_id(SESSIONS_TABLE, session_id)
    if session is None:
        raise LookupError(f"Advancing session {session_id} not found")
    show = store.get_by_id(SHOWS_TABLE, session['show_id'])
    if show is None:
        raise LookupError(f"Show {session['show_id']} not found")
    return session, show


@log_call
def sync_advancing_session(session_id: str, store=None, tz: Optional[ZoneInfo] = None) -> SyncResult:
    """
    Re-derive the advancing-field slice of a session's show schedule.
    Only items tagged (advancing_fields, session_id) are replaced.
    """
    store = _resolve_store(store)
    try:
        session, show = _load_session_show(session_id, store)
        rows = store.list_where(FIELDS_TABLE, session_id=session_id, order_by='sort_order')
    except LookupError as e:
        logger.warning(f"sync_advancing_session: {e}")
        return SyncResult(success=False, error=str(e))
    except StoreError as e:
        logger.error(f"sync_advancing_session: loading session {session_id} failed: {e}")
        return SyncResult(success=False, error=str(e))

    fields = [from_row(AdvancingField, r) for r in rows]
    desired = advancing_events(fields, show.get('date'), tz)
    return sync_derived_events(tag_for(SOURCE_FIELDS, session_id), desired, session['show_id'], store)


@log_call
def sync_travel_grid(
    session_id: str,
    people: Optional[List[Dict]] = None,
    store=None,
    tz: Optional[ZoneInfo] = None
) -> SyncResult:
    """
    Derive arrival/departure/hotel items from the session's travel grids.

    people is the show's assignment list (person_id, name); when omitted it
    is loaded from the store. Replaces the (advancing_grid, session_id) slice.
    """
    store = _resolve_store(store)
    try:
        session, _show = _load_session_show(session_id, store)
        if people is None:
            people = store.list_show_people(session['show_id'])
        person_ids = [str(p['person_id']) for p in people]
        grids = {}
        for grid_type in (grid_codec.GRID_ARRIVAL_FLIGHT, grid_codec.GRID_DEPARTURE_FLIGHT, grid_codec.GRID_HOTEL):
            rows = grid_codec.load_grid(session_id, grid_type, person_ids, store=store)
            grids[grid_type] = {
                grid_codec.raw_row_id(grid_type, row[grid_codec.ID_KEY]): row for row in rows
            }
    except LookupError as e:
        logger.warning(f"sync_travel_grid: {e}")
        return SyncResult(success=False, error=str(e))
    except StoreError as e:
        logger.error(f"sync_travel_grid: loading grids for session {session_id} failed: {e}")
        return SyncResult(success=False, error=str(e))

    desired = travel_grid_events(
        people,
        grids[grid_codec.GRID_ARRIVAL_FLIGHT],
        grids[grid_codec.GRID_DEPARTURE_FLIGHT],
        grids[grid_codec.GRID_HOTEL],
        tz,
    )
    return sync_derived_events(tag_for(SOURCE_GRID, session_id), desired, session['show_id'], store)


def _merge(total: SyncResult, part: SyncResult) -> None:
    total.created += part.created
    total.deleted += part.deleted
    total.skipped += part.skipped
    total.failed_deletes += part.failed_deletes
    if not part.success:
        total.success = False
        total.error = part.error if total.error is None else f"{total.error}; {part.error}"


@log_call
def resync_show(show_id: str, store=None) -> SyncResult:
    """Re-derive the footprint of every logistics record, advancing session and travel grid of a show."""
    store = _resolve_store(store)
    try:
        if store.get_by_id(SHOWS_TABLE, show_id) is None:
            logger.warning(f"resync_show: show {show_id} not found")
            return SyncResult(success=False, error=f"Show {show_id} not found")
        flights = [from_row(Flight, r) for r in store.list_where(FLIGHTS_TABLE, show_id=show_id)]
        lodgings = [from_row(Lodging, r) for r in store.list_where(LODGING_TABLE, show_id=show_id)]
        caterings = [from_row(Catering, r) for r in store.list_where(CATERING_TABLE, show_id=show_id)]
        sessions = store.list_where(SESSIONS_TABLE, show_id=show_id)
    except StoreError as e:
        logger.error(f"resync_show: loading records for show {show_id} failed: {e}")
        return SyncResult(success=False, error=str(e))

    total = SyncResult()
    for flight in flights:
        _merge(total, sync_flight(flight, store=store))
    for lodging in lodgings:
        _merge(total, sync_lodging(lodging, store=store))
    for catering in caterings:
        _merge(total, sync_catering(catering, store=store))
    for session in sessions:
        _merge(total, sync_advancing_session(session['id'], store=store))
        _merge(total, sync_travel_grid(session['id'], store=store))
    return total


def list_schedule(show_id: str, store=None) -> List[ScheduleItem]:
    """All schedule items of a show ordered by start."""
    store = _resolve_store(store)
    rows = store.list_where(SCHEDULE_TABLE, show_id=show_id, order_by='starts_at')
    return [from_row(ScheduleItem, r) for r in rows]


# =============================================================================
# REVERSE SYNC (calendar edit -> source record)
# =============================================================================

def _moved_record_fields(source: str, title: str, starts_at: datetime,
                         ends_at: Optional[datetime]) -> Optional[Dict]:
    """Columns of the source record that a moved item maps onto, or None if it can't tell."""
    if source == SOURCE_LODGING:
        lowered = title.lower()
        if 'check-in' in lowered:
            return {'check_in_at': starts_at}
        if 'check-out' in lowered:
            return {'check_out_at': starts_at}
        return None

    if source == SOURCE_CATERING:
        return {'service_at': starts_at}

    if source == SOURCE_FLIGHTS:
        # the item spans depart -> arrival whichever the direction
        updates = {'depart_at': starts_at}
        if ends_at is not None:
            updates['arrival_at'] = ends_at
        return updates

    return None


_SOURCE_TABLES = {
    SOURCE_FLIGHTS: FLIGHTS_TABLE,
    SOURCE_LODGING: LODGING_TABLE,
    SOURCE_CATERING: CATERING_TABLE,
}


@log_call
def apply_schedule_move(item_id: str, new_starts_at, new_ends_at=None, store=None) -> SyncResult:
    """
    Write a moved auto-generated item's new time back to its source record,
    then re-derive the record so item and record agree.

    Manual items and items from sources without a record table are a no-op.
    """
    store = _resolve_store(store)
    starts_at = as_datetime(new_starts_at)
    ends_at = as_datetime(new_ends_at)
    if starts_at is None:
        return SyncResult(success=False, error=f"Invalid start time: {new_starts_at!r}")

    try:
        item = store.get_by_id(SCHEDULE_TABLE, item_id)
        if item is None:
            logger.warning(f"apply_schedule_move: schedule item {item_id} not found")
            return SyncResult(success=False, error="Schedule item not found")

        source, source_ref = item.get('source'), item.get('source_ref')
        table = _SOURCE_TABLES.get(source)
        if not item.get('auto_generated') or not source_ref or table is None:
            logger.debug(f"apply_schedule_move: item {item_id} has no record source, nothing to sync")
            return SyncResult()

        record = store.get_by_id(table, source_ref)
        if record is None:
            logger.warning(f"apply_schedule_move: {source} record {source_ref} not found")
            return SyncResult(success=False, error=f"{source} record not found")

        updates = _moved_record_fields(source, item.get('title') or '', starts_at, ends_at)
        if not updates:
            return SyncResult()

        updated = store.update_by_id(table, source_ref, updates)
    except StoreError as e:
        logger.error(f"apply_schedule_move: item {item_id} failed: {e}")
        return SyncResult(success=False, error=str(e))

    if updated is None:
        return SyncResult(success=False, error=f"{source} record not found")

    logger.info(f"Moved {source} record {source_ref} via schedule item {item_id}: {list(updates.keys())}")
    if source == SOURCE_FLIGHTS:
        return sync_flight(from_row(Flight, updated), store=store)
    if source == SOURCE_LODGING:
        return sync_lodging(from_row(Lodging, updated), store=store)
    return sync_catering(from_row(Catering, updated), store=store)


# =============================================================================
# EVENT BUS WIRING
# =============================================================================
# Payloads may carry the store the write went through; None means the default store.

def _report(result: SyncResult, data: Dict) -> None:
    if result.success:
        bus.emit(EVENT_SCHEDULE_SYNCED, {'result': result, **data})
    else:
        bus.emit(EVENT_SCHEDULE_SYNC_FAILED, {'result': result, **data})


def _on_flight_saved(data):
    record = data['flight']
    result = sync_flight(record, store=data.get('store'))
    _report(result, {'source': SOURCE_FLIGHTS, 'source_ref': str(record.id)})


def _on_flight_deleted(data):
    tag = tag_for(SOURCE_FLIGHTS, data['flight_id'])
    result = remove_derived_events(tag, store=data.get('store'))
    _report(result, {'source': tag.source, 'source_ref': tag.source_ref})


def _on_lodging_saved(data):
    record = data['lodging']
    result = sync_lodging(record, store=data.get('store'))
    _report(result, {'source': SOURCE_LODGING, 'source_ref': str(record.id)})


def _on_lodging_deleted(data):
    tag = tag_for(SOURCE_LODGING, data['lodging_id'])
    result = remove_derived_events(tag, store=data.get('store'))
    _report(result, {'source': tag.source, 'source_ref': tag.source_ref})


def _on_catering_saved(data):
    record = data['catering']
    result = sync_catering(record, store=data.get('store'))
    _report(result, {'source': SOURCE_CATERING, 'source_ref': str(record.id)})


def _on_catering_deleted(data):
    tag = tag_for(SOURCE_CATERING, data['catering_id'])
    result = remove_derived_events(tag, store=data.get('store'))
    _report(result, {'source': tag.source, 'source_ref': tag.source_ref})


def _on_advancing_fields_saved(data):
    session_id = data['session_id']
    result = sync_advancing_session(session_id, store=data.get('store'))
    _report(result, {'source': SOURCE_FIELDS, 'source_ref': str(session_id)})


def _on_grid_saved(data):
    if data.get('grid_type') not in (
        grid_codec.GRID_ARRIVAL_FLIGHT, grid_codec.GRID_DEPARTURE_FLIGHT, grid_codec.GRID_HOTEL
    ):
        return
    session_id = data['session_id']
    result = sync_travel_grid(session_id, store=data.get('store'))
    _report(result, {'source': SOURCE_GRID, 'source_ref': str(session_id)})


def register_handlers(event_bus=None) -> None:
    """Subscribe the sync engine to logistics CRUD events. Safe to call more than once."""
    event_bus = event_bus or bus
    event_bus.on(EVENT_FLIGHT_SAVED, _on_flight_saved)
    event_bus.on(EVENT_FLIGHT_DELETED, _on_flight_deleted)
    event_bus.on(EVENT_LODGING_SAVED, _on_lodging_saved)
    event_bus.on(EVENT_LODGING_DELETED, _on_lodging_deleted)
    event_bus.on(EVENT_CATERING_SAVED, _on_catering_saved)
    event_bus.on(EVENT_CATERING_DELETED, _on_catering_deleted)
    event_bus.on(EVENT_ADVANCING_FIELDS_SAVED, _on_advancing_fields_saved)
    event_bus.on(EVENT_GRID_SAVED, _on_grid_saved)
