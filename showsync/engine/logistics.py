"""
Logistics Engine - Flight, Lodging, Catering and Advancing Field CRUD
Thin record operations over the store. Every write emits a bus event; the
schedule sync engine listens for them, this module never calls it directly.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from showsync.bus.events import (
    bus,
    EVENT_FLIGHT_SAVED, EVENT_FLIGHT_DELETED,
    EVENT_LODGING_SAVED, EVENT_LODGING_DELETED,
    EVENT_CATERING_SAVED, EVENT_CATERING_DELETED,
    EVENT_ADVANCING_FIELDS_SAVED,
)
from showsync.db.store import store as default_store
from showsync.models import AdvancingField, AdvancingSession, Catering, Flight, Lodging, Show, from_row

logger = logging.getLogger(__name__)

SHOWS_TABLE = 'shows'
SESSIONS_TABLE = 'advancing_sessions'
FLIGHTS_TABLE = 'advancing_flights'
LODGING_TABLE = 'advancing_lodging'
CATERING_TABLE = 'advancing_catering'
FIELDS_TABLE = 'advancing_fields'


def _resolve_store(store):
    return default_store if store is None else store


def _record_fields(record) -> Dict[str, Any]:
    """Dataclass -> column dict, leaving the id to the database on insert."""
    fields = asdict(record)
    if fields.get('id') is None:
        fields.pop('id', None)
    return fields


def _save(table: str, record, store):
    """Insert when the record has no id, otherwise update it. Returns the stored row or None."""
    fields = _record_fields(record)
    record_id = fields.pop('id', None)
    if record_id is None:
        row = store.insert(table, fields)
        logger.info(f"Created {table} ID {row['id']}")
        return row
    row = store.update_by_id(table, record_id, fields)
    if row is None:
        logger.warning(f"{table} ID {record_id} not found, nothing updated")
        return None
    logger.info(f"Updated {table} ID {record_id}")
    return row


# =============================================================================
# SHOWS & SESSIONS (read-only here)
# =============================================================================

def get_show(show_id: str, store=None) -> Optional[Show]:
    row = _resolve_store(store).get_by_id(SHOWS_TABLE, show_id)
    return from_row(Show, row) if row else None


def get_session(session_id: str, store=None) -> Optional[AdvancingSession]:
    row = _resolve_store(store).get_by_id(SESSIONS_TABLE, session_id)
    return from_row(AdvancingSession, row) if row else None


def get_show_people(show_id: str, store=None) -> List[Dict[str, Any]]:
    """Assigned people of a show as dicts with person_id, name, duty."""
    return _resolve_store(store).list_show_people(show_id)


# =============================================================================
# FLIGHTS
# =============================================================================

def save_flight(flight: Flight, store=None) -> Optional[Flight]:
    """
    Create or update a flight.
    Returns: the stored Flight, None if an update target doesn't exist
    """
    row = _save(FLIGHTS_TABLE, flight, _resolve_store(store))
    if row is None:
        return None
    saved = from_row(Flight, row)
    bus.emit(EVENT_FLIGHT_SAVED, {'flight_id': saved.id, 'flight': saved, 'store': store})
    return saved


def get_flight(flight_id: str, store=None) -> Optional[Flight]:
    row = _resolve_store(store).get_by_id(FLIGHTS_TABLE, flight_id)
    return from_row(Flight, row) if row else None


def list_flights(show_id: str, store=None) -> List[Flight]:
    rows = _resolve_store(store).list_where(FLIGHTS_TABLE, show_id=show_id, order_by='depart_at')
    return [from_row(Flight, r) for r in rows]


def delete_flight(flight_id: str, store=None) -> bool:
    """Delete a flight; its derived schedule items go with it via the bus."""
    deleted = _resolve_store(store).delete_by_id(FLIGHTS_TABLE, flight_id)
    if deleted:
        logger.info(f"Deleted flight ID {flight_id}")
        bus.emit(EVENT_FLIGHT_DELETED, {'flight_id': flight_id, 'store': store})
    return deleted


# =============================================================================
# LODGING
# =============================================================================

def save_lodging(lodging: Lodging, store=None) -> Optional[Lodging]:
    row = _save(LODGING_TABLE, lodging, _resolve_store(store))
    if row is None:
        return None
    saved = from_row(Lodging, row)
    bus.emit(EVENT_LODGING_SAVED, {'lodging_id': saved.id, 'lodging': saved, 'store': store})
    return saved


def get_lodging(lodging_id: str, store=None) -> Optional[Lodging]:
    row = _resolve_store(store).get_by_id(LODGING_TABLE, lodging_id)
    return from_row(Lodging, row) if row else None


def list_lodging(show_id: str, store=None) -> List[Lodging]:
    rows = _resolve_store(store).list_where(LODGING_TABLE, show_id=show_id, order_by='check_in_at')
    return [from_row(Lodging, r) for r in rows]


def delete_lodging(lodging_id: str, store=None) -> bool:
    deleted = _resolve_store(store).delete_by_id(LODGING_TABLE, lodging_id)
    if deleted:
        logger.info(f"Deleted lodging ID {lodging_id}")
        bus.emit(EVENT_LODGING_DELETED, {'lodging_id': lodging_id, 'store': store})
    return deleted


# =============================================================================
# CATERING
# =============================================================================

def save_catering(catering: Catering, store=None) -> Optional[Catering]:
    row = _save(CATERING_TABLE, catering, _resolve_store(store))
    if row is None:
        return None
    saved = from_row(Catering, row)
    bus.emit(EVENT_CATERING_SAVED, {'catering_id': saved.id, 'catering': saved, 'store': store})
    return saved


def get_catering(catering_id: str, store=None) -> Optional[Catering]:
    row = _resolve_store(store).get_by_id(CATERING_TABLE, catering_id)
    return from_row(Catering, row) if row else None


def list_catering(show_id: str, store=None) -> List[Catering]:
    rows = _resolve_store(store).list_where(CATERING_TABLE, show_id=show_id, order_by='service_at')
    return [from_row(Catering, r) for r in rows]


def delete_catering(catering_id: str, store=None) -> bool:
    deleted = _resolve_store(store).delete_by_id(CATERING_TABLE, catering_id)
    if deleted:
        logger.info(f"Deleted catering ID {catering_id}")
        bus.emit(EVENT_CATERING_DELETED, {'catering_id': catering_id, 'store': store})
    return deleted


# =============================================================================
# ADVANCING FIELDS
# =============================================================================

def list_advancing_fields(session_id: str, store=None) -> List[AdvancingField]:
    rows = _resolve_store(store).list_where(FIELDS_TABLE, session_id=session_id, order_by='sort_order')
    return [from_row(AdvancingField, r) for r in rows]


def save_advancing_fields(session_id: str, fields: List[AdvancingField], store=None) -> List[AdvancingField]:
    """
    Upsert a batch of advancing fields of one session, matched by field_name.
    Emits a single event for the batch so the session is re-synced once.
    """
    store = _resolve_store(store)
    existing = {f.field_name: f for f in list_advancing_fields(session_id, store=store)}

    saved = []
    for field in fields:
        field.session_id = session_id
        current = existing.get(field.field_name)
        if current is not None:
            field.id = current.id
        row = _save(FIELDS_TABLE, field, store)
        if row is not None:
            saved.append(from_row(AdvancingField, row))

    logger.info(f"Saved {len(saved)} advancing field(s) for session {session_id}")
    if saved:
        bus.emit(EVENT_ADVANCING_FIELDS_SAVED, {'session_id': session_id, 'field_count': len(saved), 'store': store})
    return saved
