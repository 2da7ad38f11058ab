"""
Grid Codec - Tabular Grids over the Flat Advancing Field Store

The advancing store has no multi-column table per grid, so every cell of a
UI grid (team travel info, arrival/departure flight grids) is kept as one
advancing field named "<grid_type>_<row_id>_<column>".

Decoding splits the remainder after "<grid_type>_" on its LAST underscore:
everything before is the row id, the last segment is the column key. Column
keys that contain '_' therefore decode to the wrong row/column; such keys
are reported by find_ambiguous_columns() and logged by encode(), never
silently rewritten.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from showsync.bus.events import bus, EVENT_GRID_SAVED
from showsync.config import config
from showsync.db.store import store as default_store, StoreError
from showsync.models import GridSaveResult

logger = logging.getLogger(__name__)

FIELDS_TABLE = 'advancing_fields'
ID_KEY = 'id'
SEPARATOR = '_'

GRID_TEAM = 'team'
GRID_ARRIVAL_FLIGHT = 'arrival_flight'
GRID_DEPARTURE_FLIGHT = 'departure_flight'
GRID_HOTEL = 'hotel'
GRID_TYPES = (GRID_TEAM, GRID_ARRIVAL_FLIGHT, GRID_DEPARTURE_FLIGHT, GRID_HOTEL)


def title_case(grid_type: str) -> str:
    """'arrival_flight' -> 'Arrival Flight'"""
    return ' '.join(part.capitalize() for part in grid_type.split(SEPARATOR) if part)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == '')


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def raw_row_id(grid_type: str, row_id: str) -> str:
    """Strip the '<grid_type>_' prefix that decoded rows carry in their id."""
    prefix = f"{grid_type}{SEPARATOR}"
    row_id = str(row_id)
    if row_id.startswith(prefix):
        return row_id[len(prefix):]
    return row_id


def make_field_name(grid_type: str, row_id: str, column: str) -> str:
    return f"{grid_type}{SEPARATOR}{row_id}{SEPARATOR}{column}"


def parse_field_name(grid_type: str, field_name: str) -> Optional[Tuple[str, str]]:
    """
    Split a field name into (row_id, column) for grid_type.
    Returns None when the name doesn't belong to the grid or has no column part.
    """
    prefix = f"{grid_type}{SEPARATOR}"
    if not isinstance(field_name, str) or not field_name.startswith(prefix):
        return None
    remainder = field_name[len(prefix):]
    if SEPARATOR not in remainder:
        return None
    row_id, column = remainder.rsplit(SEPARATOR, 1)
    if not row_id or not column:
        return None
    return row_id, column


def find_ambiguous_columns(rows: Iterable[Dict[str, Any]]) -> List[str]:
    """Column keys that contain the separator and would not survive a decode."""
    ambiguous = set()
    for row in rows:
        for key in row:
            if key != ID_KEY and SEPARATOR in key:
                ambiguous.add(key)
    return sorted(ambiguous)


def encode(
    grid_type: str,
    rows: List[Dict[str, Any]],
    session_id: Optional[str] = None,
    party_type: str = 'from_us'
) -> List[Dict[str, Any]]:
    """
    Flatten grid rows into advancing field writes.
    The id column and empty cells produce nothing.
    """
    ambiguous = find_ambiguous_columns(rows)
    if ambiguous:
        logger.warning(f"encode: {grid_type} columns {ambiguous} contain '{SEPARATOR}' and will not decode cleanly")

    section = title_case(grid_type)
    writes = []
    for row in rows:
        row_id = raw_row_id(grid_type, row[ID_KEY])
        for column, value in row.items():
            if column == ID_KEY or _is_empty(value):
                continue
            writes.append({
                'session_id': session_id,
                'section': section,
                'field_name': make_field_name(grid_type, row_id, column),
                'field_type': 'text',
                'value': _stringify(value),
                'party_type': party_type,
                'sort_order': 0,
            })
    return writes


def make_row_id(grid_type: str, row_id: str) -> str:
    return f"{grid_type}{SEPARATOR}{row_id}"


def _field_attr(field, name: str):
    if isinstance(field, dict):
        return field.get(name)
    return getattr(field, name, None)


def decode(grid_type: str, fields: Iterable[Any], known_row_ids: Iterable[str]) -> List[Dict[str, Any]]:
    """
    Rebuild grid rows from advancing fields (dicts or AdvancingField objects).

    One row per known id comes first, in the given order, even when empty.
    Fields for rows that aren't known still produce rows, appended in the
    order they are met.
    """
    rows: Dict[str, Dict[str, Any]] = {}
    for row_id in known_row_ids:
        rows[str(row_id)] = {ID_KEY: make_row_id(grid_type, row_id)}

    for field in fields:
        parsed = parse_field_name(grid_type, _field_attr(field, 'field_name'))
        if parsed is None:
            continue
        row_id, column = parsed
        if row_id not in rows:
            rows[row_id] = {ID_KEY: make_row_id(grid_type, row_id)}
        rows[row_id][column] = _field_attr(field, 'value')

    return list(rows.values())


def _row_has_values(row: Dict[str, Any]) -> bool:
    return any(k != ID_KEY and not _is_empty(v) for k, v in row.items())


def _chunks(items: List[Any], size: int) -> Iterable[List[Any]]:
    size = max(1, size)
    for i in range(0, len(items), size):
        yield items[i:i + size]


def load_grid(session_id: str, grid_type: str, row_ids: Iterable[str], store=None) -> List[Dict[str, Any]]:
    """Fetch a grid's fields in one query and decode them."""
    store = default_store if store is None else store
    fields = store.list_by_prefix(FIELDS_TABLE, f"{grid_type}{SEPARATOR}", session_id=session_id)
    return decode(grid_type, fields, row_ids)


def save_grid(
    session_id: str,
    grid_type: str,
    rows: List[Dict[str, Any]],
    store=None,
    created_by: Optional[str] = None,
    party_type: str = 'from_us',
    chunk_size: Optional[int] = None
) -> GridSaveResult:
    """
    Persist a grid with batched writes.

    Existing field names are fetched once and diffed against the desired
    writes: new names go out as a single bulk insert, changed values as
    parallel updates in fixed-size chunks, unchanged values are skipped.
    Failed updates are counted in the result; succeeded ones stay written.
    """
    store = default_store if store is None else store
    chunk_size = chunk_size or config.GRID_UPDATE_CHUNK_SIZE

    rows = [r for r in rows if _row_has_values(r)]
    writes = encode(grid_type, rows, session_id=session_id, party_type=party_type)
    result = GridSaveResult()
    if not writes:
        logger.debug(f"save_grid: {grid_type} session={session_id} nothing to save")
        return result

    try:
        existing = store.list_by_prefix(FIELDS_TABLE, f"{grid_type}{SEPARATOR}", session_id=session_id)
    except StoreError as e:
        logger.error(f"save_grid: could not load existing {grid_type} fields for session {session_id}: {e}")
        return GridSaveResult(success=False, errors=[str(e)])

    existing_by_name = {r['field_name']: r for r in existing}
    to_insert = []
    to_update = []
    for write in writes:
        current = existing_by_name.get(write['field_name'])
        if current is None:
            if created_by:
                write['created_by'] = created_by
            to_insert.append(write)
        elif current.get('value') != write['value']:
            to_update.append((current['id'], write['value']))

    if to_insert:
        try:
            inserted = store.insert_many(FIELDS_TABLE, to_insert)
            result.inserted = len(inserted)
        except StoreError as e:
            logger.error(f"save_grid: bulk insert of {len(to_insert)} {grid_type} fields failed: {e}")
            result.success = False
            result.errors.append(str(e))

    if to_update:
        with ThreadPoolExecutor(max_workers=min(chunk_size, len(to_update))) as pool:
            for chunk in _chunks(to_update, chunk_size):
                futures = [
                    pool.submit(store.update_by_id, FIELDS_TABLE, field_id, {'value': value})
                    for field_id, value in chunk
                ]
                for (field_id, _), future in zip(chunk, futures):
                    try:
                        updated = future.result()
                    except StoreError as e:
                        result.failed_updates += 1
                        result.errors.append(str(e))
                        continue
                    if updated is None:
                        result.failed_updates += 1
                        result.errors.append(f"field {field_id} not found")
                    else:
                        result.updated += 1

    if result.failed_updates:
        result.success = False
        logger.error(f"save_grid: {result.failed_updates} of {len(to_update)} {grid_type} updates failed")

    logger.info(
        f"Saved {grid_type} grid for session {session_id}: "
        f"{result.inserted} inserted, {result.updated} updated, {result.failed_updates} failed"
    )

    if result.inserted or result.updated:
        bus.emit(EVENT_GRID_SAVED, {'session_id': session_id, 'grid_type': grid_type, 'result': result, 'store': store})

    return result
