"""
Record Store - Logical Data Access Operations
Thin table-agnostic operations over PostgreSQL used by the sync engine.
Table and column names are checked against allowlists before they are
interpolated into SQL; values always travel as parameters.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import Json, execute_values

from showsync.db.connection import get_db_cursor

logger = logging.getLogger(__name__)

# Allowlists for dynamic queries; identifiers never come from user input directly
TABLE_COLUMNS = {
    'shows': {
        'id', 'org_id', 'title', 'date', 'doors_at', 'set_time', 'venue', 'city',
    },
    'advancing_sessions': {'id', 'show_id', 'title'},
    'advancing_flights': {
        'id', 'show_id', 'direction', 'person_id', 'airline', 'flight_number',
        'passenger_name', 'depart_airport_code', 'depart_city', 'depart_at',
        'arrival_airport_code', 'arrival_city', 'arrival_at', 'notes', 'auto_schedule',
    },
    'advancing_lodging': {
        'id', 'show_id', 'person_id', 'hotel_name', 'address', 'city',
        'check_in_at', 'check_out_at', 'notes',
    },
    'advancing_catering': {
        'id', 'show_id', 'provider_name', 'address', 'city', 'service_at',
        'guest_count', 'notes',
    },
    'schedule_items': {
        'id', 'show_id', 'title', 'starts_at', 'ends_at', 'location', 'notes',
        'item_type', 'visibility', 'person_id', 'auto_generated', 'source',
        'source_ref', 'created_at', 'updated_at',
    },
    'advancing_fields': {
        'id', 'session_id', 'section', 'field_name', 'field_type', 'value',
        'party_type', 'status', 'sort_order', 'created_by',
    },
}


class StoreError(Exception):
    """The backing store rejected an operation (constraint violation, connectivity)."""


def _validate_table(table: str) -> set:
    """Return the column allowlist for table, or raise ValueError."""
    if table not in TABLE_COLUMNS:
        raise ValueError(f"Unknown table: {table!r}")
    return TABLE_COLUMNS[table]


def _validate_columns(table: str, columns) -> None:
    """Raise ValueError if any column is not allowed for table."""
    invalid = set(columns) - _validate_table(table)
    if invalid:
        raise ValueError(f"Invalid {table} fields: {invalid}")


# jsonb columns: every non-null value is wrapped, scalars included
JSON_COLUMNS = {'value'}


def _adapt(column: str, value: Any) -> Any:
    """Wrap values so psycopg2 writes them as jsonb where the column needs it."""
    if value is None:
        return None
    if column in JSON_COLUMNS or isinstance(value, (dict, list)):
        return Json(value)
    return value


def escape_like(prefix: str) -> str:
    """Escape LIKE wildcards so a prefix matches literally ('_' is a wildcard in SQL)."""
    return prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


class RecordStore:
    """
    Logical record operations keyed by opaque ids.
    Each method is its own statement and its own transaction.
    """

    @contextmanager
    def _cursor(self):
        try:
            with get_db_cursor() as cur:
                yield cur
        except psycopg2.Error as e:
            raise StoreError(str(e).strip() or type(e).__name__) from e

    def get_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        _validate_table(table)
        with self._cursor() as cur:
            cur.execute(f"SELECT * FROM {table} WHERE id = %s", (record_id,))
            row = cur.fetchone()
        if row is None:
            logger.debug(f"get_by_id: {table} id={record_id} not found")
            return None
        return dict(row)

    def list_where(self, table: str, order_by: Optional[str] = None, **filters) -> List[Dict[str, Any]]:
        """SELECT rows matching all equality filters (None matches IS NULL)."""
        _validate_columns(table, filters.keys())
        if order_by:
            _validate_columns(table, [order_by])

        conditions = []
        params = {}
        for column, value in filters.items():
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = %({column})s")
                params[column] = value

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        order_clause = f"ORDER BY {order_by} ASC" if order_by else ""

        with self._cursor() as cur:
            cur.execute(f"SELECT * FROM {table} {where_clause} {order_clause}", params)
            rows = cur.fetchall()
        logger.debug(f"list_where: {table} {filters} → {len(rows)} rows")
        return [dict(r) for r in rows]

    def list_by_tag(self, table: str, source: str, source_ref: str) -> List[Dict[str, Any]]:
        _validate_columns(table, ['source', 'source_ref'])
        with self._cursor() as cur:
            cur.execute(f"""
                SELECT * FROM {table}
                WHERE source = %s AND source_ref = %s
            """, (source, source_ref))
            rows = cur.fetchall()
        logger.debug(f"list_by_tag: {table} ({source}, {source_ref}) → {len(rows)} rows")
        return [dict(r) for r in rows]

    def list_by_prefix(
        self,
        table: str,
        field_name_prefix: str,
        session_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Rows whose field_name starts with the literal prefix, optionally within one session."""
        _validate_columns(table, ['field_name'])
        conditions = ["field_name LIKE %(pattern)s"]
        params = {'pattern': escape_like(field_name_prefix) + '%'}
        if session_id is not None:
            conditions.append("session_id = %(session_id)s")
            params['session_id'] = session_id

        with self._cursor() as cur:
            cur.execute(f"""
                SELECT * FROM {table}
                WHERE {' AND '.join(conditions)}
                ORDER BY field_name ASC
            """, params)
            rows = cur.fetchall()
        logger.debug(f"list_by_prefix: {table} {field_name_prefix!r} → {len(rows)} rows")
        return [dict(r) for r in rows]

    def insert(self, table: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not fields:
            raise ValueError(f"insert into {table} needs at least one field")
        _validate_columns(table, fields.keys())

        columns = list(fields.keys())
        placeholders = ', '.join(f"%({c})s" for c in columns)
        params = {c: _adapt(c, v) for c, v in fields.items()}

        with self._cursor() as cur:
            cur.execute(f"""
                INSERT INTO {table} ({', '.join(columns)})
                VALUES ({placeholders})
                RETURNING *
            """, params)
            row = cur.fetchone()
        logger.debug(f"insert: {table} id={row['id']}")
        return dict(row)

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Bulk insert in one statement. Columns are taken from the first row."""
        if not rows:
            return []
        columns = list(rows[0].keys())
        _validate_columns(table, columns)

        values = [tuple(_adapt(c, r.get(c)) for c in columns) for r in rows]
        with self._cursor() as cur:
            inserted = execute_values(
                cur,
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES %s RETURNING *",
                values,
                fetch=True,
            )
        logger.debug(f"insert_many: {table} → {len(inserted)} rows")
        return [dict(r) for r in inserted]

    def update_by_id(self, table: str, record_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update fields on one record. Returns the updated row, None if not found."""
        if not fields:
            return None
        _validate_columns(table, fields.keys())

        set_clause = ', '.join(f"{c} = %({c})s" for c in fields.keys())
        params = {c: _adapt(c, v) for c, v in fields.items()}
        params['_record_id'] = record_id

        with self._cursor() as cur:
            cur.execute(f"""
                UPDATE {table}
                SET {set_clause}
                WHERE id = %(_record_id)s
                RETURNING *
            """, params)
            row = cur.fetchone()
        if row is None:
            logger.debug(f"update_by_id: {table} id={record_id} not found")
            return None
        return dict(row)

    def delete_by_id(self, table: str, record_id: str) -> bool:
        _validate_table(table)
        with self._cursor() as cur:
            cur.execute(f"DELETE FROM {table} WHERE id = %s", (record_id,))
            deleted = cur.rowcount > 0
        logger.debug(f"delete_by_id: {table} id={record_id} deleted={deleted}")
        return deleted

    def list_show_people(self, show_id: str) -> List[Dict[str, Any]]:
        """People assigned to a show: person_id, name, duty."""
        with self._cursor() as cur:
            cur.execute("""
                SELECT a.person_id, p.name, a.duty
                FROM show_assignments a
                JOIN people p ON p.id = a.person_id
                WHERE a.show_id = %s
                ORDER BY p.name ASC
            """, (show_id,))
            rows = cur.fetchall()
        return [dict(r) for r in rows]


# Default store used when callers don't pass one
store = RecordStore()
