"""
PostgreSQL connections for the record store.

One connection per logical store operation: get_db_cursor opens, commits and
closes around a single statement, so a delete and the following inserts of a
sync never share a transaction.
"""

import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor

from showsync.config import config

logger = logging.getLogger(__name__)

APPLICATION_NAME = 'showsync'


def _connect():
    return psycopg2.connect(
        config.DATABASE_URL,
        application_name=APPLICATION_NAME,
        connect_timeout=config.DB_CONNECT_TIMEOUT,
    )


@contextmanager
def get_db_connection():
    """
    Yield a connection; commit on success, roll back on any error, always close.
    """
    conn = None
    try:
        conn = _connect()
        yield conn
        conn.commit()
    except Exception as e:
        if conn:
            conn.rollback()
            logger.error(f"Rolled back: {type(e).__name__}: {e}")
        raise
    finally:
        if conn:
            conn.close()


@contextmanager
def get_db_cursor(dict_cursor=True):
    """
    Yield a cursor on a fresh connection. Rows come back as dicts unless
    dict_cursor is False.

        with get_db_cursor() as cur:
            cur.execute("SELECT * FROM advancing_flights WHERE id = %s", (flight_id,))
            flight = cur.fetchone()
    """
    with get_db_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor if dict_cursor else None)
        try:
            yield cur
        finally:
            cur.close()
