"""
Time helpers shared by the sync engine and the timeline projector.
The calendar day is always computed in an explicit zone, never the machine locale.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from showsync.config import config

logger = logging.getLogger(__name__)


def get_timezone(name: Optional[str] = None) -> ZoneInfo:
    """ZoneInfo for name (default: config.TIMEZONE). Unknown names fall back to UTC."""
    name = name or config.TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, falling back to UTC")
        return ZoneInfo('UTC')


def as_datetime(value, tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    """
    Coerce a stored timestamp to an aware datetime.

    Accepts datetimes and ISO-8601 strings (a trailing 'Z' means UTC).
    Naive values are taken to be in tz. Anything unparseable yields None.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith('Z') or raw.endswith('z'):
            raw = raw[:-1] + '+00:00'
        try:
            moment = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz or get_timezone())
    return moment


def as_date(value) -> Optional[date]:
    """Coerce a date, datetime or 'YYYY-MM-DD' string to a date."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    """Calendar date of moment as seen in tz."""
    return moment.astimezone(tz).date()


def local_minutes(moment: datetime, tz: ZoneInfo) -> int:
    """Minutes since local midnight in tz."""
    local = moment.astimezone(tz)
    return local.hour * 60 + local.minute


def local_label(moment: datetime, tz: ZoneInfo) -> str:
    """Zero-padded 'HH:MM' in tz."""
    return moment.astimezone(tz).strftime('%H:%M')


def at_local(day: date, clock: time, tz: ZoneInfo) -> datetime:
    """Aware datetime for a wall-clock time on day in tz."""
    return datetime.combine(day, clock, tzinfo=tz)


def plus_minutes(moment: datetime, minutes: int) -> datetime:
    return moment + timedelta(minutes=minutes)
