"""
Timeline Projector
Pure projection of a day's events into half-hour slots and a pixel layout
for a continuous timeline view, plus the set of dates that carry events.

Every "which day / which slot" question is answered in an explicit zone.
"""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from showsync.config import config
from showsync.engine.timeutil import as_date, as_datetime, get_timezone, local_date, local_label, local_minutes
from showsync.models import DayProjection, Flight, ItemLayout, ScheduleItem, Show, TimeSlot, TimelineEvent

SLOT_MINUTES = 30
MINUTES_PER_DAY = 24 * 60


# =============================================================================
# DAY EVENTS
# =============================================================================

def _flight_moment(flight: Flight) -> Optional[datetime]:
    """Arrivals are placed at landing, departures at take-off."""
    if flight.direction == 'arrival':
        return as_datetime(flight.arrival_at)
    return as_datetime(flight.depart_at)


def _on_day(moment: Optional[datetime], day: date, tz: ZoneInfo) -> bool:
    return moment is not None and local_date(moment, tz) == day


def build_day_events(
    show: Show,
    schedule_items: Iterable[ScheduleItem],
    flights: Iterable[Flight],
    selected_people: Sequence[str],
    people_names: Dict[str, str],
    day: date,
    tz: Optional[ZoneInfo] = None
) -> List[TimelineEvent]:
    """
    The events of one local calendar day, in discovery order:
    show times (only on the show date), then schedule items, then the
    flights of the selected people.
    """
    tz = tz or get_timezone()
    events = []

    if as_date(show.date) == day:
        doors = as_datetime(show.doors_at, tz)
        if doors:
            events.append(TimelineEvent(id='doors', time=doors, title='Doors', type='venue'))
        set_time = as_datetime(show.set_time, tz)
        if set_time:
            events.append(TimelineEvent(id='set', time=set_time, title='Set Time', type='show'))

    for item in schedule_items:
        starts_at = as_datetime(item.starts_at, tz)
        if not _on_day(starts_at, day, tz):
            continue
        events.append(TimelineEvent(
            id=str(item.id),
            time=starts_at,
            title=item.title,
            type='schedule',
            end_time=as_datetime(item.ends_at, tz),
            location=item.location,
            notes=item.notes,
            person_id=item.person_id,
        ))

    selected = [str(p) for p in selected_people]
    flights = [f for f in flights if f.person_id is not None]
    for person_id in selected:
        for flight in flights:
            if str(flight.person_id) != person_id:
                continue
            moment = _flight_moment(flight)
            if not _on_day(moment, day, tz):
                continue
            origin = flight.depart_city or flight.depart_airport_code or ''
            destination = flight.arrival_city or flight.arrival_airport_code or ''
            events.append(TimelineEvent(
                id=f"{flight.direction}-{person_id}-{flight.id}",
                time=moment,
                title=flight.flight_number or 'Flight',
                type=flight.direction,
                location=f"{origin} → {destination}",
                person_id=person_id,
                person_name=people_names.get(person_id) or 'Unknown',
            ))

    return events


def dates_with_events(
    show: Show,
    schedule_items: Iterable[ScheduleItem],
    flights: Iterable[Flight],
    selected_people: Sequence[str],
    tz: Optional[ZoneInfo] = None
) -> List[date]:
    """Sorted, deduplicated local dates carrying at least one event (date picker decoration)."""
    tz = tz or get_timezone()
    dates = set()

    show_date = as_date(show.date)
    if show_date and (show.doors_at or show.set_time):
        dates.add(show_date)

    for item in schedule_items:
        starts_at = as_datetime(item.starts_at, tz)
        if starts_at:
            dates.add(local_date(starts_at, tz))

    selected = {str(p) for p in selected_people}
    for flight in flights:
        if flight.person_id is None or str(flight.person_id) not in selected:
            continue
        moment = _flight_moment(flight)
        if moment:
            dates.add(local_date(moment, tz))

    return sorted(dates)


def day_number(day: date, dates: Sequence[date]) -> int:
    """1-based position of day among dates, 0 if it isn't one of them."""
    ordered = sorted(set(dates))
    if day not in ordered:
        return 0
    return ordered.index(day) + 1


# =============================================================================
# SLOTTING
# =============================================================================

def slot_labels() -> List[str]:
    """The 48 fixed half-hour labels 00:00 ... 23:30."""
    return [f"{m // 60:02d}:{m % 60:02d}" for m in range(0, MINUTES_PER_DAY, SLOT_MINUTES)]


def project(events: Iterable[TimelineEvent], tz: Optional[ZoneInfo] = None) -> DayProjection:
    """
    Group pre-filtered events by the exact local HH:MM of their start.

    slots holds the non-empty groups sorted by label; full_day_grid always
    holds all 48 half-hour labels, each with the exactly matching group or
    an empty list. Events inside a group keep their input order.
    """
    tz = tz or get_timezone()
    groups: Dict[str, List[TimelineEvent]] = {}
    for event in events:
        groups.setdefault(local_label(event.time, tz), []).append(event)

    slots = [TimeSlot(label=label, items=groups[label]) for label in sorted(groups)]
    full_day_grid = [TimeSlot(label=label, items=list(groups.get(label, []))) for label in slot_labels()]
    return DayProjection(slots=slots, full_day_grid=full_day_grid)


# =============================================================================
# CONTINUOUS LAYOUT
# =============================================================================

def _duration_minutes(event: TimelineEvent) -> int:
    if event.end_time is None:
        return config.DEFAULT_ITEM_MINUTES
    return int((event.end_time - event.time).total_seconds() // 60)


def layout_item(
    event: TimelineEvent,
    window_start_minutes: int = 0,
    tz: Optional[ZoneInfo] = None,
    px_per_minute: Optional[float] = None,
    min_height_px: Optional[float] = None
) -> ItemLayout:
    """Pixel box of one event. Zero or negative durations keep the minimum height."""
    tz = tz or get_timezone()
    px_per_minute = px_per_minute if px_per_minute is not None else config.TIMELINE_PX_PER_MINUTE
    min_height_px = min_height_px if min_height_px is not None else config.TIMELINE_MIN_ITEM_PX

    offset = local_minutes(event.time, tz) - window_start_minutes
    duration = _duration_minutes(event)
    return ItemLayout(
        event=event,
        top=offset * px_per_minute,
        height=max(duration * px_per_minute, min_height_px),
        duration_minutes=duration,
    )


def _end_minutes(event: TimelineEvent, tz: ZoneInfo) -> int:
    # clipped to the day so overnight items end at midnight
    return min(local_minutes(event.time, tz) + max(_duration_minutes(event), 0), MINUTES_PER_DAY)


def timeline_window(events: Sequence[TimelineEvent], tz: Optional[ZoneInfo] = None):
    """(start, end) in minutes of the visible window, snapped to half hours. Empty day is 0..1440."""
    tz = tz or get_timezone()
    if not events:
        return 0, MINUTES_PER_DAY
    start = min(local_minutes(e.time, tz) for e in events)
    end = max(_end_minutes(e, tz) for e in events)
    start = (start // SLOT_MINUTES) * SLOT_MINUTES
    end = ((end + SLOT_MINUTES - 1) // SLOT_MINUTES) * SLOT_MINUTES
    if end <= start:
        end = start + SLOT_MINUTES
    return start, min(end, MINUTES_PER_DAY)


def interval_labels(start_minutes: int, end_minutes: int) -> List[str]:
    """Half-hour gutter labels from start up to and including end."""
    return [
        f"{m // 60:02d}:{m % 60:02d}"
        for m in range(start_minutes, min(end_minutes, MINUTES_PER_DAY - 1) + 1, SLOT_MINUTES)
    ]


def _span(layout: ItemLayout, tz: ZoneInfo):
    start = local_minutes(layout.event.time, tz)
    # zero-length items still occupy one minute
    return start, max(_end_minutes(layout.event, tz), start + 1)


def group_overlaps(layouts: List[ItemLayout], tz: ZoneInfo) -> List[List[ItemLayout]]:
    groups: List[List[ItemLayout]] = []
    current: List[ItemLayout] = []
    current_end = -1
    for layout in layouts:
        start, end = _span(layout, tz)
        if not current or start < current_end:
            current.append(layout)
            current_end = max(current_end, end)
        else:
            groups.append(current)
            current = [layout]
            current_end = end
    if current:
        groups.append(current)
    return groups


def assign_lanes(layouts: List[ItemLayout], tz: ZoneInfo) -> None:
    """Greedy side-by-side lanes so overlapping items never share a column."""
    ordered = sorted(layouts, key=lambda l: _span(l, tz))
    for group in group_overlaps(ordered, tz):
        lanes_end: List[int] = []
        for layout in group:
            start, end = _span(layout, tz)
            placed = False
            for idx, lane_end in enumerate(lanes_end):
                if start >= lane_end:
                    layout.lane = idx
                    lanes_end[idx] = end
                    placed = True
                    break
            if not placed:
                layout.lane = len(lanes_end)
                lanes_end.append(end)
        lane_count = max(1, len(lanes_end))
        for layout in group:
            layout.lane_count = lane_count


def layout_day(events: Sequence[TimelineEvent], tz: Optional[ZoneInfo] = None) -> Dict:
    """
    Continuous layout of a day: the window, its gutter labels and one
    ItemLayout per event (input order) with lanes assigned.
    """
    tz = tz or get_timezone()
    start, end = timeline_window(events, tz)
    layouts = [layout_item(event, start, tz) for event in events]
    assign_lanes(layouts, tz)
    return {
        'start_minutes': start,
        'end_minutes': end,
        'height': (end - start) * config.TIMELINE_PX_PER_MINUTE,
        'labels': interval_labels(start, end),
        'items': layouts,
    }
