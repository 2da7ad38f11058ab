#!/usr/bin/env python3
"""
Show Sync Terminal CLI
Command-line interface for schedule sync, day timelines and advancing grids.
"""

import logging
from datetime import date, datetime
from typing import Optional

import click

from showsync.bus.events import bus
from showsync.engine import grid_codec, logistics, schedule_sync, timeline
from showsync.engine.time_extract import extract_time, format_time
from showsync.engine.timeutil import get_timezone, local_label
from showsync.logging_config import configure_logging, log_call


def _parse_day(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise click.BadParameter(f"{raw!r} is not a date, use YYYY-MM-DD")


def _parse_moment(raw: Optional[str], param: str) -> Optional[datetime]:
    if raw is None:
        return None
    try:
        return datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        raise click.BadParameter(f"{raw!r} is not an ISO timestamp", param_hint=param)


def _echo_result(result, action: str) -> None:
    """Print a SyncResult; failures go to stderr."""
    if result.success:
        click.echo(
            f"✓ {action}: {result.created} created, {result.deleted} removed"
            + (f", {result.skipped} skipped" if result.skipped else "")
        )
        return
    logging.getLogger("showsync").error(f"{action} failed: {result.error}")
    click.echo(f"Error: {action} failed: {result.error}", err=True)


@click.group()
def cli():
    """Show Sync - derived schedules and day timelines for shows"""
    configure_logging()
    schedule_sync.register_handlers(bus)


# =============================================================================
# SCHEDULE COMMANDS
# =============================================================================

@cli.group()
def schedule():
    """Inspect and re-derive show schedules"""
    pass


@schedule.command('list')
@click.argument('show_id')
@log_call
def schedule_list(show_id):
    """List a show's schedule items"""
    tz = get_timezone()
    items = schedule_sync.list_schedule(show_id)

    if not items:
        click.echo("No schedule items found.")
        return

    click.echo(f"\nFound {len(items)} schedule items:\n")
    click.echo(f"{'Start':<18} {'End':<7} {'Title':<36} {'Type':<10} {'Source':<20}")
    click.echo("-" * 94)

    for item in items:
        starts = item.starts_at.astimezone(tz).strftime('%Y-%m-%d %H:%M') if item.starts_at else ''
        ends = local_label(item.ends_at, tz) if item.ends_at else ''
        source = item.source if item.auto_generated else 'manual'
        click.echo(
            f"{starts:<18} {ends:<7} {(item.title or '')[:34]:<36} "
            f"{(item.item_type or '')[:8]:<10} {(source or '')[:20]:<20}"
        )


@schedule.command('sync-show')
@click.argument('show_id')
@log_call
def schedule_sync_show(show_id):
    """Re-derive every auto-generated item of a show"""
    _echo_result(schedule_sync.resync_show(show_id), f"Sync show {show_id}")


@schedule.command('sync-advancing')
@click.argument('session_id')
@log_call
def schedule_sync_advancing(session_id):
    """Scan advancing fields for times and rebuild their items"""
    _echo_result(schedule_sync.sync_advancing_session(session_id), f"Sync advancing session {session_id}")


@schedule.command('sync-travel')
@click.argument('session_id')
@log_call
def schedule_sync_travel(session_id):
    """Rebuild arrival, departure and hotel items from the travel grids"""
    _echo_result(schedule_sync.sync_travel_grid(session_id), f"Sync travel grid {session_id}")


@schedule.command('move')
@click.argument('item_id')
@click.argument('starts_at')
@click.option('--ends-at', help='New end (ISO timestamp)')
@log_call
def schedule_move(item_id, starts_at, ends_at):
    """Move an item and write the new time back to its source record"""
    new_start = _parse_moment(starts_at, 'STARTS_AT')
    new_end = _parse_moment(ends_at, '--ends-at')
    _echo_result(schedule_sync.apply_schedule_move(item_id, new_start, new_end), f"Move item {item_id}")


# =============================================================================
# DAY TIMELINE
# =============================================================================

@cli.command('day')
@click.argument('show_id')
@click.option('--date', 'day', help='Day to show (YYYY-MM-DD, default: show date)')
@click.option('--people', multiple=True, help='Person id whose flights to include (repeatable)')
@click.option('--grid', is_flag=True, help='Print the full 48-slot half-hour grid')
@log_call
def day_view(show_id, day, people, grid):
    """Print one day of a show's timeline"""
    logger = logging.getLogger("showsync")
    tz = get_timezone()

    show = logistics.get_show(show_id)
    if not show:
        logger.warning(f"day_view | show_id={show_id} not found")
        click.echo(f"Show {show_id} not found.", err=True)
        return

    target = _parse_day(day) or show.date
    if target is None:
        click.echo("Show has no date, pass --date.", err=True)
        return

    items = schedule_sync.list_schedule(show_id)
    flights = logistics.list_flights(show_id)
    names = {str(p['person_id']): p['name'] for p in logistics.get_show_people(show_id)}

    events = timeline.build_day_events(show, items, flights, list(people), names, target, tz)
    dates = timeline.dates_with_events(show, items, flights, list(people), tz)
    number = timeline.day_number(target, dates)

    click.echo(f"\n{'='*80}")
    click.echo(f"{show.title or 'Show'} - {target.isoformat()}" + (f" (day {number} of {len(dates)})" if number else ""))
    click.echo(f"{'='*80}")

    projection = timeline.project(events, tz)
    slots = projection.full_day_grid if grid else projection.slots
    if not events and not grid:
        click.echo("Nothing scheduled.")
    for slot in slots:
        if not slot.items:
            click.echo(f"{slot.label}")
            continue
        for i, event in enumerate(slot.items):
            label = slot.label if i == 0 else ''
            extra = f" @ {event.location}" if event.location else ''
            who = f" [{event.person_name}]" if event.person_name else ''
            click.echo(f"{label:<6} {event.title}{extra}{who}")

    if dates:
        click.echo(f"\nDays with events: {', '.join(d.isoformat() for d in dates)}")


# =============================================================================
# GRID COMMANDS
# =============================================================================

@cli.group()
def grid():
    """Advancing grids (team, flights, hotel)"""
    pass


@grid.command('show')
@click.argument('session_id')
@click.argument('grid_type', type=click.Choice(grid_codec.GRID_TYPES))
@click.argument('row_ids', nargs=-1)
@log_call
def grid_show(session_id, grid_type, row_ids):
    """Print a grid decoded from advancing fields"""
    rows = grid_codec.load_grid(session_id, grid_type, list(row_ids))
    if not rows:
        click.echo("No rows.")
        return

    click.echo(f"\n{grid_codec.title_case(grid_type)} ({len(rows)} rows)\n")
    for row in rows:
        click.echo(row[grid_codec.ID_KEY])
        cells = {k: v for k, v in row.items() if k != grid_codec.ID_KEY}
        if not cells:
            click.echo("  (empty)")
        for column, value in cells.items():
            click.echo(f"  {column:<16} {value}")


# =============================================================================
# UTILITIES
# =============================================================================

@cli.command('extract-time')
@click.argument('text')
def extract_time_cmd(text):
    """Find the clock time in a piece of text"""
    found = extract_time(text)
    if found is None:
        click.echo("No time found.")
        return
    click.echo(format_time(found))


# =============================================================================
# MAIN
# =============================================================================

if __name__ == '__main__':
    cli()
