#!/usr/bin/env python3
"""
Travel Grid Spreadsheet Importer
Loads a per-person travel sheet (CSV or XLSX) into an advancing session's grid.

Sheet layout: one row per person, a 'person_id' column (or 'id'), every
other column is a grid column ('arrivalDate', 'flightNumber', ...).

Features:
- Empty cells are skipped, existing cells are only rewritten when changed
- Re-runnable / safe to run multiple times
- Dry-run mode prints the field writes without touching the database
- Optional schedule sync of the session after a live import
"""

import argparse
import logging
import sys
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from showsync.engine import grid_codec, schedule_sync
from showsync.logging_config import configure_logging

ID_COLUMNS = ('person_id', 'id')


# =============================================================================
# SHEET -> GRID ROWS
# =============================================================================

def cell_value(value: Any) -> Any:
    """Normalise a pandas cell: NaN/NaT become None, dates become ISO strings."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime('%H:%M')
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip() or None


def read_sheet(path: Path, sheet: Any = 0) -> pd.DataFrame:
    """Read a CSV or Excel sheet with every column as object dtype."""
    if path.suffix.lower() == '.csv':
        return pd.read_csv(path, dtype=object)
    return pd.read_excel(path, sheet_name=sheet, dtype=object)


def frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """
    Convert a sheet into grid rows keyed by person id.
    Rows without a person id are dropped with a warning.
    """
    df = df.rename(columns=lambda c: str(c).strip())
    id_column = next((c for c in ID_COLUMNS if c in df.columns), None)
    if id_column is None:
        raise ValueError(f"Sheet needs one of the columns {ID_COLUMNS}, got {list(df.columns)}")

    rows = []
    for index, record in df.iterrows():
        person_id = cell_value(record[id_column])
        if person_id is None:
            logging.warning(f"Row {index + 2}: no {id_column}, skipped")
            continue
        row = {'id': person_id}
        for column, value in record.items():
            if column in ID_COLUMNS:
                continue
            cleaned = cell_value(value)
            if cleaned is not None:
                row[column] = cleaned
        rows.append(row)
    return rows


# =============================================================================
# MAIN IMPORT ORCHESTRATOR
# =============================================================================

def run_import(
    path: Path,
    session_id: str,
    grid_type: str,
    sheet: Any = 0,
    dry_run: bool = False,
    sync: bool = False
) -> int:
    """Main import function. Returns a process exit code."""
    configure_logging()
    logger = logging.getLogger("showsync.import")

    logger.info("=" * 80)
    logger.info("TRAVEL GRID IMPORT")
    logger.info("=" * 80)
    logger.info(f"Mode: {'DRY-RUN' if dry_run else 'LIVE'}")
    logger.info(f"Source: {path}")
    logger.info(f"Session: {session_id}  Grid: {grid_type}")

    if grid_type not in grid_codec.GRID_TYPES:
        logger.error(f"Unknown grid type {grid_type!r}, expected one of {grid_codec.GRID_TYPES}")
        return 1

    if not path.exists():
        logger.error(f"File not found: {path}")
        return 1

    try:
        rows = frame_to_rows(read_sheet(path, sheet))
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read {path}: {e}")
        return 1

    logger.info(f"Read {len(rows)} row(s)")

    if dry_run:
        for write in grid_codec.encode(grid_type, rows, session_id=session_id):
            print(f"{write['field_name']} = {write['value']}")
        return 0

    result = grid_codec.save_grid(session_id, grid_type, rows)
    logger.info(
        f"Inserted: {result.inserted}  Updated: {result.updated}  "
        f"Failed: {result.failed_updates}"
    )
    for error in result.errors:
        logger.error(error)

    if sync and result.success:
        sync_result = schedule_sync.sync_travel_grid(session_id)
        logger.info(
            f"Schedule sync: {sync_result.created} created, {sync_result.deleted} removed"
            + ('' if sync_result.success else f", failed: {sync_result.error}")
        )
        if not sync_result.success:
            return 1

    return 0 if result.success else 1


# =============================================================================
# CLI
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description="Import a travel spreadsheet into an advancing session grid"
    )
    parser.add_argument('path', type=Path, help="CSV or XLSX file")
    parser.add_argument('session_id', help="Advancing session id")
    parser.add_argument(
        '--grid-type',
        default='arrival_flight',
        help="Grid to write (team, arrival_flight, departure_flight, hotel)"
    )
    parser.add_argument(
        '--sheet',
        default=0,
        type=lambda s: int(s) if s.isdigit() else s,
        help="Sheet name or index for XLSX files"
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help="Show the field writes without writing to the database"
    )
    parser.add_argument(
        '--sync',
        action='store_true',
        help="Re-derive the session's travel schedule items after importing"
    )

    args = parser.parse_args()

    sys.exit(run_import(
        args.path, args.session_id, args.grid_type,
        sheet=args.sheet, dry_run=args.dry_run, sync=args.sync,
    ))


if __name__ == "__main__":
    main()
