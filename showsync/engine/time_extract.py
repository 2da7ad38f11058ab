"""
Time Extraction
Recovers a clock time embedded in free text ("Doors at 19:30", "Load in 2:15 PM").
Pure functions, no I/O.
"""

import re
from datetime import time
from typing import Optional

# 24-hour clock, 00-23
_TIME_24H = re.compile(r'\b([01]?[0-9]|2[0-3]):([0-5][0-9])\b')
_TIME_12H = re.compile(r'\b(1[0-2]|0?[1-9]):([0-5][0-9])\s*([AaPp])\.?[Mm]\b')
_MERIDIEM = re.compile(r'\s*[AaPp]\.?[Mm]\b')


def _first_24h(text: str) -> Optional[time]:
    """First 24-hour match, skipping 1-12 o'clock times that carry an AM/PM marker."""
    for match in _TIME_24H.finditer(text):
        hours = int(match.group(1))
        if 1 <= hours <= 12 and _MERIDIEM.match(text, match.end()):
            continue
        return time(hours, int(match.group(2)))
    return None


def extract_time(text) -> Optional[time]:
    """
    Return the first clock time found in text, or None.

    The 24-hour pattern is tried before the 12-hour one. 12-hour matches are
    normalised: 12 AM -> 00, 12 PM -> 12, other PM hours + 12.
    Never raises; anything that isn't a string yields None.
    """
    if not isinstance(text, str) or not text:
        return None

    found = _first_24h(text)
    if found is not None:
        return found

    match = _TIME_12H.search(text)
    if match:
        hours = int(match.group(1))
        minutes = int(match.group(2))
        meridiem = match.group(3).upper()
        if meridiem == 'P' and hours != 12:
            hours += 12
        elif meridiem == 'A' and hours == 12:
            hours = 0
        return time(hours, minutes)

    return None


def format_time(value: Optional[time]) -> Optional[str]:
    """'HH:MM' for a time, None passes through."""
    if value is None:
        return None
    return f"{value.hour:02d}:{value.minute:02d}"
