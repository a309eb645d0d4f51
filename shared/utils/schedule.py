"""
shared/utils/schedule.py
Branch schedule helpers: weekday lookup, 12-hour slot labels and slot generation.
Pure functions, no I/O.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

WEEKDAYS = [
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
]

_SLOT_LABEL_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*(AM|PM)\s*$", re.IGNORECASE)


def weekday_name(on: date) -> str:
    return WEEKDAYS[on.weekday()]


def default_operating_hours() -> Dict[str, dict]:
    return {
        day: {"is_open": True, "open_time": "10:00", "close_time": "19:00"}
        for day in WEEKDAYS
    }


def parse_hhmm(value: str) -> time:
    """'09:30' -> time(9, 30)."""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def format_slot_label(t: time) -> str:
    """time(13, 0) -> '1:00 PM'; noon is '12:00 PM', the midnight hour is '12:xx AM'."""
    suffix = "PM" if t.hour >= 12 else "AM"
    hour = t.hour % 12 or 12
    return f"{hour}:{t.minute:02d} {suffix}"


def parse_slot_label(label: str) -> time:
    """
    '10:30 AM' -> time(10, 30).
    Raises ValueError for anything that is not a 12-hour H:MM AM/PM label.
    """
    match = _SLOT_LABEL_RE.match(label or "")
    if not match:
        raise ValueError(f"Unrecognised slot label: {label!r}")

    hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if not 1 <= hour <= 12 or minute > 59:
        raise ValueError(f"Unrecognised slot label: {label!r}")

    if meridiem == "AM":
        hour = 0 if hour == 12 else hour
    else:
        hour = 12 if hour == 12 else hour + 12
    return time(hour, minute)


def day_schedule(operating_hours: Dict[str, dict], on: date) -> Optional[dict]:
    """Schedule entry for the weekday of `on`, or None when the branch is closed."""
    entry = (operating_hours or {}).get(weekday_name(on))
    if not entry or not entry.get("is_open"):
        return None
    return entry


def generate_slots(operating_hours: Dict[str, dict], slot_duration: int, on: date) -> List[str]:
    """
    Ordered slot labels for `on`.
    A start is included only if the whole slot ends by close_time; a trailing
    partial slot is dropped.
    """
    entry = day_schedule(operating_hours, on)
    if entry is None:
        return []

    step = timedelta(minutes=slot_duration)
    current = datetime.combine(on, parse_hhmm(entry["open_time"]))
    close = datetime.combine(on, parse_hhmm(entry["close_time"]))

    slots = []
    while current + step <= close:
        slots.append(format_slot_label(current.time()))
        current += step
    return slots
