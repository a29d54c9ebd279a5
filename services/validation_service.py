import math
from datetime import date, datetime

ALLOWED_MINUTES = (0, 15, 30, 45)
MAX_DESCRIPTION_LENGTH = 200
DAY_MINUTES = 24 * 60
MAX_WEEK_OFFSET = 5000


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_int(value, default=None):
    """Coerce ints, integral floats and numeric strings; return default otherwise."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        as_float = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    if not math.isfinite(as_float):
        return default
    return int(round(as_float))


def parse_amount(value):
    """Return a positive float amount or raise ValueError."""
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValueError("Amount must be a number")
    if not math.isfinite(amount):
        raise ValueError("Amount must be a number")
    if amount <= 0:
        raise ValueError("Amount must be positive")
    return amount


def parse_week_offset(value, default=0):
    """Week offset relative to the current week; raise ValueError when unusable or too far out."""
    if value in (None, ''):
        return default
    offset = parse_int(value)
    if offset is None:
        raise ValueError("Week offset must be an integer")
    if abs(offset) > MAX_WEEK_OFFSET:
        raise ValueError(f"Week offset must be between -{MAX_WEEK_OFFSET} and {MAX_WEEK_OFFSET}")
    return offset


def parse_day_value(raw):
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not raw:
        return None
    text = str(raw).strip()
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def snap_minute(value):
    """Snap a minute value to the nearest quarter hour that stays within the hour."""
    minute = parse_int(value, 0)
    minute = max(0, min(59, minute))
    return min(ALLOWED_MINUTES, key=lambda allowed: abs(allowed - minute))


def minutes_of(hour, minute=0):
    return int(hour) * 60 + int(minute or 0)


def validate_event_times(day, start_time, start_minute, end_time, end_minute):
    """Raise ValueError unless the slot is a valid, positive-length same-day block."""
    if day is None or not 0 <= day <= 6:
        raise ValueError("day must be between 0 (Monday) and 6 (Sunday)")
    for label, hour in (("startTime", start_time), ("endTime", end_time)):
        if hour is None or not 0 <= hour <= 24:
            raise ValueError(f"{label} must be an hour between 0 and 24")
    for label, minute in (("startMinute", start_minute), ("endMinute", end_minute)):
        if minute not in ALLOWED_MINUTES:
            raise ValueError(f"{label} must be one of 0, 15, 30, 45")
    start = minutes_of(start_time, start_minute)
    end = minutes_of(end_time, end_minute)
    if end > DAY_MINUTES:
        raise ValueError("Event cannot end after 24:00")
    if start >= end:
        raise ValueError("Event must start before it ends")


def clean_event_payload(data, existing=None):
    """
    Merge a JSON payload over an existing event dict (for updates) and validate.

    Returns a dict with snake_case keys ready to apply to a CalendarEvent.
    """
    base = existing or {}
    merged = {
        'title': data.get('title', base.get('title')),
        'description': data.get('description', base.get('description')),
        'day': parse_int(data.get('day', base.get('day'))),
        'start_time': parse_int(data.get('startTime', base.get('startTime'))),
        'start_minute': parse_int(data.get('startMinute', base.get('startMinute')), 0),
        'end_time': parse_int(data.get('endTime', base.get('endTime'))),
        'end_minute': parse_int(data.get('endMinute', base.get('endMinute')), 0),
        'color': data.get('color', base.get('color')),
        'week': parse_week_offset(data.get('week', base.get('week'))),
    }
    title = (merged['title'] or '').strip()
    if not title:
        raise ValueError("Title is required")
    merged['title'] = title[:200]

    description = (merged['description'] or '').strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValueError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    merged['description'] = description or None

    validate_event_times(
        merged['day'],
        merged['start_time'],
        merged['start_minute'],
        merged['end_time'],
        merged['end_minute'],
    )
    return merged
