"""Free-text date and time parsing.

Players type times the way they say them ("21h", "7h30", "07:30") and dates as
"DD/MM", "DD/MM/YY" or "DD/MM/YYYY". Everything here is pure: given text, return
a normalized value or None. Instants are returned as naive UTC datetimes, matching
how the models store them; the community timezone is only used to interpret
wall-clock input and to display it back.
"""
from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Optional

from dateutil import tz as dateutil_tz
from dateutil.tz import tzutc

DAY_NAMES = ["Lundi", "Mardi", "Mercredi", "Jeudi", "Vendredi", "Samedi", "Dimanche"]


def get_tz(name: str | None):
    return dateutil_tz.gettz(name or "UTC") or tzutc()


def is_known_timezone(name: str | None) -> bool:
    return bool(name) and dateutil_tz.gettz(name) is not None


def parse_time(text: str | None) -> Optional[str]:
    """Return "HH:MM" for inputs like "7h30", "7h", "07:30", "7" or "7:"."""
    if not text:
        return None
    s = text.strip().lower().replace("h", ":")
    if not s:
        return None
    if ":" in s:
        hour_part, _, minute_part = s.partition(":")
    else:
        hour_part, minute_part = s, ""
    hour_part = hour_part.strip()
    minute_part = minute_part.strip() or "0"
    if not hour_part.isdigit() or not minute_part.isdigit():
        return None
    if len(hour_part) > 2 or len(minute_part) > 2:
        return None
    h, m = int(hour_part), int(minute_part)
    if not (0 <= h <= 23 and 0 <= m <= 59):
        return None
    return f"{h:02d}:{m:02d}"


def parse_date(text: str | None, today: date | None = None) -> Optional[str]:
    """Return an ISO date for "DD/MM" (current year), "DD/MM/YY" or "DD/MM/YYYY"."""
    if not text:
        return None
    parts = text.strip().split("/")
    if len(parts) not in (2, 3) or not all(p.strip().isdigit() for p in parts):
        return None
    day, month = int(parts[0]), int(parts[1])
    if len(parts) == 3:
        year = int(parts[2])
        if len(parts[2].strip()) <= 2:
            year += 2000
    else:
        year = (today or date.today()).year
    if not (1970 <= year <= 2100):
        return None
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def combine(date_iso: str, hhmm: str, tzname: str | None = None) -> Optional[datetime]:
    """Interpret date + wall-clock time in ``tzname`` and return the naive UTC instant."""
    try:
        d = date.fromisoformat(date_iso)
        h, m = (int(x) for x in hhmm.split(":"))
        local = datetime(d.year, d.month, d.day, h, m, tzinfo=get_tz(tzname))
    except (TypeError, ValueError):
        return None
    return local.astimezone(tzutc()).replace(tzinfo=None)


def resolve_window(date_iso: str, start_hhmm: str, sale_hhmm: str,
                   tzname: str | None = None) -> Optional[tuple[datetime, datetime]]:
    """Compute (start, sale) instants for a new alliance.

    When the sale time is not after the start time on the same day it is taken
    to fall on the following day ("21:00" -> "01:00"). Returns None when no
    valid window can be built.
    """
    start = combine(date_iso, start_hhmm, tzname)
    sale = combine(date_iso, sale_hhmm, tzname)
    if start is None or sale is None:
        return None
    if sale <= start:
        next_day = (date.fromisoformat(date_iso) + timedelta(days=1)).isoformat()
        sale = combine(next_day, sale_hhmm, tzname)
        if sale is None or sale <= start:
            return None
    return start, sale


def to_local(instant: datetime, tzname: str | None = None) -> datetime:
    """Naive UTC instant -> aware datetime in the community timezone."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=tzutc())
    return instant.astimezone(get_tz(tzname))


def format_hhmm(instant: datetime, tzname: str | None = None) -> str:
    local = to_local(instant, tzname)
    return f"{local.hour}h{local.minute:02d}"


def format_day(instant: datetime, tzname: str | None = None) -> str:
    """"Mardi 18/11" style label."""
    local = to_local(instant, tzname)
    return f"{DAY_NAMES[local.weekday()]} {local.day:02d}/{local.month:02d}"


def parse_mention_id(mention: str | None) -> int:
    """Digits of a "<@123>" / "<@!123>" mention, or 0 when there are none."""
    if not mention:
        return 0
    digits = "".join(ch for ch in mention if ch.isdigit())
    return int(digits) if digits else 0
