import time
from datetime import datetime, timezone
from typing import Optional, Tuple

from pytz import timezone as pytz_timezone, UnknownTimeZoneError
from telegram.ext import ContextTypes

from multilink.config import DEFAULT_TZ
from multilink.constants import UD_TZ, DURATION_UNITS

# Accepted spellings for duration units -> stored unit name
_UNIT_ALIASES = {
    "m": "Mins", "min": "Mins", "mins": "Mins", "minute": "Mins", "minutes": "Mins",
    "h": "Hrs", "hr": "Hrs", "hrs": "Hrs", "hour": "Hrs", "hours": "Hrs",
    "d": "Days", "day": "Days", "days": "Days",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def get_user_tz(context: ContextTypes.DEFAULT_TYPE):
    tzname = context.user_data.get(UD_TZ, DEFAULT_TZ)
    try:
        return pytz_timezone(tzname)
    except UnknownTimeZoneError:
        return pytz_timezone(DEFAULT_TZ)


def is_valid_tz(name: str) -> bool:
    try:
        pytz_timezone(name)
        return True
    except UnknownTimeZoneError:
        return False


def ms_to_utc(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def parse_duration_unit(text: str) -> Optional[str]:
    t = (text or "").strip()
    if t in DURATION_UNITS:
        return t
    return _UNIT_ALIASES.get(t.lower())


def parse_duration(text: str) -> Optional[Tuple[str, str]]:
    """Parse "90 mins" / "2h" / "1 day" into (durationVal, durationUnit)."""
    t = (text or "").strip()
    digits = ""
    for ch in t:
        if not ch.isdigit():
            break
        digits += ch
    if not digits or int(digits) <= 0:
        return None
    unit = parse_duration_unit(t[len(digits):])
    if unit is None:
        return None
    return str(int(digits)), unit


def format_elapsed(duration_ms: int) -> str:
    total_minutes = max(0, duration_ms) // 60_000
    hours, mins = divmod(total_minutes, 60)
    return f"{hours}h {mins}m" if hours > 0 else f"{mins}m"


def format_completed_date(ms: int, tz=None) -> str:
    """Render like "05 Mar • 6:42 PM"."""
    dt = ms_to_utc(ms).astimezone(tz or pytz_timezone(DEFAULT_TZ))
    hour = dt.hour % 12 or 12
    return f"{dt:%d %b} • {hour}:{dt:%M %p}"


def format_local(ms: int, tz) -> str:
    return ms_to_utc(ms).astimezone(tz).strftime("%Y-%m-%d %H:%M (%Z)")
