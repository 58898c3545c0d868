"""US equities session helpers in Eastern time."""

from datetime import datetime, time

import pytz

from autopilot.config.constants import SessionTag

ET = pytz.timezone("America/New_York")

PRE_OPEN = time(4, 0)
RTH_OPEN = time(9, 30)
RTH_CLOSE = time(16, 0)
POST_CLOSE = time(20, 0)


def to_et(dt: datetime) -> datetime:
    """Convert an aware datetime to Eastern time (naive input is taken as UTC)."""
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(ET)


def session_tag(dt: datetime) -> SessionTag:
    """Session containing dt."""
    et = to_et(dt)
    if et.weekday() >= 5:
        return SessionTag.CLOSED
    t = et.time()
    if PRE_OPEN <= t < RTH_OPEN:
        return SessionTag.PRE
    if RTH_OPEN <= t < RTH_CLOSE:
        return SessionTag.RTH
    if RTH_CLOSE <= t < POST_CLOSE:
        return SessionTag.POST
    return SessionTag.CLOSED


def et_date(dt: datetime) -> str:
    """Eastern calendar date as YYYY-MM-DD."""
    return to_et(dt).date().isoformat()
