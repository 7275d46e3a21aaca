"""Next-delivery-time calculation.

Pure functions: given "now", a subscriber's timezone and delivery preference
and the configured windows, compute the next instant a session should start.
Randomness comes from an injectable ``random.Random`` so results are
reproducible in tests.
"""

import random
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from buddy.config import DeliveryConfig
from buddy.core.datetime_utils import local_instant, parse_time_of_day, resolve_timezone, to_utc
from buddy.schemas.subscriber import DeliveryPreference, PreferenceType

WINDOW_TYPES = (PreferenceType.MORNING, PreferenceType.MIDDAY, PreferenceType.EVENING)
FALLBACK_DELAY = timedelta(hours=24)


def next_delivery_time(
    now: datetime,
    timezone: str | None,
    preference: DeliveryPreference | None,
    delivery: DeliveryConfig,
    rng: random.Random | None = None,
) -> datetime:
    """Return the next delivery instant (aware UTC), always strictly after ``now``.

    Args:
        now: Current instant
        timezone: Subscriber IANA timezone; invalid or missing means UTC
        preference: Delivery preference; missing or unknown type means "morning"
        delivery: Window configuration
        rng: Random source for window offset and fuzz

    Returns:
        Aware UTC datetime
    """
    rng = rng or random.Random()
    now = to_utc(now)
    tz = resolve_timezone(timezone)

    pref_type = preference.type if preference else None

    if pref_type == PreferenceType.FIXED and preference and preference.times:
        fixed = _parse_fixed_times(preference.times)
        if fixed:
            return next_fixed_time(now, fixed, tz)

    window_name = pref_type if pref_type in WINDOW_TYPES else PreferenceType.MORNING
    window = delivery.windows[window_name]
    if preference and preference.fuzziness_minutes is not None:
        fuzziness = preference.fuzziness_minutes
    else:
        fuzziness = delivery.fuzziness_for(window_name)

    start = parse_time_of_day(window.start) or time(7, 0)
    end = parse_time_of_day(window.end) or time(10, 0)
    return random_time_in_window(now, start, end, fuzziness, tz, rng)


def random_time_in_window(
    now: datetime,
    start: time,
    end: time,
    fuzziness_minutes: int,
    tz: ZoneInfo,
    rng: random.Random,
) -> datetime:
    """Pick a uniformly random minute in [start, end) local, then fuzz it by ±fuzziness.

    The window is today's (local) unless ``now`` is already past its end, in
    which case tomorrow's is used. A window whose end is not after its start
    wraps past midnight. If the fuzzed instant is not after ``now`` the result
    falls back to ``now + 24h``.
    """
    today = now.astimezone(tz).date()
    window_start, window_end = _window_on(today, start, end, tz)
    if now > window_end:
        window_start, window_end = _window_on(today + timedelta(days=1), start, end, tz)

    window_minutes = int((window_end - window_start) // timedelta(minutes=1))
    offset = rng.randrange(window_minutes) if window_minutes > 0 else 0
    base = window_start + timedelta(minutes=offset)

    fuzz = rng.randint(-fuzziness_minutes, fuzziness_minutes) if fuzziness_minutes > 0 else 0
    result = base + timedelta(minutes=fuzz)

    if result <= now:
        return now + FALLBACK_DELAY
    return result


def next_fixed_time(now: datetime, times: list[time], tz: ZoneInfo) -> datetime:
    """First of the sorted local ``times`` strictly after ``now`` today, else the first one tomorrow."""
    today = now.astimezone(tz).date()
    for at in times:
        candidate = local_instant(today, at, tz)
        if candidate > now:
            return candidate

    candidate = local_instant(today + timedelta(days=1), times[0], tz)
    if candidate <= now:
        return now + FALLBACK_DELAY
    return candidate


def _window_on(day: date, start: time, end: time, tz: ZoneInfo) -> tuple[datetime, datetime]:
    window_start = local_instant(day, start, tz)
    end_day = day if end > start else day + timedelta(days=1)
    return window_start, local_instant(end_day, end, tz)


def _parse_fixed_times(raw_times: list[str]) -> list[time]:
    parsed = (parse_time_of_day(t) for t in raw_times)
    return sorted({t for t in parsed if t is not None})
