"""Campaign call window gate.

Campaign calls may only be placed on allowed weekdays inside a
time-of-day window, both read in the business's local timezone.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from outreach_agent.core.logging import get_logger
from outreach_agent.db.models.core import DEFAULT_TIMEZONE

log = get_logger(__name__)

DAY_ABBREVIATIONS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")


class WindowedCampaign(Protocol):
    call_window_start: str
    call_window_end: str
    allowed_days: str


def parse_time_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight.

    Raises:
        ValueError: If value is not a valid HH:MM time
    """
    hours_text, sep, minutes_text = value.strip().partition(":")
    if not sep:
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes = int(hours_text), int(minutes_text)
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def parse_allowed_days(value: str | None) -> set[str]:
    """Parse "MON,TUE,..." into a set of upper-case abbreviations."""
    if not value:
        return set()
    return {day.strip().upper() for day in value.split(",") if day.strip()}


def resolve_timezone(name: str | None, default: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    """ZoneInfo for ``name``, falling back to ``default`` when unknown."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("Unknown timezone, using default", timezone=name, default=default)
    return ZoneInfo(default)


def local_weekday(moment: datetime) -> str:
    """Three-letter weekday abbreviation of an already-localized datetime."""
    return DAY_ABBREVIATIONS[moment.weekday()]


def is_within_window(
    campaign: WindowedCampaign,
    business_timezone: str | None,
    now: datetime,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> bool:
    """Whether ``now`` falls inside the campaign's local call window.

    Both window bounds are inclusive.

    Args:
        campaign: Campaign with call_window_start/end and allowed_days
        business_timezone: IANA timezone of the owning business
        now: Current instant (timezone-aware)
        default_timezone: Used when the business timezone is missing or unknown

    Returns:
        True if a call may be placed now
    """
    local = now.astimezone(resolve_timezone(business_timezone, default_timezone))

    if local_weekday(local) not in parse_allowed_days(campaign.allowed_days):
        return False

    minutes = local.hour * 60 + local.minute
    start = parse_time_to_minutes(campaign.call_window_start)
    end = parse_time_to_minutes(campaign.call_window_end)
    return start <= minutes <= end
