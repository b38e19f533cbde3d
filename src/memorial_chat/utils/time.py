"""
Time helpers.

The hosted backend stores every timestamp in UTC. The memorial site is read in
Vietnam, so dates shown on tribute cards are shifted to UTC+7 before formatting.
"""

from datetime import datetime, timedelta, timezone

VIETNAM_OFFSET_HOURS = 7


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO string (with or without 'Z') into an aware UTC datetime."""
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_vietnam_time(value: str | datetime, offset_hours: int = VIETNAM_OFFSET_HOURS) -> datetime:
    return parse_timestamp(value).astimezone(timezone(timedelta(hours=offset_hours)))


def format_vietnam_date(value: str | datetime, offset_hours: int = VIETNAM_OFFSET_HOURS) -> str:
    """'2025-10-23T17:00:00Z' -> '2025-10-24'."""
    return to_vietnam_time(value, offset_hours).strftime("%Y-%m-%d")


def format_vietnam_datetime(value: str | datetime, offset_hours: int = VIETNAM_OFFSET_HOURS) -> str:
    return to_vietnam_time(value, offset_hours).strftime("%Y-%m-%d %H:%M")
