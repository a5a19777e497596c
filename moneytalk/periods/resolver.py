"""
Period Resolver

All transaction dates are stored in UTC, but "this week" and "this month"
are questions about the user's local calendar. This module is the only
place where local wall-clock time and UTC meet.

DESIGN DECISION: Calendar arithmetic happens in the local zone.
Subtracting one month from 31 March local time must land on the last day
of February local time, so windows are computed with relativedelta on the
local datetime and only then converted to UTC.

CRITICAL: The storage format is fixed-width UTC with a trailing Z
(YYYY-MM-DDTHH:MM:SS.mmmZ). String comparison of stored dates therefore
equals chronological comparison, which the store relies on for filtering.
"""

from datetime import datetime, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from moneytalk.models.transaction import Period, to_utc


logger = structlog.get_logger(__name__)


PERIOD_DELTAS = {
    Period.WEEK: relativedelta(days=7),
    Period.MONTH: relativedelta(months=1),
    Period.YEAR: relativedelta(years=1),
}


def host_timezone() -> tzinfo:
    """The host's local zone."""
    return datetime.now().astimezone().tzinfo


def resolve_timezone(tz: Union[str, tzinfo, None] = None) -> tzinfo:
    """
    Resolve an IANA zone name to a tzinfo.

    None or an unknown name resolves to the host zone.
    """
    if isinstance(tz, tzinfo):
        return tz
    if not tz:
        return host_timezone()
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone", timezone=tz)
        return host_timezone()


def known_timezone(name: Optional[str]) -> bool:
    """True when name is a resolvable IANA zone."""
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def timezone_name(tz: Union[str, tzinfo, None] = None) -> str:
    """Identifier of the zone, as shown to the AI provider."""
    resolved = resolve_timezone(tz)
    if isinstance(resolved, ZoneInfo):
        return resolved.key
    return resolved.tzname(datetime.now(resolved)) or "UTC"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now(tz: Union[str, tzinfo, None] = None) -> datetime:
    """Current aware datetime in the given (or host) zone."""
    return utc_now().astimezone(resolve_timezone(tz))


def local_now_iso(tz: Union[str, tzinfo, None] = None) -> str:
    """Current local wall-clock time as YYYY-MM-DDTHH:MM:SS."""
    return now(tz).strftime("%Y-%m-%dT%H:%M:%S")


def coerce_period(period: Union[Period, str]) -> Period:
    """Unknown period names mean the whole history."""
    if isinstance(period, Period):
        return period
    try:
        return Period(str(period).strip().lower())
    except ValueError:
        return Period.ALL


def window_start(
    period: Union[Period, str],
    tz: Union[str, tzinfo, None] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    UTC instant at which a period window opens.

    Args:
        period: week, month, year or all
        tz: user zone (None = host zone)
        now: reference instant; defaults to the current time

    Returns:
        Aware UTC datetime, or None for Period.ALL (no lower bound).
    """
    resolved_period = coerce_period(period)
    if resolved_period == Period.ALL:
        return None

    zone = resolve_timezone(tz)
    reference = now if now is not None else utc_now()
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)

    local_reference = reference.astimezone(zone)
    local_start = local_reference - PERIOD_DELTAS[resolved_period]
    return local_start.astimezone(timezone.utc)


def local_to_utc(
    value: Union[str, datetime],
    tz: Union[str, tzinfo, None] = None,
) -> datetime:
    """
    Interpret a wall-clock value in the user's zone and convert it to UTC.

    Values that already carry an offset are converted directly.

    Raises:
        ValueError: If a string value is not an ISO date
    """
    if isinstance(value, str):
        value = date_parser.isoparse(value.strip())

    if value.tzinfo is None:
        value = value.replace(tzinfo=resolve_timezone(tz))

    return to_utc(value)


def parse_stored_date(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored ISO date defensively.

    Returns None (and logs) instead of raising on bad input.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if not value:
        logger.warning("empty_stored_date")
        return None
    try:
        return to_utc(date_parser.isoparse(str(value).strip()))
    except (ValueError, OverflowError) as e:
        logger.warning("unparseable_stored_date", value=str(value), error=str(e))
        return None


def format_utc(value: datetime) -> str:
    """Canonical storage format: YYYY-MM-DDTHH:MM:SS.mmmZ."""
    value = to_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
