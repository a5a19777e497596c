"""Timezone-correct period resolution."""

from moneytalk.periods.resolver import (
    coerce_period,
    format_utc,
    host_timezone,
    known_timezone,
    local_now_iso,
    local_to_utc,
    now,
    parse_stored_date,
    resolve_timezone,
    timezone_name,
    utc_now,
    window_start,
)

__all__ = [
    "coerce_period",
    "format_utc",
    "host_timezone",
    "known_timezone",
    "local_now_iso",
    "local_to_utc",
    "now",
    "parse_stored_date",
    "resolve_timezone",
    "timezone_name",
    "utc_now",
    "window_start",
]
