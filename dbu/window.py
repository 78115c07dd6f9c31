# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Window - Time-of-day window in which backups may start.
"""

from datetime import datetime, time, UTC
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dbu.exceptions import ConfigurationError


def _parse_hhmm(value: str, name: str) -> time:
    try:
        hour, minute = (int(p) for p in value.split(":"))
        return time(hour, minute)
    except ValueError as e:
        raise ConfigurationError(f"Invalid window {name}: {value!r}, expected HH:MM") from e


def in_window(now: datetime, start: str, end: str, timezone: str = "") -> bool:
    """
    Check whether now falls inside the [start, end] window.

    Empty start and end mean no restriction. With only a start, any time
    from start to midnight matches; with only an end, any time from
    midnight to end. When end is earlier than start the window wraps past
    midnight. Comparison is at minute resolution, bounds inclusive.

    Args:
        now: Current time (naive values are taken as UTC)
        start: "HH:MM" or ""
        end: "HH:MM" or ""
        timezone: IANA zone the window is expressed in; "" keeps now's zone

    Returns:
        True if a backup may start now

    Raises:
        ConfigurationError: On an unknown timezone or malformed time
    """
    if not start and not end:
        return True

    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    if timezone:
        try:
            now = now.astimezone(ZoneInfo(timezone))
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Invalid timezone: {timezone!r}") from e

    current = time(now.hour, now.minute)
    start_t = _parse_hhmm(start, "start") if start else None
    end_t = _parse_hhmm(end, "end") if end else None

    if start_t is not None and end_t is None:
        return current >= start_t
    if start_t is None and end_t is not None:
        return current <= end_t

    if end_t > start_t:
        return start_t <= current <= end_t
    # Wraps past midnight
    return current >= start_t or current <= end_t
