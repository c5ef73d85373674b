# SPDX-License-Identifier: GPL-3.0-or-later
"""
Utility functions for iosextractor.

Date argument parsing and verbose diagnostics shared across the toolkit.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import calendar
import re
import sys
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

from tqdm import tqdm

SinceDate = Tuple[int, int, int]

# Relative --since keywords, in days before today
SINCE_KEYWORDS = {
    "last-week": 8,
    "last-month": 32,
}


def print_verbose(message: str, verbose: bool) -> None:
    """Print a diagnostic line to stderr when verbose mode is enabled."""
    if verbose:
        tqdm.write(message, file=sys.stderr)


def parse_iso_date(date_str: Optional[str]) -> Optional[SinceDate]:
    """
    Parse a YYYY-MM-DD date into a (year, month, day) tuple.

    Month and day may be given with a single digit. Only realistic dates
    are accepted: years 1970-2999 and days that exist in the given month.

    Returns:
        (year, month, day) or None if the string is not a valid date
    """
    if not date_str:
        return None

    match = re.match(r"^(\d{4})-(\d\d?)-(\d\d?)$", date_str)
    if not match:
        return None

    year, month, day = (int(part) for part in match.groups())

    if not 1969 < year < 3000 or not 0 < month < 13:
        return None
    if not 0 < day <= calendar.monthrange(year, month)[1]:
        return None

    return year, month, day


def resolve_since_argument(
    since_arg: str, today: Optional[date] = None
) -> SinceDate:
    """
    Resolve a --since argument into a (year, month, day) tuple.

    Accepts YYYY-MM-DD (underscores are treated as dashes) or one of the
    keywords in SINCE_KEYWORDS.

    Raises:
        ValueError: if the argument is neither a keyword nor a valid date
    """
    normalized = since_arg.strip().replace("_", "-")

    offset_days = SINCE_KEYWORDS.get(normalized.lower())
    if offset_days is not None:
        if today is None:
            today = date.today()
        normalized = (today - timedelta(days=offset_days)).strftime("%Y-%m-%d")

    since_date = parse_iso_date(normalized)
    if since_date is None:
        raise ValueError(f'Invalid --since DATE: "{normalized}"')

    return since_date


def is_older_than_since(timestamp: datetime, since_date: SinceDate) -> bool:
    """Compare a timestamp against a since-date by calendar day only."""
    return (timestamp.year, timestamp.month, timestamp.day) < tuple(since_date)


def format_local_time(utc_time: Optional[datetime]) -> str:
    """Render a naive UTC datetime (as produced by plistlib) in local time."""
    if not isinstance(utc_time, datetime):
        return "Unknown"

    if utc_time.tzinfo is None:
        utc_time = utc_time.replace(tzinfo=timezone.utc)

    return utc_time.astimezone().strftime("%Y-%m-%d %H:%M")
