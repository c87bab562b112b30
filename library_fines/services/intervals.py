"""Interval string parsing for loan, fine and grace period durations.

Handles the human-authored forms used in circulation policy:
- Count + unit terms: "2 days", "1 min 2 seconds", "1 week and 3 days"
- Clock form: "02:20:05"
- Signed terms: "1 day -2 hours"

Months and years are fixed approximations (1/12 and 1 of a 365-day year).

Example:
    >>> interval_to_seconds("02:20:05")
    8405
    >>> interval_to_seconds("1 min 2 seconds")
    62
"""

import logging
import re

from library_fines.services.errors import InvalidIntervalError

logger = logging.getLogger(__name__)

SECOND = 1
MINUTE = 60
HOUR = 3600
DAY = 86400
WEEK = 604800
YEAR = 365 * DAY
MONTH = YEAR // 12

# Checked in order: "mon" must win over "min", and both over bare "m".
UNIT_PREFIXES = (
    ("mon", MONTH),
    ("min", MINUTE),
    ("s", SECOND),
    ("h", HOUR),
    ("d", DAY),
    ("w", WEEK),
    ("y", YEAR),
)

HMS_PATTERN = re.compile(r"([+-]?)\s*(\d+):(\d{2}):(\d{2})")
AND_PATTERN = re.compile(r"\band\b")
TERM_PATTERN = re.compile(r"([+-]?)\s*([\d.]+)\s*([a-z]+)")


def unit_seconds(unit: str) -> int | None:
    """Return the multiplier for a unit word, or None if unrecognized."""
    for prefix, seconds in UNIT_PREFIXES:
        if unit.startswith(prefix):
            return seconds
    return None


def _expand_hms(match: re.Match) -> str:
    # A leading sign applies to the whole clock value, so repeat it per term.
    sign = match.group(1)
    hours, minutes, seconds = (int(part) for part in match.groups()[1:])
    return f" {sign}{hours} h {sign}{minutes} min {sign}{seconds} s "


def interval_to_seconds(interval: str) -> int:
    """
    Convert an interval string to a signed number of seconds.

    Parsing is tolerant: a term with an unknown unit contributes nothing and
    a term whose count is not an integer is skipped, both with a warning.

    Args:
        interval: Interval text (e.g., "2 days", "02:20:05", "1 hour and 30 minutes")

    Returns:
        Total seconds (may be negative). Blank input yields 0.

    Raises:
        InvalidIntervalError: If interval is not a string, or if it is
            non-blank and contains no count + unit term at all

    Examples:
        >>> interval_to_seconds("2 days")
        172800
        >>> interval_to_seconds("1 day -2 hours")
        79200
        >>> interval_to_seconds("")
        0
    """
    if not isinstance(interval, str):
        raise InvalidIntervalError(f"Invalid/unsupported interval string: {interval!r}")

    text = interval.strip().lower()
    if not text:
        return 0

    text = AND_PATTERN.sub(" ", text).replace(",", " ")
    text = HMS_PATTERN.sub(_expand_hms, text)

    total = 0
    matched = False
    for sign, count_text, unit in TERM_PATTERN.findall(text):
        matched = True
        try:
            count = int(count_text)
        except ValueError:
            logger.warning("Skipping unparsable count %r in interval %r", count_text, interval)
            continue

        multiplier = unit_seconds(unit)
        if multiplier is None:
            logger.warning("Ignoring unknown unit %r in interval %r", unit, interval)
            continue

        if sign == "-":
            count = -count
        total += count * multiplier

    if not matched:
        # Unreadable policy text is an InvalidInterval error, not a zero duration.
        raise InvalidIntervalError(f"Invalid/unsupported interval string: {interval}")

    return total


__all__ = ["interval_to_seconds", "unit_seconds"]
