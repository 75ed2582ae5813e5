"""Start/target date parsing and elapsed-day computation."""

import re
from datetime import date, datetime
from typing import Optional

from .errors import DateBeforeStart, InvalidDateFormat

ISO_FORMAT = "%Y-%m-%d"
SHORT_FORMAT = "%d-%b"

_ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_short_date(value: str) -> bool:
    """Check whether a start date uses the year-less `DD-Mon` form."""
    return "-" in value and len(value) <= 6


def parse_iso_date(value: str) -> date:
    """Parse a strict `YYYY-MM-DD` date."""
    if not _ISO_PATTERN.match(value):
        raise InvalidDateFormat(value, "YYYY-MM-DD")
    try:
        return datetime.strptime(value, ISO_FORMAT).date()
    except ValueError:
        raise InvalidDateFormat(value, "YYYY-MM-DD") from None


def parse_start_date(value: str, today: Optional[date] = None) -> date:
    """Parse an account start date.

    Two forms are accepted:

    - ``DD-Mon`` (e.g. ``14-Dec``), selected when the value contains a hyphen
      and is at most 6 characters long. The year is the current calendar year
      at evaluation time (``today``).
    - ISO ``YYYY-MM-DD``, optionally followed by a ``T...`` time part which is
      ignored.

    Args:
        value: Raw start date from the account.
        today: Evaluation date, defaults to the local current date.

    Returns:
        Parsed start date.
    """
    value = value.strip()

    if is_short_date(value):
        year = (today or date.today()).year
        try:
            # The year goes into the parsed string so 29-Feb works in leap years.
            return datetime.strptime(f"{value}-{year}", f"{SHORT_FORMAT}-%Y").date()
        except ValueError:
            raise InvalidDateFormat(value, "DD-Mon") from None

    if "T" in value:
        value = value.split("T", 1)[0]

    return parse_iso_date(value)


def parse_target_date(value: str) -> date:
    """Parse a target date, which must be strict ISO `YYYY-MM-DD`."""
    return parse_iso_date(value.strip())


def days_between(start: date, target: date) -> int:
    """Whole days from start to target (negative when target is earlier)."""
    return (target - start).days


def resolve_days_passed(
    start_date: str,
    target_date: str,
    today: Optional[date] = None,
) -> int:
    """Compute the number of whole days an account has been running.

    Raises:
        InvalidDateFormat: if either date cannot be parsed.
        DateBeforeStart: if the target date is before the start date.
    """
    start = parse_start_date(start_date, today=today)
    target = parse_target_date(target_date)

    days_passed = days_between(start, target)
    if days_passed < 0:
        raise DateBeforeStart(start_date, target_date)

    return days_passed
