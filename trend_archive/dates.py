"""UTC calendar helpers shared by the write and read paths."""

from datetime import date, datetime, timedelta, timezone
from typing import Tuple, Union


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def parse_date(value: Union[str, date]) -> date:
    """
    Parse a strict YYYY-MM-DD string into a date.

    Raises:
        ValueError: if the value is not a real calendar date in that format
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if len(value) != 10 or value[4] != "-" or value[7] != "-":
        raise ValueError(f"Invalid date format: {value!r} (expected YYYY-MM-DD)")
    return date.fromisoformat(value)


def is_valid_date(value: str) -> bool:
    try:
        parse_date(value)
    except (ValueError, TypeError):
        return False
    return True


def days_before(day: date, days: int) -> date:
    return day - timedelta(days=days)


def monday_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def sunday_of_week(monday: date) -> date:
    return monday + timedelta(days=6)


def week_bounds(day: date) -> Tuple[date, date]:
    """Return the Monday..Sunday range containing ``day``."""
    monday = monday_of_week(day)
    return monday, sunday_of_week(monday)
