"""Day-type and season classification - pure functions of (date, configuration)"""

from datetime import date
from typing import Iterable, Mapping, Optional

from .rate_table import WEEKDAYS, SeasonWindow


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def classify_day_type(day: date, weekday_day_types: Mapping[str, str]) -> str:
    """
    Map a calendar date to its pricing day type.

    Args:
        day: Service date
        weekday_day_types: e.g. {"monday": "standard", ..., "saturday": "premium"}

    Returns:
        Day-type token
    """
    return weekday_day_types[weekday_name(day)]


def _month_day(value: str) -> tuple[int, int]:
    month, day_of_month = value.split("-")
    return int(month), int(day_of_month)


def classify_season(day: date, seasons: Iterable[SeasonWindow]) -> Optional[str]:
    """Return the first season window containing the date, or None"""
    key = (day.month, day.day)
    for season in seasons:
        start, end = _month_day(season.start), _month_day(season.end)
        if start <= end:
            if start <= key <= end:
                return season.name
        elif key >= start or key <= end:
            # Window wraps the year end, e.g. 12-15 -> 01-05
            return season.name
    return None
