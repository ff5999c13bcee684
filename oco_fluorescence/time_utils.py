"""
Date and Time Utilities for OCO-2 Archive Access

Provides the calendar arithmetic shared across the acquisition pipeline:
the descending date walk, the archive's year/day-of-year folder naming,
and parsing of sounding time strings.

Scientific Context:
OCO-2 Level 2 products are organised on the GES DISC archive by year and
day-of-year. Sounding times are stored as ISO-8601 strings in UTC, usually
with fractional seconds and a trailing 'Z'.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Tuple, Union
import logging

logger = logging.getLogger(__name__)

SOUNDING_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
# Length of the 'YYYY-MM-DDTHH:MM:SS' prefix parsed from sounding strings
SOUNDING_TIME_LENGTH = 19

MEASUREMENT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
MEASUREMENT_DATE_FORMAT = "%Y-%m-%d"


def to_date(value: Union[str, date, datetime]) -> date:
    """
    Coerce an ISO string, date, or datetime to a plain date.

    Raises:
        ValueError: If a string is not a valid ISO date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def iterate_dates_descending(end_date: Union[str, date],
                             start_date: Union[str, date]) -> Iterator[date]:
    """
    Yield dates from end_date backwards, while strictly after start_date.

    The start date itself is never yielded.

    Examples:
        >>> list(iterate_dates_descending('2020-01-03', '2020-01-01'))
        [datetime.date(2020, 1, 3), datetime.date(2020, 1, 2)]
    """
    current = to_date(end_date)
    stop = to_date(start_date)

    while current > stop:
        yield current
        current -= timedelta(days=1)


def count_dates_descending(end_date: Union[str, date], start_date: Union[str, date]) -> int:
    return max((to_date(end_date) - to_date(start_date)).days, 0)


def archive_year_and_day(day: Union[str, date], day_of_year_offset: int = 1) -> Tuple[str, str]:
    """
    Compute the archive folder components for a date.

    The day-of-year is the 1-indexed ordinal day plus the configured offset,
    zero-padded to three digits.

    Args:
        day: Date to resolve
        day_of_year_offset: Offset added to the 1-indexed day-of-year

    Returns:
        Tuple of (year string, day-of-year string), e.g. ('2020', '016')
    """
    day = to_date(day)
    doy = day.timetuple().tm_yday + day_of_year_offset
    return f"{day.year:02d}", f"{doy:03d}"


def decode_time_string(raw: Union[bytes, str]) -> str:
    """Decode an HDF5 fixed-length string to text."""
    if isinstance(raw, bytes):
        raw = raw.decode('ascii')
    return str(raw).rstrip('\x00').strip()


def parse_sounding_time(raw: Union[bytes, str]) -> datetime:
    """
    Parse a sounding time string as a UTC datetime.

    Only the leading 'YYYY-MM-DDTHH:MM:SS' is used; fractional seconds and
    zone designators are ignored.

    Raises:
        ValueError: If the string does not start with a valid timestamp
    """
    text = decode_time_string(raw)
    parsed = datetime.strptime(text[:SOUNDING_TIME_LENGTH], SOUNDING_TIME_FORMAT)
    return parsed.replace(tzinfo=timezone.utc)


def format_measurement_time(moment: datetime) -> str:
    return moment.strftime(MEASUREMENT_TIME_FORMAT)


def format_measurement_date(moment: datetime) -> str:
    return moment.strftime(MEASUREMENT_DATE_FORMAT)
