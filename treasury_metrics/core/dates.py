"""Date handling and backward pagination over day-windows.

The Graph Protocol's hosted endpoints cap each query at 1000 records. Ethereum
produces the most records per day, so the window width is chosen to keep a
single window's worth of records under that cap.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional, Union
import logging

from .errors import InvalidDateError

logger = logging.getLogger(__name__)

OFFSET_DAYS = 10
DATE_FORMAT = "%Y-%m-%d"


def utc_midnight(value: datetime) -> datetime:
    """Normalise a datetime to 00:00:00 UTC on the same (UTC) day."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)

    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_start_date(value: Union[str, datetime]) -> datetime:
    """Parse a ``YYYY-MM-DD`` string into a UTC-midnight datetime.

    Args:
        value: Date string, or an existing datetime

    Returns:
        Timezone-aware datetime at UTC midnight

    Raises:
        InvalidDateError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return utc_midnight(value)

    if not isinstance(value, str):
        raise InvalidDateError(f"startDate should be in the YYYY-MM-DD format, got {value!r}")

    try:
        parsed = datetime.strptime(value.strip(), DATE_FORMAT)
    except ValueError:
        raise InvalidDateError(f"startDate should be in the YYYY-MM-DD format, got {value!r}")

    return parsed.replace(tzinfo=timezone.utc)


def get_iso8601_date_string(value: datetime) -> str:
    """Return the ``YYYY-MM-DD`` portion of a datetime."""
    return value.strftime(DATE_FORMAT)


def get_offset_days(date_offset: Optional[int] = None) -> int:
    """Return the window width, falling back to the default when unset or zero."""
    if not date_offset:
        return OFFSET_DAYS

    if date_offset < 0:
        raise InvalidDateError(f"dateOffset must be positive, got {date_offset}")

    return date_offset


def get_tomorrow(now: Optional[datetime] = None) -> datetime:
    """Return tomorrow at UTC midnight."""
    current = now or datetime.now(timezone.utc)
    return utc_midnight(current) + timedelta(days=1)


@dataclass(frozen=True)
class DateWindow:
    """A half-open ``[start, end)`` range of days."""

    start: datetime
    end: datetime

    @property
    def start_date(self) -> str:
        return get_iso8601_date_string(self.start)

    @property
    def end_date(self) -> str:
        return get_iso8601_date_string(self.end)

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def __iter__(self):
        # Allows ``start, end = window``
        return iter((self.start, self.end))


class DateWindowPaginator:
    """Produces day-windows walking backward from tomorrow to a start date.

    Each window is ``offset_days`` wide. A window that would begin before
    ``final_start_date`` is clamped to begin exactly on it, and iteration ends
    after that window has been yielded. The sequence is recomputed on every
    call to ``iter()``, so the paginator can be iterated more than once.

    Example:
        >>> paginator = DateWindowPaginator("2023-01-01", offset_days=10)
        >>> for window in paginator:
        ...     query(window.start_date, window.end_date)
    """

    def __init__(self, final_start_date: Union[str, datetime],
                 offset_days: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialize paginator.

        Args:
            final_start_date: Inclusive lower bound, ``YYYY-MM-DD`` or datetime
            offset_days: Window width in days (defaults to ``OFFSET_DAYS``)
            clock: Returns the current time; used to derive "tomorrow"

        Raises:
            InvalidDateError: If ``final_start_date`` does not parse, or
                ``offset_days`` is negative
        """
        self.final_start_date = parse_start_date(final_start_date)
        self.offset_days = get_offset_days(offset_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _next_start(self, end: datetime) -> datetime:
        candidate = end - timedelta(days=self.offset_days)

        # Clamp so that no window extends before the final start date
        if candidate < self.final_start_date:
            return self.final_start_date

        return candidate

    def __iter__(self) -> Iterator[DateWindow]:
        end = get_tomorrow(self._clock())

        if self.final_start_date >= end:
            logger.debug(f"Start date {get_iso8601_date_string(self.final_start_date)} is not before tomorrow, no windows")
            return

        while True:
            start = self._next_start(end)
            yield DateWindow(start=start, end=end)

            if start == self.final_start_date:
                return

            end = start

