"""
Schedule Window Module

Resolves the closed date window [start, end] a run operates on, from the
configured schedule mode and the current time:

- no mode: explicit date_from/date_to, both required
- hourly: yesterday if it is the midnight hour, else today
- daily: yesterday
- weekly: today-8 days .. today-1 day
- anything else: warning, explicit dates (which may be empty)

Windows are calendar dates. When applied to timestamp columns the window
covers [start 00:00:00.000, end+1 day - 3 ms], matching the SQL Server
datetime end-of-day value 23:59:59.997.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Optional, Tuple, Union
import logging

from warehouse_sync.config import ConfigurationError

logger = logging.getLogger(__name__)

END_OF_DAY_EPSILON = timedelta(milliseconds=3)

DateLike = Union[date, datetime, str, None]


@dataclass(frozen=True)
class SyncWindow:
    """Closed date range. Both bounds are None when no window could be resolved."""

    start: Optional[date]
    end: Optional[date]

    def __post_init__(self):
        if (self.start is None) != (self.end is None):
            raise ConfigurationError(
                f"Window needs both bounds or neither (got {self.start} .. {self.end})"
            )
        if self.start is not None and self.start > self.end:
            raise ConfigurationError(f"Window start {self.start} is after end {self.end}")

    @property
    def is_empty(self) -> bool:
        return self.start is None

    def require(self, purpose: str = "this operation") -> "SyncWindow":
        """Return self, or raise ConfigurationError if the window is empty."""
        if self.is_empty:
            raise ConfigurationError(f"A date window is required for {purpose} but none was resolved")
        return self

    def bounds(self) -> Tuple[datetime, datetime]:
        """Timestamp bounds for BETWEEN predicates on datetime columns."""
        self.require("a date-filtered query")
        return window_bounds(self.start, self.end)

    def as_strings(self) -> Tuple[Optional[str], Optional[str]]:
        """Bounds as yyyy-MM-dd strings (None when empty)."""
        if self.is_empty:
            return None, None
        return self.start.isoformat(), self.end.isoformat()

    def to_dict(self) -> Dict[str, Optional[str]]:
        start, end = self.as_strings()
        return {"start": start, "end": end}

    @classmethod
    def from_dict(cls, data: Dict[str, Optional[str]]) -> "SyncWindow":
        return cls(parse_date(data.get("start")), parse_date(data.get("end")))

    def __str__(self) -> str:
        if self.is_empty:
            return "<no window>"
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


def parse_date(value: DateLike) -> Optional[date]:
    """
    Parse a config date value into a date.

    Accepts date/datetime objects, 'yyyy-MM-dd' strings and ISO datetime
    strings (time part dropped). Blank values give None.

    Raises:
        ConfigurationError: If a non-blank string cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise ConfigurationError(f"Invalid date '{value}': expected yyyy-MM-dd")


def window_bounds(start: date, end: date) -> Tuple[datetime, datetime]:
    """
    Convert a date window into inclusive timestamp bounds.

    Returns:
        (start 00:00:00.000, end + 1 day - 3 ms)
    """
    lower = datetime.combine(start, datetime.min.time())
    upper = datetime.combine(end, datetime.min.time()) + timedelta(days=1) - END_OF_DAY_EPSILON
    return lower, upper


def yesterday_window(now: datetime) -> SyncWindow:
    yesterday = now.date() - timedelta(days=1)
    return SyncWindow(yesterday, yesterday)


def resolve_window(
    mode: Optional[str],
    explicit_from: DateLike,
    explicit_to: DateLike,
    now: datetime,
) -> SyncWindow:
    """
    Resolve the run window from the schedule mode.

    Args:
        mode: Schedule mode (case-insensitive); None/blank uses explicit dates
        explicit_from: Configured start date (yyyy-MM-dd or date)
        explicit_to: Configured end date (yyyy-MM-dd or date)
        now: Current time

    Returns:
        Resolved SyncWindow (empty only for an unrecognized mode without
        explicit dates)

    Raises:
        ConfigurationError: If no mode is set and an explicit bound is missing
    """
    normalized = (mode or "").strip().lower()
    today = now.date()

    if not normalized:
        start, end = parse_date(explicit_from), parse_date(explicit_to)
        if start is None or end is None:
            raise ConfigurationError(
                "No schedule mode configured: both DateFrom and DateTo are required"
            )
        return SyncWindow(start, end)

    if normalized == "hourly":
        # Only the midnight hour is special; every other hour syncs today.
        if now.hour == 0:
            return yesterday_window(now)
        return SyncWindow(today, today)

    if normalized == "daily":
        return yesterday_window(now)

    if normalized == "weekly":
        return SyncWindow(today - timedelta(days=8), today - timedelta(days=1))

    logger.warning(
        f"Unrecognized schedule mode '{mode}'; falling back to explicit dates "
        f"({explicit_from or 'none'} to {explicit_to or 'none'})"
    )
    start, end = parse_date(explicit_from), parse_date(explicit_to)
    if start is None or end is None:
        return SyncWindow(None, None)
    return SyncWindow(start, end)
