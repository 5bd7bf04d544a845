"""
Common Value Objects

Value objects used across the booking and resource domains:
- TimeRange: a half-open interval of aware datetimes [start, end)
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from shared.domain.base import ValueObject


@dataclass(frozen=True)
class TimeRange(ValueObject):
    """
    Time range value object

    Represents the half-open interval [start, end): start is inclusive,
    end is exclusive. Back-to-back ranges therefore never overlap.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start ({self.start}) must be before end ({self.end})")

    @classmethod
    def for_dates(cls, start_date: date, end_date: date, tzinfo) -> 'TimeRange':
        """
        Cover whole calendar days, from the start of start_date up to
        (but excluding) the start of the day after end_date.
        """
        start = datetime.combine(start_date, time.min, tzinfo=tzinfo)
        end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=tzinfo)
        return cls(start, end)

    def truncated_to_minute(self) -> 'TimeRange':
        """Drop seconds and microseconds from both bounds."""
        start = self.start.replace(second=0, microsecond=0)
        end = self.end.replace(second=0, microsecond=0)
        if start >= end:
            end = start + timedelta(minutes=1)
        return TimeRange(start, end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self):
        return f"{self.start.isoformat()} - {self.end.isoformat()}"

    def __repr__(self):
        return f"TimeRange({self.start.isoformat()}, {self.end.isoformat()})"
