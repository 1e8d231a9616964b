"""
Attendance decision rules.

A recognition event carries no mode flag: whether it is a check-in or a
check-out follows from the wall-clock time alone. Everything here is pure,
the caller supplies ``now`` and the record already stored for the day.
"""

from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Optional, Protocol

from .database.models import AttendanceStatus
from .errors import NotCheckedIn


class AttendanceAction(str, Enum):
    """What a recognition event did to the day's record."""
    CHECK_IN = "CHECK_IN"
    CHECK_OUT = "CHECK_OUT"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    ALREADY_CHECKED_OUT = "ALREADY_CHECKED_OUT"


class DayRecord(Protocol):
    status: str
    check_in: Optional[time]
    check_out: Optional[time]


@dataclass(frozen=True)
class AttendanceWindow:
    """Times of day splitting arrivals (on time / late) from departures."""

    checkin_threshold: time
    checkout_threshold: time

    def __post_init__(self):
        if self.checkin_threshold >= self.checkout_threshold:
            raise ValueError(
                f"checkin threshold {self.checkin_threshold} must be before "
                f"checkout threshold {self.checkout_threshold}"
            )


@dataclass(frozen=True)
class AttendanceDecision:
    action: AttendanceAction
    status: Optional[AttendanceStatus] = None  # set for CHECK_IN only
    at: Optional[time] = None


def decide(now: datetime, window: AttendanceWindow, existing: Optional[DayRecord]) -> AttendanceDecision:
    """
    Classify a recognition event.

    Both thresholds compare the full time of day with strict greater-than:
    07:00:00 is on time, 07:00:00.5 is late. Only the stored time is cut
    to whole seconds.

    Raises:
        NotCheckedIn: after the checkout threshold with no record for the day
    """
    time_of_day = now.time()
    moment = time_of_day.replace(microsecond=0)

    if time_of_day <= window.checkout_threshold:
        if existing is not None and existing.check_in is not None:
            return AttendanceDecision(AttendanceAction.ALREADY_CHECKED_IN)

        status = AttendanceStatus.LATE if time_of_day > window.checkin_threshold else AttendanceStatus.PRESENT
        return AttendanceDecision(AttendanceAction.CHECK_IN, status=status, at=moment)

    if existing is None:
        raise NotCheckedIn()

    if existing.check_out is not None:
        return AttendanceDecision(AttendanceAction.ALREADY_CHECKED_OUT)

    return AttendanceDecision(AttendanceAction.CHECK_OUT, at=moment)
