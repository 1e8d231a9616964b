from __future__ import annotations

from datetime import datetime, time
from types import SimpleNamespace

import pytest

from presence_backend.database.models import AttendanceStatus
from presence_backend.decision import AttendanceAction, AttendanceWindow, decide
from presence_backend.errors import NotCheckedIn

WINDOW = AttendanceWindow(checkin_threshold=time(7, 0), checkout_threshold=time(14, 30))


def at(hour: int, minute: int, second: int = 0, microsecond: int = 0) -> datetime:
    return datetime(2025, 3, 10, hour, minute, second, microsecond)


def record(check_in=time(6, 55), check_out=None, status="PRESENT"):
    return SimpleNamespace(check_in=check_in, check_out=check_out, status=status)


def test_early_arrival_is_present():
    decision = decide(at(6, 55), WINDOW, None)

    assert decision.action == AttendanceAction.CHECK_IN
    assert decision.status == AttendanceStatus.PRESENT
    assert decision.at == time(6, 55)


def test_arrival_exactly_at_checkin_threshold_is_present():
    assert decide(at(7, 0, 0), WINDOW, None).status == AttendanceStatus.PRESENT


def test_arrival_one_second_after_threshold_is_late():
    assert decide(at(7, 0, 1), WINDOW, None).status == AttendanceStatus.LATE


def test_fraction_of_a_second_past_checkin_is_late():
    decision = decide(at(7, 0, 0, 999999), WINDOW, None)

    assert decision.status == AttendanceStatus.LATE
    assert decision.at == time(7, 0)


def test_fraction_of_a_second_past_checkout_checks_out():
    decision = decide(at(14, 30, 0, 1), WINDOW, record())

    assert decision.action == AttendanceAction.CHECK_OUT
    assert decision.at == time(14, 30)


def test_second_recognition_before_checkout_is_noop():
    decision = decide(at(7, 5), WINDOW, record())

    assert decision.action == AttendanceAction.ALREADY_CHECKED_IN
    assert decision.status is None
    assert decision.at is None


def test_exact_checkout_threshold_still_counts_as_checkin_window():
    assert decide(at(14, 30), WINDOW, record()).action == AttendanceAction.ALREADY_CHECKED_IN
    assert decide(at(14, 30), WINDOW, None).status == AttendanceStatus.LATE


def test_checkout_without_checkin_is_rejected():
    with pytest.raises(NotCheckedIn):
        decide(at(14, 40), WINDOW, None)


def test_checkout_sets_time_and_keeps_status():
    decision = decide(at(14, 40), WINDOW, record(status="LATE"))

    assert decision.action == AttendanceAction.CHECK_OUT
    assert decision.at == time(14, 40)
    assert decision.status is None


def test_repeated_checkout_is_noop():
    decision = decide(at(14, 45), WINDOW, record(check_out=time(14, 40)))

    assert decision.action == AttendanceAction.ALREADY_CHECKED_OUT


def test_window_requires_checkin_before_checkout():
    with pytest.raises(ValueError):
        AttendanceWindow(checkin_threshold=time(15, 0), checkout_threshold=time(14, 30))
