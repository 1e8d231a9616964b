from __future__ import annotations

import asyncio
from datetime import time

import pytest

from presence_backend.attendance_service import AttendanceService
from presence_backend.database import AttendanceRecordStore
from presence_backend.database.models import AttendanceRecord
from presence_backend.decision import AttendanceAction
from presence_backend.errors import NoMatch, NotCheckedIn, PersonNotFound, RecognitionUnavailable
from presence_backend.recognition import ImageUpload


@pytest.fixture
def service(db_manager, directory, store, face_index, clock):
    return AttendanceService(db_manager, directory, store, face_index, clock=clock)


@pytest.fixture
def ana(directory, face_index):
    person = directory.add_person(name="Ana", email="ana@school.id")
    face_index.next_match = person.id
    return person


def recognize(service, png_bytes):
    return asyncio.run(service.record_attendance(ImageUpload(png_bytes, "capture.png", "image/png")))


def records_of(db_manager, person_id):
    with db_manager.get_session() as session:
        return session.query(AttendanceRecord).filter_by(person_id=person_id).all()


def test_full_day(service, ana, clock, png_bytes, db_manager):
    clock.set(6, 55)
    result = recognize(service, png_bytes)
    assert result.action == AttendanceAction.CHECK_IN
    assert result.record.status == "PRESENT"
    assert result.record.check_in == time(6, 55)

    clock.set(7, 5)
    result = recognize(service, png_bytes)
    assert result.action == AttendanceAction.ALREADY_CHECKED_IN
    assert result.record.status == "PRESENT"
    assert result.record.check_in == time(6, 55)

    clock.set(14, 40)
    result = recognize(service, png_bytes)
    assert result.action == AttendanceAction.CHECK_OUT
    assert result.record.check_out == time(14, 40)
    assert result.record.status == "PRESENT"

    clock.set(14, 45)
    result = recognize(service, png_bytes)
    assert result.action == AttendanceAction.ALREADY_CHECKED_OUT
    assert result.record.check_out == time(14, 40)

    assert len(records_of(db_manager, ana.id)) == 1


def test_late_arrival(service, ana, clock, png_bytes):
    clock.set(7, 5)

    result = recognize(service, png_bytes)

    assert result.record.status == "LATE"
    assert result.message == "Checked in: Ana"


def test_checkout_without_checkin_writes_nothing(service, ana, clock, png_bytes, db_manager):
    clock.set(14, 40)

    with pytest.raises(NotCheckedIn):
        recognize(service, png_bytes)

    assert records_of(db_manager, ana.id) == []


def test_no_match_propagates(service, face_index, png_bytes):
    face_index.next_match = None

    with pytest.raises(NoMatch):
        recognize(service, png_bytes)


def test_recognition_outage_propagates(service, ana, face_index, png_bytes):
    face_index.fail_on.add("recognize")

    with pytest.raises(RecognitionUnavailable):
        recognize(service, png_bytes)


def test_recognized_id_without_person(service, face_index, png_bytes):
    face_index.next_match = 404

    with pytest.raises(PersonNotFound):
        recognize(service, png_bytes)


class StaleReadStore(AttendanceRecordStore):
    """Misses the first existing record, like a request racing another one."""

    def __init__(self, db_manager):
        super().__init__(db_manager)
        self.stale_reads = 1

    def find_today(self, person_id, day):
        if self.stale_reads:
            self.stale_reads -= 1
            return None
        return super().find_today(person_id, day)


def test_losing_a_checkin_race_returns_the_winner(db_manager, directory, store, face_index, clock, ana, png_bytes):
    clock.set(6, 50)
    store.create(ana.id, clock.now.date(), "PRESENT", time(6, 50))

    racing = AttendanceService(db_manager, directory, StaleReadStore(db_manager), face_index, clock=clock)
    clock.set(7, 10)
    result = recognize(racing, png_bytes)

    assert result.action == AttendanceAction.ALREADY_CHECKED_IN
    assert result.record.check_in == time(6, 50)
    assert result.record.status == "PRESENT"
    assert len(records_of(db_manager, ana.id)) == 1


def test_thresholds_come_from_system_config(service, db_manager, ana, clock, png_bytes):
    db_manager.set_config("checkin_time", "08:00")
    service.refresh_config()
    clock.set(7, 30)

    result = recognize(service, png_bytes)

    assert result.record.status == "PRESENT"


def test_today_listing_uses_clock_date(service, ana, clock, png_bytes):
    clock.set(6, 55)
    recognize(service, png_bytes)

    records, last_page = service.get_today_records()

    assert last_page == 1
    assert records[0]["user"]["email"] == "ana@school.id"
    assert records[0]["date"] == "2025-03-10"
