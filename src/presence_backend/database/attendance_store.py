"""
Attendance Record Store
=======================
Persistence of one attendance record per (person, date).

The unique constraint on (person_id, attendance_date) is what serializes
concurrent check-ins, so this works across several server processes.
"""

import logging
from datetime import date, time, datetime
from typing import Optional, Tuple, List

from sqlalchemy.exc import IntegrityError

from .models import AttendanceRecord, Person
from .db_manager import DatabaseManager, paginate
from ..errors import AttendanceConflict, NotFoundError

logger = logging.getLogger(__name__)


class AttendanceRecordStore:
    """Create/read/check-out operations on attendance_records."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def find_today(self, person_id: int, day: date) -> Optional[AttendanceRecord]:
        """Get the record for a person on a given day, if any."""
        with self.db.get_session() as session:
            return session.query(AttendanceRecord).filter_by(
                person_id=person_id,
                attendance_date=day
            ).first()

    def create(self, person_id: int, day: date, status: str, check_in: time) -> AttendanceRecord:
        """
        Insert the check-in record for a person and day.

        Raises:
            AttendanceConflict: a record for (person_id, day) already exists
        """
        with self.db.get_session() as session:
            record = AttendanceRecord(
                person_id=person_id,
                attendance_date=day,
                status=status,
                check_in=check_in,
                check_out=None
            )
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                record = None

        if record is None:
            logger.info(f"[ATTENDANCE] Lost check-in race for person {person_id} on {day}")
            raise AttendanceConflict(f"Attendance for person {person_id} on {day} already exists")

        logger.debug(f"Created attendance record: id={record.id}, person={person_id}, status={status}")
        return record

    def set_checkout(self, record_id: int, check_out: time) -> Tuple[AttendanceRecord, bool]:
        """
        Set check_out on a record unless it is already set.

        Returns:
            (stored record, applied) where applied is False if check_out was
            already present and nothing was written
        """
        with self.db.get_session() as session:
            applied = session.query(AttendanceRecord).filter(
                AttendanceRecord.id == record_id,
                AttendanceRecord.check_out.is_(None)
            ).update(
                {"check_out": check_out, "updated_at": datetime.now()},
                synchronize_session=False
            )
            session.commit()

            record = session.get(AttendanceRecord, record_id)
            if record is None:
                raise NotFoundError("Attendance record not found")
            return record, applied > 0

    def list_for_date(self, day: date, page: int, limit: int) -> Tuple[List[dict], int]:
        """Paginated records of a day, each with its person embedded."""
        with self.db.get_session() as session:
            query = session.query(AttendanceRecord, Person).join(
                Person, Person.id == AttendanceRecord.person_id
            ).filter(
                AttendanceRecord.attendance_date == day
            ).order_by(AttendanceRecord.check_in, AttendanceRecord.id)

            rows, last_page = paginate(query, page, limit)

        data = []
        for record, person in rows:
            item = record.to_dict()
            item["user"] = person.to_dict()
            data.append(item)
        return data, last_page
