"""
Attendance Service for the Presence Backend
===========================================
Core business flow for kiosk recognitions.

Flow:
1. Send the captured image to the remote recognition service
2. Look up the recognized person
3. Classify the event from the clock and today's record (decision.decide)
4. Create the check-in record or set the check-out time
"""

import logging
from datetime import datetime, date, time
from typing import Optional, Callable, Tuple, List

from .database.db_manager import DatabaseManager
from .database.directory import PersonDirectory
from .database.attendance_store import AttendanceRecordStore
from .database.models import AttendanceRecord, Person
from .decision import AttendanceAction, AttendanceDecision, AttendanceWindow, decide
from .errors import AttendanceConflict
from .recognition.client import IdentityIndexClient, ImageUpload

# Configure logging
logger = logging.getLogger(__name__)

_MESSAGES = {
    AttendanceAction.CHECK_IN: "Checked in",
    AttendanceAction.CHECK_OUT: "Checked out",
    AttendanceAction.ALREADY_CHECKED_IN: "Already checked in today",
    AttendanceAction.ALREADY_CHECKED_OUT: "Already checked out today",
}


class AttendanceResult:
    """
    Result of an attendance operation.
    Provides a structured response for API endpoints.
    """

    def __init__(self, action: AttendanceAction, person: Person, record: AttendanceRecord):
        self.action = action
        self.person = person
        self.record = record

    @property
    def changed(self) -> bool:
        return self.action in (AttendanceAction.CHECK_IN, AttendanceAction.CHECK_OUT)

    @property
    def message(self) -> str:
        return f"{_MESSAGES[self.action]}: {self.person.name}"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "action": self.action.value,
            "user": self.person.to_dict(),
            "attendance": self.record.to_dict()
        }


class AttendanceService:
    """
    Main service for handling attendance operations.

    Usage:
        service = AttendanceService(db, directory, store, face_client)
        result = await service.record_attendance(ImageUpload(jpeg_bytes))
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        directory: PersonDirectory,
        store: AttendanceRecordStore,
        identity: IdentityIndexClient,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize attendance service.

        Args:
            clock: Returns the current local time. Defaults to datetime.now
        """
        self.db = db_manager
        self.directory = directory
        self.store = store
        self.identity = identity
        self.clock = clock or datetime.now
        self._cache_config()

    def _cache_config(self):
        """Cache frequently used configuration values."""
        self.window = AttendanceWindow(
            checkin_threshold=self.db.get_config_time("checkin_time", time(7, 0)),
            checkout_threshold=self.db.get_config_time("checkout_time", time(14, 30))
        )
        self.page_size = self.db.get_config_int("page_size", 10)

        logger.debug(
            f"Config cached: checkin={self.window.checkin_threshold}, "
            f"checkout={self.window.checkout_threshold}"
        )

    def refresh_config(self):
        """Refresh cached configuration from database."""
        self._cache_config()

    async def record_attendance(self, image: ImageUpload) -> AttendanceResult:
        """
        Recognize the person in a kiosk image and record their attendance.

        Raises:
            NoMatch / RecognitionUnavailable: from the recognition service
            PersonNotFound: recognized id has no local person
            NotCheckedIn: check-out time reached without a check-in today
        """
        person_id = await self.identity.recognize(image)
        person = self.directory.require_person(person_id)

        now = self.clock()
        result = self.apply(person, now)

        logger.info(f"[ATTENDANCE] {result.action.value}: {person.name} ({person.id}) at {now:%H:%M:%S}")
        return result

    def apply(self, person: Person, now: datetime) -> AttendanceResult:
        """Decide and persist one recognition event for a known person."""
        today = now.date()
        existing = self.store.find_today(person.id, today)
        decision = decide(now, self.window, existing)

        try:
            action, record = self._persist(person.id, today, decision, existing)
        except AttendanceConflict:
            # A concurrent recognition inserted today's record first; re-decide on it
            existing = self.store.find_today(person.id, today)
            decision = decide(now, self.window, existing)
            action, record = self._persist(person.id, today, decision, existing)

        return AttendanceResult(action, person, record)

    def _persist(
        self,
        person_id: int,
        today: date,
        decision: AttendanceDecision,
        existing: Optional[AttendanceRecord]
    ) -> Tuple[AttendanceAction, AttendanceRecord]:
        if decision.action == AttendanceAction.CHECK_IN:
            record = self.store.create(person_id, today, decision.status.value, decision.at)
            return decision.action, record

        if decision.action == AttendanceAction.CHECK_OUT:
            record, applied = self.store.set_checkout(existing.id, decision.at)
            if not applied:
                logger.info(f"[ATTENDANCE] Check-out for {person_id} already recorded at {record.check_out}")
                return AttendanceAction.ALREADY_CHECKED_OUT, record
            return decision.action, record

        return decision.action, existing

    # ============== Query Methods ==============

    def get_today_records(self, page: int = 1, limit: Optional[int] = None) -> Tuple[List[dict], int]:
        """Paginated attendance records of today."""
        return self.store.list_for_date(self.clock().date(), page, limit or self.page_size)
