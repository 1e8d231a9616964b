from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .attendance_service import AttendanceService
from .database.attendance_store import AttendanceRecordStore
from .database.db_manager import DatabaseManager, get_db_manager
from .database.directory import PersonDirectory
from .enrollment import PersonEnrollmentCoordinator
from .photo_storage import PhotoStorage
from .recognition.client import FaceRecognitionClient, IdentityIndexClient


@dataclass(frozen=True)
class Services:
    db: DatabaseManager
    storage: PhotoStorage
    identity: IdentityIndexClient

    directory: PersonDirectory
    attendance_store: AttendanceRecordStore

    attendance_service: AttendanceService
    enrollment: PersonEnrollmentCoordinator


def build_services(
    *,
    db_manager: Optional[DatabaseManager] = None,
    identity: Optional[IdentityIndexClient] = None,
    storage: Optional[PhotoStorage] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    db = db_manager or get_db_manager()
    if not db.initialize():
        raise RuntimeError(f"Database initialization failed: {db.database_url}")

    storage = storage or PhotoStorage()
    identity = identity or FaceRecognitionClient()

    directory = PersonDirectory(db)
    attendance_store = AttendanceRecordStore(db)

    return Services(
        db=db,
        storage=storage,
        identity=identity,
        directory=directory,
        attendance_store=attendance_store,
        attendance_service=AttendanceService(db, directory, attendance_store, identity, clock=clock),
        enrollment=PersonEnrollmentCoordinator(directory, identity, storage),
    )
