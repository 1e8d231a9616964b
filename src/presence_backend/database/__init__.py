"""
Database Module for the Presence Backend
========================================
SQLAlchemy-backed storage with:
- Person / class directory (unique email, referential class checks)
- One attendance record per person per day
- Runtime configuration table
"""

from .models import Person, Classroom, AttendanceRecord, AttendanceStatus, SystemConfig
from .db_manager import DatabaseManager, get_db_manager, paginate
from .directory import PersonDirectory
from .attendance_store import AttendanceRecordStore

__all__ = [
    'Person',
    'Classroom',
    'AttendanceRecord',
    'AttendanceStatus',
    'SystemConfig',
    'DatabaseManager',
    'get_db_manager',
    'paginate',
    'PersonDirectory',
    'AttendanceRecordStore'
]
