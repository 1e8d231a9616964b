"""
Database Models for the Presence Backend
========================================
SQLAlchemy ORM models for enrollment and attendance tracking.

Tables:
- persons: Enrolled people (synced with the remote face index)
- classes: Class groups persons may belong to
- attendance_records: One row per person per day (check-in / check-out)
- system_config: Configurable system parameters
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Time, Text,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class AttendanceStatus(str, Enum):
    """Lateness classification, fixed at check-in."""
    PRESENT = "PRESENT"
    LATE = "LATE"


def _time_str(value):
    return value.strftime("%H:%M:%S") if value else None


def _iso(value):
    return value.isoformat() if value else None


class Classroom(Base):
    """
    Class groups.
    A class cannot be deleted while any person references it.
    """
    __tablename__ = 'classes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    def __repr__(self):
        return f"<Classroom(id={self.id}, name={self.name})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at)
        }


class Person(Base):
    """
    Enrolled persons table.
    Every mutation goes through the enrollment coordinator so that the
    photo column stays in step with the remote face index.
    """
    __tablename__ = 'persons'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    photo = Column(String(255), nullable=True)  # Relative path, e.g. user/1700000000000-alice.jpg
    class_id = Column(Integer, ForeignKey('classes.id'), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    def __repr__(self):
        return f"<Person(id={self.id}, name={self.name}, email={self.email})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "photo": self.photo,
            "class_id": self.class_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at)
        }


class AttendanceRecord(Base):
    """
    Daily attendance record.
    Created on the first recognized event of the day, updated once with
    the check-out time, never touched again.
    """
    __tablename__ = 'attendance_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(
        Integer, ForeignKey('persons.id', ondelete='CASCADE'), nullable=False, index=True
    )
    attendance_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False)  # PRESENT, LATE
    check_in = Column(Time, nullable=True)
    check_out = Column(Time, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    # One record per person per day; concurrent check-ins race on this
    __table_args__ = (
        UniqueConstraint('person_id', 'attendance_date', name='uq_attendance_person_date'),
    )

    def __repr__(self):
        return f"<AttendanceRecord(person={self.person_id}, date={self.attendance_date}, status={self.status})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "person_id": self.person_id,
            "date": _iso(self.attendance_date),
            "status": self.status,
            "check_in": _time_str(self.check_in),
            "check_out": _time_str(self.check_out),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at)
        }


class SystemConfig(Base):
    """
    System configuration parameters.
    Allows runtime configuration without code changes.
    """
    __tablename__ = 'system_config'

    key = Column(String(100), primary_key=True)
    value = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<SystemConfig(key={self.key}, value={self.value})>"


# Default configuration values
DEFAULT_CONFIG = {
    "checkin_time": ("07:00", "Recognitions after this time of day are marked LATE"),
    "checkout_time": ("14:30", "Recognitions after this time of day are check-outs"),
    "page_size": ("10", "Default page size for list endpoints"),
}
