from __future__ import annotations

import io
import struct
import zlib
from datetime import datetime
from typing import Optional

import pytest
from PIL import Image

from presence_backend.database import AttendanceRecordStore, DatabaseManager, PersonDirectory
from presence_backend.enrollment import PersonEnrollmentCoordinator
from presence_backend.errors import NoMatch, RecognitionUnavailable
from presence_backend.photo_storage import PhotoStorage
from presence_backend.recognition import ImageUpload


def make_png(color=(200, 120, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_oversized_png(width=20000, height=20000) -> bytes:
    """A small PNG whose header claims huge dimensions."""
    data = bytearray(make_png())
    # IHDR payload starts after the 8 byte signature plus 8 bytes of chunk length and type
    ihdr = data[16:29]
    ihdr[0:8] = struct.pack(">II", width, height)
    data[16:29] = ihdr
    data[29:33] = struct.pack(">I", zlib.crc32(b"IHDR" + bytes(ihdr)) & 0xFFFFFFFF)
    return bytes(data)


class FakeFaceIndex:
    """In-memory stand-in for the remote recognition service."""

    def __init__(self):
        self.templates: dict[int, bytes] = {}
        self.calls: list[tuple[str, Optional[int]]] = []
        self.fail_on: set[str] = set()
        self.next_match: Optional[int] = None

    def _maybe_fail(self, operation: str):
        if operation in self.fail_on:
            raise RecognitionUnavailable(f"{operation} failed")

    async def enroll(self, person_id: int, image: ImageUpload) -> None:
        self.calls.append(("enroll", person_id))
        self._maybe_fail("enroll")
        self.templates[person_id] = image.content

    async def update(self, person_id: int, image: ImageUpload) -> None:
        self.calls.append(("update", person_id))
        self._maybe_fail("update")
        self.templates[person_id] = image.content

    async def delete(self, person_id: int) -> None:
        self.calls.append(("delete", person_id))
        self._maybe_fail("delete")
        self.templates.pop(person_id, None)

    async def recognize(self, image: ImageUpload) -> int:
        self.calls.append(("recognize", None))
        self._maybe_fail("recognize")
        if self.next_match is None:
            raise NoMatch()
        return self.next_match

    def operations(self, name: str) -> list:
        return [person_id for op, person_id in self.calls if op == name]


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int, second: int = 0):
        self.now = self.now.replace(hour=hour, minute=minute, second=second)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def db_manager():
    db = DatabaseManager("sqlite://")
    assert db.initialize()
    yield db
    db.close()


@pytest.fixture
def directory(db_manager):
    return PersonDirectory(db_manager)


@pytest.fixture
def store(db_manager):
    return AttendanceRecordStore(db_manager)


@pytest.fixture
def storage(tmp_path):
    return PhotoStorage(tmp_path / "storage", base_url="http://testserver")


@pytest.fixture
def face_index():
    return FakeFaceIndex()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 10, 6, 0, 0))


@pytest.fixture
def coordinator(directory, face_index, storage):
    return PersonEnrollmentCoordinator(directory, face_index, storage)
