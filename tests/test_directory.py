from __future__ import annotations

import pytest

from presence_backend.errors import BadRequestError, ClassNotFound, DuplicateEmail, PersonNotFound


def test_class_with_students_cannot_be_deleted(directory):
    classroom = directory.create_class("7A")
    directory.add_person(name="Ana", email="ana@school.id", class_id=classroom.id)

    with pytest.raises(BadRequestError, match="associated students"):
        directory.delete_class(classroom.id)

    assert directory.class_exists(classroom.id)


def test_empty_class_can_be_deleted(directory):
    classroom = directory.create_class("7B")

    directory.delete_class(classroom.id)

    assert not directory.class_exists(classroom.id)


def test_delete_missing_class(directory):
    with pytest.raises(ClassNotFound):
        directory.delete_class(999)


def test_class_detail_lists_students(directory):
    classroom = directory.create_class("7A")
    directory.add_person(name="Ana", email="ana@school.id", class_id=classroom.id)
    directory.add_person(name="Budi", email="budi@school.id")

    detail = directory.get_class_with_students(classroom.id)

    assert detail["name"] == "7A"
    assert [s["email"] for s in detail["students"]] == ["ana@school.id"]


def test_update_class_renames(directory):
    classroom = directory.create_class("7A")

    assert directory.update_class(classroom.id, "8A").name == "8A"
    assert directory.update_class(classroom.id, None).name == "8A"


def test_email_is_unique_at_storage_level(directory):
    directory.add_person(name="Ana", email="ana@school.id")

    with pytest.raises(DuplicateEmail):
        directory.add_person(name="Ana 2", email="ana@school.id")


def test_require_person(directory):
    with pytest.raises(PersonNotFound):
        directory.require_person(1)


def test_restore_is_skipped_when_photo_changed(directory):
    person = directory.add_person(name="Ana", email="ana@school.id", photo="user/1-a.png")
    directory.update_person_fields(person.id, {"photo": "user/3-c.png"})

    restored = directory.restore_person_fields(person.id, {"photo": "user/1-a.png"}, expected_photo="user/2-b.png")

    assert not restored
    assert directory.get_person(person.id).photo == "user/3-c.png"
    assert directory.photo_in_use("user/3-c.png")
    assert not directory.photo_in_use("user/1-a.png")


def test_list_persons_paginates(directory):
    for i in range(5):
        directory.add_person(name=f"P{i}", email=f"p{i}@school.id")

    page, last_page = directory.list_persons(page=3, limit=2)

    assert last_page == 3
    assert [p.name for p in page] == ["P4"]
