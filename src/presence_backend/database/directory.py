"""
Person Directory
================
Storage access for persons and classes.

Only uniqueness and referential rules live here. Person writes are meant
to be called by the enrollment coordinator, which keeps the remote face
index in step with the ``photo`` column.
"""

import logging
from typing import Optional, Tuple, List, Dict, Any

from sqlalchemy.exc import IntegrityError

from .models import Person, Classroom
from .db_manager import DatabaseManager, paginate
from ..errors import BadRequestError, ClassNotFound, DuplicateEmail, PersonNotFound

logger = logging.getLogger(__name__)


class PersonDirectory:
    """Read/write access to Person and Classroom rows."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    # ============== Persons ==============

    def get_person(self, person_id: int) -> Optional[Person]:
        with self.db.get_session() as session:
            return session.get(Person, person_id)

    def require_person(self, person_id: int) -> Person:
        person = self.get_person(person_id)
        if person is None:
            raise PersonNotFound()
        return person

    def email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        with self.db.get_session() as session:
            query = session.query(Person.id).filter(Person.email == email)
            if exclude_id is not None:
                query = query.filter(Person.id != exclude_id)
            return query.first() is not None

    def photo_in_use(self, photo: str) -> bool:
        """True if any person row still references this photo path."""
        with self.db.get_session() as session:
            return session.query(Person.id).filter(Person.photo == photo).first() is not None

    def add_person(
        self,
        name: str,
        email: str,
        photo: Optional[str] = None,
        class_id: Optional[int] = None
    ) -> Person:
        """
        Insert a person row.

        Raises:
            DuplicateEmail: if another request inserted the same email first
        """
        with self.db.get_session() as session:
            person = Person(name=name, email=email, photo=photo, class_id=class_id)
            session.add(person)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                person = None

        if person is None:
            if self.email_taken(email):
                raise DuplicateEmail()
            raise BadRequestError("Person violates a storage constraint")

        logger.debug(f"Inserted person row: id={person.id}, email={email}")
        return person

    def update_person_fields(self, person_id: int, fields: Dict[str, Any]) -> Tuple[Person, Dict[str, Any]]:
        """
        Apply the given fields to a person.

        Returns:
            (updated person, previous values of the touched fields)
        """
        with self.db.get_session() as session:
            person = session.get(Person, person_id)
            if person is None:
                raise PersonNotFound()

            previous = {key: getattr(person, key) for key in fields}
            for key, value in fields.items():
                setattr(person, key, value)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                person = None

        if person is None:
            if "email" in fields and self.email_taken(fields["email"], exclude_id=person_id):
                raise DuplicateEmail()
            raise BadRequestError("Person violates a storage constraint")

        return person, previous

    def restore_person_fields(self, person_id: int, previous: Dict[str, Any], expected_photo: Optional[str]) -> bool:
        """
        Put back previous field values, but only while the row still holds
        ``expected_photo``. A concurrent update that already replaced the
        photo wins and is left alone.

        Returns:
            True if the row was restored
        """
        if not previous:
            return True
        with self.db.get_session() as session:
            query = session.query(Person).filter(Person.id == person_id)
            if expected_photo is None:
                query = query.filter(Person.photo.is_(None))
            else:
                query = query.filter(Person.photo == expected_photo)
            restored = query.update(dict(previous), synchronize_session=False)
            session.commit()
        return restored > 0

    def remove_person(self, person_id: int) -> Person:
        """Delete a person row; attendance records cascade."""
        with self.db.get_session() as session:
            person = session.get(Person, person_id)
            if person is None:
                raise PersonNotFound()
            session.delete(person)
            session.commit()
            return person

    def list_persons(self, page: int, limit: int) -> Tuple[List[Person], int]:
        with self.db.get_session() as session:
            return paginate(session.query(Person).order_by(Person.id), page, limit)

    # ============== Classes ==============

    def class_exists(self, class_id: int) -> bool:
        with self.db.get_session() as session:
            return session.get(Classroom, class_id) is not None

    def get_class_with_students(self, class_id: int) -> dict:
        with self.db.get_session() as session:
            classroom = session.get(Classroom, class_id)
            if classroom is None:
                raise ClassNotFound()
            students = session.query(Person).filter(Person.class_id == class_id).order_by(Person.id).all()
            result = classroom.to_dict()
            result["students"] = [student.to_dict() for student in students]
            return result

    def create_class(self, name: str) -> Classroom:
        with self.db.get_session() as session:
            classroom = Classroom(name=name)
            session.add(classroom)
            session.commit()
            logger.info(f"Created class: {name} ({classroom.id})")
            return classroom

    def update_class(self, class_id: int, name: Optional[str] = None) -> Classroom:
        with self.db.get_session() as session:
            classroom = session.get(Classroom, class_id)
            if classroom is None:
                raise ClassNotFound()
            if name:
                classroom.name = name
                session.commit()
            return classroom

    def delete_class(self, class_id: int):
        """
        Delete a class.

        Raises:
            ClassNotFound: if the class does not exist
            BadRequestError: if any person is still assigned to it
        """
        with self.db.get_session() as session:
            classroom = session.get(Classroom, class_id)
            if classroom is None:
                raise ClassNotFound()

            assigned = session.query(Person).filter(Person.class_id == class_id).count()
            if assigned > 0:
                raise BadRequestError("Cannot delete class with associated students")

            session.delete(classroom)
            session.commit()
            logger.info(f"Deleted class: {class_id}")

    def list_classes(self, page: int, limit: int) -> Tuple[List[Classroom], int]:
        with self.db.get_session() as session:
            return paginate(session.query(Classroom).order_by(Classroom.id), page, limit)
