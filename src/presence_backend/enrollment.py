"""
Person Enrollment
=================
Creates, updates and deletes persons while keeping three things in step:
the person row, the stored photo and the face template held by the remote
recognition service.

The remote index cannot join a local transaction, so every write is a
saga: local write, remote call, and on remote failure a compensating
local rollback plus removal of the uploaded photo. Callers never see a
half-applied enrollment.

Deletion is the exception: the row deletion is authoritative and the
remote/photo cleanup runs afterwards as a background task whose failures
are only logged.
"""

import asyncio
import logging
from typing import Optional, Set

from .database.models import Person
from .database.directory import PersonDirectory
from .errors import ClassNotFound, DuplicateEmail, PersonNotFound
from .photo_storage import PhotoStorage, StoredPhoto
from .recognition.client import IdentityIndexClient
from .schemas import PersonCreate, PersonUpdate

logger = logging.getLogger(__name__)


class PersonEnrollmentCoordinator:
    """
    Usage:
        coordinator = PersonEnrollmentCoordinator(directory, face_client, storage)
        person = await coordinator.create_person(PersonCreate(name="Ana", email="ana@school.id"), photo)
    """

    def __init__(
        self,
        directory: PersonDirectory,
        identity: IdentityIndexClient,
        storage: PhotoStorage
    ):
        self.directory = directory
        self.identity = identity
        self.storage = storage
        self._background: Set[asyncio.Task] = set()

    # ============== Create ==============

    async def create_person(self, data: PersonCreate, photo: Optional[StoredPhoto] = None) -> Person:
        """
        Insert a person and, if a photo was uploaded, enroll their face.

        Raises:
            DuplicateEmail: email already registered (nothing is written)
            ClassNotFound: class_id does not exist (nothing is written)
            RecognitionUnavailable / BadRequestError: enroll failed (row and photo removed)
        """
        person = None
        try:
            if self.directory.email_taken(data.email):
                raise DuplicateEmail()
            if data.class_id is not None and not self.directory.class_exists(data.class_id):
                raise ClassNotFound()

            person = self.directory.add_person(
                name=data.name,
                email=data.email,
                photo=photo.path if photo else None,
                class_id=data.class_id
            )

            if photo:
                await self.identity.enroll(person.id, photo.image)

        except (Exception, asyncio.CancelledError) as e:
            logger.warning(f"[ENROLLMENT] Create failed for {data.email}: {type(e).__name__}: {e}")
            if person is not None:
                self._rollback_insert(person.id)
                if photo:
                    # The remote side may have stored the template before failing
                    self._spawn(self._delete_template(person.id))
            if photo:
                self.storage.delete(photo.path)
            raise

        logger.info(f"[ENROLLMENT] Created person {person.name} ({person.id}), photo={'yes' if photo else 'no'}")
        return person

    def _rollback_insert(self, person_id: int):
        try:
            self.directory.remove_person(person_id)
            logger.info(f"[ENROLLMENT] Rolled back insert of person {person_id}")
        except Exception as e:
            logger.error(f"[ENROLLMENT] Could not roll back person {person_id}: {e}", exc_info=True)

    # ============== Update ==============

    async def update_person(
        self,
        person_id: int,
        data: PersonUpdate,
        photo: Optional[StoredPhoto] = None
    ) -> Person:
        """
        Apply the fields present in ``data``; replace the face if a photo
        was uploaded.

        The previous photo is only deleted once the remote update succeeded.
        On remote failure the previous field values come back and the new
        photo is removed, so a working photo is never lost.

        Raises:
            PersonNotFound: also when the person is deleted while the face
                update is in flight (the template is removed again)
        """
        try:
            current = self.directory.require_person(person_id)
            changes = data.changes()

            email = changes.get("email")
            if email is not None and email != current.email and self.directory.email_taken(email, exclude_id=person_id):
                raise DuplicateEmail()
            class_id = changes.get("class_id")
            if class_id is not None and not self.directory.class_exists(class_id):
                raise ClassNotFound()

            if photo:
                changes["photo"] = photo.path
            if not changes:
                return current

            updated, previous = self.directory.update_person_fields(person_id, changes)

        except (Exception, asyncio.CancelledError):
            if photo:
                self.storage.delete(photo.path)
            raise

        if photo is None:
            logger.info(f"[ENROLLMENT] Updated person {person_id}: {sorted(changes)}")
            return updated

        old_photo = previous.get("photo")
        try:
            if old_photo:
                await self.identity.update(person_id, photo.image)
            else:
                await self.identity.enroll(person_id, photo.image)

        except (Exception, asyncio.CancelledError) as e:
            logger.warning(f"[ENROLLMENT] Face update failed for {person_id}, keeping previous photo: {e}")
            if not self.directory.restore_person_fields(person_id, previous, expected_photo=photo.path):
                logger.warning(f"[ENROLLMENT] Person {person_id} changed concurrently, not restoring")
            if not old_photo:
                self._spawn(self._delete_template(person_id))
            self._discard_photo(photo.path)
            raise

        if self.directory.get_person(person_id) is None:
            # Deleted while the remote call was in flight; its cleanup may have run before our template landed
            logger.warning(f"[ENROLLMENT] Person {person_id} deleted during face update, removing template again")
            self._spawn(self._delete_template(person_id))
            self._discard_photo(photo.path)
            if old_photo and old_photo != photo.path:
                self._discard_photo(old_photo)
            raise PersonNotFound()

        if old_photo and old_photo != photo.path:
            self._discard_photo(old_photo)

        logger.info(f"[ENROLLMENT] Updated person {person_id}: {sorted(changes)}")
        return updated

    def _discard_photo(self, path: str):
        """Delete a photo unless some row still references it."""
        if self.directory.photo_in_use(path):
            logger.info(f"[ENROLLMENT] Photo {path} still referenced, not deleting")
            return
        self.storage.delete(path)

    # ============== Delete ==============

    async def delete_person(self, person_id: int):
        """
        Delete the person row, then clean up the face template and photo
        in the background.

        Raises:
            PersonNotFound
        """
        person = self.directory.remove_person(person_id)
        logger.info(f"[ENROLLMENT] Deleted person {person.name} ({person_id})")
        self._spawn(self._cleanup_deleted(person_id, person.photo))

    async def _cleanup_deleted(self, person_id: int, photo: Optional[str]):
        await self._delete_template(person_id)
        if photo:
            self._discard_photo(photo)

    async def _delete_template(self, person_id: int):
        try:
            await self.identity.delete(person_id)
        except Exception as e:
            logger.warning(f"[ENROLLMENT] Face template cleanup failed for {person_id}: {e}")

    # ============== Background tasks ==============

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def pending_cleanups(self) -> int:
        return len(self._background)

    async def wait_for_cleanup(self):
        """Wait for outstanding background cleanups (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
