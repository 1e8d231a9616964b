"""
Face Recognition Service Client
===============================
Async client for the remote face index.

The remote service owns the face templates (keyed by person id) and does
the actual matching; this module only maps calls onto its HTTP contract:

    POST   /recognize   multipart image            -> {"data": <person id>}
    POST   /update      multipart user_id + image  -> template stored
    DELETE /delete      JSON {"user_id": <id>}     -> template removed
"""

import json
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, Protocol, Tuple

import aiohttp

from .. import config
from ..errors import BadRequestError, NoMatch, RecognitionUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageUpload:
    """Raw image bytes plus the multipart metadata sent with them."""
    content: bytes
    filename: str = "capture.jpg"
    content_type: str = "image/jpeg"


class IdentityIndexClient(Protocol):
    """Contract the services depend on; tests substitute a fake."""

    async def enroll(self, person_id: int, image: ImageUpload) -> None: ...

    async def update(self, person_id: int, image: ImageUpload) -> None: ...

    async def delete(self, person_id: int) -> None: ...

    async def recognize(self, image: ImageUpload) -> int: ...


def _remote_message(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip() or "Unknown error"
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)


class FaceRecognitionClient:
    """
    aiohttp implementation of IdentityIndexClient.

    Usage:
        client = FaceRecognitionClient("http://127.0.0.1:5000")
        person_id = await client.recognize(ImageUpload(jpeg_bytes))
        await client.close()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.base_url = (base_url or config.FACE_RECOGNITION_URL).rstrip('/')
        self.timeout_seconds = timeout_seconds or config.RECOGNITION_TIMEOUT_SECONDS
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self.session

    async def close(self):
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def _request(self, method: str, path: str, **kwargs) -> Tuple[int, str]:
        """
        Send one request and return (status, body).

        Raises:
            RecognitionUnavailable: on timeout or connection failure
        """
        url = f"{self.base_url}{path}"
        try:
            session = await self._get_session()
            async with session.request(method, url, **kwargs) as response:
                return response.status, await response.text()
        except asyncio.TimeoutError:
            logger.error(f"Face recognition request timed out: {method} {path}")
            raise RecognitionUnavailable("Face recognition service timed out")
        except aiohttp.ClientError as e:
            logger.error(f"Face recognition connection error: {e}")
            raise RecognitionUnavailable(f"Face recognition service unreachable: {e}")

    @staticmethod
    def _image_form(image: ImageUpload, person_id: Optional[int] = None) -> aiohttp.FormData:
        data = aiohttp.FormData()
        if person_id is not None:
            data.add_field('user_id', str(person_id))
        data.add_field(
            'image',
            image.content,
            filename=image.filename,
            content_type=image.content_type
        )
        return data

    async def health_check(self) -> Dict[str, Any]:
        """Check remote service health status."""
        try:
            status, body = await self._request("GET", "/")
        except RecognitionUnavailable as e:
            return {"status": "offline", "error": e.message}
        if status == 200:
            return {"status": "online"}
        return {"status": "error", "code": status}

    async def recognize(self, image: ImageUpload) -> int:
        """
        Identify the person in an image.

        Returns:
            The matched person id

        Raises:
            NoMatch: nobody above the service's confidence threshold
            RecognitionUnavailable: timeout, 5xx or unreadable response
        """
        status, body = await self._request("POST", "/recognize", data=self._image_form(image))

        if status >= 500:
            logger.error(f"Recognition failed: {status} - {body}")
            raise RecognitionUnavailable(f"Face recognition service error: {status}")
        if status >= 400:
            logger.info(f"Recognition returned no match: {status} - {_remote_message(body)}")
            raise NoMatch()

        try:
            person_id = json.loads(body).get("data")
        except (ValueError, AttributeError):
            logger.error(f"Unreadable recognition response: {body[:200]}")
            raise RecognitionUnavailable("Face recognition service returned an invalid response")

        if person_id is None:
            raise NoMatch()

        try:
            return int(person_id)
        except (TypeError, ValueError):
            logger.error(f"Recognition returned a non-numeric id: {person_id!r}")
            raise RecognitionUnavailable("Face recognition service returned an invalid response")

    async def _store_template(self, person_id: int, image: ImageUpload, action: str):
        status, body = await self._request(
            "POST", "/update", data=self._image_form(image, person_id=person_id)
        )
        if status >= 500:
            logger.error(f"Face {action} failed for {person_id}: {status} - {body}")
            raise RecognitionUnavailable(f"Face recognition service error: {status}")
        if status >= 400:
            raise BadRequestError(_remote_message(body))
        logger.info(f"Face {action}ed for person {person_id}")

    async def enroll(self, person_id: int, image: ImageUpload) -> None:
        """Create the face template of a person."""
        await self._store_template(person_id, image, "enroll")

    async def update(self, person_id: int, image: ImageUpload) -> None:
        """Replace the face template of a person."""
        await self._store_template(person_id, image, "update")

    async def delete(self, person_id: int) -> None:
        """Remove the face template of a person. A missing template is not an error."""
        status, body = await self._request("DELETE", "/delete", json={"user_id": person_id})
        if status == 404:
            logger.debug(f"No face template to delete for {person_id}")
            return
        if status >= 400:
            raise RecognitionUnavailable(f"Face delete failed: {status} - {_remote_message(body)}")
        logger.info(f"Face template deleted for person {person_id}")
