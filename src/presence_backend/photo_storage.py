"""
Photo Storage
=============
Stores enrollment photos on disk under ``<STORAGE_DIR>/user/`` and
removes them again by relative path.

File names are ``<epoch-ms>-<original stem><ext>`` so two uploads of
``photo.jpg`` never overwrite each other.
"""

import io
import re
import time
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Iterable

from PIL import Image, UnidentifiedImageError

from . import config
from .errors import BadRequestError
from .recognition.client import ImageUpload

logger = logging.getLogger(__name__)

USER_AREA = "user"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredPhoto:
    """An uploaded photo after it was written to storage."""
    path: str  # relative to the storage root, e.g. user/1700000000000-alice.jpg
    image: ImageUpload


def check_image(
    image: ImageUpload,
    allowed_types: Optional[Iterable[str]] = None,
    max_bytes: Optional[int] = None
):
    """
    Reject empty, oversized, wrongly typed or undecodable uploads.

    Raises:
        BadRequestError
    """
    max_bytes = max_bytes or config.MAX_PHOTO_BYTES
    if not image.content:
        raise BadRequestError("No image file provided")
    if len(image.content) > max_bytes:
        raise BadRequestError(f"Image exceeds the {max_bytes // (1024 * 1024)}MB limit")
    if allowed_types is not None and image.content_type not in allowed_types:
        raise BadRequestError("Invalid file type. Only JPEG and PNG are allowed.")
    try:
        with Image.open(io.BytesIO(image.content)) as img:
            img.verify()
    except Image.DecompressionBombError:
        raise BadRequestError("Image dimensions are too large")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        raise BadRequestError("Invalid image data")


class PhotoStorage:
    """Local-disk photo store served under /files."""

    def __init__(self, root: Optional[Path] = None, base_url: Optional[str] = None):
        self.root = Path(root or config.STORAGE_DIR).resolve()
        self.base_url = (base_url or config.BASE_URL).rstrip('/')
        (self.root / USER_AREA).mkdir(parents=True, exist_ok=True)

    def _resolve(self, relative_path: str) -> Path:
        path = (self.root / relative_path).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Path escapes storage root: {relative_path}")
        return path

    def save(self, image: ImageUpload) -> StoredPhoto:
        """Write an upload to the user area and return its stored handle."""
        original = Path(image.filename or "photo")
        stem = _UNSAFE_CHARS.sub("_", original.stem) or "photo"
        ext = _UNSAFE_CHARS.sub("", original.suffix.lower())

        stamp = int(time.time() * 1000)
        while True:
            relative = f"{USER_AREA}/{stamp}-{stem}{ext}"
            try:
                with open(self._resolve(relative), "xb") as f:
                    f.write(image.content)
                break
            except FileExistsError:
                stamp += 1

        logger.debug(f"Stored photo: {relative} ({len(image.content)} bytes)")
        return StoredPhoto(path=relative, image=image)

    def delete(self, relative_path: str) -> bool:
        """
        Remove a stored photo. Failures are logged, not raised.

        Returns:
            True if the file is gone afterwards
        """
        try:
            self._resolve(relative_path).unlink(missing_ok=True)
            logger.debug(f"Deleted photo: {relative_path}")
            return True
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to delete photo {relative_path}: {e}")
            return False

    def exists(self, relative_path: str) -> bool:
        return self._resolve(relative_path).exists()

    def url_for(self, relative_path: Optional[str]) -> Optional[str]:
        """Public URL of a stored photo, served by the /files mount."""
        if not relative_path:
            return None
        return f"{self.base_url}/files/{relative_path}"
