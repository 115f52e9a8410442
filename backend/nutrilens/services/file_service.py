"""
NutriLens Backend: Image Storage Service
========================================

What:  Validates uploaded food photos, stores them on disk, serves them back,
       and removes them when an analysis is deleted or a request fails.
How:   Checks extension, declared image/* content type and size, then writes
       the bytes under a date-organized directory with a UUID filename.
Who:   Called by AnalysisService and the food-analyses routes.

Upload checks (cheapest first):
    1. Extension in ALLOWED_EXTENSIONS
    2. Declared content type is an image type Gemini accepts
    3. Non-empty, and no larger than MAX_FILE_SIZE
    4. UUID filename, so no client input reaches the file system path

Directory Structure:
    storage/
    └── 2024/
        └── 01/
            └── 15/
                ├── a1b2c3d4-5678.jpg
                └── e5f6g7h8-9012.png
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import aiofiles

from nutrilens.config import settings
from nutrilens.exceptions import FileStorageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Image types Gemini Vision accepts, with the extension used on disk
ALLOWED_MIME_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "image/heif": ".heif",
}

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".heic", ".heif"}


class FileService:
    """Manages the food image lifecycle on local disk."""

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    def validate_extension(self, filename: str) -> str:
        """Returns the lowercase extension. Raises ValidationError if not allowed."""
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message=(
                    f"File type '{ext or filename}' is not supported. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
                ),
                field="foodImage",
                context={"extension": ext, "allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    def validate_content_type(self, content_type: Optional[str]) -> str:
        """
        Check the declared multipart content type.

        Only image/* types Gemini accepts pass; parameters such as
        "; charset=binary" are ignored.
        """
        mime_type = (content_type or "").split(";")[0].strip().lower()
        if not mime_type.startswith("image/"):
            raise ValidationError(
                message="Only image files are allowed!",
                field="foodImage",
                context={"content_type": mime_type or None},
            )
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=f"Image type '{mime_type}' is not supported.",
                field="foodImage",
                context={"content_type": mime_type, "allowed": sorted(ALLOWED_MIME_TYPES)},
            )
        return mime_type

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Reject empty uploads and uploads over MAX_FILE_SIZE.

        The Content-Length hint is checked first; the actual byte count is
        checked as well since clients can misreport it.
        """
        max_mb = settings.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message="Please upload an image file",
                field="foodImage",
            )

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image.",
                field="foodImage",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="foodImage",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def _generate_storage_path(self, extension: str) -> Tuple[Path, str]:
        """Returns (absolute_path, relative_path) for YYYY/MM/DD/<uuid><ext>."""
        now = datetime.now(timezone.utc)
        date_dir = now.strftime("%Y/%m/%d")
        unique_name = f"{uuid.uuid4()}{extension}"

        relative_path = f"{date_dir}/{unique_name}"
        absolute_path = self.storage_root / relative_path

        return absolute_path, relative_path

    async def store_file(self, content: bytes, extension: str) -> Tuple[str, str]:
        """
        Write validated content to disk with async I/O.

        Raises:
            FileStorageError if directory creation or file write fails.
        """
        absolute_path, relative_path = self._generate_storage_path(extension)

        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)

            logger.info("Image stored: %s (%d bytes)", relative_path, len(content))
            return str(absolute_path), relative_path

        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

    def resolve(self, relative_path: str) -> Path:
        """
        Absolute path of a stored image.

        Raises:
            NotFoundError if the path escapes the storage root or the file is gone.
        """
        path = (self.storage_root / relative_path).resolve()
        if self.storage_root not in path.parents or not path.is_file():
            raise NotFoundError(resource="image")
        return path

    async def cleanup_file(self, file_path: str) -> None:
        """
        Best-effort removal of a stored file.

        Missing files are ignored; other OS errors are logged, not raised.
        """
        try:
            path = Path(file_path)
            if not path.is_absolute():
                path = self.storage_root / path
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", path.name)
            else:
                logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))

    async def validate_and_store(
        self,
        filename: str,
        content: bytes,
        content_type: Optional[str],
        content_length: Optional[int] = None,
    ) -> Tuple[str, str, str]:
        """
        Complete validation and storage pipeline for an uploaded food photo.

        Returns:
            (absolute_path, relative_path_for_db, mime_type)
        """
        ext = self.validate_extension(filename)
        mime_type = self.validate_content_type(content_type)
        self.validate_size(content_length, len(content))

        absolute_path, relative_path = await self.store_file(content, ext)
        return absolute_path, relative_path, mime_type


# Singleton: storage root doesn't change; no per-request state
file_service = FileService()
