"""
NutriLens Backend: File Service Unit Tests
==========================================

What:  Upload validation (extension, content type, size), storage layout,
       path resolution and cleanup.
How:   A FileService rooted in a per-test temporary directory.

Test Strategy:
    ✅ Allowed extensions (.jpg, .jpeg, .png, .webp, .heic, .heif)
    ✅ Rejected extensions and non-image content types
    ✅ Size limits (empty, over MAX_FILE_SIZE, misreported Content-Length)
    ✅ Date-organized UUID storage paths
    ✅ resolve() refuses paths outside the storage root
"""

import re
from pathlib import Path

import pytest

from nutrilens.config import settings
from nutrilens.exceptions import NotFoundError, ValidationError


class TestFileValidation:

    # ── Extension Validation ──────────────────────────────────────────────

    @pytest.mark.parametrize("name", ["meal.jpg", "meal.jpeg", "meal.png", "meal.webp", "meal.heic", "meal.HEIF"])
    def test_allowed_extensions(self, file_service, name):
        assert file_service.validate_extension(name) == Path(name).suffix.lower()

    def test_extension_check_is_case_insensitive(self, file_service):
        assert file_service.validate_extension("photo.JPG") == ".jpg"

    @pytest.mark.parametrize("name", ["animation.gif", "document.pdf", "noextension", "malware.exe", ""])
    def test_rejected_extensions(self, file_service, name):
        with pytest.raises(ValidationError, match="not supported") as exc_info:
            file_service.validate_extension(name)
        assert exc_info.value.field == "foodImage"

    # ── Content Type Validation ───────────────────────────────────────────

    def test_image_content_type(self, file_service):
        assert file_service.validate_content_type("image/jpeg") == "image/jpeg"

    def test_content_type_parameters_ignored(self, file_service):
        assert file_service.validate_content_type("Image/PNG; charset=binary") == "image/png"

    @pytest.mark.parametrize("content_type", ["text/plain", "application/pdf", None, ""])
    def test_non_image_rejected(self, file_service, content_type):
        with pytest.raises(ValidationError, match="Only image files are allowed!"):
            file_service.validate_content_type(content_type)

    def test_unsupported_image_type_rejected(self, file_service):
        with pytest.raises(ValidationError, match="not supported"):
            file_service.validate_content_type("image/gif")

    # ── Size Validation ───────────────────────────────────────────────────

    def test_size_within_limit(self, file_service):
        file_service.validate_size(1000, 1000)

    def test_size_at_limit(self, file_service):
        file_service.validate_size(None, settings.max_file_size)

    def test_size_over_limit(self, file_service):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            file_service.validate_size(None, settings.max_file_size + 1)

    def test_reported_length_over_limit(self, file_service):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            file_service.validate_size(settings.max_file_size + 1, 10)

    def test_empty_upload(self, file_service):
        with pytest.raises(ValidationError, match="Please upload an image file"):
            file_service.validate_size(0, 0)


class TestFileStorage:

    @pytest.mark.asyncio
    async def test_validate_and_store_creates_date_directory(
        self, file_service, temp_storage, sample_image_bytes
    ):
        abs_path, rel_path, mime_type = await file_service.validate_and_store(
            filename="lunch.jpeg",
            content=sample_image_bytes,
            content_type="image/jpeg",
            content_length=len(sample_image_bytes),
        )

        assert mime_type == "image/jpeg"
        assert re.fullmatch(r"\d{4}/\d{2}/\d{2}/[0-9a-f-]{36}\.jpeg", rel_path)
        assert Path(abs_path) == Path(temp_storage).resolve() / rel_path
        assert Path(abs_path).read_bytes() == sample_image_bytes

    @pytest.mark.asyncio
    async def test_invalid_upload_writes_nothing(self, file_service, temp_storage):
        with pytest.raises(ValidationError):
            await file_service.validate_and_store("notes.txt", b"hello", "text/plain")
        assert list(Path(temp_storage).rglob("*.*")) == []

    @pytest.mark.asyncio
    async def test_resolve_stored_file(self, file_service, sample_image_bytes):
        abs_path, rel_path, _ = await file_service.validate_and_store(
            "meal.png", sample_image_bytes, "image/png"
        )
        assert file_service.resolve(rel_path) == Path(abs_path)

    def test_resolve_missing_file(self, file_service):
        with pytest.raises(NotFoundError):
            file_service.resolve("2024/01/01/missing.jpg")

    def test_resolve_rejects_path_traversal(self, file_service, tmp_path):
        outside = tmp_path / "secret.jpg"
        outside.write_bytes(b"x")
        with pytest.raises(NotFoundError):
            file_service.resolve("../secret.jpg")

    # ── Cleanup ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cleanup_absolute_path(self, file_service, tmp_path):
        test_file = tmp_path / "test.jpg"
        test_file.write_bytes(b"test content")

        await file_service.cleanup_file(str(test_file))

        assert not test_file.exists()

    @pytest.mark.asyncio
    async def test_cleanup_relative_path(self, file_service, sample_image_bytes):
        abs_path, rel_path, _ = await file_service.validate_and_store(
            "meal.jpg", sample_image_bytes, "image/jpeg"
        )

        await file_service.cleanup_file(rel_path)

        assert not Path(abs_path).exists()

    @pytest.mark.asyncio
    async def test_cleanup_nonexistent(self, file_service, tmp_path):
        await file_service.cleanup_file(str(tmp_path / "nonexistent.jpg"))
