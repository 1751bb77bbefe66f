"""Tests for local image storage and MIME detection."""

import pytest

from roomstage.storage.base import detect_mime_type, extension_for
from roomstage.storage.local_storage import LocalImageStorage


@pytest.fixture
def local_storage(tmp_path):
    return LocalImageStorage(str(tmp_path), "http://svc/")


def test_detect_mime_type(png_bytes):
    assert detect_mime_type(png_bytes) == "image/png"
    assert detect_mime_type(b"plain text") is None
    assert detect_mime_type(b"plain text", "image/png") == "image/png"


@pytest.mark.parametrize(
    "mime,ext",
    [("image/jpeg", "jpg"), ("image/jpg", "jpg"), ("image/png", "png"), ("image/webp", "webp"), ("weird", "png")],
)
def test_extension_for(mime, ext):
    assert extension_for(mime) == ext


@pytest.mark.asyncio
async def test_upload_then_fetch(local_storage, png_bytes, tmp_path):
    result = await local_storage.upload(png_bytes, "image/png", "user-1", "job-1")

    assert result.success is True
    assert result.url == "http://svc/api/v1/files/user-1/job-1-staged.png"
    assert (tmp_path / "user-1" / "job-1-staged.png").read_bytes() == png_bytes

    fetched = await local_storage.fetch(result.url)
    assert fetched.data == png_bytes
    assert fetched.mime_type == "image/png"


def test_paths_cannot_escape_base_dir(local_storage):
    assert local_storage.get_path("user-1", "../../etc/passwd") is None
    assert local_storage.get_path("..", "secrets.png") is None
    assert local_storage.file_exists("user-1", "missing.png") is False
