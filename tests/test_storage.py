"""
Tests for local document storage.
"""

import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from irb_portal.core.errors import NotFoundError, ValidationError
from irb_portal.services.storage import DocumentStorage


def make_upload(content: bytes, filename="consent form.pdf", content_type="application/pdf") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def storage(tmp_path):
    return DocumentStorage(root=str(tmp_path), max_bytes=1024, allowed_types=["application/pdf", "text/plain"])


class TestValidate:
    """Upload checks."""

    def test_accepts_allowed_type(self, storage):
        assert storage.validate("application/pdf; charset=binary", 10) == "application/pdf"

    def test_rejects_type(self, storage):
        with pytest.raises(ValidationError) as exc_info:
            storage.validate("application/x-msdownload", 10)
        assert exc_info.value.code == "INVALID_FILE_TYPE"

    def test_rejects_empty(self, storage):
        with pytest.raises(ValidationError) as exc_info:
            storage.validate("text/plain", 0)
        assert exc_info.value.code == "EMPTY_FILE"

    def test_rejects_oversized(self, storage):
        with pytest.raises(ValidationError) as exc_info:
            storage.validate("text/plain", 1025)
        assert exc_info.value.code == "FILE_TOO_LARGE"


class TestSaveResolveDelete:
    """File lifecycle on disk."""

    def test_save_writes_under_study_directory(self, storage, tmp_path):
        stored = storage.save("study-1", make_upload(b"%PDF-1.4 consent"))

        assert stored.relative_path.startswith("studies/study-1/")
        assert stored.relative_path.endswith("-consent_form.pdf")
        assert stored.file_name == "consent_form.pdf"
        assert stored.file_size == len(b"%PDF-1.4 consent")
        assert (tmp_path / stored.relative_path).read_bytes() == b"%PDF-1.4 consent"

    def test_oversized_upload_is_not_written(self, storage, tmp_path):
        with pytest.raises(ValidationError):
            storage.save("study-1", make_upload(b"x" * 2048))
        assert not (tmp_path / "studies").exists()

    def test_resolve_and_delete(self, storage):
        stored = storage.save("study-1", make_upload(b"notes", "notes.txt", "text/plain"))
        path = storage.resolve(stored.relative_path)
        assert path.is_file()

        assert storage.delete(stored.relative_path)
        assert not storage.delete(stored.relative_path)
        with pytest.raises(NotFoundError):
            storage.resolve(stored.relative_path)

    def test_path_traversal_is_rejected(self, storage):
        with pytest.raises(ValidationError) as exc_info:
            storage.resolve("../../etc/passwd")
        assert exc_info.value.code == "INVALID_PATH"

    def test_same_name_uploads_do_not_collide(self, storage, tmp_path):
        first = storage.save("study-1", make_upload(b"first"))
        second = storage.save("study-1", make_upload(b"second"))
        assert first.relative_path != second.relative_path

        storage.delete(first.relative_path)
        assert (tmp_path / second.relative_path).read_bytes() == b"second"
