"""
Document Storage
================
Local-disk storage for uploaded study documents.

Files live at UPLOAD_DIR/studies/{study_id}/{timestamp}-{random}-{sanitized name};
the database stores the path relative to UPLOAD_DIR.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from irb_portal.config import settings
from irb_portal.core.errors import NotFoundError, ValidationError
from irb_portal.core.utils import sanitize_filename

logger = logging.getLogger(__name__)


@dataclass
class StoredFile:
    relative_path: str
    file_name: str
    file_size: int
    mime_type: str


class DocumentStorage:
    """Writes, resolves and removes uploaded files under one root directory."""

    def __init__(self, root: Optional[str] = None, max_bytes: Optional[int] = None,
                 allowed_types: Optional[list] = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.max_bytes = max_bytes or settings.MAX_UPLOAD_BYTES
        self.allowed_types = set(allowed_types or settings.ALLOWED_UPLOAD_TYPES)

    def _inside_root(self, relative_path: str) -> Path:
        """Absolute path for a stored file; rejects paths that escape the root."""
        root = self.root.resolve()
        path = (root / relative_path).resolve()
        try:
            path.relative_to(root)
        except ValueError:
            raise ValidationError("Invalid file path", code="INVALID_PATH")
        return path

    def validate(self, content_type: Optional[str], size: int) -> str:
        mime_type = (content_type or "").split(";")[0].strip().lower()
        if mime_type not in self.allowed_types:
            raise ValidationError(
                f"File type '{mime_type or 'unknown'}' is not allowed",
                code="INVALID_FILE_TYPE",
                details={"allowed_types": sorted(self.allowed_types)},
            )
        if size == 0:
            raise ValidationError("File is empty", code="EMPTY_FILE")
        if size > self.max_bytes:
            raise ValidationError(
                f"File too large (max {self.max_bytes // (1024 * 1024)} MB)",
                code="FILE_TOO_LARGE",
                details={"max_bytes": self.max_bytes, "size": size},
            )
        return mime_type

    def save(self, study_id: str, upload: UploadFile) -> StoredFile:
        """Validate and write an upload. Reads at most max_bytes + 1 bytes."""
        try:
            contents = upload.file.read(self.max_bytes + 1)
        finally:
            upload.file.close()

        mime_type = self.validate(upload.content_type, len(contents))
        file_name = sanitize_filename(upload.filename or "document")
        stamp = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
        relative_path = f"studies/{sanitize_filename(study_id)}/{stamp}-{file_name}"

        path = self._inside_root(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(contents)

        logger.info(f"Stored {len(contents)} bytes at {relative_path}")
        return StoredFile(
            relative_path=relative_path,
            file_name=file_name,
            file_size=len(contents),
            mime_type=mime_type,
        )

    def resolve(self, relative_path: str) -> Path:
        path = self._inside_root(relative_path)
        if not path.is_file():
            raise NotFoundError("File")
        return path

    def delete(self, relative_path: str) -> bool:
        """Remove a stored file. A file that is already gone is not an error."""
        path = self._inside_root(relative_path)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Stored file already missing: {relative_path}")
            return False
        return True


def get_storage() -> DocumentStorage:
    return DocumentStorage()
