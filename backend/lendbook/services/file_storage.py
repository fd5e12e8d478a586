"""Local-disk storage for application forms and collateral documents.

Files are written outside the database transaction. Callers delete what they
stored when the transaction that was meant to reference the file fails.
"""

import logging
import os
import uuid
from dataclasses import dataclass

from lendbook.config import settings
from lendbook.services.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".pdf", ".jpg", ".jpeg", ".png", ".docx"}


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes


class FileStorage:
    def __init__(self, root: str | None = None, max_bytes: int | None = None):
        self.root = root or settings.upload_dir
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_upload_bytes

    def store(self, content: bytes, filename: str, folder: str) -> str:
        """Write *content* under ``<root>/<folder>`` and return the stored path."""
        original_name = os.path.basename(filename or "upload")
        ext = os.path.splitext(original_name)[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"File type '{ext}' not allowed. Accepted: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
                field="file",
            )
        if len(content) > self.max_bytes:
            raise ValidationError("File too large", field="file")

        target_dir = os.path.join(self.root, folder)
        path = os.path.join(target_dir, f"{uuid.uuid4().hex}{ext}")
        try:
            os.makedirs(target_dir, exist_ok=True)
            with open(path, "wb") as f:
                f.write(content)
        except OSError as exc:
            raise StorageError(f"Could not store {original_name}: {exc}") from exc
        logger.info("Stored %s as %s", original_name, path)
        return path

    def delete(self, path: str | None) -> None:
        """Remove a stored file. A path that is already gone is not an error."""
        if not path:
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.warning("Stored file %s was already removed", path)
        except OSError as exc:
            raise StorageError(f"Could not delete {path}: {exc}") from exc

    def _remove_all(self, paths) -> list[str]:
        removed = []
        for path in paths:
            if not path:
                continue
            try:
                self.delete(path)
            except StorageError as exc:
                logger.error("Orphaned upload left behind: %s", exc)
            else:
                removed.append(path)
        return removed

    def discard(self, paths) -> None:
        """Compensating delete after a failed transaction; never raises."""
        for path in self._remove_all(paths):
            logger.warning("Removed upload %s after failed transaction", path)

    def release(self, paths) -> None:
        """Delete files a committed change has replaced; never raises."""
        for path in self._remove_all(paths):
            logger.info("Removed replaced upload %s", path)


def get_file_storage() -> FileStorage:
    return FileStorage()
