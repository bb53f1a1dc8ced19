"""
Document Registry - validates applicant documents and maps slots to stored objects.

The registry never writes the application record. `upload` returns the public
URL for the caller to store in the slot's pointer field, `delete` removes the
object the pointer references and leaves clearing the pointer to the caller.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import re
import time

from passport_portal.core.config import settings
from passport_portal.core.exceptions import (
    DocumentNotFoundError,
    FileTooLargeError,
    InvalidFileTypeError,
)
from passport_portal.core.logging_config import logger
from passport_portal.models.document import DocumentSlot
from passport_portal.services.storage_service import StorageService, storage_service


EXTENSION_BY_MIME = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "application/pdf": "pdf",
}

UPLOADED_AT_PATTERN = re.compile(r"_(\d+)\.")


@dataclass
class DocumentUpload:
    """File received for a slot"""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def parse_uploaded_at(pointer: Optional[str]) -> Optional[datetime]:
    """Upload time embedded in the stored path as epoch milliseconds"""
    if not pointer:
        return None
    match = UPLOADED_AT_PATTERN.search(pointer)
    if not match:
        return None
    try:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class DocumentRegistry:
    def __init__(self, storage: Optional[StorageService] = None):
        self.storage = storage or storage_service

    def validate(self, upload: DocumentUpload) -> None:
        """Raise before any I/O when the MIME type or size is not accepted"""
        content_type = (upload.content_type or "").lower()
        allowed = settings.ALLOWED_DOCUMENT_TYPES
        if content_type not in allowed:
            raise InvalidFileTypeError(content_type or "unknown", allowed)
        if upload.size > settings.MAX_DOCUMENT_SIZE_BYTES:
            raise FileTooLargeError(upload.size, settings.MAX_DOCUMENT_SIZE_BYTES)

    @staticmethod
    def build_path(owner_id: str, slot: DocumentSlot, upload: DocumentUpload,
                   epoch_millis: Optional[int] = None) -> str:
        if epoch_millis is None:
            epoch_millis = int(time.time() * 1000)

        filename = upload.filename or ""
        if "." in filename and not filename.endswith("."):
            ext = filename.rsplit(".", 1)[1]
        else:
            ext = EXTENSION_BY_MIME.get((upload.content_type or "").lower(), "bin")

        return f"{owner_id}/{slot.doc_type}_{epoch_millis}.{ext}"

    async def upload(self, slot: DocumentSlot, upload: DocumentUpload, owner_id: str) -> str:
        """
        Validate and store a document for a slot.

        Returns:
            Public URL of the stored object

        Raises:
            ValidationError: MIME type or size rejected, nothing was stored
            StorageError: the object store call failed
        """
        self.validate(upload)

        path = self.build_path(owner_id, slot, upload)
        await self.storage.put(path, upload.data, upload.content_type.lower())

        logger.info(f"[Documents] ✓ Stored {slot.label} at {path} ({upload.size} bytes)")
        return self.storage.public_url(path)

    async def delete(self, slot: DocumentSlot, pointer: Optional[str]) -> str:
        """
        Remove the object a slot pointer references.

        Returns:
            The removed bucket-relative path

        Raises:
            DocumentNotFoundError: the pointer is empty or does not name an object
            StorageError: the object store call failed
        """
        path = self.storage.extract_path(pointer)
        if not path:
            logger.warning(f"[Documents] No storage path in {slot.value} pointer: {pointer!r}")
            raise DocumentNotFoundError(slot.value, pointer)

        await self.storage.remove([path])

        logger.info(f"[Documents] ✓ Removed {slot.label} at {path}")
        return path


# Singleton instance
document_registry = DocumentRegistry()
