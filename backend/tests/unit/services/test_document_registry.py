"""
Unit Tests for the Document Registry

Covers:
1. MIME type and size validation before any storage call
2. Storage path layout
3. Upload and delete against the object store
4. Upload time parsed from stored paths
"""
import pytest
from datetime import datetime, timezone

from passport_portal.core.exceptions import (
    DocumentNotFoundError,
    FileTooLargeError,
    InvalidFileTypeError,
    S3UploadError,
    ValidationError,
)
from passport_portal.models import DocumentSlot
from passport_portal.services.document_registry import (
    DocumentRegistry,
    DocumentUpload,
    parse_uploaded_at,
)

MIB = 1024 * 1024


def make_upload(filename="scan.pdf", content_type="application/pdf", size=1024):
    return DocumentUpload(filename=filename, content_type=content_type, data=b"x" * size)


class TestValidation:
    """Test validation of incoming files"""

    @pytest.mark.parametrize("content_type", ["image/jpeg", "image/png", "image/gif", "application/pdf"])
    def test_allowed_types_pass(self, object_store, content_type):
        """Test every allow-listed MIME type is accepted"""
        DocumentRegistry(object_store).validate(make_upload(content_type=content_type))

    def test_disallowed_type_rejected(self, object_store):
        """Test a Word document is rejected with the observed type"""
        registry = DocumentRegistry(object_store)
        upload = make_upload("cv.docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document")

        with pytest.raises(InvalidFileTypeError) as exc_info:
            registry.validate(upload)

        assert exc_info.value.code == "INVALID_FILE_TYPE"
        assert exc_info.value.details["file_type"] == upload.content_type
        assert isinstance(exc_info.value, ValidationError)

    def test_exactly_ten_mib_accepted(self, object_store):
        """Test the size limit is inclusive"""
        DocumentRegistry(object_store).validate(make_upload(size=10 * MIB))

    def test_one_byte_over_limit_rejected(self, object_store):
        """Test a file one byte over 10 MiB is rejected with its size"""
        with pytest.raises(FileTooLargeError) as exc_info:
            DocumentRegistry(object_store).validate(make_upload(size=10 * MIB + 1))

        assert exc_info.value.details == {"size": 10 * MIB + 1, "max_size": 10 * MIB}


class TestBuildPath:
    """Test storage path layout"""

    def test_path_uses_owner_doc_type_and_millis(self):
        """Test {owner}/{doc_type}_{millis}.{ext}"""
        path = DocumentRegistry.build_path(
            "owner-1", DocumentSlot.MARRIAGE_CERTIFICATE, make_upload("cert.final.PDF"), epoch_millis=1718280000000
        )
        assert path == "owner-1/marriage_or_divorce_certificate_1718280000000.PDF"

    def test_extension_falls_back_to_mime_type(self):
        """Test files without an extension get one from the MIME type"""
        path = DocumentRegistry.build_path(
            "owner-1", DocumentSlot.PASSPORT_PHOTO, make_upload("photo", "image/jpeg"), epoch_millis=1
        )
        assert path == "owner-1/passport_photo_1.jpg"


@pytest.mark.asyncio
class TestUploadAndDelete:
    """Test registry calls against the object store"""

    async def test_upload_stores_object_and_returns_public_url(self, object_store):
        """Test upload puts the bytes and returns the public URL"""
        registry = DocumentRegistry(object_store)

        url = await registry.upload(DocumentSlot.SIGNATURE, make_upload("sig.png", "image/png"), "owner-1")

        [path] = object_store.calls_of("put")
        assert path.startswith("owner-1/signature_") and path.endswith(".png")
        assert url == f"https://storage.test/storage/v1/object/public/passport-documents/{path}"
        assert object_store.objects[path][1] == "image/png"

    async def test_oversized_upload_makes_no_storage_call(self, object_store):
        """Test an 11 MB PDF is rejected before touching storage"""
        registry = DocumentRegistry(object_store)

        with pytest.raises(FileTooLargeError):
            await registry.upload(DocumentSlot.BIRTH_CERTIFICATE, make_upload(size=11 * 1000 * 1000), "owner-1")

        assert object_store.calls == []

    async def test_storage_failure_propagates(self, object_store):
        """Test a failed put surfaces as a storage error"""
        object_store.fail_on.add("put")

        with pytest.raises(S3UploadError):
            await DocumentRegistry(object_store).upload(DocumentSlot.PHOTO_ID, make_upload(), "owner-1")

    async def test_delete_removes_referenced_object(self, object_store):
        """Test delete removes the object named by the pointer"""
        registry = DocumentRegistry(object_store)
        url = await registry.upload(DocumentSlot.PHOTO_ID, make_upload(), "owner-1")
        path = object_store.extract_path(url)

        removed = await registry.delete(DocumentSlot.PHOTO_ID, url)

        assert removed == path
        assert path not in object_store.objects

    @pytest.mark.parametrize("pointer", [None, "", "https://elsewhere.test/files/scan.pdf"])
    async def test_delete_without_storage_path_is_not_found(self, object_store, pointer):
        """Test a pointer without a storage path fails with no storage call"""
        with pytest.raises(DocumentNotFoundError) as exc_info:
            await DocumentRegistry(object_store).delete(DocumentSlot.CONSENT_FORM, pointer)

        assert exc_info.value.details["slot"] == "consent_form"
        assert object_store.calls == []


class TestParseUploadedAt:
    """Test upload time parsing"""

    def test_parses_millis_from_pointer(self):
        """Test the embedded millisecond timestamp becomes a UTC datetime"""
        pointer = "https://storage.test/storage/v1/object/public/passport-documents/u1/photo_id_1718280000000.jpg"
        assert parse_uploaded_at(pointer) == datetime(2024, 6, 13, 12, 0, tzinfo=timezone.utc)

    def test_missing_timestamp_returns_none(self):
        """Test pointers without a timestamp yield None"""
        assert parse_uploaded_at("https://storage.test/passport-documents/u1/photo.jpg") is None
        assert parse_uploaded_at(None) is None
