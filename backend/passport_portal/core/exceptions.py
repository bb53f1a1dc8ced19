"""
Custom Exceptions for the Passport Portal
=========================================

Every error raised by the document and audit services derives from
PortalError so the API layer can render it with a stable code.

Usage:
    from passport_portal.core.exceptions import DocumentNotFoundError

    if not path:
        raise DocumentNotFoundError(slot.value, pointer)
"""

from typing import Optional, Any, Dict, List


class PortalError(Exception):
    """Base exception for all portal errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Validation Errors (400-type)
# ============================================

class ValidationError(PortalError):
    """Input validation failed"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidFileTypeError(ValidationError):
    """File type not allowed"""

    def __init__(self, file_type: str, allowed_types: List[str]):
        super().__init__(
            f"File type '{file_type}' not allowed. Allowed: {', '.join(allowed_types)}"
        )
        self.code = "INVALID_FILE_TYPE"
        self.details = {"file_type": file_type, "allowed_types": allowed_types}


class FileTooLargeError(ValidationError):
    """File exceeds the maximum document size"""

    def __init__(self, size: int, max_size: int):
        super().__init__(
            f"File size {size} bytes exceeds the maximum of {max_size} bytes"
        )
        self.code = "FILE_TOO_LARGE"
        self.details = {"size": size, "max_size": max_size}


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(PortalError):
    """Base class for not found errors"""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class ApplicationNotFoundError(ResourceNotFoundError):
    """Passport application not found"""

    def __init__(self, application_id: str):
        super().__init__("Application", application_id)


class DocumentNotFoundError(PortalError):
    """Slot pointer is empty or does not reference a stored object"""

    status_code = 404

    def __init__(self, slot: str, pointer: Optional[str] = None):
        super().__init__(
            f"No stored document found for slot '{slot}'",
            code="DOCUMENT_NOT_FOUND",
            details={"slot": slot, "pointer": pointer or ""}
        )


# ============================================
# Storage Errors
# ============================================

class StorageError(PortalError):
    """Storage operation failed"""

    status_code = 502

    def __init__(self, message: str):
        super().__init__(message, code="STORAGE_ERROR")


class S3UploadError(StorageError):
    """S3 upload failed"""

    def __init__(self, key: str, message: str = "Upload failed"):
        super().__init__(f"Failed to upload to S3: {message}")
        self.code = "S3_UPLOAD_FAILED"
        self.details["s3_key"] = key


class S3DeleteError(StorageError):
    """S3 delete failed"""

    def __init__(self, keys: List[str], message: str = "Delete failed"):
        super().__init__(f"Failed to delete from S3: {message}")
        self.code = "S3_DELETE_FAILED"
        self.details["s3_keys"] = keys


class S3PresignError(StorageError):
    """Signed URL could not be issued"""

    def __init__(self, key: str, message: str = "Presign failed"):
        super().__init__(f"Failed to sign S3 URL: {message}")
        self.code = "S3_PRESIGN_FAILED"
        self.details["s3_key"] = key


class S3ListError(StorageError):
    """Prefix listing failed"""

    def __init__(self, prefix: str, message: str = "List failed"):
        super().__init__(f"Failed to list S3 prefix: {message}")
        self.code = "S3_LIST_FAILED"
        self.details["s3_prefix"] = prefix


class DanglingPointerError(PortalError):
    """Object was removed but the record still points at it"""

    status_code = 500

    def __init__(self, slot: str, pointer: str, message: str):
        super().__init__(
            f"Stored object for slot '{slot}' was removed but its pointer could not be cleared: {message}",
            code="DANGLING_POINTER",
            details={"slot": slot, "pointer": pointer}
        )


# ============================================
# Access Credential Errors
# ============================================

class CredentialError(PortalError):
    """Timed access URL could not be produced for a slot"""

    def __init__(self, slot: str, message: str):
        super().__init__(message, code="CREDENTIAL_ERROR", details={"slot": slot})


# ============================================
# Audit Errors
# ============================================

class AuditWriteError(PortalError):
    """Audit record could not be persisted"""

    def __init__(self, action: str, message: str):
        super().__init__(
            f"Failed to write audit record '{action}': {message}",
            code="AUDIT_WRITE_FAILED",
            details={"action": action}
        )


class QueryError(PortalError):
    """Audit log could not be loaded"""

    status_code = 503

    def __init__(self, message: str = "Failed to load activity logs"):
        super().__init__(message, code="AUDIT_QUERY_FAILED", details={"retryable": True})


class QuerySupersededError(PortalError):
    """A newer audit log request from the same viewer replaced this one"""

    status_code = 409

    def __init__(self):
        super().__init__(
            "Activity log request was superseded by a newer one",
            code="AUDIT_QUERY_SUPERSEDED"
        )


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: PortalError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
