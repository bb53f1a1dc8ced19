# Re-export all models for convenient imports
from passport_portal.models.user import User, UserRole
from passport_portal.models.document import DocumentSlot
from passport_portal.models.application import PassportApplication
from passport_portal.models.audit_log import AdminActivityLog

__all__ = [
    "User",
    "UserRole",
    "DocumentSlot",
    "PassportApplication",
    "AdminActivityLog",
]
