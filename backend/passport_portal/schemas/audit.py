from pydantic import BaseModel
from typing import Optional, List, Any
from datetime import datetime


# ==================== Audit Log Schemas ====================

class AuditLogEntry(BaseModel):
    """Single audit record as shown to staff"""
    id: str
    created_at: datetime
    user_id: str
    user_name: str
    user_role: Optional[str] = None
    action: str
    action_category: str
    record_id: Optional[str] = None
    details: Optional[Any] = None
    is_admin: bool
    ip_address: Optional[str] = None
    device_info: Optional[str] = None


class AuditLogPage(BaseModel):
    """One window of filtered audit records plus the filtered total"""
    records: List[AuditLogEntry]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    is_placeholder: bool = False  # True when the records are illustrative, not real activity


class AuditSummary(BaseModel):
    """Headline counts for the activity log screen"""
    total_logs: int
    today_count: int
    yesterday_count: int
    admin_users: int
    staff_users: int


class AuditActionsResponse(BaseModel):
    actions: List[str]
