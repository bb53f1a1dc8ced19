from sqlalchemy import Column, String, DateTime, Text, Boolean
from datetime import datetime

from passport_portal.core.database import Base
from passport_portal.core.types import GUID, generate_uuid


class AdminActivityLog(Base):
    """Append-only log of administrative actions"""
    __tablename__ = "admin_activity_log"

    id = Column(GUID, primary_key=True, default=generate_uuid)

    # Actor
    user_id = Column(GUID, nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False, index=True)

    # Action details
    action = Column(String(255), nullable=False)  # e.g. 'Reviewed Application', 'Deleted Document'
    record_id = Column(String(100), nullable=True)  # subject, usually an application ID
    details = Column(Text, nullable=True)  # JSON string

    # Request metadata
    ip_address = Column(String(45), nullable=True)
    device_info = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AdminActivityLog {self.action} by {self.user_id}>"
