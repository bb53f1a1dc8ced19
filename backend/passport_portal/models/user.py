from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum
from datetime import datetime
import enum

from passport_portal.core.database import Base
from passport_portal.core.types import GUID, generate_uuid


class UserRole(str, enum.Enum):
    """User roles"""
    APPLICANT = "applicant"
    STAFF = "staff"
    ADMIN = "admin"


class User(Base):
    """Portal user profile (applicants and back-office staff)"""
    __tablename__ = "users"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    role = Column(SQLEnum(UserRole), default=UserRole.APPLICANT, nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        """'first last' trimmed, else email, else 'Admin User'"""
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email or "Admin User"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f"<User {self.email}>"
