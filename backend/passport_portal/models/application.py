from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Dict, Optional

from passport_portal.core.database import Base
from passport_portal.core.types import GUID, generate_uuid
from passport_portal.models.document import DocumentSlot


class PassportApplication(Base):
    """Passport application record holding one URL pointer per document slot"""
    __tablename__ = "passport_applications"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(GUID, ForeignKey("users.id"), nullable=False, index=True)

    # Applicant
    first_middle_names = Column(String(255), nullable=True)
    surname = Column(String(255), nullable=True)
    status = Column(String(50), default="submitted", nullable=False)

    # Document pointers (NULL or "" means not uploaded)
    birth_certificate_url = Column(Text, nullable=True)
    consent_form_url = Column(Text, nullable=True)
    marriage_certificate_url = Column(Text, nullable=True)
    old_passport_url = Column(Text, nullable=True)
    signature_url = Column(Text, nullable=True)
    photo_id_url = Column(Text, nullable=True)
    social_security_card_url = Column(Text, nullable=True)
    passport_photo_url = Column(Text, nullable=True)
    relationship_proof_url = Column(Text, nullable=True)
    parent_guardian_id_url = Column(Text, nullable=True)
    legal_guardianship_docs_url = Column(Text, nullable=True)
    guardian_id_url = Column(Text, nullable=True)
    representative_id_url = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")

    def get_pointer(self, slot: DocumentSlot) -> Optional[str]:
        """Stored pointer for a slot, None when blank"""
        value = getattr(self, slot.field)
        if value is None or not value.strip():
            return None
        return value.strip()

    def set_pointer(self, slot: DocumentSlot, url: str) -> None:
        setattr(self, slot.field, url)

    def pointers(self) -> Dict[DocumentSlot, Optional[str]]:
        return {slot: self.get_pointer(slot) for slot in DocumentSlot}

    @property
    def document_count(self) -> int:
        return sum(1 for pointer in self.pointers().values() if pointer)

    @property
    def applicant_name(self) -> str:
        """Applicant display name, 'Unknown' when both name parts are blank"""
        parts = [self.first_middle_names, self.surname]
        name = " ".join(part.strip() for part in parts if part and part.strip()).strip()
        return name or "Unknown"

    def __repr__(self):
        return f"<PassportApplication {self.id}>"
