import enum


class DocumentSlot(str, enum.Enum):
    """Named document positions on a passport application"""
    BIRTH_CERTIFICATE = "birth_certificate"
    CONSENT_FORM = "consent_form"
    MARRIAGE_CERTIFICATE = "marriage_certificate"
    OLD_PASSPORT = "old_passport"
    SIGNATURE = "signature"
    PHOTO_ID = "photo_id"
    SOCIAL_SECURITY_CARD = "social_security_card"
    PASSPORT_PHOTO = "passport_photo"
    RELATIONSHIP_PROOF = "relationship_proof"
    PARENT_GUARDIAN_ID = "parent_guardian_id"
    LEGAL_GUARDIANSHIP_DOCS = "legal_guardianship_docs"
    GUARDIAN_ID = "guardian_id"
    REPRESENTATIVE_ID = "representative_id"

    @property
    def field(self) -> str:
        """Pointer column on the application record"""
        return f"{self.value}_url"

    @property
    def doc_type(self) -> str:
        """Document type used in storage paths"""
        return _DOC_TYPES.get(self, self.value)

    @property
    def label(self) -> str:
        return _LABELS[self]


# Storage names that differ from the slot name
_DOC_TYPES = {
    DocumentSlot.MARRIAGE_CERTIFICATE: "marriage_or_divorce_certificate",
    DocumentSlot.OLD_PASSPORT: "old_passport_copy",
}

_LABELS = {
    DocumentSlot.BIRTH_CERTIFICATE: "Birth Certificate",
    DocumentSlot.CONSENT_FORM: "Consent Form",
    DocumentSlot.MARRIAGE_CERTIFICATE: "Marriage/Divorce Certificate",
    DocumentSlot.OLD_PASSPORT: "Old Passport Copy",
    DocumentSlot.SIGNATURE: "Signature",
    DocumentSlot.PHOTO_ID: "Photo ID",
    DocumentSlot.SOCIAL_SECURITY_CARD: "Social Security Card",
    DocumentSlot.PASSPORT_PHOTO: "Passport Photo",
    DocumentSlot.RELATIONSHIP_PROOF: "Relationship Proof",
    DocumentSlot.PARENT_GUARDIAN_ID: "Parent/Guardian ID",
    DocumentSlot.LEGAL_GUARDIANSHIP_DOCS: "Legal Guardianship Documents",
    DocumentSlot.GUARDIAN_ID: "Guardian ID",
    DocumentSlot.REPRESENTATIVE_ID: "Representative ID",
}
