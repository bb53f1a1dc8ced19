from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


# ==================== Document Schemas ====================

class DocumentAccess(BaseModel):
    """Timed read access for one slot"""
    state: str  # absent | pending | error | ready
    url: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None


class DocumentSlotResponse(BaseModel):
    slot: str
    label: str
    field: str
    has_document: bool
    pointer: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    access: DocumentAccess


class DocumentListResponse(BaseModel):
    application_id: str
    applicant_name: str
    document_count: int
    documents: List[DocumentSlotResponse]


class DocumentUploadResponse(BaseModel):
    success: bool = True
    slot: str
    url: str
    document: DocumentSlotResponse


class DocumentDeleteResponse(BaseModel):
    success: bool = True
    slot: str
    removed_path: str


class OrphanedObject(BaseModel):
    path: str
    size: int
    last_modified: Optional[datetime] = None


class OrphanReportResponse(BaseModel):
    """Stored objects under the applicant's prefix that no slot points at"""
    application_id: str
    prefix: str
    orphans: List[OrphanedObject]
