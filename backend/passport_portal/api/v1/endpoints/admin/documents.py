"""
Admin document endpoints for passport applications.
"""
from fastapi import APIRouter, Depends, File, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from passport_portal.api.deps import get_current_staff
from passport_portal.core.database import get_db
from passport_portal.models import DocumentSlot, User
from passport_portal.schemas.documents import (
    DocumentDeleteResponse,
    DocumentListResponse,
    DocumentSlotResponse,
    DocumentUploadResponse,
    OrphanReportResponse,
)
from passport_portal.services.document_registry import DocumentUpload
from passport_portal.services.document_service import document_service

router = APIRouter()


@router.get("/{application_id}/documents", response_model=DocumentListResponse)
async def list_documents(
    application_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff)
):
    """List every document slot with its timed access URL"""
    return await document_service.list_documents(db, application_id)


@router.get("/{application_id}/documents/orphans", response_model=OrphanReportResponse)
async def list_orphaned_documents(
    application_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff)
):
    """Stored objects for the applicant that no slot points at"""
    return await document_service.find_orphans(db, application_id)


@router.post("/{application_id}/documents/{slot}", response_model=DocumentUploadResponse)
async def upload_document(
    application_id: str,
    slot: DocumentSlot,
    request: Request,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff)
):
    """Upload (or replace) the document in a slot"""
    upload = DocumentUpload(
        filename=file.filename or "",
        content_type=file.content_type or "",
        data=await file.read(),
    )
    return await document_service.upload_document(
        db, application_id, slot, upload, current_user, request
    )


@router.delete("/{application_id}/documents/{slot}", response_model=DocumentDeleteResponse)
async def delete_document(
    application_id: str,
    slot: DocumentSlot,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff)
):
    """Delete the stored document and clear the slot"""
    return await document_service.delete_document(
        db, application_id, slot, current_user, request
    )


@router.post("/{application_id}/documents/{slot}/refresh", response_model=DocumentSlotResponse)
async def refresh_document_access(
    application_id: str,
    slot: DocumentSlot,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff)
):
    """Re-issue the timed access URL for one slot"""
    return await document_service.refresh_document(db, application_id, slot)
