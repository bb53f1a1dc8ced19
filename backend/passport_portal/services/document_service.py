"""
Document Service - admin document operations on a passport application.

Order of effects for a mutation:
1. registry validates and mutates storage
2. the slot pointer on the application record is written and committed
3. the slot credential is re-signed
4. an audit record is appended (failures there are swallowed)

A storage failure stops before the pointer is touched. A pointer write that
fails after storage was mutated is reported at CRITICAL and never retried.
"""

from typing import Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from passport_portal.core.exceptions import (
    ApplicationNotFoundError,
    DanglingPointerError,
    DocumentNotFoundError,
)
from passport_portal.core.logging_config import logger, set_application_id
from passport_portal.models import DocumentSlot, PassportApplication, User
from passport_portal.schemas.documents import (
    DocumentAccess,
    DocumentDeleteResponse,
    DocumentListResponse,
    DocumentSlotResponse,
    DocumentUploadResponse,
    OrphanedObject,
    OrphanReportResponse,
)
from passport_portal.services.audit_service import AuditTrailWriter, audit_writer, log_activity_event
from passport_portal.services.credential_cache import (
    CredentialCacheRegistry,
    SlotCredential,
    credential_registry,
)
from passport_portal.services.document_registry import (
    DocumentRegistry,
    DocumentUpload,
    document_registry,
    parse_uploaded_at,
)


UPLOAD_ACTION = "Uploaded Document"
DELETE_ACTION = "Deleted Document"


def slot_response(application: PassportApplication, slot: DocumentSlot,
                  credential: SlotCredential) -> DocumentSlotResponse:
    pointer = application.get_pointer(slot)
    return DocumentSlotResponse(
        slot=slot.value,
        label=slot.label,
        field=slot.field,
        has_document=pointer is not None,
        pointer=pointer,
        uploaded_at=parse_uploaded_at(pointer),
        access=DocumentAccess(
            state=credential.state.value,
            url=credential.url,
            expires_at=credential.expires_at,
            error=credential.error,
        ),
    )


class DocumentService:
    def __init__(
        self,
        registry: Optional[DocumentRegistry] = None,
        credentials: Optional[CredentialCacheRegistry] = None,
        writer: Optional[AuditTrailWriter] = None,
    ):
        self.registry = registry or document_registry
        self.credentials = credentials or credential_registry
        self.writer = writer or audit_writer

    async def get_application(self, db: AsyncSession, application_id: str) -> PassportApplication:
        result = await db.execute(
            select(PassportApplication).where(PassportApplication.id == str(application_id))
        )
        application = result.scalar_one_or_none()
        if application is None:
            raise ApplicationNotFoundError(str(application_id))
        set_application_id(str(application.id))
        return application

    async def list_documents(self, db: AsyncSession, application_id: str) -> DocumentListResponse:
        """Every slot with its pointer, upload time and timed access state"""
        application = await self.get_application(db, application_id)
        cache = await self.credentials.open(application.id, application.pointers())

        return DocumentListResponse(
            application_id=str(application.id),
            applicant_name=application.applicant_name,
            document_count=application.document_count,
            documents=[slot_response(application, slot, cache.get(slot)) for slot in DocumentSlot],
        )

    async def _refresh_credential(self, application: PassportApplication, slot: DocumentSlot) -> SlotCredential:
        cache = self.credentials.get(application.id)
        if cache is None:
            # First view populates every slot, including this one
            cache = await self.credentials.open(application.id, application.pointers())
            return cache.get(slot)
        cache.touch()
        return await cache.refresh_slot(slot, application.get_pointer(slot))

    async def upload_document(
        self,
        db: AsyncSession,
        application_id: str,
        slot: DocumentSlot,
        upload: DocumentUpload,
        actor: User,
        request: Optional[Request] = None,
    ) -> DocumentUploadResponse:
        application = await self.get_application(db, application_id)
        record_id = str(application.id)

        url = await self.registry.upload(slot, upload, str(application.user_id))

        application.set_pointer(slot, url)
        try:
            await db.commit()
        except SQLAlchemyError as e:
            # Rollback expires the instance, only locals are safe to read
            await db.rollback()
            logger.critical(
                f"[Documents] Stored {url} but could not record it on application {record_id}/{slot.value}: {e}"
            )
            raise

        credential = await self._refresh_credential(application, slot)
        logger.info(f"[Documents] ✓ {slot.label} uploaded for application {application.id}")

        await log_activity_event(
            actor,
            UPLOAD_ACTION,
            record_id=str(application.id),
            details={
                "document": slot.label,
                "documentType": slot.doc_type,
                "fileName": upload.filename,
                "path": self.registry.storage.extract_path(url),
            },
            request=request,
            writer=self.writer,
        )

        return DocumentUploadResponse(
            slot=slot.value,
            url=url,
            document=slot_response(application, slot, credential),
        )

    async def delete_document(
        self,
        db: AsyncSession,
        application_id: str,
        slot: DocumentSlot,
        actor: User,
        request: Optional[Request] = None,
    ) -> DocumentDeleteResponse:
        application = await self.get_application(db, application_id)
        record_id = str(application.id)
        pointer = application.get_pointer(slot)
        if pointer is None:
            raise DocumentNotFoundError(slot.value, getattr(application, slot.field))

        removed_path = await self.registry.delete(slot, pointer)

        application.set_pointer(slot, "")
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            error = DanglingPointerError(slot.value, pointer, str(e))
            logger.critical(f"[Documents] {error.message} (application {record_id})")
            raise error from e

        await self._refresh_credential(application, slot)
        logger.info(f"[Documents] ✓ {slot.label} deleted for application {application.id}")

        await log_activity_event(
            actor,
            DELETE_ACTION,
            record_id=str(application.id),
            details={
                "document": slot.label,
                "documentType": slot.doc_type,
                "path": removed_path,
            },
            request=request,
            writer=self.writer,
        )

        return DocumentDeleteResponse(slot=slot.value, removed_path=removed_path)

    async def refresh_document(self, db: AsyncSession, application_id: str,
                               slot: DocumentSlot) -> DocumentSlotResponse:
        """Re-sign one slot on demand"""
        application = await self.get_application(db, application_id)
        credential = await self._refresh_credential(application, slot)
        return slot_response(application, slot, credential)

    async def find_orphans(self, db: AsyncSession, application_id: str) -> OrphanReportResponse:
        """Objects under the applicant's prefix that no slot points at (read-only)"""
        application = await self.get_application(db, application_id)
        storage = self.registry.storage

        # Objects are keyed by owner, so pointers of all the owner's applications count
        result = await db.execute(
            select(PassportApplication).where(PassportApplication.user_id == application.user_id)
        )
        owned = result.scalars().all()

        prefix = f"{application.user_id}/"
        referenced = {
            storage.extract_path(pointer)
            for owned_application in owned
            for pointer in owned_application.pointers().values()
            if pointer
        }
        objects = await storage.list_objects(prefix)

        orphans = [
            OrphanedObject(path=obj.path, size=obj.size, last_modified=obj.last_modified)
            for obj in objects
            if obj.path not in referenced
        ]
        if orphans:
            logger.info(f"[Documents] {len(orphans)} unreferenced objects under {prefix}")

        return OrphanReportResponse(application_id=str(application.id), prefix=prefix, orphans=orphans)


# Singleton instance
document_service = DocumentService()
