"""
Admin API endpoints for the passport back office.
All endpoints require staff or admin privileges.
"""
from fastapi import APIRouter

from passport_portal.api.v1.endpoints.admin import documents, audit_logs

admin_router = APIRouter(prefix="/admin", tags=["Admin"])

admin_router.include_router(documents.router, prefix="/applications", tags=["Admin Documents"])
admin_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["Admin Audit Logs"])
