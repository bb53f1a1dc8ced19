"""
Admin Audit Logs endpoints.
"""
from fastapi import APIRouter, Depends, Query

from passport_portal.api.deps import get_current_staff
from passport_portal.core.config import settings
from passport_portal.models import User
from passport_portal.schemas.audit import AuditActionsResponse, AuditLogPage, AuditSummary
from passport_portal.services.audit_query import (
    ActionType,
    ActorKind,
    AuditFilters,
    DateRange,
    audit_feeds,
    audit_query_engine,
)

router = APIRouter()


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.AUDIT_PAGE_SIZE, ge=1, le=settings.AUDIT_MAX_PAGE_SIZE),
    date_range: DateRange = DateRange.ALL,
    actor_kind: ActorKind = ActorKind.ALL,
    action_type: ActionType = ActionType.ALL,
    search: str = "",
    current_user: User = Depends(get_current_staff)
):
    """List audit logs with filtering and pagination, newest first"""
    filters = AuditFilters(
        date_range=date_range,
        actor_kind=actor_kind,
        action_type=action_type,
        search=search,
    )
    feed = audit_feeds.for_viewer(current_user.id)
    return await feed.request(filters, page, page_size)


@router.get("/summary", response_model=AuditSummary)
async def get_audit_summary(
    current_user: User = Depends(get_current_staff)
):
    """Today/yesterday activity counts and active staff"""
    return await audit_query_engine.summary()


@router.get("/actions", response_model=AuditActionsResponse)
async def get_available_actions(
    current_user: User = Depends(get_current_staff)
):
    """Get list of distinct action labels for filtering"""
    return AuditActionsResponse(actions=await audit_query_engine.distinct_actions())
