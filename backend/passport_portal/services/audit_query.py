"""
Audit Query Engine - filtered, counted and paginated reads of the activity log.

The count and the page are built from the same predicate list and run
concurrently on separate sessions. A page is returned only once both resolve.
"""

import asyncio
import calendar
import enum
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from passport_portal.core.config import settings
from passport_portal.core.database import get_session_local
from passport_portal.core.exceptions import QueryError, QuerySupersededError
from passport_portal.core.logging_config import logger
from passport_portal.models import AdminActivityLog, User
from passport_portal.schemas.audit import AuditLogEntry, AuditLogPage, AuditSummary
from passport_portal.services.audit_service import parse_details


class DateRange(str, enum.Enum):
    ALL = "all"
    TODAY = "today"
    YESTERDAY = "yesterday"
    WEEK = "week"
    MONTH = "month"


class ActorKind(str, enum.Enum):
    ALL = "all"
    ADMIN = "admin"
    STAFF = "staff"


class ActionType(str, enum.Enum):
    ALL = "all"
    LOGIN = "login"
    REVIEW = "review"
    STATUS = "status"
    DOCUMENT = "document"
    SETTINGS = "settings"
    DELETE = "delete"
    USER = "user"
    COMMENT = "comment"


@dataclass(frozen=True)
class AuditFilters:
    date_range: DateRange = DateRange.ALL
    actor_kind: ActorKind = ActorKind.ALL
    action_type: ActionType = ActionType.ALL
    search: str = ""


def action_category(action: str) -> str:
    """Badge category for an action label"""
    lowered = (action or "").lower()
    if "login" in lowered:
        return "login"
    if "logout" in lowered:
        return "logout"
    if "review" in lowered:
        return "review"
    if "approve" in lowered:
        return "approve"
    if "reject" in lowered:
        return "reject"
    if "change" in lowered or "update" in lowered:
        return "change"
    if "verif" in lowered:
        return "verify"
    if "upload" in lowered or "document" in lowered:
        return "document"
    if "bulk" in lowered or "process" in lowered:
        return "bulk"
    return "other"


def _to_utc_naive(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _month_before(value: datetime) -> datetime:
    year, month = (value.year, value.month - 1) if value.month > 1 else (value.year - 1, 12)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def resolve_date_range(date_range: DateRange, now: Optional[datetime] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Half-open [start, end) bounds for a date range, as naive UTC datetimes.

    Bounds are anchored on local midnight in AUDIT_TIMEZONE at the time of the
    call. ALL has no bounds.
    """
    date_range = DateRange(date_range)
    if date_range == DateRange.ALL:
        return None, None

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    local_now = now.astimezone(ZoneInfo(settings.AUDIT_TIMEZONE))
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = midnight + timedelta(days=1)

    if date_range == DateRange.TODAY:
        start, end = midnight, tomorrow
    elif date_range == DateRange.YESTERDAY:
        start, end = midnight - timedelta(days=1), midnight
    elif date_range == DateRange.WEEK:
        start, end = midnight - timedelta(days=7), tomorrow
    else:
        start, end = _month_before(midnight), tomorrow

    return _to_utc_naive(start), _to_utc_naive(end)


LIKE_ESCAPE = "\\"


def _contains_pattern(text: str) -> str:
    """ilike pattern matching text literally, with % and _ escaped"""
    escaped = text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
    for wildcard in ("%", "_"):
        escaped = escaped.replace(wildcard, LIKE_ESCAPE + wildcard)
    return f"%{escaped}%"


def build_predicates(filters: AuditFilters, now: Optional[datetime] = None) -> list:
    """Conditions shared by the count and the page query"""
    conditions = []

    start, end = resolve_date_range(filters.date_range, now)
    if start is not None:
        conditions.append(AdminActivityLog.created_at >= start)
    if end is not None:
        conditions.append(AdminActivityLog.created_at < end)

    actor_kind = ActorKind(filters.actor_kind)
    if actor_kind != ActorKind.ALL:
        conditions.append(AdminActivityLog.is_admin == (actor_kind == ActorKind.ADMIN))

    action_type = ActionType(filters.action_type)
    if action_type == ActionType.LOGIN:
        conditions.append(or_(
            AdminActivityLog.action.ilike("%login%"),
            AdminActivityLog.action.ilike("%logout%")
        ))
    elif action_type != ActionType.ALL:
        conditions.append(AdminActivityLog.action.ilike(f"%{action_type.value}%"))

    search = (filters.search or "").strip()
    if search:
        search_term = _contains_pattern(search)
        conditions.append(or_(
            AdminActivityLog.user_name.ilike(search_term, escape=LIKE_ESCAPE),
            AdminActivityLog.action.ilike(search_term, escape=LIKE_ESCAPE),
            AdminActivityLog.record_id.ilike(search_term, escape=LIKE_ESCAPE)
        ))

    return conditions


# Illustrative records shown while the activity log is still empty
PLACEHOLDER_ENTRIES: List[Dict] = [
    {"id": "1", "created_at": "2025-06-13T12:45:00", "user_id": "admin-123", "user_name": "Francis Admin",
     "action": "Login", "ip_address": "192.168.1.1", "device_info": "Chrome / Windows",
     "is_admin": True, "user_role": "admin"},
    {"id": "2", "created_at": "2025-06-13T13:30:00", "user_id": "staff-456", "user_name": "Francis debrum",
     "action": "Reviewed application", "record_id": "#12345", "ip_address": "192.168.1.2",
     "device_info": "Safari / Mac", "details": "Preliminary review completed",
     "is_admin": False, "user_role": "staff"},
    {"id": "3", "created_at": "2025-06-13T14:15:00", "user_id": "admin-123", "user_name": "Francis Admin",
     "action": "Changed application status", "record_id": "#12345", "ip_address": "192.168.1.1",
     "device_info": "Chrome / Windows", "details": "Changed status from Pending to Approved",
     "is_admin": True, "user_role": "admin"},
    {"id": "4", "created_at": "2025-06-12T09:20:00", "user_id": "staff-789", "user_name": "Rebecca Johnson",
     "action": "Document verification", "record_id": "#12346", "ip_address": "192.168.1.3",
     "device_info": "Firefox / Linux", "details": "Verified birth certificate",
     "is_admin": False, "user_role": "staff"},
    {"id": "5", "created_at": "2025-06-12T10:05:00", "user_id": "admin-123", "user_name": "Francis Admin",
     "action": "Updated system settings", "ip_address": "192.168.1.1", "device_info": "Chrome / Windows",
     "details": "Modified rate limiting parameters", "is_admin": True, "user_role": "admin"},
    {"id": "6", "created_at": "2025-06-11T15:45:00", "user_id": "staff-456", "user_name": "Francis debrum",
     "action": "Logout", "ip_address": "192.168.1.2", "device_info": "Safari / Mac",
     "is_admin": False, "user_role": "staff"},
    {"id": "7", "created_at": "2025-06-11T16:30:00", "user_id": "admin-890", "user_name": "Sarah Thompson",
     "action": "Bulk application processing", "ip_address": "192.168.1.4", "device_info": "Edge / Windows",
     "details": "Processed 15 pending applications", "is_admin": True, "user_role": "admin"},
]


def placeholder_entries() -> List[AuditLogEntry]:
    entries = [
        AuditLogEntry(action_category=action_category(item["action"]), **item)
        for item in PLACEHOLDER_ENTRIES
    ]
    return sorted(entries, key=lambda e: (e.created_at, e.id), reverse=True)


def _total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total > 0 else 1


class AuditQueryEngine:
    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self._session_factory = session_factory

    def _new_session(self) -> AsyncSession:
        factory = self._session_factory or get_session_local()
        return factory()

    async def _count(self, conditions: list) -> int:
        async with self._new_session() as session:
            count_query = select(func.count(AdminActivityLog.id))
            if conditions:
                count_query = count_query.where(and_(*conditions))
            return await session.scalar(count_query) or 0

    async def _window(self, conditions: list, offset: int, limit: int) -> List[AuditLogEntry]:
        async with self._new_session() as session:
            query = select(AdminActivityLog)
            if conditions:
                query = query.where(and_(*conditions))
            query = query.order_by(
                AdminActivityLog.created_at.desc(),
                AdminActivityLog.id.desc()
            ).offset(offset).limit(limit)

            result = await session.execute(query)
            logs = result.scalars().all()
            profiles = await self._load_profiles(session, {log.user_id for log in logs})

        return [self._to_entry(log, profiles.get(log.user_id)) for log in logs]

    async def _load_profiles(self, session: AsyncSession, user_ids: set) -> Dict[str, User]:
        if not user_ids:
            return {}
        result = await session.execute(select(User).where(User.id.in_(list(user_ids))))
        return {str(user.id): user for user in result.scalars().all()}

    @staticmethod
    def _to_entry(log: AdminActivityLog, profile: Optional[User]) -> AuditLogEntry:
        """Stored record with the actor's current name and role when a profile exists"""
        user_name = log.user_name
        user_role = "admin" if log.is_admin else "staff"
        if profile is not None:
            profile_name = f"{profile.first_name or ''} {profile.last_name or ''}".strip()
            user_name = profile_name or user_name
            user_role = profile.role.value if profile.role else user_role

        return AuditLogEntry(
            id=str(log.id),
            created_at=log.created_at,
            user_id=str(log.user_id),
            user_name=user_name,
            user_role=user_role,
            action=log.action,
            action_category=action_category(log.action),
            record_id=log.record_id,
            details=parse_details(log.details),
            is_admin=log.is_admin,
            ip_address=log.ip_address,
            device_info=log.device_info,
        )

    def _placeholder_page(self, page: int, page_size: int) -> AuditLogPage:
        entries = placeholder_entries()
        offset = (page - 1) * page_size
        return AuditLogPage(
            records=entries[offset:offset + page_size],
            total_count=len(entries),
            page=page,
            page_size=page_size,
            total_pages=_total_pages(len(entries), page_size),
            is_placeholder=True,
        )

    async def query(
        self,
        filters: Optional[AuditFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AuditLogPage:
        """
        One page of audit records matching the filters, newest first.

        Raises:
            QueryError: the store could not be read
        """
        filters = filters or AuditFilters()
        page = max(page, 1)
        page_size = min(max(page_size or settings.AUDIT_PAGE_SIZE, 1), settings.AUDIT_MAX_PAGE_SIZE)
        offset = (page - 1) * page_size

        conditions = build_predicates(filters, now)
        start = time.perf_counter()

        try:
            total, records = await asyncio.gather(
                self._count(conditions),
                self._window(conditions, offset, page_size),
            )
            if total == 0 and settings.AUDIT_PLACEHOLDER_ENABLED and conditions:
                table_empty = await self._count([]) == 0
            else:
                table_empty = total == 0
        except SQLAlchemyError as e:
            logger.log_error_with_context(e, context="audit_query")
            raise QueryError() from e

        logger.log_performance("audit_query", (time.perf_counter() - start) * 1000, threshold_ms=500)

        if table_empty and settings.AUDIT_PLACEHOLDER_ENABLED:
            logger.info("[AuditQuery] Activity log is empty, returning placeholder records")
            return self._placeholder_page(page, page_size)

        logger.debug(f"[AuditQuery] page {page} ({len(records)} of {total}) for {filters}")
        return AuditLogPage(
            records=records,
            total_count=total,
            page=page,
            page_size=page_size,
            total_pages=_total_pages(total, page_size),
        )

    async def summary(self, now: Optional[datetime] = None) -> AuditSummary:
        """Today/yesterday counts and distinct admin and staff actors"""
        today = build_predicates(AuditFilters(date_range=DateRange.TODAY), now)
        yesterday = build_predicates(AuditFilters(date_range=DateRange.YESTERDAY), now)

        try:
            async with self._new_session() as session:
                total_logs = await session.scalar(select(func.count(AdminActivityLog.id)))
                today_count = await session.scalar(
                    select(func.count(AdminActivityLog.id)).where(and_(*today))
                )
                yesterday_count = await session.scalar(
                    select(func.count(AdminActivityLog.id)).where(and_(*yesterday))
                )
                admin_users = await session.scalar(
                    select(func.count(func.distinct(AdminActivityLog.user_id)))
                    .where(AdminActivityLog.is_admin.is_(True))
                )
                staff_users = await session.scalar(
                    select(func.count(func.distinct(AdminActivityLog.user_id)))
                    .where(AdminActivityLog.is_admin.is_(False))
                )
        except SQLAlchemyError as e:
            logger.log_error_with_context(e, context="audit_summary")
            raise QueryError("Failed to load activity summary") from e

        return AuditSummary(
            total_logs=total_logs or 0,
            today_count=today_count or 0,
            yesterday_count=yesterday_count or 0,
            admin_users=admin_users or 0,
            staff_users=staff_users or 0,
        )

    async def distinct_actions(self) -> List[str]:
        """Distinct action labels for filtering"""
        try:
            async with self._new_session() as session:
                result = await session.execute(
                    select(AdminActivityLog.action).distinct().order_by(AdminActivityLog.action)
                )
                return [row[0] for row in result.all() if row[0]]
        except SQLAlchemyError as e:
            logger.log_error_with_context(e, context="audit_actions")
            raise QueryError("Failed to load activity actions") from e


class AuditFeed:
    """
    Latest audit page for one viewer.

    A new request cancels the one in flight, and a result that arrives for a
    superseded request is discarded.
    """

    def __init__(self, engine: "AuditQueryEngine"):
        self._engine = engine
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self.current: Optional[AuditLogPage] = None
        self.filters: Optional[AuditFilters] = None
        self.last_accessed = time.monotonic()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def request(self, filters: AuditFilters, page: int = 1, page_size: Optional[int] = None) -> AuditLogPage:
        """
        Load a page for new filters.

        Raises:
            QuerySupersededError: a newer request replaced this one before it finished
            QueryError: the store could not be read
        """
        self._generation += 1
        generation = self._generation
        self.last_accessed = time.monotonic()

        if self.in_flight:
            self._task.cancel()

        task = asyncio.ensure_future(self._engine.query(filters, page, page_size))
        self._task = task

        try:
            result = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                raise QuerySupersededError()
            raise

        if generation != self._generation:
            raise QuerySupersededError()

        self.current = result
        self.filters = filters
        return result


class AuditFeedRegistry:
    """One AuditFeed per viewer, dropped once the viewer goes quiet"""

    def __init__(self, engine: Optional[AuditQueryEngine] = None, idle_seconds: Optional[int] = None):
        self._engine = engine or audit_query_engine
        self.idle_seconds = idle_seconds or settings.AUDIT_FEED_IDLE_SECONDS
        self._feeds: Dict[str, AuditFeed] = {}

    def __len__(self) -> int:
        return len(self._feeds)

    def for_viewer(self, viewer_id: str) -> AuditFeed:
        viewer_id = str(viewer_id)
        self.evict_idle()
        if viewer_id not in self._feeds:
            self._feeds[viewer_id] = AuditFeed(self._engine)
        return self._feeds[viewer_id]

    def evict_idle(self, now: Optional[float] = None) -> int:
        """Drop feeds with nothing in flight that were last used over idle_seconds ago"""
        now = time.monotonic() if now is None else now
        idle = [viewer_id for viewer_id, feed in self._feeds.items()
                if not feed.in_flight and now - feed.last_accessed > self.idle_seconds]
        for viewer_id in idle:
            del self._feeds[viewer_id]
        if idle:
            logger.debug(f"[AuditQuery] Dropped {len(idle)} idle audit feeds")
        return len(idle)


# Singleton instances
audit_query_engine = AuditQueryEngine()
audit_feeds = AuditFeedRegistry(audit_query_engine)
