"""
Audit Trail Writer - append-only record of administrative actions.

Appending never fails the action that triggered it: any error is logged for
operators and swallowed.
"""

import json
from typing import Any, Callable, Optional

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from passport_portal.core.database import get_session_local
from passport_portal.core.exceptions import AuditWriteError
from passport_portal.core.logging_config import logger
from passport_portal.models import AdminActivityLog, PassportApplication, User


APPLICANT_NAME_KEY = "applicantName"
UNKNOWN_APPLICANT = "Unknown"

# Actions containing one of these words refer to an application record
ENRICHED_ACTION_KEYWORDS = ("application", "comment", "message", "document")


def needs_applicant_name(action: str, subject_id: Optional[str]) -> bool:
    if not subject_id:
        return False
    lowered = (action or "").lower()
    return any(keyword in lowered for keyword in ENRICHED_ACTION_KEYWORDS)


def serialize_details(details: Any) -> Optional[str]:
    if details is None:
        return None
    return json.dumps(details, default=str)


def parse_details(raw: Optional[str]) -> Any:
    """Stored details as JSON, or the raw text when it does not parse"""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


def describe_device(user_agent: Optional[str]) -> str:
    """Reduce a User-Agent header to '<Browser> / <OS>'"""
    ua = user_agent or ""

    if "Chrome" in ua and "Edg" not in ua and "OPR" not in ua:
        browser = "Chrome"
    elif "Firefox" in ua:
        browser = "Firefox"
    elif "Safari" in ua and "Chrome" not in ua:
        browser = "Safari"
    elif "Edg" in ua:
        browser = "Edge"
    elif "OPR" in ua or "Opera" in ua:
        browser = "Opera"
    elif "CriOS" in ua:
        browser = "Chrome (iOS)"
    elif "FxiOS" in ua:
        browser = "Firefox (iOS)"
    elif "EdgiOS" in ua:
        browser = "Edge (iOS)"
    else:
        browser = "Unknown Browser"

    if "Windows" in ua:
        os_name = "Windows"
    elif "Mac" in ua:
        os_name = "Mac"
    elif "Linux" in ua:
        os_name = "Linux"
    elif "Android" in ua:
        os_name = "Android"
    elif any(device in ua for device in ("iPhone", "iPad", "iPod")) or (
        "AppleWebKit" in ua and "Mobile" in ua and "Safari" in ua and "Android" not in ua
    ):
        os_name = "iOS"
    else:
        os_name = "Unknown OS"

    return f"{browser} / {os_name}"


def get_client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class AuditTrailWriter:
    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self._session_factory = session_factory

    def _new_session(self) -> AsyncSession:
        factory = self._session_factory or get_session_local()
        return factory()

    async def resolve_applicant_name(self, session: AsyncSession, application_id: str) -> str:
        """Applicant name for an application, 'Unknown' when it cannot be resolved"""
        try:
            result = await session.execute(
                select(PassportApplication).where(PassportApplication.id == str(application_id))
            )
            application = result.scalar_one_or_none()
        except Exception as e:
            logger.warning(f"[Audit] Applicant lookup for {application_id} failed: {e}")
            return UNKNOWN_APPLICANT

        if application is None:
            return UNKNOWN_APPLICANT
        return application.applicant_name

    async def _enrich(self, session: AsyncSession, action: str, subject_id: Optional[str], details: Any) -> Any:
        if not needs_applicant_name(action, subject_id):
            return details

        if details is None:
            merged = {}
        elif isinstance(details, dict):
            merged = dict(details)
        else:
            merged = {"value": details}

        if APPLICANT_NAME_KEY not in merged:
            merged[APPLICANT_NAME_KEY] = await self.resolve_applicant_name(session, subject_id)
        return merged

    async def append(
        self,
        actor_id: str,
        actor_name: str,
        action: str,
        subject_id: Optional[str] = None,
        details: Any = None,
        is_admin: bool = False,
        ip_address: Optional[str] = None,
        device_info: Optional[str] = None,
    ) -> Optional[AdminActivityLog]:
        """
        Append an audit record.

        Returns the stored record, or None when the write failed. Failures are
        logged and never raised.
        """
        try:
            async with self._new_session() as session:
                enriched = await self._enrich(session, action, subject_id, details)
                entry = AdminActivityLog(
                    user_id=str(actor_id),
                    user_name=actor_name,
                    action=action,
                    record_id=str(subject_id) if subject_id else None,
                    details=serialize_details(enriched),
                    is_admin=is_admin,
                    ip_address=ip_address,
                    device_info=device_info,
                )
                session.add(entry)
                await session.commit()
                await session.refresh(entry)
        except Exception as e:
            error = AuditWriteError(action, str(e))
            logger.log_error_with_context(error, context="audit_append", actor_id=str(actor_id), record_id=subject_id)
            return None

        logger.log_audit_event(action, str(actor_id), entry.record_id)
        return entry


# Singleton instance
audit_writer = AuditTrailWriter()


async def log_activity_event(
    actor: User,
    action: str,
    record_id: Optional[str] = None,
    details: Any = None,
    request: Optional[Request] = None,
    writer: Optional[AuditTrailWriter] = None,
) -> Optional[AdminActivityLog]:
    """Append an audit record for the signed-in staff member"""
    writer = writer or audit_writer
    return await writer.append(
        actor_id=actor.id,
        actor_name=actor.display_name,
        action=action,
        subject_id=record_id,
        details=details,
        is_admin=actor.is_admin,
        ip_address=get_client_ip(request),
        device_info=describe_device(request.headers.get("user-agent")) if request else None,
    )
