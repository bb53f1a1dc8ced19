"""
Integration Tests for the admin audit log endpoints
"""
import pytest
from datetime import datetime, timedelta

from passport_portal.models import AdminActivityLog

AUDIT_URL = "/api/v1/admin/audit-logs"


async def seed(db_session, user, actions, is_admin=False, days_ago=0):
    now = datetime.utcnow() - timedelta(days=days_ago)
    for offset, action in enumerate(actions):
        db_session.add(AdminActivityLog(
            user_id=user.id,
            user_name="Stored Name",
            action=action,
            record_id=f"#{offset}",
            is_admin=is_admin,
            details='{"note": "seeded"}',
            created_at=now - timedelta(seconds=offset),
        ))
    await db_session.commit()


@pytest.mark.asyncio
class TestListAuditLogs:
    """Test GET /admin/audit-logs"""

    async def test_empty_log_returns_placeholders(self, client, staff_auth_headers):
        """Test the placeholder dataset is labelled as such"""
        response = await client.get(AUDIT_URL, headers=staff_auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["is_placeholder"] is True
        assert data["total_count"] == 7

    async def test_pagination(self, client, db_session, staff_user, staff_auth_headers):
        """Test default page size and total pages"""
        await seed(db_session, staff_user, [f"Reviewed application {i}" for i in range(45)])

        first = (await client.get(AUDIT_URL, headers=staff_auth_headers)).json()
        last = (await client.get(AUDIT_URL, params={"page": 3}, headers=staff_auth_headers)).json()

        assert first["total_count"] == 45
        assert first["page_size"] == 20
        assert first["total_pages"] == 3
        assert len(first["records"]) == 20
        assert len(last["records"]) == 5
        assert first["records"][0]["details"] == {"note": "seeded"}
        assert first["is_placeholder"] is False

    async def test_login_filter_includes_logout(self, client, db_session, staff_user, admin_user,
                                                staff_auth_headers):
        await seed(db_session, staff_user, ["Login", "Logout", "Added Comment"])
        await seed(db_session, admin_user, ["Login"], is_admin=True, days_ago=3)

        response = await client.get(
            AUDIT_URL, params={"action_type": "login", "date_range": "today"}, headers=staff_auth_headers
        )

        data = response.json()
        assert data["total_count"] == 2
        assert {r["action"] for r in data["records"]} == {"Login", "Logout"}

    async def test_actor_kind_and_search(self, client, db_session, staff_user, admin_user, staff_auth_headers):
        await seed(db_session, staff_user, ["Reviewed application", "Changed application status"])
        await seed(db_session, admin_user, ["Changed application status"], is_admin=True)

        response = await client.get(
            AUDIT_URL, params={"actor_kind": "admin", "search": "status"}, headers=staff_auth_headers
        )

        data = response.json()
        assert data["total_count"] == 1
        assert data["records"][0]["is_admin"] is True
        assert data["records"][0]["user_role"] == "admin"
        assert data["records"][0]["action_category"] == "change"

    async def test_invalid_filter_value(self, client, staff_auth_headers):
        response = await client.get(AUDIT_URL, params={"date_range": "decade"}, headers=staff_auth_headers)
        assert response.status_code == 422

    async def test_page_size_capped(self, client, staff_auth_headers):
        response = await client.get(AUDIT_URL, params={"page_size": 1000}, headers=staff_auth_headers)
        assert response.status_code == 422

    async def test_applicants_forbidden(self, client, applicant_auth_headers):
        response = await client.get(AUDIT_URL, headers=applicant_auth_headers)
        assert response.status_code == 403


@pytest.mark.asyncio
class TestAuditExtras:
    """Test summary and actions endpoints"""

    async def test_summary(self, client, db_session, staff_user, admin_user, staff_auth_headers):
        await seed(db_session, staff_user, ["Login", "Reviewed application"])
        await seed(db_session, admin_user, ["Updated system settings"], is_admin=True, days_ago=1)

        data = (await client.get(f"{AUDIT_URL}/summary", headers=staff_auth_headers)).json()

        assert data["total_logs"] == 3
        assert data["admin_users"] == 1
        assert data["staff_users"] == 1
        assert data["today_count"] + data["yesterday_count"] == 3

    async def test_actions(self, client, db_session, staff_user, staff_auth_headers):
        await seed(db_session, staff_user, ["Logout", "Login", "Login"])

        data = (await client.get(f"{AUDIT_URL}/actions", headers=staff_auth_headers)).json()

        assert data == {"actions": ["Login", "Logout"]}
