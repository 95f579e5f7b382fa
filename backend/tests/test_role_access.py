"""
Role-based access: each endpoint lists the roles it allows; there is no hierarchy.
- Missing/invalid token -> 401; wrong role -> 403.
- Solutions engineers only reach clients they are assigned to.
"""
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from conftest import auth_headers, make_cursor


class TestAdminOnlyEndpoints:

    def test_no_token_is_401(self, client):
        r = client.get("/api/admin/dashboard/summary")
        assert r.status_code == 401

    def test_garbage_token_is_401(self, client):
        r = client.get("/api/admin/dashboard/summary", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 401

    @pytest.mark.parametrize("role", ["SOLUTIONS_ENGINEER", "CLIENT_USER"])
    def test_non_admin_roles_are_403(self, client, role):
        r = client.get("/api/admin/dashboard/summary", headers=auth_headers(role, client_id="c-1"))
        assert r.status_code == 403
        assert r.json()["detail"] == "Insufficient permissions"

    def test_admin_reaches_dashboard(self, client):
        with patch("routes.admin_dashboard.dashboard_service.get_summary", new=AsyncMock(return_value={"total_clients": 3})):
            r = client.get("/api/admin/dashboard/summary", headers=auth_headers("ADMIN"))
        assert r.status_code == 200
        assert r.json()["total_clients"] == 3

    def test_engineer_cannot_manage_billing(self, client):
        r = client.get("/api/admin/subscription-plans", headers=auth_headers("SOLUTIONS_ENGINEER"))
        assert r.status_code == 403

    def test_cookie_header_session_is_accepted(self, client):
        from conftest import make_token
        cookie = f"auth-token={make_token('ADMIN')}"
        with patch("routes.admin_dashboard.dashboard_service.get_summary", new=AsyncMock(return_value={})):
            r = client.get("/api/admin/dashboard/summary", headers={"Cookie": cookie})
        assert r.status_code == 200


class TestStaffEndpoints:

    def test_client_user_cannot_list_clients(self, client):
        r = client.get("/api/admin/clients", headers=auth_headers("CLIENT_USER", client_id="c-1"))
        assert r.status_code == 403

    def test_engineer_lists_only_assigned_clients(self, client, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={"assigned_client_ids": ["c-1"]})
        mock_db.clients.find.return_value = make_cursor([{"client_id": "c-1", "company_name": "Acme"}])

        r = client.get("/api/admin/clients", headers=auth_headers("SOLUTIONS_ENGINEER", user_id="se-1"))

        assert r.status_code == 200
        query = mock_db.clients.find.call_args[0][0]
        assert query == {"client_id": {"$in": ["c-1"]}}

    def test_engineer_can_create_department_but_not_client(self, client, mock_db):
        r = client.post(
            "/api/admin/departments",
            json={"name": "Finance"},
            headers=auth_headers("SOLUTIONS_ENGINEER", user_id="se-1"),
        )
        assert r.status_code == 201

        r = client.post(
            "/api/admin/clients",
            json={"company_name": "Acme"},
            headers=auth_headers("SOLUTIONS_ENGINEER", user_id="se-1"),
        )
        assert r.status_code == 403


@pytest.mark.asyncio
async def test_ensure_client_access_blocks_unassigned_engineer(mock_db):
    from middleware import ensure_client_access

    mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-1", "assigned_solutions_engineer_ids": ["se-2"]})

    with pytest.raises(HTTPException) as exc:
        await ensure_client_access({"user_id": "se-1", "role": "SOLUTIONS_ENGINEER"}, "c-1")
    assert exc.value.status_code == 403

    client = await ensure_client_access({"user_id": "se-2", "role": "SOLUTIONS_ENGINEER"}, "c-1")
    assert client["client_id"] == "c-1"


@pytest.mark.asyncio
async def test_ensure_client_access_unknown_client_is_404(mock_db):
    from middleware import ensure_client_access

    with pytest.raises(HTTPException) as exc:
        await ensure_client_access({"user_id": "a-1", "role": "ADMIN"}, "missing")
    assert exc.value.status_code == 404


class TestClientPortalAccess:

    def test_staff_cannot_use_client_portal(self, client):
        r = client.get("/api/client/workflows", headers=auth_headers("ADMIN"))
        assert r.status_code == 403

    def test_client_user_without_billing_access_is_403(self, client, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={
            "user_id": "u-1", "client_id": "c-1", "role": "CLIENT_USER", "status": "ACTIVE",
            "has_billing_access": False, "is_client_admin": False,
        })
        r = client.get("/api/client/invoices", headers=auth_headers("CLIENT_USER", user_id="u-1", client_id="c-1"))
        assert r.status_code == 403

    def test_inactive_client_user_is_403(self, client, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={
            "user_id": "u-1", "client_id": "c-1", "role": "CLIENT_USER", "status": "INACTIVE",
        })
        r = client.get("/api/client/workflows", headers=auth_headers("CLIENT_USER", user_id="u-1", client_id="c-1"))
        assert r.status_code == 403

    def test_non_admin_client_user_cannot_add_users(self, client, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={
            "user_id": "u-1", "client_id": "c-1", "role": "CLIENT_USER", "status": "ACTIVE", "is_client_admin": False,
        })
        r = client.post(
            "/api/client/users",
            json={"name": "New", "email": "new@acme.example.com"},
            headers=auth_headers("CLIENT_USER", user_id="u-1", client_id="c-1"),
        )
        assert r.status_code == 403

    def test_client_admin_cannot_delete_self(self, client, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={
            "user_id": "u-1", "client_id": "c-1", "role": "CLIENT_USER", "status": "ACTIVE", "is_client_admin": True,
        })
        r = client.delete("/api/client/users/u-1", headers=auth_headers("CLIENT_USER", user_id="u-1", client_id="c-1"))
        assert r.status_code == 400
