"""
Solutions engineers: both sides of the engineer/client link move together.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import auth_headers, make_cursor
from services import user_service
from services.errors import ConflictError, NotFoundError, ValidationError

ENGINEER = {"name": "Sam Engineer", "email": "Sam@Acme.example.com", "cost_rate": 50, "bill_rate": 120}


class TestCreateEngineer:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["cost_rate", "bill_rate"])
    async def test_rates_are_required(self, mock_db, missing):
        data = {k: v for k, v in ENGINEER.items() if k != missing}
        with pytest.raises(ValidationError):
            await user_service.create_engineer(data)
        mock_db.users.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_assigned_client_is_rejected(self, mock_db):
        mock_db.clients.find.return_value = make_cursor([{"client_id": "c-1"}])
        with pytest.raises(ValidationError) as exc:
            await user_service.create_engineer({**ENGINEER, "assigned_client_ids": ["c-1", "c-9"]})
        assert "c-9" in str(exc.value)
        mock_db.users.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_email_is_conflict(self, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={"user_id": "u-0"})
        with pytest.raises(ConflictError):
            await user_service.create_engineer(ENGINEER)

    @pytest.mark.asyncio
    async def test_assigned_clients_get_the_back_link(self, mock_db):
        mock_db.clients.find.return_value = make_cursor([{"client_id": "c-1"}, {"client_id": "c-2"}])

        engineer = await user_service.create_engineer({**ENGINEER, "assigned_client_ids": ["c-1", "c-2", "c-1"]})

        stored = mock_db.users.insert_one.call_args.args[0]
        assert stored["role"] == "SOLUTIONS_ENGINEER"
        assert stored["email"] == "sam@acme.example.com"
        assert stored["assigned_client_ids"] == ["c-1", "c-2"]
        assert "password_hash" not in engineer

        query, update = mock_db.clients.update_many.call_args.args
        assert query == {"client_id": {"$in": ["c-1", "c-2"]}}
        assert update == {"$addToSet": {"assigned_solutions_engineer_ids": engineer["user_id"]}}
        assert mock_db.clients.update_many.call_args.kwargs["session"] is mock_db.session


class TestUpdateEngineer:

    @pytest.mark.asyncio
    async def test_assignment_diff_updates_both_sides(self, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={
            "user_id": "se-1", "role": "SOLUTIONS_ENGINEER", "assigned_client_ids": ["c-1", "c-2"],
        })
        mock_db.clients.find.return_value = make_cursor([{"client_id": "c-2"}, {"client_id": "c-3"}])

        await user_service.update_engineer("se-1", {"assigned_client_ids": ["c-2", "c-3"]})

        calls = [c.args for c in mock_db.clients.update_many.call_args_list]
        assert ({"client_id": {"$in": ["c-3"]}}, {"$addToSet": {"assigned_solutions_engineer_ids": "se-1"}}) in calls
        assert ({"client_id": {"$in": ["c-1"]}}, {"$pull": {"assigned_solutions_engineer_ids": "se-1"}}) in calls
        user_updates = [c.args for c in mock_db.users.update_one.call_args_list]
        assert ({"user_id": "se-1"}, {"$set": {"assigned_client_ids": ["c-2", "c-3"]}}) in user_updates

    @pytest.mark.asyncio
    async def test_without_assignments_leaves_clients_alone(self, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={
            "user_id": "se-1", "role": "SOLUTIONS_ENGINEER", "assigned_client_ids": ["c-1"],
        })

        await user_service.update_engineer("se-1", {"phone": "555-0100"})

        mock_db.clients.update_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_engineer_is_not_found(self, mock_db):
        with pytest.raises(NotFoundError):
            await user_service.update_engineer("ghost", {"phone": "555-0100"})


class TestDeleteEngineer:

    @pytest.mark.asyncio
    async def test_delete_detaches_from_every_client(self, mock_db):
        mock_db.users.find_one = AsyncMock(return_value={"user_id": "se-1", "role": "SOLUTIONS_ENGINEER"})
        mock_db.clients.update_many = AsyncMock(return_value=MagicMock(modified_count=2))

        result = await user_service.delete_engineer("se-1")

        assert result == {"detached_clients": 2}
        query, update = mock_db.clients.update_many.call_args.args
        assert query == {"assigned_solutions_engineer_ids": "se-1"}
        assert update == {"$pull": {"assigned_solutions_engineer_ids": "se-1"}}
        assert mock_db.users.delete_one.call_args.args[0] == {"user_id": "se-1"}

    def test_engineer_cannot_manage_engineers(self, client):
        r = client.delete("/api/admin/users/engineers/se-2", headers=auth_headers("SOLUTIONS_ENGINEER"))
        assert r.status_code == 403


def test_create_engineer_endpoint_rejects_unknown_client(client, mock_db):
    r = client.post(
        "/api/admin/users/engineers",
        json={**ENGINEER, "assigned_client_ids": ["c-9"]},
        headers=auth_headers("ADMIN"),
    )
    assert r.status_code == 400
