"""
Client create/update/delete with users and engineer links.
- Creating a client with N users inserts N CLIENT_USER records linked to it.
- Deleting a client removes its users and detaches its engineers.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_cursor
from services import client_service
from services.errors import ConflictError, ValidationError


def users_find(engineer_ids=(), emails=()):
    """users.find stand-in: engineer lookups see ``engineer_ids``, email lookups see ``emails``."""
    def find(query, *args, **kwargs):
        if query.get("role") == "SOLUTIONS_ENGINEER":
            wanted = query["user_id"]["$in"]
            return make_cursor([{"user_id": u} for u in engineer_ids if u in wanted])
        if "email" in query:
            return make_cursor([{"email": e} for e in emails])
        return make_cursor([])
    return MagicMock(side_effect=find)


USERS = [
    {"name": "Ana", "email": "Ana@Acme.example.com"},
    {"name": "Ben", "email": "ben@acme.example.com", "department_id": "dept-missing"},
    {"name": "Cy", "email": "cy@acme.example.com", "is_client_admin": True},
]


@pytest.mark.asyncio
async def test_create_client_inserts_each_user_with_client_id(mock_db):
    mock_db.users.find = users_find(engineer_ids=["se-1", "se-2"])
    client = await client_service.create_client({"company_name": "  Acme  "}, USERS, ["se-1", "se-1", "se-2"])

    assert client["company_name"] == "Acme"
    assert client["status"] == "PENDING"
    assert client["pipeline_progress_current_phase"] == client["pipeline_steps"][0]["name"]
    assert len(client["document_links"]) == 7
    assert client["assigned_solutions_engineer_ids"] == ["se-1", "se-2"]

    inserted = [c.args[0] for c in mock_db.users.insert_one.call_args_list]
    assert len(inserted) == len(USERS)
    assert {u["client_id"] for u in inserted} == {client["client_id"]}
    assert {u["role"] for u in inserted} == {"CLIENT_USER"}
    assert inserted[0]["email"] == "ana@acme.example.com"
    # unknown department ids are dropped
    assert inserted[1]["department_id"] is None

    for call in mock_db.users.insert_one.call_args_list:
        assert call.kwargs["session"] is mock_db.session

    engineer_update = mock_db.users.update_many.call_args
    assert engineer_update.args[0]["user_id"] == {"$in": ["se-1", "se-2"]}
    assert engineer_update.args[1] == {"$addToSet": {"assigned_client_ids": client["client_id"]}}


@pytest.mark.asyncio
async def test_create_client_rejects_blank_name(mock_db):
    with pytest.raises(ValidationError):
        await client_service.create_client({"company_name": "   "}, [], [])


@pytest.mark.asyncio
async def test_create_client_rejects_duplicate_name(mock_db):
    mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-0"})
    with pytest.raises(ConflictError):
        await client_service.create_client({"company_name": "acme"}, [], [])
    mock_db.clients.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_create_client_rejects_existing_user_email(mock_db):
    mock_db.users.find.return_value = make_cursor([{"email": "ben@acme.example.com"}])
    with pytest.raises(ConflictError) as exc:
        await client_service.create_client({"company_name": "Acme"}, USERS, [])
    assert "ben@acme.example.com" in str(exc.value)
    mock_db.clients.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_delete_client_detaches_engineers_and_users(mock_db):
    mock_db.clients.find_one = AsyncMock(return_value={
        "client_id": "c-1",
        "company_name": "Acme",
        "assigned_solutions_engineer_ids": ["se-1", "se-2"],
        "pipeline_steps": [{"name": "a"}, {"name": "b"}],
        "document_links": [],
    })
    mock_db.users.delete_many = AsyncMock(return_value=type("R", (), {"deleted_count": 3})())

    result = await client_service.delete_client("c-1")

    assert result == {"client_users": 3, "pipeline_steps": 2, "document_links": 0}
    mock_db.users.update_many.assert_awaited_once()
    query, update = mock_db.users.update_many.call_args.args
    assert query == {"user_id": {"$in": ["se-1", "se-2"]}}
    assert update == {"$pull": {"assigned_client_ids": "c-1"}}
    mock_db.clients.delete_one.assert_awaited_once()
    assert mock_db.users.delete_many.call_args.args[0] == {"client_id": "c-1", "role": "CLIENT_USER"}


@pytest.mark.asyncio
async def test_update_client_diffs_engineer_assignments(mock_db):
    mock_db.clients.find_one = AsyncMock(return_value={
        "client_id": "c-1",
        "company_name": "Acme",
        "assigned_solutions_engineer_ids": ["se-1", "se-2"],
    })
    mock_db.users.find = users_find(engineer_ids=["se-1", "se-2", "se-3"])

    await client_service.update_client("c-1", {"industry": "Retail"}, engineer_ids=["se-2", "se-3"])

    calls = [c.args for c in mock_db.users.update_many.call_args_list]
    assert ({"user_id": {"$in": ["se-3"]}, "role": "SOLUTIONS_ENGINEER"}, {"$addToSet": {"assigned_client_ids": "c-1"}}) in calls
    assert ({"user_id": {"$in": ["se-1"]}}, {"$pull": {"assigned_client_ids": "c-1"}}) in calls


@pytest.mark.asyncio
async def test_create_client_rejects_unknown_engineer(mock_db):
    mock_db.users.find = users_find(engineer_ids=["se-1"])
    with pytest.raises(ValidationError) as exc:
        await client_service.create_client({"company_name": "Acme"}, [], ["se-1", "ghost"])
    assert "ghost" in str(exc.value)
    mock_db.clients.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_update_client_rejects_non_engineer_assignment(mock_db):
    mock_db.clients.find_one = AsyncMock(return_value={
        "client_id": "c-1",
        "company_name": "Acme",
        "assigned_solutions_engineer_ids": [],
    })
    # admin-1 exists but is not a solutions engineer
    mock_db.users.find = users_find(engineer_ids=[])

    with pytest.raises(ValidationError):
        await client_service.update_client("c-1", {}, engineer_ids=["admin-1", "ghost"])

    mock_db.users.update_many.assert_not_called()
    mock_db.clients.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_update_pipeline_step_advances_phase(mock_db):
    steps = [
        {"name": "First", "status": "completed", "order": 0},
        {"name": "Second", "status": "pending", "order": 1},
        {"name": "Third", "status": "pending", "order": 2},
    ]
    mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-1", "pipeline_steps": steps})

    result = await client_service.update_pipeline_step("c-1", "Second", "completed")

    assert result["current_phase"] == "Third"
    second = next(s for s in result["pipeline_steps"] if s["name"] == "Second")
    assert second["completed_date"] is not None


@pytest.mark.asyncio
async def test_update_pipeline_step_rejects_unknown_status(mock_db):
    with pytest.raises(ValidationError):
        await client_service.update_pipeline_step("c-1", "First", "done")


def test_create_client_endpoint_returns_201(client, mock_db):
    from conftest import auth_headers

    r = client.post(
        "/api/admin/clients",
        json={"company_name": "Acme", "users": [{"name": "Ana", "email": "ana@acme.example.com"}]},
        headers=auth_headers("ADMIN", user_id="admin-1"),
    )
    assert r.status_code == 201
    assert r.json()["company_name"] == "Acme"
    mock_db.audit_logs.insert_one.assert_awaited()


def test_create_client_endpoint_duplicate_is_409(client, mock_db):
    from conftest import auth_headers

    mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-0"})
    r = client.post("/api/admin/clients", json={"company_name": "Acme"}, headers=auth_headers("ADMIN"))
    assert r.status_code == 409
