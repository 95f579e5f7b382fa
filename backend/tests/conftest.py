"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

# Deterministic secrets for token and credential tests
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("CREDENTIALS_ENCRYPTION_KEY", "2bOHIUmW0jTyVHeK3ZRXgxoWkCNjG0ZoH3Hl7sIr-7Y=")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from auth import create_access_token
from database import database


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


def make_token(role: str, user_id: str = "user-1", client_id: str = None) -> str:
    payload = {"user_id": user_id, "email": f"{user_id}@example.com", "role": role}
    if client_id:
        payload["client_id"] = client_id
    return create_access_token(payload)


def auth_headers(role: str, **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(role, **kwargs)}"}


def make_cursor(rows=None):
    """Motor cursor stand-in: chainable sort/skip/limit and an async to_list."""
    cursor = MagicMock()
    cursor.sort = MagicMock(return_value=cursor)
    cursor.skip = MagicMock(return_value=cursor)
    cursor.limit = MagicMock(return_value=cursor)
    cursor.to_list = AsyncMock(return_value=list(rows or []))
    return cursor


def make_collection(find_rows=None, aggregate_rows=None):
    coll = MagicMock()
    coll.find_one = AsyncMock(return_value=None)
    coll.insert_one = AsyncMock()
    coll.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
    coll.update_many = AsyncMock(return_value=MagicMock(modified_count=0))
    coll.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    coll.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    coll.count_documents = AsyncMock(return_value=0)
    coll.find_one_and_update = AsyncMock(return_value=None)
    coll.find = MagicMock(return_value=make_cursor(find_rows))
    coll.aggregate = MagicMock(return_value=make_cursor(aggregate_rows))
    return coll


COLLECTIONS = (
    "clients",
    "users",
    "departments",
    "workflows",
    "workflow_executions",
    "workflow_exceptions",
    "workflow_nodes",
    "subscription_plans",
    "client_subscriptions",
    "invoices",
    "client_credits",
    "credentials",
    "audit_logs",
)


@pytest.fixture
def mock_db():
    """Patch the shared database with mocked collections and a no-op transaction."""
    db = MagicMock()
    for name in COLLECTIONS:
        setattr(db, name, make_collection())

    session = MagicMock(name="session")

    @asynccontextmanager
    async def fake_transaction():
        yield session

    db.session = session
    with patch.object(database, "get_db", return_value=db), patch.object(
        database, "transaction", fake_transaction
    ):
        yield db
