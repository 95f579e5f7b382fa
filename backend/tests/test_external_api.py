"""
API-key ingestion endpoints used by the automation runtime.
"""
from unittest.mock import AsyncMock, patch

import pytest

from conftest import make_cursor

EXECUTION = {"execution_id": "exec-1", "workflow_name": "Invoice Intake", "client_id": "c-1"}


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("API_KEY", "secret-key")
    return "secret-key"


class TestApiKeyGuard:

    def test_missing_server_key_is_500(self, client, monkeypatch):
        monkeypatch.delenv("API_KEY", raising=False)
        r = client.post("/api/external/workflows/executions", json=EXECUTION, headers={"x-api-key": "anything"})
        assert r.status_code == 500

    def test_missing_key_is_401(self, client, api_key):
        r = client.post("/api/external/workflows/executions", json=EXECUTION)
        assert r.status_code == 401

    def test_wrong_key_is_401(self, client, api_key):
        r = client.post("/api/external/workflows/executions", json=EXECUTION, headers={"x-api-key": "nope"})
        assert r.status_code == 401

    def test_header_key_is_accepted(self, client, api_key):
        with patch("routes.external.workflow_event_service.record_execution", new=AsyncMock(return_value=EXECUTION)):
            r = client.post("/api/external/workflows/executions", json=EXECUTION, headers={"x-api-key": api_key})
        assert r.status_code == 201
        assert r.json()["execution"]["execution_id"] == "exec-1"

    def test_deprecated_query_key_still_works(self, client, api_key, caplog):
        with patch("routes.external.workflow_event_service.record_execution", new=AsyncMock(return_value=EXECUTION)):
            r = client.post(f"/api/external/workflows/executions?apiKey={api_key}", json=EXECUTION)
        assert r.status_code == 201
        assert "Deprecated apiKey" in caplog.text


class TestIngestion:

    def test_missing_fields_is_400(self, client, api_key, mock_db):
        r = client.post("/api/external/workflows/executions", json={"execution_id": "exec-1"}, headers={"x-api-key": api_key})
        assert r.status_code == 400
        assert "workflow_name" in r.json()["detail"]

    def test_duplicate_execution_is_409(self, client, api_key, mock_db):
        mock_db.workflow_executions.find_one = AsyncMock(return_value={"execution_id": "exec-1"})
        r = client.post("/api/external/workflows/executions", json=EXECUTION, headers={"x-api-key": api_key})
        assert r.status_code == 409

    def test_unknown_workflow_is_404(self, client, api_key, mock_db):
        r = client.post("/api/external/workflows/executions", json=EXECUTION, headers={"x-api-key": api_key})
        assert r.status_code == 404

    def test_execution_defaults(self, client, api_key, mock_db):
        mock_db.workflows.find_one = AsyncMock(return_value={"workflow_id": "wf-1", "name": "Invoice Intake", "client_id": "c-1"})
        r = client.post("/api/external/workflows/executions", json=EXECUTION, headers={"x-api-key": api_key})
        assert r.status_code == 201
        inserted = mock_db.workflow_executions.insert_one.call_args[0][0]
        assert inserted["workflow_id"] == "wf-1"
        assert inserted["status"] == "SUCCESS"
        assert inserted["duration"] == 0

    def test_invalid_severity_is_400(self, client, api_key, mock_db):
        body = {**EXECUTION, "exception_id": "ex-1", "exception_type": "Timeout", "severity": "APOCALYPTIC"}
        r = client.post("/api/external/workflows/exceptions", json=body, headers={"x-api-key": api_key})
        assert r.status_code == 400

    def test_exception_status_update_requires_status(self, client, api_key, mock_db):
        r = client.patch("/api/external/workflows/exceptions/ex-1", json={}, headers={"x-api-key": api_key})
        assert r.status_code == 400

    def test_delete_node_requires_id(self, client, api_key, mock_db):
        r = client.delete("/api/external/workflows/nodes", headers={"x-api-key": api_key})
        assert r.status_code == 400

    def test_delete_unknown_node_is_404(self, client, api_key, mock_db):
        mock_db.workflow_nodes.delete_one = AsyncMock(return_value=type("R", (), {"deleted_count": 0})())
        r = client.delete("/api/external/workflows/nodes?node_id=n-9", headers={"x-api-key": api_key})
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_engineer_filtering_unassigned_client_is_denied(mock_db):
    from services.errors import PermissionDeniedError
    from services.workflow_event_service import list_exceptions

    with pytest.raises(PermissionDeniedError):
        await list_exceptions(client_id="c-2", allowed_client_ids=["c-1"])


@pytest.mark.asyncio
async def test_engineer_exceptions_are_scoped_to_assignments(mock_db):
    from services.workflow_event_service import list_exceptions

    mock_db.workflow_exceptions.find.return_value = make_cursor([])
    result = await list_exceptions(client_id="all", allowed_client_ids=["c-1", "c-3"], severity="high")

    query = mock_db.workflow_exceptions.find.call_args[0][0]
    assert query["client_id"] == {"$in": ["c-1", "c-3"]}
    assert query["severity"] == "HIGH"
    assert result["has_more"] is False
