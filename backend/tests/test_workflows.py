"""
Workflows and departments.
- Rollups are computed from the event collections on read.
- Deleting a workflow removes its nodes, executions and exceptions.
- Department names are unique regardless of case.
"""
from unittest.mock import AsyncMock

import pytest

from conftest import auth_headers, make_cursor
from services import department_service, workflow_service
from services.errors import ConflictError, NotFoundError, ValidationError


def workflow(workflow_id, **extra):
    return {"workflow_id": workflow_id, "client_id": "c-1", "name": f"Flow {workflow_id}", **extra}


class TestEnrichWorkflows:

    @pytest.mark.asyncio
    async def test_savings_are_executions_times_per_execution_value(self, mock_db):
        mock_db.workflow_executions.aggregate.return_value = make_cursor([{"_id": "wf-1", "count": 12}])
        mock_db.workflow_nodes.aggregate.return_value = make_cursor([
            {"_id": "wf-1", "count": 4},
            {"_id": "wf-2", "count": 1},
        ])
        mock_db.workflow_exceptions.aggregate.return_value = make_cursor([{"_id": "wf-1", "count": 3}])
        mock_db.departments.find.return_value = make_cursor([{"department_id": "d-1", "name": "Finance"}])

        first, second = await workflow_service.enrich_workflows([
            workflow("wf-1", department_id="d-1", time_saved_per_execution=15, money_saved_per_execution=2.5),
            workflow("wf-2", department_id="d-gone", time_saved_per_execution=30),
        ])

        assert first["department"] == "Finance"
        assert first["number_of_executions"] == 12
        assert first["number_of_nodes"] == 4
        assert first["number_of_exceptions"] == 3
        assert first["time_saved"] == 180
        assert first["money_saved"] == 30.0

        assert second["department"] == "N/A"
        assert second["number_of_executions"] == 0
        assert second["number_of_nodes"] == 1
        assert second["time_saved"] == 0
        assert second["money_saved"] == 0

    @pytest.mark.asyncio
    async def test_no_workflows_runs_no_aggregation(self, mock_db):
        assert await workflow_service.enrich_workflows([]) == []
        mock_db.workflow_executions.aggregate.assert_not_called()


class TestDeleteWorkflow:

    @pytest.mark.asyncio
    async def test_delete_cascades_to_events(self, mock_db):
        mock_db.workflows.find_one = AsyncMock(return_value=workflow("wf-1"))

        await workflow_service.delete_workflow("c-1", "wf-1")

        for collection in (mock_db.workflow_nodes, mock_db.workflow_executions, mock_db.workflow_exceptions):
            collection.delete_many.assert_awaited_once()
            assert collection.delete_many.call_args.args[0] == {"workflow_id": "wf-1"}
            assert collection.delete_many.call_args.kwargs["session"] is mock_db.session
        assert mock_db.workflows.delete_one.call_args.args[0] == {"workflow_id": "wf-1"}

    @pytest.mark.asyncio
    async def test_other_clients_workflow_is_not_found(self, mock_db):
        with pytest.raises(NotFoundError):
            await workflow_service.delete_workflow("c-2", "wf-1")
        assert mock_db.workflows.find_one.call_args.args[0] == {"workflow_id": "wf-1", "client_id": "c-2"}
        mock_db.workflow_nodes.delete_many.assert_not_called()
        mock_db.workflows.delete_one.assert_not_called()


class TestCreateWorkflow:

    @pytest.mark.asyncio
    async def test_duplicate_name_for_client_is_conflict(self, mock_db):
        mock_db.workflows.find_one = AsyncMock(return_value=workflow("wf-1"))
        with pytest.raises(ConflictError):
            await workflow_service.create_workflow("c-1", {"name": "Flow wf-1"})
        mock_db.workflows.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_name_is_rejected(self, mock_db):
        with pytest.raises(ValidationError):
            await workflow_service.create_workflow("c-1", {"name": "  "})


class TestDepartments:

    @pytest.mark.asyncio
    async def test_duplicate_name_ignores_case(self, mock_db):
        mock_db.departments.find_one = AsyncMock(return_value={"department_id": "d-1"})

        with pytest.raises(ConflictError):
            await department_service.create_department("  finance ")

        query = mock_db.departments.find_one.call_args.args[0]
        assert query == {"name": {"$regex": "^finance$", "$options": "i"}}
        mock_db.departments.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_name_is_matched_literally(self, mock_db):
        await department_service.create_department("R&D (EU)")
        query = mock_db.departments.find_one.call_args.args[0]
        assert query["name"]["$regex"] == r"^R\&D\ \(EU\)$"

    def test_create_duplicate_endpoint_is_409(self, client, mock_db):
        mock_db.departments.find_one = AsyncMock(return_value={"department_id": "d-1"})
        r = client.post(
            "/api/admin/departments",
            json={"name": "FINANCE"},
            headers=auth_headers("SOLUTIONS_ENGINEER", user_id="se-1"),
        )
        assert r.status_code == 409

    def test_create_endpoint_returns_201(self, client, mock_db):
        r = client.post("/api/admin/departments", json={"name": "Finance"}, headers=auth_headers("ADMIN"))
        assert r.status_code == 201
        assert r.json()["name"] == "Finance"
