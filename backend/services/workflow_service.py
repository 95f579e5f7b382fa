"""Workflows and their computed rollups.

Node, execution and exception counts are never stored on the workflow; they
are aggregated from the event collections on read.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from database import database
from models import Workflow, WorkflowStatus, to_document
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

WORKFLOW_FIELDS = {
    "name",
    "description",
    "status",
    "department_id",
    "time_saved_per_execution",
    "money_saved_per_execution",
}


async def _counts_by_workflow(collection, workflow_ids: List[str]) -> Dict[str, int]:
    rows = await collection.aggregate([
        {"$match": {"workflow_id": {"$in": workflow_ids}}},
        {"$group": {"_id": "$workflow_id", "count": {"$sum": 1}}},
    ]).to_list(len(workflow_ids) or 1)
    return {row["_id"]: row["count"] for row in rows}


async def enrich_workflows(workflows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach department name, counts and savings to each workflow."""
    if not workflows:
        return []
    db = database.get_db()
    workflow_ids = [w["workflow_id"] for w in workflows]
    department_ids = list({w["department_id"] for w in workflows if w.get("department_id")})

    executions, nodes, exceptions, departments = await asyncio.gather(
        _counts_by_workflow(db.workflow_executions, workflow_ids),
        _counts_by_workflow(db.workflow_nodes, workflow_ids),
        _counts_by_workflow(db.workflow_exceptions, workflow_ids),
        db.departments.find(
            {"department_id": {"$in": department_ids}},
            {"_id": 0, "department_id": 1, "name": 1},
        ).to_list(len(department_ids) or 1),
    )
    department_names = {d["department_id"]: d["name"] for d in departments}

    enriched = []
    for workflow in workflows:
        wid = workflow["workflow_id"]
        execution_count = executions.get(wid, 0)
        enriched.append({
            **workflow,
            "department": department_names.get(workflow.get("department_id"), "N/A"),
            "number_of_executions": execution_count,
            "number_of_nodes": nodes.get(wid, 0),
            "number_of_exceptions": exceptions.get(wid, 0),
            "time_saved": execution_count * (workflow.get("time_saved_per_execution") or 0),
            "money_saved": execution_count * (workflow.get("money_saved_per_execution") or 0),
        })
    return enriched


async def list_client_workflows(client_id: str) -> List[Dict[str, Any]]:
    db = database.get_db()
    workflows = await db.workflows.find({"client_id": client_id}, {"_id": 0}).sort("created_at", -1).to_list(1000)
    return await enrich_workflows(workflows)


async def get_workflow(client_id: str, workflow_id: str) -> Dict[str, Any]:
    db = database.get_db()
    workflow = await db.workflows.find_one({"workflow_id": workflow_id, "client_id": client_id}, {"_id": 0})
    if not workflow:
        raise NotFoundError("Workflow not found")
    return workflow


async def find_by_name(client_id: str, name: str) -> Optional[Dict[str, Any]]:
    db = database.get_db()
    return await db.workflows.find_one({"client_id": client_id, "name": name}, {"_id": 0})


async def create_workflow(client_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Workflow name is required")
    if await find_by_name(client_id, name):
        raise ConflictError("A workflow with this name already exists for this client")

    fields = {k: v for k, v in data.items() if k in WORKFLOW_FIELDS and v is not None}
    fields["name"] = name
    workflow = Workflow(client_id=client_id, **fields)
    document = to_document(workflow)
    await db.workflows.insert_one(document)
    document.pop("_id", None)
    logger.info(f"Workflow created: {workflow.workflow_id} for client {client_id}")
    return document


async def update_workflow(client_id: str, workflow_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    await get_workflow(client_id, workflow_id)
    update = {k: v for k, v in data.items() if k in WORKFLOW_FIELDS and v is not None}
    if "name" in update:
        update["name"] = update["name"].strip()
        clash = await find_by_name(client_id, update["name"])
        if clash and clash["workflow_id"] != workflow_id:
            raise ConflictError("A workflow with this name already exists for this client")
    if "status" in update:
        update["status"] = WorkflowStatus(update["status"]).value
    update["updated_at"] = datetime.now(timezone.utc)
    await db.workflows.update_one({"workflow_id": workflow_id}, {"$set": update})
    return await get_workflow(client_id, workflow_id)


async def delete_workflow(client_id: str, workflow_id: str) -> None:
    """Delete a workflow together with its nodes, executions and exceptions."""
    db = database.get_db()
    await get_workflow(client_id, workflow_id)
    async with database.transaction() as session:
        for collection in (db.workflow_nodes, db.workflow_executions, db.workflow_exceptions):
            await collection.delete_many({"workflow_id": workflow_id}, session=session)
        await db.workflows.delete_one({"workflow_id": workflow_id}, session=session)
    logger.info(f"Workflow {workflow_id} deleted for client {client_id}")
