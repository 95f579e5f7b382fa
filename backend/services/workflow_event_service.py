"""Execution, exception and node events reported by the automation runtime,
plus the paginated views staff and client users read them through.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from database import database
from models import (
    ExceptionSeverity,
    ExceptionStatus,
    ExecutionStatus,
    NodeStatus,
    WorkflowException,
    WorkflowExecution,
    WorkflowNode,
    to_document,
)
from services import workflow_service
from services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


def _require(data: Dict[str, Any], *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {label}. Must be one of: {allowed}")


async def _resolve_workflow(data: Dict[str, Any]) -> Dict[str, Any]:
    workflow = await workflow_service.find_by_name(data["client_id"], data["workflow_name"])
    if not workflow:
        raise NotFoundError("Workflow not found")
    return workflow


async def _insert(collection, document: Dict[str, Any]) -> Dict[str, Any]:
    await collection.insert_one(document)
    document.pop("_id", None)
    return document


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

async def record_execution(data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    _require(data, "execution_id", "workflow_name", "client_id")
    if await db.workflow_executions.find_one({"execution_id": data["execution_id"]}, {"_id": 0, "execution_id": 1}):
        raise ConflictError("Execution with this ID already exists")
    workflow = await _resolve_workflow(data)

    execution = WorkflowExecution(
        execution_id=data["execution_id"],
        workflow_id=workflow["workflow_id"],
        client_id=data["client_id"],
        status=_enum(ExecutionStatus, data.get("status") or ExecutionStatus.SUCCESS.value, "status"),
        duration=data.get("duration") or 0,
        details=data.get("details") or "",
    )
    return await _insert(db.workflow_executions, to_document(execution))


async def record_exception(data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    _require(data, "exception_id", "workflow_name", "client_id", "exception_type", "severity")
    severity = _enum(ExceptionSeverity, data["severity"], "severity")
    status = _enum(ExceptionStatus, data.get("status") or ExceptionStatus.OPEN.value, "status")
    if await db.workflow_exceptions.find_one({"exception_id": data["exception_id"]}, {"_id": 0, "exception_id": 1}):
        raise ConflictError("Exception with this ID already exists")
    workflow = await _resolve_workflow(data)

    exception = WorkflowException(
        exception_id=data["exception_id"],
        workflow_id=workflow["workflow_id"],
        workflow_name=workflow["name"],
        client_id=data["client_id"],
        exception_type=data["exception_type"],
        severity=severity,
        remedy=data.get("remedy"),
        status=status,
    )
    return await _insert(db.workflow_exceptions, to_document(exception))


async def record_node(data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    _require(data, "node_id", "workflow_name", "client_id", "node_name", "node_type")
    if await db.workflow_nodes.find_one({"node_id": data["node_id"]}, {"_id": 0, "node_id": 1}):
        raise ConflictError("Node with this ID already exists")
    workflow = await _resolve_workflow(data)

    node = WorkflowNode(
        node_id=data["node_id"],
        workflow_id=workflow["workflow_id"],
        client_id=data["client_id"],
        node_name=data["node_name"],
        node_type=data["node_type"],
        status=_enum(NodeStatus, data.get("status") or NodeStatus.ACTIVE.value, "status"),
    )
    return await _insert(db.workflow_nodes, to_document(node))


async def delete_node(node_id: Optional[str]) -> None:
    db = database.get_db()
    if not node_id:
        raise ValidationError("Node ID is required")
    result = await db.workflow_nodes.delete_one({"node_id": node_id})
    if result.deleted_count == 0:
        raise NotFoundError("Node not found")


async def update_exception_status(
    exception_id: str,
    status: Optional[str],
    client_id: Optional[str] = None,
    allowed_client_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Change an exception's status.

    ``client_id`` pins the lookup to one tenant (client portal);
    ``allowed_client_ids`` limits it to an engineer's assignments.
    """
    db = database.get_db()
    if not status:
        raise ValidationError("Status is required")
    new_status = _enum(ExceptionStatus, status, "status")

    exception = await get_exception(exception_id, client_id=client_id, allowed_client_ids=allowed_client_ids)
    await db.workflow_exceptions.update_one(
        {"exception_id": exception_id},
        {"$set": {"status": new_status.value, "updated_at": datetime.now(timezone.utc)}},
    )
    exception["status"] = new_status.value
    return exception


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def _filter_value(value: Optional[str]) -> Optional[str]:
    """Empty strings and ``all`` mean no filter."""
    if not value or value.lower() == "all":
        return None
    return value


async def get_exception(
    exception_id: str,
    client_id: Optional[str] = None,
    allowed_client_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    db = database.get_db()
    query: Dict[str, Any] = {"exception_id": exception_id}
    if client_id:
        query["client_id"] = client_id
    exception = await db.workflow_exceptions.find_one(query, {"_id": 0})
    if not exception:
        raise NotFoundError("Exception not found")
    if allowed_client_ids is not None and exception["client_id"] not in allowed_client_ids:
        raise PermissionDeniedError("You are not assigned to this client")
    return exception


async def list_exceptions(
    client_id: Optional[str] = None,
    allowed_client_ids: Optional[List[str]] = None,
    workflow_id: Optional[str] = None,
    exception_type: Optional[str] = None,
    severity: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
) -> Dict[str, Any]:
    db = database.get_db()
    query: Dict[str, Any] = {}

    client_id = _filter_value(client_id)
    if allowed_client_ids is not None:
        if client_id and client_id not in allowed_client_ids:
            raise PermissionDeniedError("You are not assigned to this client")
        query["client_id"] = client_id or {"$in": allowed_client_ids}
    elif client_id:
        query["client_id"] = client_id

    if _filter_value(workflow_id):
        query["workflow_id"] = workflow_id
    if _filter_value(exception_type):
        query["exception_type"] = exception_type
    if _filter_value(severity):
        query["severity"] = _enum(ExceptionSeverity, severity.upper(), "severity").value
    if _filter_value(status):
        query["status"] = _enum(ExceptionStatus, status.upper(), "status").value

    exceptions = await db.workflow_exceptions.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.workflow_exceptions.count_documents(query)
    return {
        "exceptions": exceptions,
        "total": total,
        "skip": skip,
        "limit": limit,
        "has_more": skip + len(exceptions) < total,
    }


async def list_executions(
    client_id: str,
    workflow_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
) -> Dict[str, Any]:
    db = database.get_db()
    query: Dict[str, Any] = {"client_id": client_id}
    if _filter_value(workflow_id):
        query["workflow_id"] = workflow_id

    executions = await db.workflow_executions.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.workflow_executions.count_documents(query)

    names = await db.workflows.find(
        {"client_id": client_id}, {"_id": 0, "workflow_id": 1, "name": 1}
    ).sort("name", 1).to_list(1000)
    name_by_id = {w["workflow_id"]: w["name"] for w in names}
    for execution in executions:
        execution["workflow_name"] = name_by_id.get(execution["workflow_id"], "Unknown")

    return {
        "executions": executions,
        "workflows": names,
        "total": total,
        "skip": skip,
        "limit": limit,
        "has_more": skip + len(executions) < total,
    }


async def count_executions(client_id: str) -> int:
    db = database.get_db()
    return await db.workflow_executions.count_documents({"client_id": client_id})
