from fastapi import APIRouter, HTTPException, Request, Depends, status, Query
from pydantic import BaseModel, EmailStr
from typing import List, Optional
from datetime import datetime
from middleware import admin_route_guard, staff_route_guard, ensure_client_access, get_assigned_client_ids
from models import AuditAction, ClientStatus, UserStatus, WorkflowStatus
from services import client_service, user_service, workflow_service
from services.errors import ServiceError
from utils.audit import create_audit_log, get_audit_logs_for_client
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin-clients"], dependencies=[Depends(staff_route_guard)])


class ClientUserPayload(BaseModel):
    user_id: Optional[str] = None
    name: str
    email: EmailStr
    password: Optional[str] = None
    phone: Optional[str] = None
    department_id: Optional[str] = None
    status: Optional[UserStatus] = None
    notify_by_email_for_exceptions: Optional[bool] = None
    notify_by_sms_for_exceptions: Optional[bool] = None
    has_billing_access: Optional[bool] = None
    is_client_admin: Optional[bool] = None
    client_user_notes: Optional[str] = None


class ClientUserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    department_id: Optional[str] = None
    status: Optional[UserStatus] = None
    notify_by_email_for_exceptions: Optional[bool] = None
    notify_by_sms_for_exceptions: Optional[bool] = None
    has_billing_access: Optional[bool] = None
    is_client_admin: Optional[bool] = None
    client_user_notes: Optional[str] = None


class ClientCreateRequest(BaseModel):
    company_name: str
    company_url: Optional[str] = None
    contact_name: Optional[str] = None
    industry: Optional[str] = None
    contract_start_date: Optional[datetime] = None
    users: List[ClientUserPayload] = []
    assigned_solutions_engineer_ids: List[str] = []


class ClientUpdateRequest(BaseModel):
    company_name: Optional[str] = None
    company_url: Optional[str] = None
    contact_name: Optional[str] = None
    industry: Optional[str] = None
    status: Optional[ClientStatus] = None
    contract_start_date: Optional[datetime] = None
    users: Optional[List[ClientUserPayload]] = None
    assigned_solutions_engineer_ids: Optional[List[str]] = None


class PipelineStepUpdate(BaseModel):
    step_name: str
    status: str


class DocumentLinkUpdate(BaseModel):
    type: str
    url: str
    title: Optional[str] = None


class WorkflowRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[WorkflowStatus] = None
    department_id: Optional[str] = None
    time_saved_per_execution: Optional[float] = None
    money_saved_per_execution: Optional[float] = None


def _users_payload(users: Optional[List[ClientUserPayload]]):
    if users is None:
        return None
    return [u.model_dump(exclude_none=True) for u in users]


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

@router.get("/clients")
async def list_clients(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    skip: int = Query(0, ge=0),
):
    """Clients visible to the caller, sorted by company name."""
    user = await staff_route_guard(request)
    try:
        assigned = await get_assigned_client_ids(user)
        clients = await client_service.list_clients(assigned, limit=limit, skip=skip)
        return {"clients": clients, "limit": limit, "skip": skip}
    except Exception as e:
        logger.error(f"List clients error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load clients"
        )


@router.get("/clients/search")
async def search_clients(request: Request, q: str = Query("", max_length=100)):
    user = await staff_route_guard(request)
    if not q.strip():
        return {"clients": []}
    try:
        assigned = await get_assigned_client_ids(user)
        return {"clients": await client_service.search_clients(q, assigned)}
    except Exception as e:
        logger.error(f"Search clients error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search clients"
        )


@router.get("/clients/check-name", dependencies=[Depends(admin_route_guard)])
async def check_client_name(
    company_name: str = Query(..., min_length=1),
    exclude_client_id: Optional[str] = None,
):
    available = await client_service.is_name_available(company_name, exclude_client_id)
    return {"company_name": company_name, "available": available}


@router.get("/clients/{client_id}")
async def get_client(request: Request, client_id: str):
    user = await staff_route_guard(request)
    return await ensure_client_access(user, client_id)


@router.post("/clients", status_code=status.HTTP_201_CREATED)
async def create_client(request: Request, body: ClientCreateRequest):
    """Create a client together with its users and engineer assignments."""
    admin = await admin_route_guard(request)
    try:
        data = body.model_dump(exclude={"users", "assigned_solutions_engineer_ids"}, exclude_none=True)
        client = await client_service.create_client(
            data,
            _users_payload(body.users),
            body.assigned_solutions_engineer_ids,
        )
        await create_audit_log(
            action=AuditAction.CLIENT_CREATED,
            actor=admin,
            client_id=client["client_id"],
            resource_type="client",
            resource_id=client["client_id"],
            after_state=client,
            metadata={"users": len(body.users), "engineers": len(body.assigned_solutions_engineer_ids)},
        )
        return client
    except ServiceError as e:
        raise e.to_http()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create client error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create client"
        )


@router.put("/clients/{client_id}")
async def update_client(request: Request, client_id: str, body: ClientUpdateRequest):
    admin = await admin_route_guard(request)
    try:
        before = await client_service.get_client(client_id)
        data = body.model_dump(exclude={"users", "assigned_solutions_engineer_ids"}, exclude_none=True)
        client = await client_service.update_client(
            client_id,
            data,
            users=_users_payload(body.users),
            engineer_ids=body.assigned_solutions_engineer_ids,
        )
        await create_audit_log(
            action=AuditAction.CLIENT_UPDATED,
            actor=admin,
            client_id=client_id,
            resource_type="client",
            resource_id=client_id,
            before_state=before,
            after_state=client,
        )
        return client
    except ServiceError as e:
        raise e.to_http()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Update client error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update client"
        )


@router.delete("/clients/{client_id}")
async def delete_client(request: Request, client_id: str):
    admin = await admin_route_guard(request)
    try:
        deleted = await client_service.delete_client(client_id)
        await create_audit_log(
            action=AuditAction.CLIENT_DELETED,
            actor=admin,
            client_id=client_id,
            resource_type="client",
            resource_id=client_id,
            metadata=deleted,
        )
        return {"message": "Client deleted", "deleted": deleted}
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Delete client error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete client"
        )


@router.get("/clients/{client_id}/engineers")
async def get_client_engineers(request: Request, client_id: str):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    return {"engineers": await client_service.get_client_engineers(client_id)}


# ---------------------------------------------------------------------------
# Pipeline and documents
# ---------------------------------------------------------------------------

@router.get("/clients/{client_id}/pipeline")
async def get_pipeline(request: Request, client_id: str):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    return await client_service.get_pipeline(client_id)


@router.put("/clients/{client_id}/pipeline")
async def update_pipeline_step(request: Request, client_id: str, body: PipelineStepUpdate):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        pipeline = await client_service.update_pipeline_step(client_id, body.step_name, body.status)
        await create_audit_log(
            action=AuditAction.PIPELINE_STEP_UPDATED,
            actor=user,
            client_id=client_id,
            resource_type="pipeline_step",
            resource_id=body.step_name,
            metadata={"status": body.status, "current_phase": pipeline["current_phase"]},
        )
        return pipeline
    except ServiceError as e:
        raise e.to_http()


@router.get("/clients/{client_id}/documents")
async def get_document_links(request: Request, client_id: str):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    return {"document_links": await client_service.get_document_links(client_id)}


@router.put("/clients/{client_id}/documents")
async def update_document_link(request: Request, client_id: str, body: DocumentLinkUpdate):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        links = await client_service.update_document_link(client_id, body.type, body.url, body.title)
        return {"document_links": links}
    except ServiceError as e:
        raise e.to_http()


# ---------------------------------------------------------------------------
# Client users
# ---------------------------------------------------------------------------

@router.get("/clients/{client_id}/users")
async def list_client_users(request: Request, client_id: str):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    return {"users": await user_service.list_client_users(client_id)}


@router.post("/clients/{client_id}/users", status_code=status.HTTP_201_CREATED)
async def add_client_user(request: Request, client_id: str, body: ClientUserPayload):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        created = await user_service.create_client_user(client_id, body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_CREATED,
            actor=user,
            client_id=client_id,
            resource_type="user",
            resource_id=created["user_id"],
            after_state=created,
        )
        return created
    except ServiceError as e:
        raise e.to_http()


@router.put("/clients/{client_id}/users/{user_id}")
async def update_client_user(request: Request, client_id: str, user_id: str, body: ClientUserUpdate):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        updated = await user_service.update_client_user(client_id, user_id, body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_UPDATED,
            actor=user,
            client_id=client_id,
            resource_type="user",
            resource_id=user_id,
            after_state=updated,
        )
        return updated
    except ServiceError as e:
        raise e.to_http()


@router.delete("/clients/{client_id}/users/{user_id}")
async def remove_client_user(request: Request, client_id: str, user_id: str):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        await user_service.delete_client_user(client_id, user_id)
        await create_audit_log(
            action=AuditAction.USER_DELETED,
            actor=user,
            client_id=client_id,
            resource_type="user",
            resource_id=user_id,
        )
        return {"message": "User removed"}
    except ServiceError as e:
        raise e.to_http()


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

@router.get("/clients/{client_id}/workflows")
async def list_client_workflows(request: Request, client_id: str):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        return {"workflows": await workflow_service.list_client_workflows(client_id)}
    except Exception as e:
        logger.error(f"List workflows error for client {client_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load workflows"
        )


@router.post("/clients/{client_id}/workflows", status_code=status.HTTP_201_CREATED)
async def create_workflow(request: Request, client_id: str, body: WorkflowRequest):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        workflow = await workflow_service.create_workflow(client_id, body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.WORKFLOW_CREATED,
            actor=user,
            client_id=client_id,
            resource_type="workflow",
            resource_id=workflow["workflow_id"],
            after_state=workflow,
        )
        return workflow
    except ServiceError as e:
        raise e.to_http()


@router.put("/clients/{client_id}/workflows/{workflow_id}")
async def update_workflow(request: Request, client_id: str, workflow_id: str, body: WorkflowRequest):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        before = await workflow_service.get_workflow(client_id, workflow_id)
        workflow = await workflow_service.update_workflow(client_id, workflow_id, body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.WORKFLOW_UPDATED,
            actor=user,
            client_id=client_id,
            resource_type="workflow",
            resource_id=workflow_id,
            before_state=before,
            after_state=workflow,
        )
        return workflow
    except ServiceError as e:
        raise e.to_http()


@router.delete("/clients/{client_id}/workflows/{workflow_id}")
async def delete_workflow(request: Request, client_id: str, workflow_id: str):
    user = await staff_route_guard(request)
    await ensure_client_access(user, client_id)
    try:
        await workflow_service.delete_workflow(client_id, workflow_id)
        await create_audit_log(
            action=AuditAction.WORKFLOW_DELETED,
            actor=user,
            client_id=client_id,
            resource_type="workflow",
            resource_id=workflow_id,
        )
        return {"message": "Workflow deleted"}
    except ServiceError as e:
        raise e.to_http()


@router.get("/clients/{client_id}/audit-logs", dependencies=[Depends(admin_route_guard)])
async def get_client_audit_logs(client_id: str, limit: int = Query(50, ge=1, le=500)):
    """Most recent audit entries for a client."""
    return {"audit_logs": await get_audit_logs_for_client(client_id, limit=limit)}
