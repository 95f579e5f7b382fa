from fastapi import APIRouter, HTTPException, Request, Depends, status, Query
from pydantic import BaseModel, EmailStr
from typing import Any, Dict, Optional
from middleware import client_route_guard, client_admin_guard, billing_access_guard
from models import AuditAction, UserStatus
from services import (
    client_service,
    credential_service,
    dashboard_service,
    invoice_service,
    subscription_service,
    user_service,
    workflow_event_service,
    workflow_service,
)
from services.credit_service import credit_service
from services.errors import ServiceError
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/client", tags=["client"], dependencies=[Depends(client_route_guard)])


class ClientUserCreate(BaseModel):
    name: str
    email: EmailStr
    password: Optional[str] = None
    phone: Optional[str] = None
    department_id: Optional[str] = None
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


class ExceptionStatusUpdate(BaseModel):
    status: Optional[str] = None


class CredentialSaveRequest(BaseModel):
    credential_id: Optional[str] = None
    service_name: Optional[str] = None
    credentials: Optional[Dict[str, Any]] = None


# ============================================================================
# DASHBOARD
# ============================================================================

@router.get("/dashboard/metrics")
async def get_dashboard_metrics(request: Request):
    """Time and money saved by the client's active workflows."""
    user = await client_route_guard(request)
    try:
        return await dashboard_service.get_client_metrics(user["client_id"])
    except Exception as e:
        logger.error(f"Client metrics error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load dashboard metrics"
        )


@router.get("/dashboard/client-details")
async def get_client_details(request: Request):
    user = await client_route_guard(request)
    try:
        client = await client_service.get_client(user["client_id"])
        engineers = await client_service.get_client_engineers(user["client_id"])
        pipeline = await client_service.get_pipeline(user["client_id"])
        subscription = await subscription_service.get_client_subscription_summary(user["client_id"])
        return {
            "client_id": client["client_id"],
            "company_name": client["company_name"],
            "status": client.get("status"),
            "solutions_engineers": engineers,
            "pipeline_steps": pipeline["pipeline_steps"],
            "current_phase": pipeline["current_phase"],
            "document_links": client.get("document_links") or [],
            "subscription": subscription,
        }
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Client details error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load client details"
        )


# ============================================================================
# WORKFLOWS, EXECUTIONS AND EXCEPTIONS
# ============================================================================

@router.get("/workflows")
async def get_workflows(request: Request):
    user = await client_route_guard(request)
    try:
        return {"workflows": await workflow_service.list_client_workflows(user["client_id"])}
    except Exception as e:
        logger.error(f"Client workflows error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load workflows"
        )


@router.get("/workflow-executions")
async def get_workflow_executions(
    request: Request,
    workflow_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    user = await client_route_guard(request)
    try:
        return await workflow_event_service.list_executions(
            user["client_id"], workflow_id=workflow_id, skip=skip, limit=limit
        )
    except Exception as e:
        logger.error(f"Client executions error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load workflow executions"
        )


@router.get("/workflow-executions/count")
async def count_workflow_executions(request: Request):
    user = await client_route_guard(request)
    return {"count": await workflow_event_service.count_executions(user["client_id"])}


@router.get("/exceptions")
async def get_exceptions(
    request: Request,
    workflow_id: Optional[str] = None,
    severity: Optional[str] = None,
    exception_status: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    user = await client_route_guard(request)
    try:
        return await workflow_event_service.list_exceptions(
            client_id=user["client_id"],
            workflow_id=workflow_id,
            severity=severity,
            status=exception_status,
            skip=skip,
            limit=limit,
        )
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Client exceptions error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load exceptions"
        )


@router.patch("/exceptions/{exception_id}")
async def update_exception(request: Request, exception_id: str, body: ExceptionStatusUpdate):
    user = await client_route_guard(request)
    try:
        exception = await workflow_event_service.update_exception_status(
            exception_id, body.status, client_id=user["client_id"]
        )
        await create_audit_log(
            action=AuditAction.EXCEPTION_STATUS_UPDATED,
            actor=user,
            client_id=user["client_id"],
            resource_type="workflow_exception",
            resource_id=exception_id,
            metadata={"status": exception["status"]},
        )
        return exception
    except ServiceError as e:
        raise e.to_http()


# ============================================================================
# USERS
# ============================================================================

@router.get("/users")
async def list_users(request: Request):
    user = await client_route_guard(request)
    return {"users": await user_service.list_client_users(user["client_id"])}


@router.get("/users/count")
async def count_users(request: Request):
    user = await client_route_guard(request)
    return {"count": await user_service.count_client_users(user["client_id"])}


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(request: Request, body: ClientUserCreate):
    """Client admins add users to their own company."""
    user = await client_admin_guard(request)
    try:
        created = await user_service.create_client_user(user["client_id"], body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_CREATED,
            actor=user,
            client_id=user["client_id"],
            resource_type="user",
            resource_id=created["user_id"],
            after_state=created,
        )
        return created
    except ServiceError as e:
        raise e.to_http()


@router.put("/users/{user_id}")
async def update_user(request: Request, user_id: str, body: ClientUserUpdate):
    user = await client_admin_guard(request)
    try:
        updated = await user_service.update_client_user(user["client_id"], user_id, body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_UPDATED,
            actor=user,
            client_id=user["client_id"],
            resource_type="user",
            resource_id=user_id,
            after_state=updated,
        )
        return updated
    except ServiceError as e:
        raise e.to_http()


@router.delete("/users/{user_id}")
async def delete_user(request: Request, user_id: str):
    user = await client_admin_guard(request)
    if user_id == user["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account"
        )
    try:
        await user_service.delete_client_user(user["client_id"], user_id)
        await create_audit_log(
            action=AuditAction.USER_DELETED,
            actor=user,
            client_id=user["client_id"],
            resource_type="user",
            resource_id=user_id,
        )
        return {"message": "User deleted"}
    except ServiceError as e:
        raise e.to_http()


# ============================================================================
# CREDENTIALS
# ============================================================================

@router.get("/credentials")
async def list_credentials(request: Request):
    """One entry per supported service; secrets are masked."""
    user = await client_route_guard(request)
    try:
        return {"credentials": await credential_service.list_credentials(user["client_id"])}
    except Exception as e:
        logger.error(f"List credentials error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load credentials"
        )


@router.get("/credentials/{credential_id}")
async def get_credential(request: Request, credential_id: str):
    user = await client_route_guard(request)
    try:
        return await credential_service.get_credential(user["client_id"], credential_id)
    except ServiceError as e:
        raise e.to_http()


@router.post("/credentials")
async def save_credential(request: Request, body: CredentialSaveRequest):
    user = await client_route_guard(request)
    try:
        credential = await credential_service.save_credential(
            user["client_id"], body.service_name, body.credentials, credential_id=body.credential_id
        )
        await create_audit_log(
            action=AuditAction.CREDENTIAL_SAVED,
            actor=user,
            client_id=user["client_id"],
            resource_type="credential",
            resource_id=credential["credential_id"],
            metadata={"service_name": credential["service_name"], "status": credential["status"]},
        )
        return credential
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Save credential error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save credential"
        )


@router.delete("/credentials/{credential_id}")
async def delete_credential(request: Request, credential_id: str):
    user = await client_route_guard(request)
    try:
        await credential_service.delete_credential(user["client_id"], credential_id)
        await create_audit_log(
            action=AuditAction.CREDENTIAL_DELETED,
            actor=user,
            client_id=user["client_id"],
            resource_type="credential",
            resource_id=credential_id,
        )
        return {"message": "Credential deleted"}
    except ServiceError as e:
        raise e.to_http()


# ============================================================================
# BILLING
# ============================================================================

@router.get("/subscription")
async def get_subscription(request: Request):
    user = await billing_access_guard(request)
    try:
        return await subscription_service.get_client_subscription_summary(user["client_id"])
    except Exception as e:
        logger.error(f"Client subscription error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load subscription"
        )


@router.get("/invoices")
async def get_invoices(request: Request, limit: int = Query(5, ge=1, le=50)):
    user = await billing_access_guard(request)
    try:
        return {"invoices": await invoice_service.list_client_invoices(user["client_id"], limit=limit)}
    except Exception as e:
        logger.error(f"Client invoices error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load invoices"
        )


@router.get("/credits")
async def get_credits(request: Request):
    user = await billing_access_guard(request)
    try:
        return await credit_service.get_balance_summary(user["client_id"])
    except Exception as e:
        logger.error(f"Client credits error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load credits"
        )


@router.get("/payment-method")
async def get_payment_method(request: Request):
    user = await billing_access_guard(request)
    return {"payment_method": await invoice_service.get_payment_method(user["client_id"])}
