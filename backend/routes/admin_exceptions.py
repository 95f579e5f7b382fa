from fastapi import APIRouter, HTTPException, Request, Depends, status, Query
from pydantic import BaseModel
from typing import Optional
from middleware import staff_route_guard, get_assigned_client_ids
from models import AuditAction
from services import workflow_event_service
from services.errors import ServiceError
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/exceptions", tags=["admin-exceptions"], dependencies=[Depends(staff_route_guard)])


class ExceptionStatusUpdate(BaseModel):
    status: Optional[str] = None


@router.get("")
async def list_exceptions(
    request: Request,
    client_id: Optional[str] = None,
    exception_type: Optional[str] = Query(None, alias="type"),
    severity: Optional[str] = None,
    exception_status: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    """Exceptions across clients; engineers only see their assigned clients."""
    user = await staff_route_guard(request)
    try:
        allowed = await get_assigned_client_ids(user)
        return await workflow_event_service.list_exceptions(
            client_id=client_id,
            allowed_client_ids=allowed,
            exception_type=exception_type,
            severity=severity,
            status=exception_status,
            skip=skip,
            limit=limit,
        )
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"List exceptions error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load exceptions"
        )


@router.get("/{exception_id}")
async def get_exception(request: Request, exception_id: str):
    user = await staff_route_guard(request)
    try:
        allowed = await get_assigned_client_ids(user)
        return await workflow_event_service.get_exception(exception_id, allowed_client_ids=allowed)
    except ServiceError as e:
        raise e.to_http()


@router.patch("/{exception_id}")
async def update_exception_status(request: Request, exception_id: str, body: ExceptionStatusUpdate):
    user = await staff_route_guard(request)
    try:
        allowed = await get_assigned_client_ids(user)
        exception = await workflow_event_service.update_exception_status(
            exception_id, body.status, allowed_client_ids=allowed
        )
        await create_audit_log(
            action=AuditAction.EXCEPTION_STATUS_UPDATED,
            actor=user,
            client_id=exception["client_id"],
            resource_type="workflow_exception",
            resource_id=exception_id,
            metadata={"status": exception["status"]},
        )
        return exception
    except ServiceError as e:
        raise e.to_http()
