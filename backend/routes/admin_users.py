from fastapi import APIRouter, HTTPException, Request, Depends, status, Query
from pydantic import BaseModel, EmailStr
from typing import List, Optional
from middleware import admin_route_guard
from models import AuditAction, UserRole, UserStatus
from services import user_service
from services.errors import ServiceError
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/users", tags=["admin-users"], dependencies=[Depends(admin_route_guard)])


class AdminUserCreate(BaseModel):
    name: str
    email: EmailStr
    password: Optional[str] = None
    phone: Optional[str] = None


class AdminUserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[UserStatus] = None


class EngineerCreate(BaseModel):
    name: str
    email: EmailStr
    password: Optional[str] = None
    phone: Optional[str] = None
    cost_rate: Optional[float] = None
    bill_rate: Optional[float] = None
    assigned_client_ids: List[str] = []


class EngineerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[UserStatus] = None
    cost_rate: Optional[float] = None
    bill_rate: Optional[float] = None
    assigned_client_ids: Optional[List[str]] = None


class CheckEmailsRequest(BaseModel):
    emails: List[str]


@router.post("/check-emails")
async def check_emails(body: CheckEmailsRequest):
    """Return which of the supplied emails already belong to a user."""
    existing = await user_service.find_existing_emails(body.emails)
    return {"existing_emails": existing}


# ---------------------------------------------------------------------------
# Admins
# ---------------------------------------------------------------------------

@router.get("/admins")
async def list_admins():
    return {"users": await user_service.list_users(UserRole.ADMIN)}


@router.post("/admins", status_code=status.HTTP_201_CREATED)
async def create_admin(request: Request, body: AdminUserCreate):
    admin = await admin_route_guard(request)
    try:
        created = await user_service.create_admin(body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_CREATED,
            actor=admin,
            resource_type="user",
            resource_id=created["user_id"],
            after_state=created,
            metadata={"role": UserRole.ADMIN.value},
        )
        return created
    except ServiceError as e:
        raise e.to_http()


@router.get("/admins/{user_id}")
async def get_admin(user_id: str):
    try:
        return await user_service.get_admin(user_id)
    except ServiceError as e:
        raise e.to_http()


@router.put("/admins/{user_id}")
async def update_admin(request: Request, user_id: str, body: AdminUserUpdate):
    admin = await admin_route_guard(request)
    try:
        updated = await user_service.update_admin(user_id, body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_UPDATED,
            actor=admin,
            resource_type="user",
            resource_id=user_id,
            after_state=updated,
        )
        return updated
    except ServiceError as e:
        raise e.to_http()


@router.delete("/admins/{user_id}")
async def delete_admin(request: Request, user_id: str):
    admin = await admin_route_guard(request)
    try:
        await user_service.delete_admin(user_id, admin["user_id"])
        await create_audit_log(
            action=AuditAction.USER_DELETED,
            actor=admin,
            resource_type="user",
            resource_id=user_id,
        )
        return {"message": "Admin deleted"}
    except ServiceError as e:
        raise e.to_http()


# ---------------------------------------------------------------------------
# Solutions engineers
# ---------------------------------------------------------------------------

@router.get("/engineers")
async def list_engineers(q: Optional[str] = Query(None, max_length=100)):
    """All solutions engineers, optionally filtered by name or email fragment."""
    try:
        return {"users": await user_service.search_engineers(q)}
    except Exception as e:
        logger.error(f"List engineers error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load solutions engineers"
        )


@router.post("/engineers", status_code=status.HTTP_201_CREATED)
async def create_engineer(request: Request, body: EngineerCreate):
    admin = await admin_route_guard(request)
    try:
        created = await user_service.create_engineer(body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_CREATED,
            actor=admin,
            resource_type="user",
            resource_id=created["user_id"],
            after_state=created,
            metadata={"role": UserRole.SOLUTIONS_ENGINEER.value},
        )
        return created
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Create engineer error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create solutions engineer"
        )


@router.get("/engineers/{user_id}")
async def get_engineer(user_id: str):
    try:
        return await user_service.get_user(user_id, UserRole.SOLUTIONS_ENGINEER)
    except ServiceError as e:
        raise e.to_http()


@router.put("/engineers/{user_id}")
async def update_engineer(request: Request, user_id: str, body: EngineerUpdate):
    admin = await admin_route_guard(request)
    try:
        before = await user_service.get_user(user_id, UserRole.SOLUTIONS_ENGINEER)
        updated = await user_service.update_engineer(user_id, body.model_dump(exclude_none=True))
        await create_audit_log(
            action=AuditAction.USER_UPDATED,
            actor=admin,
            resource_type="user",
            resource_id=user_id,
            before_state=before,
            after_state=updated,
        )
        return updated
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Update engineer error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update solutions engineer"
        )


@router.delete("/engineers/{user_id}")
async def delete_engineer(request: Request, user_id: str):
    admin = await admin_route_guard(request)
    try:
        result = await user_service.delete_engineer(user_id)
        await create_audit_log(
            action=AuditAction.USER_DELETED,
            actor=admin,
            resource_type="user",
            resource_id=user_id,
            metadata=result,
        )
        return {"message": "Solutions engineer deleted", **result}
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Delete engineer error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete solutions engineer"
        )
