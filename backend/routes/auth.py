from fastapi import APIRouter, HTTPException, Request, Response, status
from pydantic import BaseModel
from typing import Optional
from database import database
from models import UserRole, UserStatus, AuditAction
from auth import verify_password, create_access_token, token_payload_for_user, AUTH_COOKIE_NAME, JWT_EXPIRATION_HOURS
from middleware import require_auth
from services.user_service import normalize_email, sanitize_user
from utils.audit import create_audit_log
from datetime import datetime, timezone
import logging
import os

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])

# Fields each role sees on its own profile
PROFILE_FIELDS = {
    UserRole.ADMIN.value: ("user_id", "name", "email", "phone", "role", "status", "last_login"),
    UserRole.SOLUTIONS_ENGINEER.value: (
        "user_id", "name", "email", "phone", "role", "status", "last_login",
        "cost_rate", "bill_rate", "assigned_client_ids",
    ),
    UserRole.CLIENT_USER.value: (
        "user_id", "name", "email", "phone", "role", "status", "last_login",
        "client_id", "department_id", "is_client_admin", "has_billing_access",
        "notify_by_email_for_exceptions", "notify_by_sms_for_exceptions",
    ),
}


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def profile_for(user: dict) -> dict:
    fields = PROFILE_FIELDS.get(user.get("role"), PROFILE_FIELDS[UserRole.ADMIN.value])
    user = sanitize_user(user)
    return {k: user.get(k) for k in fields}


def _cookie_secure() -> bool:
    return os.getenv("ENVIRONMENT", "development") == "production"


@router.post("/login")
async def login(request: Request, response: Response, credentials: LoginRequest):
    """Staff and client login; returns a bearer token and sets the session cookie."""
    if not credentials.email or not credentials.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email and password are required"
        )

    db = database.get_db()
    email = normalize_email(credentials.email)
    ip_address = request.client.host if request.client else None

    try:
        user = await db.users.find_one({"email": email}, {"_id": 0})

        if not user or not verify_password(credentials.password, user.get("password_hash")):
            await create_audit_log(
                action=AuditAction.USER_LOGIN_FAILED,
                actor={"user_id": user["user_id"], "role": user["role"]} if user else None,
                metadata={"email": email, "reason": "user_not_found" if not user else "invalid_password"},
                ip_address=ip_address,
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials"
            )

        if user.get("status", UserStatus.ACTIVE.value) != UserStatus.ACTIVE.value:
            await create_audit_log(
                action=AuditAction.USER_LOGIN_FAILED,
                actor={"user_id": user["user_id"], "role": user["role"]},
                metadata={"email": email, "reason": "inactive"},
                ip_address=ip_address,
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account is not active"
            )

        now = datetime.now(timezone.utc)
        await db.users.update_one({"user_id": user["user_id"]}, {"$set": {"last_login": now}})
        user["last_login"] = now

        access_token = create_access_token(token_payload_for_user(user))
        response.set_cookie(
            key=AUTH_COOKIE_NAME,
            value=access_token,
            httponly=True,
            secure=_cookie_secure(),
            samesite="lax",
            max_age=JWT_EXPIRATION_HOURS * 3600,
        )

        await create_audit_log(
            action=AuditAction.USER_LOGIN_SUCCESS,
            actor={"user_id": user["user_id"], "role": user["role"]},
            client_id=user.get("client_id"),
            ip_address=ip_address,
        )

        return {
            "access_token": access_token,
            "token_type": "bearer",
            "user": profile_for(user),
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed"
        )


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Clear the session cookie. Bearer tokens simply expire."""
    user = await require_auth(request)
    response.delete_cookie(AUTH_COOKIE_NAME)
    await create_audit_log(
        action=AuditAction.USER_LOGOUT,
        actor=user,
        client_id=user.get("client_id"),
    )
    return {"message": "Logged out"}


@router.get("/me")
async def get_me(request: Request):
    """Current user's profile."""
    user = await require_auth(request)
    db = database.get_db()
    account = await db.users.find_one({"user_id": user["user_id"]}, {"_id": 0, "password_hash": 0})
    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    return profile_for(account)
