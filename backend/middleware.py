from fastapi import Request, HTTPException, status
from typing import Optional, List
import logging
import os
from auth import decode_access_token, api_key_matches, AUTH_COOKIE_NAME
from models import UserRole, UserStatus
from database import database

logger = logging.getLogger(__name__)

STAFF_ROLES = (UserRole.ADMIN, UserRole.SOLUTIONS_ENGINEER)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from the bearer token or session cookie."""
    token = None
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
    elif request.cookies.get(AUTH_COOKIE_NAME):
        token = request.cookies.get(AUTH_COOKIE_NAME)

    if not token:
        return None

    return decode_access_token(token)

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def require_roles(request: Request, *roles: UserRole) -> dict:
    """Require one of the listed roles. Roles are flat, there is no hierarchy."""
    user = await require_auth(request)
    allowed = {r.value for r in roles}
    if user.get("role") not in allowed:
        logger.warning(f"Role {user.get('role')} denied on {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user

async def admin_route_guard(request: Request) -> dict:
    """Guard for admin-only routes."""
    return await require_roles(request, UserRole.ADMIN)

async def staff_route_guard(request: Request) -> dict:
    """Guard for routes shared by admins and solutions engineers."""
    return await require_roles(request, *STAFF_ROLES)

async def client_route_guard(request: Request) -> dict:
    """Guard for client portal routes - checks role, tenant and account status."""
    user = await require_roles(request, UserRole.CLIENT_USER)
    if not user.get("client_id"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No client associated with this user"
        )

    db = database.get_db()
    account = await db.users.find_one(
        {"user_id": user["user_id"]},
        {"_id": 0, "password_hash": 0}
    )
    if not account:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    if account.get("status", UserStatus.ACTIVE.value) != UserStatus.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active"
        )
    return account

async def client_admin_guard(request: Request) -> dict:
    """Client user who may manage the other users of their company."""
    account = await client_route_guard(request)
    if not account.get("is_client_admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Client admin access required"
        )
    return account

async def billing_access_guard(request: Request) -> dict:
    account = await client_route_guard(request)
    if not (account.get("has_billing_access") or account.get("is_client_admin")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Billing access required"
        )
    return account

async def api_key_guard(request: Request) -> None:
    """Guard for the machine-to-machine ingestion API.

    The key is read from the ``x-api-key`` header. The ``apiKey`` query
    parameter still works but is deprecated.
    """
    expected = os.getenv("API_KEY")
    if not expected:
        logger.error("API_KEY is not configured; rejecting external request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API key authentication is not configured"
        )

    provided = request.headers.get("x-api-key")
    if not provided:
        provided = request.query_params.get("apiKey")
        if provided:
            logger.warning(f"Deprecated apiKey query parameter used on {request.url.path}")

    if not api_key_matches(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )

def is_admin(user: dict) -> bool:
    return user.get("role") == UserRole.ADMIN.value

async def get_assigned_client_ids(user: dict) -> Optional[List[str]]:
    """Client ids a staff user may see; ``None`` means unrestricted (admins)."""
    if is_admin(user):
        return None
    db = database.get_db()
    engineer = await db.users.find_one(
        {"user_id": user["user_id"]},
        {"_id": 0, "assigned_client_ids": 1}
    )
    return (engineer or {}).get("assigned_client_ids") or []

async def ensure_client_access(user: dict, client_id: str) -> dict:
    """Load a client and check the staff user may act on it.

    Admins see every client; solutions engineers only the ones they are
    assigned to. Raises 404 for unknown clients and 403 otherwise.
    """
    db = database.get_db()
    client = await db.clients.find_one({"client_id": client_id}, {"_id": 0})
    if not client:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Client not found"
        )
    if not is_admin(user) and user.get("user_id") not in (client.get("assigned_solutions_engineer_ids") or []):
        logger.warning(f"Engineer {user.get('user_id')} denied access to client {client_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not assigned to this client"
        )
    return client
