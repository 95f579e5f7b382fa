"""User management for all three roles.

Solutions engineers carry ``assigned_client_ids`` and every client carries
``assigned_solutions_engineer_ids``; both sides are written together so the
link stays bidirectional.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging
import re

from auth import hash_password
from database import database
from models import User, UserRole, to_document
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PUBLIC_PROJECTION = {"_id": 0, "password_hash": 0}

COMMON_FIELDS = {"name", "email", "phone", "status"}
ROLE_FIELDS = {
    UserRole.ADMIN: COMMON_FIELDS,
    UserRole.SOLUTIONS_ENGINEER: COMMON_FIELDS | {"cost_rate", "bill_rate"},
    UserRole.CLIENT_USER: COMMON_FIELDS | {
        "department_id",
        "notify_by_email_for_exceptions",
        "notify_by_sms_for_exceptions",
        "has_billing_access",
        "is_client_admin",
        "client_user_notes",
    },
}


def normalize_email(email: str) -> str:
    return email.strip().lower()


def sanitize_user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Strip credentials from a user document before it leaves the service."""
    if user is None:
        return None
    return {k: v for k, v in user.items() if k not in ("_id", "password", "password_hash")}


async def find_existing_emails(emails: Iterable[str], session=None) -> List[str]:
    db = database.get_db()
    normalized = [normalize_email(e) for e in emails if e]
    if not normalized:
        return []
    existing = await db.users.find(
        {"email": {"$in": normalized}},
        {"_id": 0, "email": 1},
        session=session,
    ).to_list(len(normalized))
    return [u["email"] for u in existing]


async def ensure_email_available(email: str, exclude_user_id: Optional[str] = None, session=None) -> str:
    db = database.get_db()
    email = normalize_email(email)
    query: Dict[str, Any] = {"email": email}
    if exclude_user_id:
        query["user_id"] = {"$ne": exclude_user_id}
    if await db.users.find_one(query, {"_id": 0, "user_id": 1}, session=session):
        raise ConflictError(f"User with email {email} already exists")
    return email


def _editable(data: Dict[str, Any], role: UserRole) -> Dict[str, Any]:
    allowed = ROLE_FIELDS[role]
    return {k: v for k, v in data.items() if k in allowed and v is not None}


def build_user(data: Dict[str, Any], role: UserRole, client_id: Optional[str] = None) -> User:
    fields = _editable(data, role)
    fields["email"] = normalize_email(fields["email"])
    if data.get("password"):
        fields["password_hash"] = hash_password(data["password"])
    if role == UserRole.SOLUTIONS_ENGINEER:
        fields["assigned_client_ids"] = list(data.get("assigned_client_ids") or [])
    if role == UserRole.CLIENT_USER:
        fields["client_id"] = client_id
    return User(role=role, **fields)


async def _update_fields(user_id: str, role: UserRole, data: Dict[str, Any], session=None) -> Dict[str, Any]:
    """Apply the role's editable fields plus an optional password change."""
    db = database.get_db()
    update = _editable(data, role)
    if "email" in update:
        update["email"] = await ensure_email_available(update["email"], exclude_user_id=user_id, session=session)
    if data.get("password"):
        update["password_hash"] = hash_password(data["password"])
    update["updated_at"] = datetime.now(timezone.utc)
    await db.users.update_one({"user_id": user_id}, {"$set": update}, session=session)
    return update


async def get_user(user_id: str, role: Optional[UserRole] = None) -> Dict[str, Any]:
    db = database.get_db()
    query: Dict[str, Any] = {"user_id": user_id}
    if role:
        query["role"] = role.value
    user = await db.users.find_one(query, PUBLIC_PROJECTION)
    if not user:
        raise NotFoundError("User not found")
    return user


async def list_users(role: Optional[UserRole] = None, limit: int = 500) -> List[Dict[str, Any]]:
    db = database.get_db()
    query = {"role": role.value} if role else {}
    return await db.users.find(query, PUBLIC_PROJECTION).sort("name", 1).to_list(limit)


# ---------------------------------------------------------------------------
# Admin users
# ---------------------------------------------------------------------------

async def get_admin(user_id: str) -> Dict[str, Any]:
    user = await get_user(user_id)
    if user["role"] != UserRole.ADMIN.value:
        raise ValidationError("User is not an admin")
    return user


async def create_admin(data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    await ensure_email_available(data["email"])
    user = build_user(data, UserRole.ADMIN)
    await db.users.insert_one(to_document(user))
    logger.info(f"Admin user created: {user.user_id}")
    return sanitize_user(to_document(user))


async def update_admin(user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    await get_admin(user_id)
    await _update_fields(user_id, UserRole.ADMIN, data)
    return await get_user(user_id)


async def delete_admin(user_id: str, acting_user_id: str) -> None:
    db = database.get_db()
    if user_id == acting_user_id:
        raise ValidationError("You cannot delete your own account")
    await get_admin(user_id)
    await db.users.delete_one({"user_id": user_id})


# ---------------------------------------------------------------------------
# Solutions engineers
# ---------------------------------------------------------------------------

async def _ensure_clients_exist(client_ids: List[str], session=None) -> None:
    if not client_ids:
        return
    db = database.get_db()
    found = await db.clients.find(
        {"client_id": {"$in": client_ids}},
        {"_id": 0, "client_id": 1},
        session=session,
    ).to_list(len(client_ids))
    missing = set(client_ids) - {c["client_id"] for c in found}
    if missing:
        raise ValidationError(f"Assigned clients do not exist: {', '.join(sorted(missing))}")


async def search_engineers(term: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    db = database.get_db()
    query: Dict[str, Any] = {"role": UserRole.SOLUTIONS_ENGINEER.value}
    if term:
        pattern = {"$regex": re.escape(term.strip()), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    return await db.users.find(query, PUBLIC_PROJECTION).sort("name", 1).to_list(limit)


async def create_engineer(data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("cost_rate") is None or data.get("bill_rate") is None:
        raise ValidationError("Cost rate and bill rate are required for solutions engineers")

    db = database.get_db()
    client_ids = list(dict.fromkeys(data.get("assigned_client_ids") or []))
    await ensure_email_available(data["email"])
    await _ensure_clients_exist(client_ids)

    user = build_user({**data, "assigned_client_ids": client_ids}, UserRole.SOLUTIONS_ENGINEER)
    async with database.transaction() as session:
        await db.users.insert_one(to_document(user), session=session)
        if client_ids:
            await db.clients.update_many(
                {"client_id": {"$in": client_ids}},
                {"$addToSet": {"assigned_solutions_engineer_ids": user.user_id}},
                session=session,
            )
    logger.info(f"Solutions engineer created: {user.user_id} assigned to {len(client_ids)} clients")
    return sanitize_user(to_document(user))


async def update_engineer(user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    current = await get_user(user_id, UserRole.SOLUTIONS_ENGINEER)
    new_ids = data.get("assigned_client_ids")
    if new_ids is not None:
        new_ids = list(dict.fromkeys(new_ids))
        await _ensure_clients_exist(new_ids)

    async with database.transaction() as session:
        await _update_fields(user_id, UserRole.SOLUTIONS_ENGINEER, data, session=session)
        if new_ids is not None:
            old_ids = current.get("assigned_client_ids") or []
            to_add = [c for c in new_ids if c not in old_ids]
            to_remove = [c for c in old_ids if c not in new_ids]
            if to_add:
                await db.clients.update_many(
                    {"client_id": {"$in": to_add}},
                    {"$addToSet": {"assigned_solutions_engineer_ids": user_id}},
                    session=session,
                )
            if to_remove:
                await db.clients.update_many(
                    {"client_id": {"$in": to_remove}},
                    {"$pull": {"assigned_solutions_engineer_ids": user_id}},
                    session=session,
                )
            await db.users.update_one(
                {"user_id": user_id},
                {"$set": {"assigned_client_ids": new_ids}},
                session=session,
            )
    return await get_user(user_id)


async def delete_engineer(user_id: str) -> Dict[str, Any]:
    db = database.get_db()
    await get_user(user_id, UserRole.SOLUTIONS_ENGINEER)
    async with database.transaction() as session:
        result = await db.clients.update_many(
            {"assigned_solutions_engineer_ids": user_id},
            {"$pull": {"assigned_solutions_engineer_ids": user_id}},
            session=session,
        )
        await db.users.delete_one({"user_id": user_id}, session=session)
    logger.info(f"Solutions engineer {user_id} deleted, detached from {result.modified_count} clients")
    return {"detached_clients": result.modified_count}


# ---------------------------------------------------------------------------
# Client users
# ---------------------------------------------------------------------------

async def valid_department_id(department_id: Optional[str], session=None) -> Optional[str]:
    """Return the id when the department exists; unknown ids are dropped."""
    if not department_id:
        return None
    db = database.get_db()
    found = await db.departments.find_one(
        {"department_id": department_id}, {"_id": 0, "department_id": 1}, session=session
    )
    if not found:
        logger.warning(f"Ignoring unknown department id {department_id}")
        return None
    return department_id


async def list_client_users(client_id: str) -> List[Dict[str, Any]]:
    db = database.get_db()
    return await db.users.find(
        {"client_id": client_id, "role": UserRole.CLIENT_USER.value},
        PUBLIC_PROJECTION,
    ).sort("name", 1).to_list(1000)


async def count_client_users(client_id: str) -> int:
    db = database.get_db()
    return await db.users.count_documents({"client_id": client_id, "role": UserRole.CLIENT_USER.value})


async def create_client_user(client_id: str, data: Dict[str, Any], session=None) -> Dict[str, Any]:
    db = database.get_db()
    await ensure_email_available(data["email"], session=session)
    data = {**data, "department_id": await valid_department_id(data.get("department_id"), session=session)}
    user = build_user(data, UserRole.CLIENT_USER, client_id=client_id)
    await db.users.insert_one(to_document(user), session=session)
    return sanitize_user(to_document(user))


async def update_client_user(client_id: str, user_id: str, data: Dict[str, Any], session=None) -> Dict[str, Any]:
    db = database.get_db()
    existing = await db.users.find_one(
        {"user_id": user_id, "client_id": client_id, "role": UserRole.CLIENT_USER.value},
        {"_id": 0, "user_id": 1},
        session=session,
    )
    if not existing:
        raise NotFoundError("User not found for this client")
    if "department_id" in data:
        data = {**data, "department_id": await valid_department_id(data.get("department_id"), session=session)}
    await _update_fields(user_id, UserRole.CLIENT_USER, data, session=session)
    return await db.users.find_one({"user_id": user_id}, PUBLIC_PROJECTION, session=session)


async def delete_client_user(client_id: str, user_id: str, session=None) -> None:
    db = database.get_db()
    result = await db.users.delete_one(
        {"user_id": user_id, "client_id": client_id, "role": UserRole.CLIENT_USER.value},
        session=session,
    )
    if result.deleted_count == 0:
        raise NotFoundError("User not found for this client")
