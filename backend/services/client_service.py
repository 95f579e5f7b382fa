"""Client lifecycle: create/update/delete with users and engineer links,
onboarding pipeline and document links.

Create, update and delete each run in one multi-document transaction so a
client never exists without its users or with half-applied engineer links.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import re

from database import database
from models import (
    Client,
    ClientStatus,
    DocumentLinkType,
    PipelineStepStatus,
    UserRole,
    default_document_links,
    default_pipeline_steps,
    to_document,
)
from services import user_service
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CLIENT_FIELDS = {"company_name", "company_url", "contact_name", "industry", "status", "contract_start_date"}


def _name_query(company_name: str) -> Dict[str, Any]:
    return {"company_name": {"$regex": f"^{re.escape(company_name.strip())}$", "$options": "i"}}


async def get_client(client_id: str) -> Dict[str, Any]:
    db = database.get_db()
    client = await db.clients.find_one({"client_id": client_id}, {"_id": 0})
    if not client:
        raise NotFoundError("Client not found")
    return client


async def list_clients(assigned_ids: Optional[List[str]] = None, limit: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
    """Clients sorted by name. ``assigned_ids`` restricts the list for engineers."""
    db = database.get_db()
    query: Dict[str, Any] = {}
    if assigned_ids is not None:
        query["client_id"] = {"$in": assigned_ids}
    return await db.clients.find(query, {"_id": 0}).sort("company_name", 1).skip(skip).limit(limit).to_list(limit)


async def search_clients(term: str, assigned_ids: Optional[List[str]] = None, limit: int = 20) -> List[Dict[str, Any]]:
    db = database.get_db()
    query: Dict[str, Any] = {"company_name": {"$regex": re.escape(term.strip()), "$options": "i"}}
    if assigned_ids is not None:
        query["client_id"] = {"$in": assigned_ids}
    return await db.clients.find(
        query, {"_id": 0, "client_id": 1, "company_name": 1, "status": 1}
    ).sort("company_name", 1).to_list(limit)


async def is_name_available(company_name: str, exclude_client_id: Optional[str] = None) -> bool:
    db = database.get_db()
    query = _name_query(company_name)
    if exclude_client_id:
        query["client_id"] = {"$ne": exclude_client_id}
    return await db.clients.find_one(query, {"_id": 0, "client_id": 1}) is None


async def _ensure_engineers_exist(engineer_ids: List[str]) -> None:
    """Every id must belong to an existing solutions engineer."""
    if not engineer_ids:
        return
    db = database.get_db()
    found = await db.users.find(
        {"user_id": {"$in": engineer_ids}, "role": UserRole.SOLUTIONS_ENGINEER.value},
        {"_id": 0, "user_id": 1},
    ).to_list(len(engineer_ids))
    missing = set(engineer_ids) - {u["user_id"] for u in found}
    if missing:
        raise ValidationError(f"Assigned solutions engineers do not exist: {', '.join(sorted(missing))}")


async def create_client(
    data: Dict[str, Any],
    users: List[Dict[str, Any]],
    engineer_ids: List[str],
) -> Dict[str, Any]:
    """Create a PENDING client with default pipeline and document links,
    its client users, and the engineer back-links."""
    db = database.get_db()
    company_name = (data.get("company_name") or "").strip()
    if not company_name:
        raise ValidationError("Company name is required")
    if not await is_name_available(company_name):
        raise ConflictError("A client with this name already exists")

    existing = await user_service.find_existing_emails(u.get("email") for u in users)
    if existing:
        raise ConflictError(
            f"User with email {existing[0]} already exists. Cannot create client with existing users."
        )

    engineer_ids = list(dict.fromkeys(engineer_ids))
    await _ensure_engineers_exist(engineer_ids)
    fields = {k: v for k, v in data.items() if k in CLIENT_FIELDS and v is not None}
    fields.update(company_name=company_name, status=ClientStatus.PENDING)
    client = Client(assigned_solutions_engineer_ids=engineer_ids, **fields)
    document = to_document(client)

    async with database.transaction() as session:
        await db.clients.insert_one(document, session=session)
        for user_data in users:
            await user_service.create_client_user(client.client_id, user_data, session=session)
        if engineer_ids:
            await db.users.update_many(
                {"user_id": {"$in": engineer_ids}, "role": UserRole.SOLUTIONS_ENGINEER.value},
                {"$addToSet": {"assigned_client_ids": client.client_id}},
                session=session,
            )

    logger.info(f"Client created: {client.client_id} with {len(users)} users and {len(engineer_ids)} engineers")
    document.pop("_id", None)
    return document


async def update_client(
    client_id: str,
    data: Dict[str, Any],
    users: Optional[List[Dict[str, Any]]] = None,
    engineer_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Update scalar fields, then sync users and engineer assignments when given.

    Users carrying a ``user_id`` are updated, users without one are created and
    existing client users missing from the list are deleted.
    """
    db = database.get_db()
    current = await get_client(client_id)

    update = {k: v for k, v in data.items() if k in CLIENT_FIELDS and v is not None}
    if "company_name" in update:
        update["company_name"] = update["company_name"].strip()
        if not update["company_name"]:
            raise ValidationError("Company name cannot be empty")
        if not await is_name_available(update["company_name"], exclude_client_id=client_id):
            raise ConflictError("A client with this name already exists")
    if "status" in update:
        update["status"] = ClientStatus(update["status"]).value
    if engineer_ids is not None:
        engineer_ids = list(dict.fromkeys(engineer_ids))
        await _ensure_engineers_exist(engineer_ids)
    update["updated_at"] = datetime.now(timezone.utc)

    async with database.transaction() as session:
        await db.clients.update_one({"client_id": client_id}, {"$set": update}, session=session)

        if users is not None:
            existing = await db.users.find(
                {"client_id": client_id, "role": UserRole.CLIENT_USER.value},
                {"_id": 0, "user_id": 1},
                session=session,
            ).to_list(1000)
            stale_ids = {u["user_id"] for u in existing}
            for user_data in users:
                user_id = user_data.get("user_id")
                if user_id:
                    await user_service.update_client_user(client_id, user_id, user_data, session=session)
                    stale_ids.discard(user_id)
                else:
                    await user_service.create_client_user(client_id, user_data, session=session)
            if stale_ids:
                await db.users.delete_many({"user_id": {"$in": list(stale_ids)}}, session=session)

        if engineer_ids is not None:
            old_ids = current.get("assigned_solutions_engineer_ids") or []
            to_add = [e for e in engineer_ids if e not in old_ids]
            to_remove = [e for e in old_ids if e not in engineer_ids]
            if to_add:
                await db.users.update_many(
                    {"user_id": {"$in": to_add}, "role": UserRole.SOLUTIONS_ENGINEER.value},
                    {"$addToSet": {"assigned_client_ids": client_id}},
                    session=session,
                )
            if to_remove:
                await db.users.update_many(
                    {"user_id": {"$in": to_remove}},
                    {"$pull": {"assigned_client_ids": client_id}},
                    session=session,
                )
            await db.clients.update_one(
                {"client_id": client_id},
                {"$set": {"assigned_solutions_engineer_ids": engineer_ids}},
                session=session,
            )

    return await get_client(client_id)


async def delete_client(client_id: str) -> Dict[str, int]:
    """Delete a client, its client users and its engineer back-links."""
    db = database.get_db()
    client = await get_client(client_id)
    engineer_ids = client.get("assigned_solutions_engineer_ids") or []

    async with database.transaction() as session:
        deleted_users = await db.users.delete_many(
            {"client_id": client_id, "role": UserRole.CLIENT_USER.value},
            session=session,
        )
        if engineer_ids:
            await db.users.update_many(
                {"user_id": {"$in": engineer_ids}},
                {"$pull": {"assigned_client_ids": client_id}},
                session=session,
            )
        await db.clients.delete_one({"client_id": client_id}, session=session)

    logger.info(f"Client {client_id} deleted with {deleted_users.deleted_count} users")
    return {
        "client_users": deleted_users.deleted_count,
        "pipeline_steps": len(client.get("pipeline_steps") or []),
        "document_links": len(client.get("document_links") or []),
    }


async def get_client_engineers(client_id: str) -> List[Dict[str, Any]]:
    """Assigned engineers in assignment order; the first one is the lead."""
    db = database.get_db()
    client = await get_client(client_id)
    engineer_ids = client.get("assigned_solutions_engineer_ids") or []
    if not engineer_ids:
        return []
    engineers = await db.users.find(
        {"user_id": {"$in": engineer_ids}},
        {"_id": 0, "user_id": 1, "name": 1, "email": 1, "phone": 1},
    ).to_list(len(engineer_ids))
    by_id = {e["user_id"]: e for e in engineers}
    ordered = [by_id[e] for e in engineer_ids if e in by_id]
    return [{**engineer, "is_lead": idx == 0} for idx, engineer in enumerate(ordered)]


# ---------------------------------------------------------------------------
# Pipeline and document links
# ---------------------------------------------------------------------------

def _current_phase(steps: List[Dict[str, Any]]) -> Optional[str]:
    for step in sorted(steps, key=lambda s: s.get("order", 0)):
        if step.get("status") != PipelineStepStatus.COMPLETED.value:
            return step["name"]
    return steps[-1]["name"] if steps else None


async def get_pipeline(client_id: str) -> Dict[str, Any]:
    db = database.get_db()
    client = await get_client(client_id)
    steps = client.get("pipeline_steps")
    if not steps:
        steps = [to_document(s) for s in default_pipeline_steps()]
        await db.clients.update_one(
            {"client_id": client_id},
            {"$set": {"pipeline_steps": steps, "pipeline_progress_current_phase": steps[0]["name"]}},
        )
    return {
        "pipeline_steps": sorted(steps, key=lambda s: s.get("order", 0)),
        "current_phase": client.get("pipeline_progress_current_phase") or _current_phase(steps),
    }


async def update_pipeline_step(client_id: str, step_name: str, step_status: str) -> Dict[str, Any]:
    db = database.get_db()
    try:
        new_status = PipelineStepStatus(step_status)
    except ValueError:
        raise ValidationError("Step status must be 'pending' or 'completed'")

    pipeline = await get_pipeline(client_id)
    steps = pipeline["pipeline_steps"]
    step = next((s for s in steps if s["name"] == step_name), None)
    if step is None:
        raise NotFoundError(f"Pipeline step '{step_name}' not found")

    step["status"] = new_status.value
    step["completed_date"] = datetime.now(timezone.utc) if new_status == PipelineStepStatus.COMPLETED else None
    current_phase = _current_phase(steps)
    await db.clients.update_one(
        {"client_id": client_id},
        {"$set": {
            "pipeline_steps": steps,
            "pipeline_progress_current_phase": current_phase,
            "updated_at": datetime.now(timezone.utc),
        }},
    )
    return {"pipeline_steps": steps, "current_phase": current_phase}


async def get_document_links(client_id: str) -> List[Dict[str, Any]]:
    client = await get_client(client_id)
    return client.get("document_links") or [to_document(d) for d in default_document_links()]


async def update_document_link(client_id: str, link_type: str, url: str, title: Optional[str] = None) -> List[Dict[str, Any]]:
    db = database.get_db()
    try:
        link_type = DocumentLinkType(link_type).value
    except ValueError:
        raise ValidationError(f"Unknown document type: {link_type}")

    links = await get_document_links(client_id)
    link = next((l for l in links if l["type"] == link_type), None)
    if link is None:
        link = {"title": title or link_type.replace("_", " ").title(), "url": "", "type": link_type}
        links.append(link)
    link["url"] = url
    if title:
        link["title"] = title
    await db.clients.update_one(
        {"client_id": client_id},
        {"$set": {"document_links": links, "updated_at": datetime.now(timezone.utc)}},
    )
    return links
