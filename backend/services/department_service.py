from typing import Any, Dict, List, Optional
import logging
import re

from database import database
from models import Department, to_document
from services.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


async def list_departments(client_id: Optional[str] = None) -> List[Dict[str, Any]]:
    db = database.get_db()
    query = {"client_id": client_id} if client_id else {}
    return await db.departments.find(query, {"_id": 0}).sort("name", 1).to_list(1000)


async def search_departments(term: str, limit: int = 20) -> List[Dict[str, Any]]:
    db = database.get_db()
    return await db.departments.find(
        {"name": {"$regex": re.escape(term.strip()), "$options": "i"}},
        {"_id": 0},
    ).sort("name", 1).to_list(limit)


async def create_department(name: str, client_id: Optional[str] = None, created_by: Optional[str] = None) -> Dict[str, Any]:
    """Create a department; names are unique regardless of case."""
    db = database.get_db()
    name = (name or "").strip()
    if not name:
        raise ValidationError("Department name is required")

    duplicate = await db.departments.find_one(
        {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}},
        {"_id": 0, "department_id": 1},
    )
    if duplicate:
        raise ConflictError("A department with this name already exists")

    department = Department(name=name, client_id=client_id, created_by=created_by)
    document = to_document(department)
    await db.departments.insert_one(document)
    document.pop("_id", None)
    logger.info(f"Department created: {department.department_id} ({name})")
    return document
