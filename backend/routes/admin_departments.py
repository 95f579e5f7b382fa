from fastapi import APIRouter, Request, Depends, status, Query
from pydantic import BaseModel
from typing import Optional
from middleware import staff_route_guard
from services import department_service
from services.errors import ServiceError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/departments", tags=["admin-departments"], dependencies=[Depends(staff_route_guard)])


class DepartmentCreate(BaseModel):
    name: str
    client_id: Optional[str] = None


@router.get("")
async def list_departments(client_id: Optional[str] = None):
    return {"departments": await department_service.list_departments(client_id)}


@router.get("/search")
async def search_departments(q: str = Query("", max_length=100)):
    if not q.strip():
        return {"departments": []}
    return {"departments": await department_service.search_departments(q)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_department(request: Request, body: DepartmentCreate):
    user = await staff_route_guard(request)
    try:
        return await department_service.create_department(body.name, body.client_id, created_by=user["user_id"])
    except ServiceError as e:
        raise e.to_http()
