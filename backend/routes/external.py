"""
Machine-to-machine ingestion API used by the automation runtime to report
executions, exceptions and nodes. Authenticated with the shared API key.
"""
from fastapi import APIRouter, HTTPException, Depends, status, Query
from pydantic import BaseModel, ConfigDict
from typing import Optional
from middleware import api_key_guard
from services import workflow_event_service
from services.errors import ServiceError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/external/workflows", tags=["external"], dependencies=[Depends(api_key_guard)])


class ExecutionEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    execution_id: Optional[str] = None
    workflow_name: Optional[str] = None
    client_id: Optional[str] = None
    status: Optional[str] = None
    duration: Optional[float] = None
    details: Optional[str] = None


class ExceptionEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    exception_id: Optional[str] = None
    workflow_name: Optional[str] = None
    client_id: Optional[str] = None
    exception_type: Optional[str] = None
    severity: Optional[str] = None
    remedy: Optional[str] = None
    status: Optional[str] = None


class NodeEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    node_id: Optional[str] = None
    workflow_name: Optional[str] = None
    client_id: Optional[str] = None
    node_name: Optional[str] = None
    node_type: Optional[str] = None
    status: Optional[str] = None


class ExceptionStatusUpdate(BaseModel):
    status: Optional[str] = None


@router.post("/executions", status_code=status.HTTP_201_CREATED)
async def record_execution(event: ExecutionEvent):
    try:
        execution = await workflow_event_service.record_execution(event.model_dump(exclude_none=True))
        return {"message": "Execution recorded", "execution": execution}
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Record execution error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record execution"
        )


@router.post("/exceptions", status_code=status.HTTP_201_CREATED)
async def record_exception(event: ExceptionEvent):
    try:
        exception = await workflow_event_service.record_exception(event.model_dump(exclude_none=True))
        return {"message": "Exception recorded", "exception": exception}
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Record exception error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record exception"
        )


@router.patch("/exceptions/{exception_id}")
async def update_exception_status(exception_id: str, body: ExceptionStatusUpdate):
    try:
        exception = await workflow_event_service.update_exception_status(exception_id, body.status)
        return {"message": "Exception updated", "exception": exception}
    except ServiceError as e:
        raise e.to_http()


@router.post("/nodes", status_code=status.HTTP_201_CREATED)
async def record_node(event: NodeEvent):
    try:
        node = await workflow_event_service.record_node(event.model_dump(exclude_none=True))
        return {"message": "Node recorded", "node": node}
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Record node error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record node"
        )


@router.delete("/nodes")
async def delete_node(node_id: Optional[str] = Query(None)):
    try:
        await workflow_event_service.delete_node(node_id)
        return {"message": "Node deleted"}
    except ServiceError as e:
        raise e.to_http()
