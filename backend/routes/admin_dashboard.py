"""
Admin dashboard routes: KPI summary, per-client table and its export.
"""
from fastapi import APIRouter, HTTPException, Request, Depends, status, Query
from fastapi.responses import StreamingResponse
from typing import Optional
from datetime import datetime, timezone
from middleware import admin_route_guard
from models import AuditAction
from services import dashboard_service
from utils.audit import create_audit_log
from utils.exports import format_csv, format_xlsx
from utils.periods import resolve_period
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/dashboard", tags=["admin-dashboard"], dependencies=[Depends(admin_route_guard)])


@router.get("/summary")
async def get_summary(timespan: Optional[str] = None):
    """Totals for the period with percentage change against the previous one."""
    try:
        return await dashboard_service.get_summary(timespan)
    except Exception as e:
        logger.error(f"Dashboard summary error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load dashboard summary"
        )


@router.get("/clients")
async def get_clients_table(
    timespan: Optional[str] = None,
    sort_by: str = "revenue",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    try:
        return await dashboard_service.get_clients_table(timespan, sort_by=sort_by, sort_order=sort_order)
    except Exception as e:
        logger.error(f"Dashboard clients error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load dashboard clients"
        )


@router.get("/clients/export")
async def export_clients_table(
    request: Request,
    timespan: Optional[str] = None,
    sort_by: str = "revenue",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
):
    """Download the clients table as CSV or Excel."""
    admin = await admin_route_guard(request)
    try:
        table = await dashboard_service.get_clients_table(timespan, sort_by=sort_by, sort_order=sort_order)
        period = resolve_period(table["timespan"])
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")

        await create_audit_log(
            action=AuditAction.REPORT_EXPORTED,
            actor=admin,
            resource_type="dashboard_clients",
            metadata={"format": format, "timespan": table["timespan"], "rows": len(table["clients"])},
        )

        if format == "xlsx":
            content = format_xlsx(table["clients"], "Client Dashboard", period.start, period.end)
            filename = f"client_dashboard_{timestamp}.xlsx"
            return StreamingResponse(
                iter([content.getvalue()]),
                media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                headers={"Content-Disposition": f"attachment; filename={filename}"}
            )

        content = format_csv(table["clients"])
        filename = f"client_dashboard_{timestamp}.csv"
        return StreamingResponse(
            iter([content.getvalue()]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"}
        )
    except Exception as e:
        logger.error(f"Dashboard export error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to export dashboard"
        )
