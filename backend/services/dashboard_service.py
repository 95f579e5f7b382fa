"""Dashboard rollups.

Every figure is an aggregation over the event and billing collections for a
reporting period; independent aggregations run concurrently.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from database import database
from models import (
    ClientStatus,
    ExecutionStatus,
    InvoiceStatus,
    NodeStatus,
    WorkflowStatus,
)
from utils.periods import Period, as_utc, normalize_timespan, percentage_change, resolve_period

logger = logging.getLogger(__name__)

NUMERIC_COLUMNS = (
    "workflow_count",
    "node_count",
    "execution_count",
    "exception_count",
    "revenue",
    "time_saved",
    "money_saved",
)
SORT_COLUMNS = ("company_name", "contract_start") + NUMERIC_COLUMNS


async def _first_value(cursor, key: str) -> float:
    rows = await cursor.to_list(1)
    return rows[0][key] if rows else 0


def _savings_pipeline(match: Dict[str, Any], group_key: Optional[str]) -> List[Dict[str, Any]]:
    """Successful executions joined to their workflow's per-execution savings."""
    return [
        {"$match": {**match, "status": ExecutionStatus.SUCCESS.value}},
        {"$lookup": {
            "from": "workflows",
            "localField": "workflow_id",
            "foreignField": "workflow_id",
            "as": "workflow",
        }},
        {"$unwind": {"path": "$workflow", "preserveNullAndEmptyArrays": True}},
        {"$group": {
            "_id": f"${group_key}" if group_key else None,
            "time_saved": {"$sum": {"$ifNull": ["$workflow.time_saved_per_execution", 0]}},
            "money_saved": {"$sum": {"$ifNull": ["$workflow.money_saved_per_execution", 0]}},
        }},
    ]


def _revenue_pipeline(period: Period, group_key: Optional[str]) -> List[Dict[str, Any]]:
    return [
        {"$match": {"status": InvoiceStatus.PAID.value, "invoice_date": period.as_query()}},
        {"$group": {"_id": f"${group_key}" if group_key else None, "revenue": {"$sum": "$amount_billed"}}},
    ]


async def _period_totals(period: Period) -> Dict[str, float]:
    db = database.get_db()
    exceptions, executions, revenue, time_saved = await asyncio.gather(
        db.workflow_exceptions.count_documents({"created_at": period.as_query()}),
        db.workflow_executions.count_documents({"created_at": period.as_query()}),
        _first_value(db.invoices.aggregate(_revenue_pipeline(period, None)), "revenue"),
        _first_value(db.workflow_executions.aggregate(_savings_pipeline({"created_at": period.as_query()}, None)), "time_saved"),
    )
    return {
        "exceptions": exceptions,
        "executions": executions,
        "revenue": revenue,
        "time_saved": time_saved,
    }


async def get_summary(timespan: Optional[str] = None) -> Dict[str, Any]:
    """Admin KPI cards for a period, each compared with the preceding period."""
    db = database.get_db()
    timespan = normalize_timespan(timespan)
    period = resolve_period(timespan)
    previous = period.previous()

    (
        total_workflows,
        previous_workflows,
        total_clients,
        previous_clients,
        current,
        prior,
    ) = await asyncio.gather(
        db.workflows.count_documents({"status": WorkflowStatus.ACTIVE.value}),
        db.workflows.count_documents({"status": WorkflowStatus.ACTIVE.value, "created_at": {"$lt": period.start}}),
        db.clients.count_documents({"status": ClientStatus.ACTIVE.value}),
        db.clients.count_documents({"status": ClientStatus.ACTIVE.value, "created_at": {"$lt": period.start}}),
        _period_totals(period),
        _period_totals(previous),
    )

    return {
        "timespan": timespan,
        "period_start": period.start,
        "period_end": period.end,
        "total_workflows": total_workflows,
        "total_workflows_change": percentage_change(total_workflows, previous_workflows),
        "total_exceptions": current["exceptions"],
        "total_exceptions_change": percentage_change(current["exceptions"], prior["exceptions"]),
        "total_executions": current["executions"],
        "total_executions_change": percentage_change(current["executions"], prior["executions"]),
        "total_clients": total_clients,
        "total_clients_change": percentage_change(total_clients, previous_clients),
        "total_revenue": current["revenue"],
        "total_revenue_change": percentage_change(current["revenue"], prior["revenue"]),
        "time_saved": current["time_saved"],
        "time_saved_change": percentage_change(current["time_saved"], prior["time_saved"]),
    }


async def _grouped(cursor, *keys: str) -> Dict[str, Dict[str, Any]]:
    rows = await cursor.to_list(10000)
    return {row["_id"]: {k: row.get(k, 0) for k in keys} for row in rows if row.get("_id")}


def _count_by_client(match: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [{"$match": match}, {"$group": {"_id": "$client_id", "count": {"$sum": 1}}}]


def _utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value else None


def _sort_key(column: str):
    if column == "company_name":
        return lambda row: (row["company_name"] or "").lower()
    if column == "contract_start":
        floor = datetime.min.replace(tzinfo=timezone.utc)
        return lambda row: row["contract_start"] or floor
    return lambda row: row.get(column) or 0


async def get_clients_table(
    timespan: Optional[str] = None,
    sort_by: str = "revenue",
    sort_order: str = "desc",
) -> Dict[str, Any]:
    """Per-client rollup of active clients for the admin dashboard."""
    db = database.get_db()
    timespan = normalize_timespan(timespan)
    period = resolve_period(timespan)
    in_period = {"created_at": period.as_query()}

    clients = await db.clients.find(
        {"status": ClientStatus.ACTIVE.value},
        {"_id": 0, "client_id": 1, "company_name": 1},
    ).to_list(10000)

    workflows, nodes, executions, exceptions, revenue, savings, starts = await asyncio.gather(
        _grouped(db.workflows.aggregate(_count_by_client({"status": WorkflowStatus.ACTIVE.value})), "count"),
        _grouped(db.workflow_nodes.aggregate(_count_by_client({"status": NodeStatus.ACTIVE.value})), "count"),
        _grouped(db.workflow_executions.aggregate(_count_by_client(in_period)), "count"),
        _grouped(db.workflow_exceptions.aggregate(_count_by_client(in_period)), "count"),
        _grouped(db.invoices.aggregate(_revenue_pipeline(period, "client_id")), "revenue"),
        _grouped(db.workflow_executions.aggregate(_savings_pipeline(in_period, "client_id")), "time_saved", "money_saved"),
        _grouped(db.client_subscriptions.aggregate([
            {"$group": {"_id": "$client_id", "contract_start": {"$min": "$start_date"}}},
        ]), "contract_start"),
    )

    rows = []
    for client in clients:
        cid = client["client_id"]
        saved = savings.get(cid, {})
        rows.append({
            "client_id": cid,
            "company_name": client.get("company_name") or "Unknown Client",
            "contract_start": _utc_or_none(starts.get(cid, {}).get("contract_start")),
            "workflow_count": workflows.get(cid, {}).get("count", 0),
            "node_count": nodes.get(cid, {}).get("count", 0),
            "execution_count": executions.get(cid, {}).get("count", 0),
            "exception_count": exceptions.get(cid, {}).get("count", 0),
            "revenue": revenue.get(cid, {}).get("revenue", 0),
            "time_saved": saved.get("time_saved", 0),
            "money_saved": saved.get("money_saved", 0),
        })

    if sort_by not in SORT_COLUMNS:
        sort_by = "revenue"
    rows.sort(key=_sort_key(sort_by), reverse=sort_order != "asc")
    return {"clients": rows, "timespan": timespan, "sort_by": sort_by, "sort_order": sort_order}


async def get_client_metrics(client_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Savings from successful executions of the client's active workflows."""
    db = database.get_db()
    now = now or datetime.now(timezone.utc)
    workflows = await db.workflows.find(
        {"client_id": client_id, "status": WorkflowStatus.ACTIVE.value},
        {"_id": 0, "workflow_id": 1},
    ).to_list(1000)
    workflow_ids = [w["workflow_id"] for w in workflows]
    match = {"client_id": client_id, "workflow_id": {"$in": workflow_ids}}

    recent_rows, total_rows = await asyncio.gather(
        db.workflow_executions.aggregate(
            _savings_pipeline({**match, "created_at": {"$gte": now - timedelta(days=7)}}, None)
        ).to_list(1),
        db.workflow_executions.aggregate(_savings_pipeline(match, None)).to_list(1),
    )
    recent = recent_rows[0] if recent_rows else {}
    total = total_rows[0] if total_rows else {}
    return {
        "time_saved": {"recent": recent.get("time_saved", 0), "total": total.get("time_saved", 0)},
        "money_saved": {"recent": recent.get("money_saved", 0), "total": total.get("money_saved", 0)},
        "active_workflows": len(workflow_ids),
    }
