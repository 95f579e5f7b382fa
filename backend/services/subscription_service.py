"""Subscription plans and client subscriptions.

A client has at most one ACTIVE subscription. Activating a subscription
cancels the client's other active ones and points
``clients.active_subscription_id`` at it.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from database import database
from models import (
    BillingCadence,
    ClientSubscription,
    PricingModel,
    SubscriptionPlan,
    SubscriptionStatus,
    to_document,
)
from services.errors import ConflictError, NotFoundError, ValidationError
from utils.periods import add_months, as_utc

logger = logging.getLogger(__name__)

CADENCE_MONTHS = {
    BillingCadence.MONTHLY.value: 1,
    BillingCadence.QUARTERLY.value: 3,
    BillingCadence.YEARLY.value: 12,
}

PLAN_FIELDS = set(SubscriptionPlan.model_fields) - {"plan_id", "created_at", "updated_at"}
SUBSCRIPTION_FIELDS = {
    "subscription_plan_id",
    "start_date",
    "end_date",
    "base_fee_override",
    "credits_remaining_this_period",
    "renews_on",
    "status",
}


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------

def _check_plan_rules(plan: Dict[str, Any]) -> None:
    if plan.get("pricing_model") == PricingModel.CONSUMPTION.value:
        missing = [
            f for f in ("credits_per_period", "price_per_credit", "product_usage_api")
            if plan.get(f) in (None, "")
        ]
        if missing:
            raise ValidationError(f"Consumption plans require: {', '.join(missing)}")
    pct = plan.get("prepayment_percentage")
    if pct is not None and not 0 <= pct <= 100:
        raise ValidationError("Prepayment percentage must be between 0 and 100")


async def _ensure_plan_name_free(name: str, exclude_plan_id: Optional[str] = None) -> None:
    db = database.get_db()
    query: Dict[str, Any] = {"name": {"$regex": f"^{re.escape(name.strip())}$", "$options": "i"}}
    if exclude_plan_id:
        query["plan_id"] = {"$ne": exclude_plan_id}
    if await db.subscription_plans.find_one(query, {"_id": 0, "plan_id": 1}):
        raise ConflictError("A subscription plan with this name already exists")


async def get_plan(plan_id: str) -> Dict[str, Any]:
    db = database.get_db()
    plan = await db.subscription_plans.find_one({"plan_id": plan_id}, {"_id": 0})
    if not plan:
        raise NotFoundError("Subscription plan not found")
    return plan


async def list_plans() -> List[Dict[str, Any]]:
    """Plans with the number of distinct clients subscribed to each."""
    db = database.get_db()
    plans = await db.subscription_plans.find({}, {"_id": 0}).sort("name", 1).to_list(500)
    usage = await db.client_subscriptions.aggregate([
        {"$group": {"_id": "$subscription_plan_id", "clients": {"$addToSet": "$client_id"}}},
        {"$project": {"client_count": {"$size": "$clients"}}},
    ]).to_list(500)
    counts = {row["_id"]: row["client_count"] for row in usage}
    return [{**plan, "client_count": counts.get(plan["plan_id"], 0)} for plan in plans]


async def create_plan(data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    if not (data.get("name") or "").strip():
        raise ValidationError("Plan name is required")
    _check_plan_rules(data)
    await _ensure_plan_name_free(data["name"])
    plan = SubscriptionPlan(**{k: v for k, v in data.items() if k in PLAN_FIELDS and v is not None})
    document = to_document(plan)
    await db.subscription_plans.insert_one(document)
    document.pop("_id", None)
    logger.info(f"Subscription plan created: {plan.plan_id} ({plan.name})")
    return document


async def update_plan(plan_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    current = await get_plan(plan_id)
    update = {k: v for k, v in data.items() if k in PLAN_FIELDS and v is not None}
    if "name" in update:
        await _ensure_plan_name_free(update["name"], exclude_plan_id=plan_id)
    merged = to_document(SubscriptionPlan(**{**current, **update}))
    _check_plan_rules(merged)
    update = {k: merged[k] for k in update}
    update["updated_at"] = datetime.now(timezone.utc)
    await db.subscription_plans.update_one({"plan_id": plan_id}, {"$set": update})
    return await get_plan(plan_id)


async def delete_plan(plan_id: str) -> None:
    db = database.get_db()
    await get_plan(plan_id)
    in_use = await db.client_subscriptions.count_documents({"subscription_plan_id": plan_id})
    if in_use:
        raise ConflictError(f"Plan is used by {in_use} client subscriptions and cannot be deleted")
    await db.subscription_plans.delete_one({"plan_id": plan_id})


# ---------------------------------------------------------------------------
# Client subscriptions
# ---------------------------------------------------------------------------

async def get_subscription(subscription_id: str) -> Dict[str, Any]:
    db = database.get_db()
    subscription = await db.client_subscriptions.find_one({"subscription_id": subscription_id}, {"_id": 0})
    if not subscription:
        raise NotFoundError("Client subscription not found")
    return subscription


async def list_subscriptions(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    client_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Paginated subscriptions with client and plan names.

    ``search`` matches company names and is ignored when ``client_id`` is given.
    """
    db = database.get_db()
    page = max(page, 1)
    skip = (page - 1) * limit
    query: Dict[str, Any] = {}

    if client_id:
        query["client_id"] = client_id
    elif search:
        matches = await db.clients.find(
            {"company_name": {"$regex": re.escape(search.strip()), "$options": "i"}},
            {"_id": 0, "client_id": 1},
        ).to_list(1000)
        if not matches:
            return {"subscriptions": [], "total_count": 0, "page": page, "total_pages": 0}
        query["client_id"] = {"$in": [c["client_id"] for c in matches]}

    total = await db.client_subscriptions.count_documents(query)
    subscriptions = await db.client_subscriptions.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)

    client_ids = list({s["client_id"] for s in subscriptions})
    plan_ids = list({s["subscription_plan_id"] for s in subscriptions})
    clients = await db.clients.find(
        {"client_id": {"$in": client_ids}}, {"_id": 0, "client_id": 1, "company_name": 1}
    ).to_list(len(client_ids) or 1)
    plans = await db.subscription_plans.find(
        {"plan_id": {"$in": plan_ids}}, {"_id": 0, "plan_id": 1, "name": 1}
    ).to_list(len(plan_ids) or 1)
    client_names = {c["client_id"]: c["company_name"] for c in clients}
    plan_names = {p["plan_id"]: p["name"] for p in plans}

    return {
        "subscriptions": [
            {
                **s,
                "client_name": client_names.get(s["client_id"], "Unknown Client"),
                "plan_name": plan_names.get(s["subscription_plan_id"], "Unknown Plan"),
            }
            for s in subscriptions
        ],
        "total_count": total,
        "page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


async def _activate(client_id: str, subscription_id: str, session) -> None:
    """Cancel the client's other active subscriptions and point the client at this one."""
    db = database.get_db()
    now = datetime.now(timezone.utc)
    await db.client_subscriptions.update_many(
        {
            "client_id": client_id,
            "status": SubscriptionStatus.ACTIVE.value,
            "subscription_id": {"$ne": subscription_id},
        },
        {"$set": {"status": SubscriptionStatus.CANCELLED.value, "updated_at": now}},
        session=session,
    )
    await db.clients.update_one(
        {"client_id": client_id},
        {"$set": {"active_subscription_id": subscription_id, "updated_at": now}},
        session=session,
    )


async def create_subscription(data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    for field in ("client_id", "subscription_plan_id", "start_date"):
        if not data.get(field):
            raise ValidationError(f"Missing required field: {field}")

    if not await db.clients.find_one({"client_id": data["client_id"]}, {"_id": 0, "client_id": 1}):
        raise NotFoundError("Client not found")
    plan = await get_plan(data["subscription_plan_id"])

    fields = {k: v for k, v in data.items() if k in SUBSCRIPTION_FIELDS and v is not None}
    if fields.get("credits_remaining_this_period") is None and plan.get("credits_per_period") is not None:
        fields["credits_remaining_this_period"] = plan["credits_per_period"]
    subscription = ClientSubscription(client_id=data["client_id"], **fields)
    document = to_document(subscription)

    async with database.transaction() as session:
        await db.client_subscriptions.insert_one(document, session=session)
        if subscription.status == SubscriptionStatus.ACTIVE:
            await _activate(subscription.client_id, subscription.subscription_id, session)

    document.pop("_id", None)
    logger.info(f"Subscription {subscription.subscription_id} assigned to client {subscription.client_id}")
    return document


async def update_subscription(subscription_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    current = await get_subscription(subscription_id)
    update = {k: v for k, v in data.items() if k in SUBSCRIPTION_FIELDS and v is not None}
    if "subscription_plan_id" in update:
        await get_plan(update["subscription_plan_id"])
    if "status" in update:
        update["status"] = SubscriptionStatus(update["status"]).value
    update["updated_at"] = datetime.now(timezone.utc)

    async with database.transaction() as session:
        await db.client_subscriptions.update_one(
            {"subscription_id": subscription_id}, {"$set": update}, session=session
        )
        if update.get("status") == SubscriptionStatus.ACTIVE.value:
            await _activate(current["client_id"], subscription_id, session)
        elif "status" in update:
            await db.clients.update_one(
                {"client_id": current["client_id"], "active_subscription_id": subscription_id},
                {"$set": {"active_subscription_id": None}},
                session=session,
            )
    return await get_subscription(subscription_id)


async def delete_subscription(subscription_id: str) -> None:
    db = database.get_db()
    current = await get_subscription(subscription_id)
    async with database.transaction() as session:
        await db.client_subscriptions.delete_one({"subscription_id": subscription_id}, session=session)
        await db.clients.update_one(
            {"client_id": current["client_id"], "active_subscription_id": subscription_id},
            {"$set": {"active_subscription_id": None}},
            session=session,
        )
    logger.info(f"Subscription {subscription_id} deleted for client {current['client_id']}")


# ---------------------------------------------------------------------------
# Client billing view
# ---------------------------------------------------------------------------

def next_billing_date(start_date: datetime, cadence: str, now: Optional[datetime] = None) -> datetime:
    """First billing anniversary strictly after ``now``."""
    now = now or datetime.now(timezone.utc)
    months = CADENCE_MONTHS.get(cadence, 1)
    start = as_utc(start_date)
    steps = 0
    candidate = start
    while candidate <= now:
        steps += 1
        candidate = add_months(start, months * steps)
    return candidate


async def get_client_subscription_summary(client_id: str) -> Dict[str, Any]:
    db = database.get_db()
    subscription = await db.client_subscriptions.find_one(
        {"client_id": client_id, "status": SubscriptionStatus.ACTIVE.value},
        {"_id": 0},
    )
    if not subscription:
        return {"subscription": None, "message": "No active subscription found"}

    plan = await db.subscription_plans.find_one({"plan_id": subscription["subscription_plan_id"]}, {"_id": 0})
    if not plan:
        return {
            "subscription": subscription,
            "plan_name": "Unknown Plan",
            "base_fee": subscription.get("base_fee_override") or 0,
            "message": "Subscription plan details not found",
        }

    start = as_utc(subscription["start_date"])
    contract_end = None
    if plan.get("contract_length_months"):
        contract_end = add_months(start, plan["contract_length_months"])

    base_fee = subscription.get("base_fee_override")
    if base_fee is None:
        base_fee = plan.get("cap_amount") or 0

    return {
        "subscription": subscription,
        "plan_name": plan["name"],
        "pricing_model": plan["pricing_model"],
        "base_fee": base_fee,
        "billing_cadence": plan["billing_cadence"],
        "next_billing_date": next_billing_date(start, plan["billing_cadence"]),
        "contract_end_date": contract_end,
        "status": subscription["status"],
    }
