"""
Admin billing routes: subscription plans, client subscriptions, invoices
and the client credit ledger. ADMIN only.
"""
from fastapi import APIRouter, HTTPException, Request, Depends, status, Query
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from middleware import admin_route_guard
from models import (
    AuditAction,
    BillingCadence,
    CreditTransactionType,
    InvoiceStatus,
    PricingModel,
    ProductUsageApi,
    SubscriptionStatus,
)
from services import invoice_service, subscription_service
from services.credit_service import credit_service
from services.errors import ServiceError
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin-billing"], dependencies=[Depends(admin_route_guard)])


class PlanRequest(BaseModel):
    name: Optional[str] = None
    pricing_model: Optional[PricingModel] = None
    contract_length_months: Optional[int] = None
    billing_cadence: Optional[BillingCadence] = None
    setup_fee: Optional[float] = None
    prepayment_percentage: Optional[float] = None
    cap_amount: Optional[float] = None
    overage_cost: Optional[float] = None
    credits_per_period: Optional[int] = None
    price_per_credit: Optional[float] = None
    product_usage_api: Optional[ProductUsageApi] = None


class SubscriptionRequest(BaseModel):
    client_id: Optional[str] = None
    subscription_plan_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    base_fee_override: Optional[float] = None
    credits_remaining_this_period: Optional[int] = None
    renews_on: Optional[datetime] = None
    status: Optional[SubscriptionStatus] = None


class InvoiceRequest(BaseModel):
    client_id: Optional[str] = None
    client_subscription_id: Optional[str] = None
    invoice_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    payment_method_info: Optional[str] = None
    amount_billed: Optional[float] = None
    status: Optional[InvoiceStatus] = None
    notes: Optional[str] = None


class CreditRequest(BaseModel):
    amount: Optional[float] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


def _values(body: BaseModel) -> dict:
    """Request fields that were supplied, with enums as their stored values."""
    data = body.model_dump(exclude_none=True)
    return {k: (v.value if hasattr(v, "value") else v) for k, v in data.items()}


# ============================================================================
# SUBSCRIPTION PLANS
# ============================================================================

@router.get("/subscription-plans")
async def list_plans():
    """Plans with the number of clients subscribed to each."""
    try:
        return {"plans": await subscription_service.list_plans()}
    except Exception as e:
        logger.error(f"List plans error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load subscription plans"
        )


@router.post("/subscription-plans", status_code=status.HTTP_201_CREATED)
async def create_plan(request: Request, body: PlanRequest):
    admin = await admin_route_guard(request)
    if not body.name or not body.pricing_model:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Plan name and pricing model are required"
        )
    try:
        plan = await subscription_service.create_plan(_values(body))
        await create_audit_log(
            action=AuditAction.PLAN_CREATED,
            actor=admin,
            resource_type="subscription_plan",
            resource_id=plan["plan_id"],
            after_state=plan,
        )
        return plan
    except ServiceError as e:
        raise e.to_http()


@router.get("/subscription-plans/{plan_id}")
async def get_plan(plan_id: str):
    try:
        return await subscription_service.get_plan(plan_id)
    except ServiceError as e:
        raise e.to_http()


@router.put("/subscription-plans/{plan_id}")
async def update_plan(request: Request, plan_id: str, body: PlanRequest):
    admin = await admin_route_guard(request)
    try:
        before = await subscription_service.get_plan(plan_id)
        plan = await subscription_service.update_plan(plan_id, _values(body))
        await create_audit_log(
            action=AuditAction.PLAN_UPDATED,
            actor=admin,
            resource_type="subscription_plan",
            resource_id=plan_id,
            before_state=before,
            after_state=plan,
        )
        return plan
    except ServiceError as e:
        raise e.to_http()


@router.delete("/subscription-plans/{plan_id}")
async def delete_plan(request: Request, plan_id: str):
    admin = await admin_route_guard(request)
    try:
        await subscription_service.delete_plan(plan_id)
        await create_audit_log(
            action=AuditAction.PLAN_DELETED,
            actor=admin,
            resource_type="subscription_plan",
            resource_id=plan_id,
        )
        return {"message": "Subscription plan deleted"}
    except ServiceError as e:
        raise e.to_http()


# ============================================================================
# CLIENT SUBSCRIPTIONS
# ============================================================================

@router.get("/client-subscriptions")
async def list_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    client_id: Optional[str] = None,
):
    try:
        return await subscription_service.list_subscriptions(page=page, limit=limit, search=search, client_id=client_id)
    except Exception as e:
        logger.error(f"List subscriptions error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load client subscriptions"
        )


@router.post("/client-subscriptions", status_code=status.HTTP_201_CREATED)
async def create_subscription(request: Request, body: SubscriptionRequest):
    """Assign a plan to a client. An ACTIVE subscription replaces the client's current one."""
    admin = await admin_route_guard(request)
    try:
        subscription = await subscription_service.create_subscription(_values(body))
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_ASSIGNED,
            actor=admin,
            client_id=subscription["client_id"],
            resource_type="client_subscription",
            resource_id=subscription["subscription_id"],
            after_state=subscription,
        )
        return subscription
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Create subscription error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create client subscription"
        )


@router.get("/client-subscriptions/{subscription_id}")
async def get_subscription(subscription_id: str):
    try:
        return await subscription_service.get_subscription(subscription_id)
    except ServiceError as e:
        raise e.to_http()


@router.put("/client-subscriptions/{subscription_id}")
async def update_subscription(request: Request, subscription_id: str, body: SubscriptionRequest):
    admin = await admin_route_guard(request)
    data = _values(body)
    data.pop("client_id", None)
    try:
        before = await subscription_service.get_subscription(subscription_id)
        subscription = await subscription_service.update_subscription(subscription_id, data)
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_UPDATED,
            actor=admin,
            client_id=subscription["client_id"],
            resource_type="client_subscription",
            resource_id=subscription_id,
            before_state=before,
            after_state=subscription,
        )
        return subscription
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Update subscription error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update client subscription"
        )


@router.delete("/client-subscriptions/{subscription_id}")
async def delete_subscription(request: Request, subscription_id: str):
    admin = await admin_route_guard(request)
    try:
        await subscription_service.delete_subscription(subscription_id)
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_DELETED,
            actor=admin,
            resource_type="client_subscription",
            resource_id=subscription_id,
        )
        return {"message": "Client subscription deleted"}
    except ServiceError as e:
        raise e.to_http()


# ============================================================================
# INVOICES
# ============================================================================

@router.get("/invoices")
async def list_invoices(client_id: Optional[str] = None, invoice_status: Optional[InvoiceStatus] = Query(None, alias="status")):
    try:
        invoices = await invoice_service.list_invoices(
            client_id=client_id,
            status=invoice_status.value if invoice_status else None,
        )
        return {"invoices": invoices, "total": len(invoices)}
    except Exception as e:
        logger.error(f"List invoices error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load invoices"
        )


@router.post("/invoices", status_code=status.HTTP_201_CREATED)
async def create_invoice(request: Request, body: InvoiceRequest):
    admin = await admin_route_guard(request)
    try:
        invoice = await invoice_service.create_invoice(_values(body))
        await create_audit_log(
            action=AuditAction.INVOICE_CREATED,
            actor=admin,
            client_id=invoice["client_id"],
            resource_type="invoice",
            resource_id=invoice["invoice_id"],
            after_state=invoice,
        )
        return invoice
    except ServiceError as e:
        raise e.to_http()


@router.get("/invoices/{invoice_id}")
async def get_invoice(invoice_id: str):
    try:
        return await invoice_service.get_invoice(invoice_id)
    except ServiceError as e:
        raise e.to_http()


@router.put("/invoices/{invoice_id}")
async def update_invoice(request: Request, invoice_id: str, body: InvoiceRequest):
    admin = await admin_route_guard(request)
    data = _values(body)
    data.pop("client_id", None)
    try:
        before = await invoice_service.get_invoice(invoice_id)
        invoice = await invoice_service.update_invoice(invoice_id, data)
        await create_audit_log(
            action=AuditAction.INVOICE_UPDATED,
            actor=admin,
            client_id=invoice["client_id"],
            resource_type="invoice",
            resource_id=invoice_id,
            before_state=before,
            after_state=invoice,
        )
        return invoice
    except ServiceError as e:
        raise e.to_http()


@router.delete("/invoices/{invoice_id}")
async def delete_invoice(request: Request, invoice_id: str):
    admin = await admin_route_guard(request)
    try:
        invoice = await invoice_service.delete_invoice(invoice_id)
        await create_audit_log(
            action=AuditAction.INVOICE_DELETED,
            actor=admin,
            client_id=invoice["client_id"],
            resource_type="invoice",
            resource_id=invoice_id,
            before_state=invoice,
        )
        return {"message": "Invoice deleted"}
    except ServiceError as e:
        raise e.to_http()


# ============================================================================
# CREDITS
# ============================================================================

@router.get("/clients/{client_id}/credits")
async def get_credit_history(
    client_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    try:
        return await credit_service.get_history(client_id, page=page, limit=limit)
    except Exception as e:
        logger.error(f"Credit history error for client {client_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load credit history"
        )


async def _apply(request: Request, client_id: str, body: CreditRequest, transaction_type: CreditTransactionType):
    admin = await admin_route_guard(request)
    try:
        result = await credit_service.apply(
            client_id,
            body.amount,
            body.reason,
            applied_by=admin["user_id"],
            transaction_type=transaction_type,
            notes=body.notes,
        )
        await create_audit_log(
            action=AuditAction.CREDIT_APPLIED if transaction_type == CreditTransactionType.CREDIT else AuditAction.DEBIT_APPLIED,
            actor=admin,
            client_id=client_id,
            resource_type="client_credit",
            resource_id=result["transaction"]["credit_id"],
            metadata={
                "amount": body.amount,
                "previous_balance": result["previous_balance"],
                "new_balance": result["new_credit_balance"],
            },
        )
        return result
    except ServiceError as e:
        raise e.to_http()
    except Exception as e:
        logger.error(f"Apply {transaction_type.value} error for client {client_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to apply credit"
        )


@router.post("/clients/{client_id}/credits")
async def apply_credit(request: Request, client_id: str, body: CreditRequest):
    """Add credit to a client's balance."""
    return await _apply(request, client_id, body, CreditTransactionType.CREDIT)


@router.post("/clients/{client_id}/debits")
async def apply_debit(request: Request, client_id: str, body: CreditRequest):
    """Deduct from a client's balance."""
    return await _apply(request, client_id, body, CreditTransactionType.DEBIT)
