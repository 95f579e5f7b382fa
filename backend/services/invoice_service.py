from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from database import database
from models import Invoice, InvoiceStatus, to_document
from services.errors import NotFoundError, ValidationError
from utils.periods import as_utc

logger = logging.getLogger(__name__)

INVOICE_FIELDS = {
    "client_subscription_id",
    "invoice_date",
    "due_date",
    "payment_method_info",
    "amount_billed",
    "status",
    "notes",
}
REQUIRED_FIELDS = ("client_id", "client_subscription_id", "invoice_date", "due_date", "amount_billed", "status")


def invoice_number(invoice_date: datetime) -> str:
    """Display number in the ``INV-YYYY-MMDD`` form."""
    return f"INV-{invoice_date.year}-{invoice_date.month:02d}{invoice_date.day:02d}"


async def _ensure_subscription_belongs(client_id: str, subscription_id: str) -> None:
    db = database.get_db()
    subscription = await db.client_subscriptions.find_one(
        {"subscription_id": subscription_id}, {"_id": 0, "client_id": 1}
    )
    if not subscription:
        raise NotFoundError("Client subscription not found")
    if subscription["client_id"] != client_id:
        raise ValidationError("Subscription does not belong to this client")


async def get_invoice(invoice_id: str) -> Dict[str, Any]:
    db = database.get_db()
    invoice = await db.invoices.find_one({"invoice_id": invoice_id}, {"_id": 0})
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


async def list_invoices(client_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """All invoices, newest first, with the client's company name."""
    db = database.get_db()
    query: Dict[str, Any] = {}
    if client_id:
        query["client_id"] = client_id
    if status:
        query["status"] = InvoiceStatus(status.upper()).value

    invoices = await db.invoices.find(query, {"_id": 0}).sort("invoice_date", -1).to_list(5000)
    client_ids = list({i["client_id"] for i in invoices})
    clients = await db.clients.find(
        {"client_id": {"$in": client_ids}}, {"_id": 0, "client_id": 1, "company_name": 1}
    ).to_list(len(client_ids) or 1)
    names = {c["client_id"]: c["company_name"] for c in clients}
    return [{**i, "client_name": names.get(i["client_id"], "Unknown Client")} for i in invoices]


async def create_invoice(data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    for field in REQUIRED_FIELDS:
        if data.get(field) in (None, ""):
            raise ValidationError(f"Missing required field: {field}")

    if not await db.clients.find_one({"client_id": data["client_id"]}, {"_id": 0, "client_id": 1}):
        raise NotFoundError("Client not found")
    await _ensure_subscription_belongs(data["client_id"], data["client_subscription_id"])

    invoice = Invoice(client_id=data["client_id"], **{k: v for k, v in data.items() if k in INVOICE_FIELDS and v is not None})
    document = to_document(invoice)
    await db.invoices.insert_one(document)
    document.pop("_id", None)
    logger.info(f"Invoice {invoice.invoice_id} created for client {invoice.client_id}")
    return document


async def update_invoice(invoice_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    db = database.get_db()
    current = await get_invoice(invoice_id)
    update = {k: v for k, v in data.items() if k in INVOICE_FIELDS and v is not None}
    if "client_subscription_id" in update:
        await _ensure_subscription_belongs(current["client_id"], update["client_subscription_id"])
    if "status" in update:
        update["status"] = InvoiceStatus(update["status"]).value
    update["updated_at"] = datetime.now(timezone.utc)
    await db.invoices.update_one({"invoice_id": invoice_id}, {"$set": update})
    return await get_invoice(invoice_id)


async def delete_invoice(invoice_id: str) -> Dict[str, Any]:
    db = database.get_db()
    invoice = await get_invoice(invoice_id)
    await db.invoices.delete_one({"invoice_id": invoice_id})
    return invoice


async def list_client_invoices(client_id: str, limit: int = 5) -> List[Dict[str, Any]]:
    """Most recent invoices for the client portal."""
    db = database.get_db()
    invoices = await db.invoices.find({"client_id": client_id}, {"_id": 0}).sort("invoice_date", -1).limit(limit).to_list(limit)
    return [
        {
            "invoice_id": i["invoice_id"],
            "invoice_number": invoice_number(as_utc(i["invoice_date"])),
            "invoice_date": i["invoice_date"],
            "due_date": i["due_date"],
            "amount_billed": i["amount_billed"],
            "status": i["status"],
        }
        for i in invoices
    ]


async def get_payment_method(client_id: str) -> Optional[str]:
    """Payment details recorded on the client's latest invoice."""
    db = database.get_db()
    latest = await db.invoices.find_one(
        {"client_id": client_id, "payment_method_info": {"$nin": [None, ""]}},
        {"_id": 0, "payment_method_info": 1},
        sort=[("invoice_date", -1)],
    )
    return latest["payment_method_info"] if latest else None
