"""Client credit ledger.

Handles:
- Applying credits and debits to a client's balance
- Recording each entry with the running balance after it
- Paginated history for admins
- Balance summary for the client portal
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from pymongo import ReturnDocument

from database import database
from models import ClientCredit, CreditTransactionType, to_document
from services.errors import NotFoundError, ValidationError
from utils.periods import first_of_next_month

logger = logging.getLogger(__name__)


class CreditService:
    """Running-balance bookkeeping for client credits."""

    def _get_db(self):
        return database.get_db()

    async def apply(
        self,
        client_id: str,
        amount: Any,
        reason: Optional[str],
        applied_by: Optional[str],
        transaction_type: CreditTransactionType = CreditTransactionType.CREDIT,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply a credit or debit and record it in the ledger.

        The client balance moves by exactly ``amount`` (positive for credits,
        negative for debits); the ledger entry stores the balance after the move.
        """
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise ValidationError("Credit amount must be a positive number")
        if math.isnan(amount) or amount <= 0:
            raise ValidationError("Credit amount must be a positive number")
        if not reason or not reason.strip():
            raise ValidationError("Reason for credit is required")

        db = self._get_db()
        delta = amount if transaction_type == CreditTransactionType.CREDIT else -amount
        now = datetime.now(timezone.utc)

        async with database.transaction() as session:
            client = await db.clients.find_one_and_update(
                {"client_id": client_id},
                {"$inc": {"credit_balance": delta}, "$set": {"last_credit_update": now}},
                projection={"_id": 0, "client_id": 1, "credit_balance": 1},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if not client:
                raise NotFoundError("Client not found")

            new_balance = client["credit_balance"]
            entry = ClientCredit(
                client_id=client_id,
                amount=amount,
                reason=reason.strip(),
                applied_by=applied_by,
                applied_at=now,
                transaction_type=transaction_type,
                balance=new_balance,
                notes=notes or "",
            )
            document = to_document(entry)
            await db.client_credits.insert_one(document, session=session)

        document.pop("_id", None)
        logger.info(f"{transaction_type.value} of {amount} applied to client {client_id}, balance now {new_balance}")
        return {
            "new_credit_balance": new_balance,
            "previous_balance": new_balance - delta,
            "transaction": document,
        }

    async def get_history(self, client_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        db = self._get_db()
        page = max(page, 1)
        query = {"client_id": client_id}
        total = await db.client_credits.count_documents(query)
        history = await db.client_credits.find(query, {"_id": 0}).sort("applied_at", -1).skip((page - 1) * limit).limit(limit).to_list(limit)
        return {
            "credit_history": history,
            "total_count": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if limit else 0,
        }

    async def get_balance_summary(self, client_id: str) -> Dict[str, Any]:
        """Balance derived from the ledger: credits minus debits."""
        db = self._get_db()
        latest = await db.client_credits.find_one(
            {"client_id": client_id}, {"_id": 0}, sort=[("applied_at", -1)]
        )
        if not latest:
            return {"balance": 0, "renewal_date": None, "last_transaction": None}

        totals = await db.client_credits.aggregate([
            {"$match": {"client_id": client_id}},
            {"$group": {
                "_id": None,
                "total": {"$sum": {"$cond": [
                    {"$eq": ["$transaction_type", CreditTransactionType.CREDIT.value]},
                    "$amount",
                    {"$multiply": ["$amount", -1]},
                ]}},
            }},
        ]).to_list(1)

        return {
            "balance": totals[0]["total"] if totals else 0,
            "renewal_date": first_of_next_month(),
            "last_transaction": latest,
        }


# Singleton instance
credit_service = CreditService()
