"""
Subscription plans, client subscriptions and invoices.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import auth_headers, make_cursor
from services import invoice_service, subscription_service
from services.errors import ConflictError, NotFoundError, ValidationError

PLAN = {
    "plan_id": "plan-1",
    "name": "Growth",
    "pricing_model": "FIXED",
    "billing_cadence": "MONTHLY",
    "contract_length_months": 12,
    "cap_amount": 1500.0,
}


class TestBillingDates:

    def test_invoice_number_format(self):
        assert invoice_service.invoice_number(datetime(2025, 3, 7)) == "INV-2025-0307"

    def test_monthly_billing_clamps_to_month_end(self):
        start = datetime(2025, 1, 31, tzinfo=timezone.utc)
        now = datetime(2025, 2, 10, tzinfo=timezone.utc)
        assert subscription_service.next_billing_date(start, "MONTHLY", now=now) == datetime(2025, 2, 28, tzinfo=timezone.utc)

    def test_quarterly_billing_skips_past_anniversaries(self):
        start = datetime(2025, 1, 15)
        now = datetime(2025, 5, 1, tzinfo=timezone.utc)
        assert subscription_service.next_billing_date(start, "QUARTERLY", now=now) == datetime(2025, 7, 15, tzinfo=timezone.utc)

    def test_future_start_is_next_billing_date(self):
        start = datetime(2030, 6, 1, tzinfo=timezone.utc)
        now = datetime(2025, 5, 1, tzinfo=timezone.utc)
        assert subscription_service.next_billing_date(start, "YEARLY", now=now) == start


class TestPlans:

    @pytest.mark.asyncio
    async def test_consumption_plan_requires_credit_fields(self, mock_db):
        with pytest.raises(ValidationError) as exc:
            await subscription_service.create_plan({"name": "Usage", "pricing_model": "CONSUMPTION", "credits_per_period": 100})
        assert "price_per_credit" in str(exc.value)
        mock_db.subscription_plans.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_prepayment_percentage_is_bounded(self, mock_db):
        with pytest.raises(ValidationError):
            await subscription_service.create_plan({"name": "Odd", "pricing_model": "FIXED", "prepayment_percentage": 120})

    @pytest.mark.asyncio
    async def test_duplicate_plan_name_is_conflict(self, mock_db):
        mock_db.subscription_plans.find_one = AsyncMock(return_value={"plan_id": "plan-0"})
        with pytest.raises(ConflictError):
            await subscription_service.create_plan({"name": "growth", "pricing_model": "FIXED"})

    @pytest.mark.asyncio
    async def test_plan_in_use_cannot_be_deleted(self, mock_db):
        mock_db.subscription_plans.find_one = AsyncMock(return_value=PLAN)
        mock_db.client_subscriptions.count_documents = AsyncMock(return_value=2)
        with pytest.raises(ConflictError):
            await subscription_service.delete_plan("plan-1")
        mock_db.subscription_plans.delete_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_plans_counts_distinct_clients(self, mock_db):
        mock_db.subscription_plans.find.return_value = make_cursor([PLAN, {**PLAN, "plan_id": "plan-2", "name": "Scale"}])
        mock_db.client_subscriptions.aggregate.return_value = make_cursor([{"_id": "plan-1", "client_count": 3}])

        plans = await subscription_service.list_plans()

        assert [p["client_count"] for p in plans] == [3, 0]

    def test_create_plan_without_pricing_model_is_400(self, client, mock_db):
        r = client.post("/api/admin/subscription-plans", json={"name": "Growth"}, headers=auth_headers("ADMIN"))
        assert r.status_code == 400


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_active_subscription_cancels_other_active_ones(self, mock_db):
        mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-1"})
        mock_db.subscription_plans.find_one = AsyncMock(return_value={**PLAN, "credits_per_period": 40})

        subscription = await subscription_service.create_subscription({
            "client_id": "c-1",
            "subscription_plan_id": "plan-1",
            "start_date": datetime(2025, 1, 1, tzinfo=timezone.utc),
        })

        assert subscription["status"] == "ACTIVE"
        assert subscription["credits_remaining_this_period"] == 40
        query, update = mock_db.client_subscriptions.update_many.call_args.args
        assert query["client_id"] == "c-1"
        assert query["subscription_id"] == {"$ne": subscription["subscription_id"]}
        assert update["$set"]["status"] == "CANCELLED"
        _, client_update = mock_db.clients.update_one.call_args.args
        assert client_update["$set"]["active_subscription_id"] == subscription["subscription_id"]

    @pytest.mark.asyncio
    async def test_cancelled_subscription_does_not_touch_others(self, mock_db):
        mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-1"})
        mock_db.subscription_plans.find_one = AsyncMock(return_value=PLAN)

        await subscription_service.create_subscription({
            "client_id": "c-1",
            "subscription_plan_id": "plan-1",
            "start_date": datetime(2025, 1, 1, tzinfo=timezone.utc),
            "status": "CANCELLED",
        })

        mock_db.client_subscriptions.update_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_start_date_is_rejected(self, mock_db):
        with pytest.raises(ValidationError):
            await subscription_service.create_subscription({"client_id": "c-1", "subscription_plan_id": "plan-1"})

    @pytest.mark.asyncio
    async def test_unknown_client_is_not_found(self, mock_db):
        with pytest.raises(NotFoundError):
            await subscription_service.create_subscription({
                "client_id": "nope", "subscription_plan_id": "plan-1", "start_date": datetime(2025, 1, 1),
            })

    @pytest.mark.asyncio
    async def test_summary_without_active_subscription(self, mock_db):
        summary = await subscription_service.get_client_subscription_summary("c-1")
        assert summary["subscription"] is None

    @pytest.mark.asyncio
    async def test_summary_uses_plan_cap_when_no_override(self, mock_db):
        mock_db.client_subscriptions.find_one = AsyncMock(return_value={
            "subscription_id": "s-1", "client_id": "c-1", "subscription_plan_id": "plan-1",
            "start_date": datetime(2025, 1, 1, tzinfo=timezone.utc), "status": "ACTIVE",
            "base_fee_override": None,
        })
        mock_db.subscription_plans.find_one = AsyncMock(return_value=PLAN)

        summary = await subscription_service.get_client_subscription_summary("c-1")

        assert summary["plan_name"] == "Growth"
        assert summary["base_fee"] == 1500.0
        assert summary["contract_end_date"] == datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestInvoices:

    INVOICE = {
        "client_id": "c-1",
        "client_subscription_id": "s-1",
        "invoice_date": datetime(2025, 3, 1, tzinfo=timezone.utc),
        "due_date": datetime(2025, 3, 31, tzinfo=timezone.utc),
        "amount_billed": 1500.0,
        "status": "SENT",
    }

    @pytest.mark.asyncio
    async def test_missing_amount_is_rejected(self, mock_db):
        data = {k: v for k, v in self.INVOICE.items() if k != "amount_billed"}
        with pytest.raises(ValidationError):
            await invoice_service.create_invoice(data)

    @pytest.mark.asyncio
    async def test_subscription_of_another_client_is_rejected(self, mock_db):
        mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-1"})
        mock_db.client_subscriptions.find_one = AsyncMock(return_value={"client_id": "c-2"})
        with pytest.raises(ValidationError):
            await invoice_service.create_invoice(self.INVOICE)
        mock_db.invoices.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_invoice(self, mock_db):
        mock_db.clients.find_one = AsyncMock(return_value={"client_id": "c-1"})
        mock_db.client_subscriptions.find_one = AsyncMock(return_value={"client_id": "c-1"})

        invoice = await invoice_service.create_invoice(self.INVOICE)

        assert invoice["status"] == "SENT"
        assert invoice["amount_billed"] == 1500.0
        mock_db.invoices.insert_one.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_client_invoices_carry_display_numbers(self, mock_db):
        mock_db.invoices.find.return_value = make_cursor([{**self.INVOICE, "invoice_id": "i-1"}])

        invoices = await invoice_service.list_client_invoices("c-1")

        assert invoices[0]["invoice_number"] == "INV-2025-0301"
        assert "client_subscription_id" not in invoices[0]

    @pytest.mark.asyncio
    async def test_payment_method_comes_from_latest_invoice(self, mock_db):
        mock_db.invoices.find_one = AsyncMock(return_value={"payment_method_info": "Visa 4242"})
        assert await invoice_service.get_payment_method("c-1") == "Visa 4242"
        _, kwargs = mock_db.invoices.find_one.call_args
        assert kwargs["sort"] == [("invoice_date", -1)]
