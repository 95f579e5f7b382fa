"""
Idempotent demo seed: first ADMIN (from BOOTSTRAP_ADMIN_* or SEED_ADMIN_*), one
solutions engineer, a demo client with users, a plan, a subscription and some
workflow activity. Local/dev only.

Usage (from backend/):
  python seed.py
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# Demo accounts; override with SEED_* env vars
SEED_ADMIN_EMAIL = os.environ.get("SEED_ADMIN_EMAIL", "admin@example.com")
SEED_ADMIN_PASSWORD = os.environ.get("SEED_ADMIN_PASSWORD", "Admin123!")
SEED_ENGINEER_EMAIL = os.environ.get("SEED_ENGINEER_EMAIL", "engineer@example.com")
SEED_CLIENT_EMAIL = os.environ.get("SEED_CLIENT_EMAIL", "owner@acme.example.com")
SEED_PASSWORD = os.environ.get("SEED_PASSWORD", "Demo1234!")

DEMO_CLIENT = "Acme Demo Co"
DEMO_PLAN = "Demo Fixed Monthly"


async def seed_database():
    from database import database
    from models import BillingCadence, InvoiceStatus, PricingModel, UserRole
    from services import client_service, invoice_service, subscription_service, user_service, workflow_event_service, workflow_service
    from services.admin_bootstrap import run_bootstrap_admin
    from services.credit_service import credit_service

    await database.connect()
    db = database.get_db()
    print("Seeding database (idempotent)...")

    try:
        # 1) ADMIN
        os.environ.setdefault("BOOTSTRAP_ADMIN_EMAIL", SEED_ADMIN_EMAIL)
        os.environ.setdefault("BOOTSTRAP_ADMIN_PASSWORD", SEED_ADMIN_PASSWORD)
        result = await run_bootstrap_admin()
        print(f"  ADMIN: {result['action']} - {result['message']}")
        admin = await db.users.find_one({"role": UserRole.ADMIN.value}, {"_id": 0})

        if await db.clients.find_one({"company_name": DEMO_CLIENT}, {"_id": 0, "client_id": 1}):
            print(f"  {DEMO_CLIENT} already exists, nothing else to do")
            return

        # 2) Solutions engineer
        engineer = await db.users.find_one({"email": SEED_ENGINEER_EMAIL}, {"_id": 0})
        if not engineer:
            engineer = await user_service.create_engineer({
                "name": "Demo Engineer",
                "email": SEED_ENGINEER_EMAIL,
                "password": SEED_PASSWORD,
                "cost_rate": 60,
                "bill_rate": 150,
            })
        print(f"  Engineer: {engineer['email']}")

        # 3) Client with a client admin, assigned to the engineer
        client = await client_service.create_client(
            {"company_name": DEMO_CLIENT, "industry": "Logistics", "contact_name": "Dana Demo"},
            [{
                "name": "Dana Demo",
                "email": SEED_CLIENT_EMAIL,
                "password": SEED_PASSWORD,
                "is_client_admin": True,
                "has_billing_access": True,
            }],
            [engineer["user_id"]],
        )
        client_id = client["client_id"]
        await client_service.update_client(client_id, {"status": "ACTIVE"})
        print(f"  Client: {DEMO_CLIENT} ({client_id})")

        # 4) Plan, subscription, invoice, credit
        plan = await db.subscription_plans.find_one({"name": DEMO_PLAN}, {"_id": 0})
        if not plan:
            plan = await subscription_service.create_plan({
                "name": DEMO_PLAN,
                "pricing_model": PricingModel.FIXED.value,
                "billing_cadence": BillingCadence.MONTHLY.value,
                "contract_length_months": 12,
                "cap_amount": 2500,
            })
        now = datetime.now(timezone.utc)
        subscription = await subscription_service.create_subscription({
            "client_id": client_id,
            "subscription_plan_id": plan["plan_id"],
            "start_date": now - timedelta(days=45),
        })
        await invoice_service.create_invoice({
            "client_id": client_id,
            "client_subscription_id": subscription["subscription_id"],
            "invoice_date": now - timedelta(days=10),
            "due_date": now + timedelta(days=20),
            "amount_billed": 2500,
            "status": InvoiceStatus.PAID.value,
            "payment_method_info": "Visa ending 4242",
        })
        await credit_service.apply(client_id, 250, "Onboarding goodwill", applied_by=admin["user_id"] if admin else None)

        # 5) Workflow with a node, executions and one exception
        workflow = await workflow_service.create_workflow(client_id, {
            "name": "Invoice Intake",
            "description": "Reads supplier invoices and posts them to the ledger",
            "time_saved_per_execution": 12,
            "money_saved_per_execution": 9.5,
        })
        base = {"workflow_name": workflow["name"], "client_id": client_id}
        await workflow_event_service.record_node({**base, "node_id": "demo-node-1", "node_name": "Parse PDF", "node_type": "parser"})
        for i in range(5):
            await workflow_event_service.record_execution({**base, "execution_id": f"demo-exec-{i}", "duration": 1200 + i * 100})
        await workflow_event_service.record_exception({
            **base,
            "exception_id": "demo-exc-1",
            "exception_type": "Authentication",
            "severity": "HIGH",
            "remedy": "Reconnect the ledger credentials",
        })
        print("  Workflow activity seeded")

        print("Seed complete.")
    finally:
        await database.close()


if __name__ == "__main__":
    asyncio.run(seed_database())
