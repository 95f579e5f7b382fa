from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    @asynccontextmanager
    async def transaction(self):
        """Yield a client session inside a started multi-document transaction.

        Commits when the block exits cleanly and aborts on any exception.
        Requires a replica set or sharded cluster.

        Usage:
            async with database.transaction() as session:
                await db.clients.insert_one(doc, session=session)
        """
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def _create_indexes(self):
        """Create MongoDB indexes for efficient queries."""
        try:
            # Clients - company name is the human key
            await self.db.clients.create_index("client_id", unique=True)
            try:
                await self.db.clients.create_index("company_name", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.clients.create_index("status")
            await self.db.clients.create_index("assigned_solutions_engineer_ids")

            # Users
            await self.db.users.create_index("user_id", unique=True)
            try:
                await self.db.users.create_index("email", unique=True)
            except Exception:
                pass
            await self.db.users.create_index([("role", 1), ("name", 1)])
            await self.db.users.create_index("client_id")

            await self.db.departments.create_index("department_id", unique=True)
            await self.db.departments.create_index("name")

            # Workflows and their event streams
            await self.db.workflows.create_index("workflow_id", unique=True)
            await self.db.workflows.create_index([("client_id", 1), ("name", 1)])
            await self.db.workflows.create_index([("status", 1), ("created_at", 1)])
            for collection, key in (
                ("workflow_executions", "execution_id"),
                ("workflow_exceptions", "exception_id"),
                ("workflow_nodes", "node_id"),
            ):
                try:
                    await self.db[collection].create_index(key, unique=True)
                except Exception:
                    pass
                await self.db[collection].create_index([("client_id", 1), ("workflow_id", 1), ("created_at", -1)])
                await self.db[collection].create_index([("workflow_id", 1), ("status", 1)])

            # Billing
            await self.db.subscription_plans.create_index("plan_id", unique=True)
            try:
                await self.db.subscription_plans.create_index("name", unique=True)
            except Exception:
                pass
            await self.db.client_subscriptions.create_index("subscription_id", unique=True)
            await self.db.client_subscriptions.create_index([("client_id", 1), ("status", 1)])
            await self.db.client_subscriptions.create_index("subscription_plan_id")
            await self.db.invoices.create_index("invoice_id", unique=True)
            await self.db.invoices.create_index([("client_id", 1), ("invoice_date", -1)])
            await self.db.invoices.create_index([("status", 1), ("invoice_date", 1)])
            await self.db.client_credits.create_index("credit_id", unique=True)
            await self.db.client_credits.create_index([("client_id", 1), ("applied_at", -1)])

            # Credentials - one record per service per client
            await self.db.credentials.create_index("credential_id", unique=True)
            try:
                await self.db.credentials.create_index([("client_id", 1), ("service_name", 1)], unique=True)
            except Exception:
                pass

            # Audit log indexes - for timeline queries
            await self.db.audit_logs.create_index([("client_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index("timestamp")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()

