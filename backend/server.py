from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import (
    auth,
    admin_clients,
    admin_users,
    admin_departments,
    admin_billing,
    admin_exceptions,
    admin_dashboard,
    client,
    external,
)

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Automation Back Office API")
    await database.connect()

    if not os.getenv("API_KEY"):
        logger.warning("API_KEY is not set. External workflow ingestion will reject every request.")
    if not os.getenv("CREDENTIALS_ENCRYPTION_KEY"):
        logger.warning("CREDENTIALS_ENCRYPTION_KEY is not set. Saving client credentials will fail.")

    # Idempotent first ADMIN when BOOTSTRAP_ADMIN_EMAIL + BOOTSTRAP_ADMIN_PASSWORD are set
    bootstrap_email = (os.environ.get("BOOTSTRAP_ADMIN_EMAIL") or "").strip()
    bootstrap_password = (os.environ.get("BOOTSTRAP_ADMIN_PASSWORD") or "").strip()
    if bootstrap_email and bootstrap_password:
        try:
            from services.admin_bootstrap import run_bootstrap_admin
            result = await run_bootstrap_admin()
            logger.info("Bootstrap admin: %s - %s", result.get("action"), result.get("message"))
        except Exception as e:
            logger.warning("Bootstrap admin failed: %s", e)

    yield

    # Shutdown
    logger.info("Shutting down Automation Back Office API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Automation Back Office API",
    description="Clients, workflows, billing and reporting for managed automation",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(admin_clients.router)
app.include_router(admin_users.router)
app.include_router(admin_departments.router)
app.include_router(admin_billing.router)
app.include_router(admin_exceptions.router)
app.include_router(admin_dashboard.router)
app.include_router(client.router)
app.include_router(external.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Automation Back Office",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Version/build stamp for deployment verification (commit SHA set by CI/CD)
@app.get("/api/version")
async def version_info():
    return {
        "commit_sha": os.getenv("GIT_COMMIT_SHA", os.getenv("BUILD_SHA", "unknown")),
        "environment": os.getenv("ENVIRONMENT", "development"),
    }

# Validation error handler: request_id lets a client report the failing call
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    """Pydantic error dicts may carry exception objects under ``ctx``."""
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
