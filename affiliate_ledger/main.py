from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from affiliate_ledger.config import settings
from affiliate_ledger.api.v1.router import api_router
from affiliate_ledger.core.exceptions import LedgerError
from affiliate_ledger.database import init_db
from affiliate_ledger.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create tables
    - Start background scheduler
    """
    # Startup
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    # Start background job scheduler
    start_scheduler()

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Commissions", "description": "Commission calculation, status lifecycle, clawbacks and adjustments"},
    {"name": "Health", "description": "Service and scheduler health"},
]

FULL_API_DESCRIPTION = """
## Affiliate Commission Ledger API

Tracks commissions earned by affiliate marketers from customer conversions.

### Lifecycle

| Status | Next |
|--------|------|
| **pending** | approved, rejected |
| **approved** | paid, clawed_back |
| **paid** | clawed_back |
| **rejected** | terminal |
| **clawed_back** | terminal |

Pending commissions are approved automatically once their clearance period
has elapsed.

### Admin Actions

Admin-initiated writes are audited with the id passed in the `X-Admin-Id` header.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - Business rule violation |
| 404 | Not Found - Resource doesn't exist |
| 409 | Conflict - Duplicate commission or invalid status transition |
| 422 | Unprocessable Entity - Validation failed |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    """Map ledger errors to their HTTP status code."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            **exc.details,
            "detail": exc.message,
            "error": type(exc).__name__,
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone
    from affiliate_ledger.database import engine

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = "unhealthy"

    return health_status


@app.get("/health/jobs", tags=["Health"])
async def job_status():
    """Scheduled background jobs and their next run."""
    return {"jobs": get_job_status()}
