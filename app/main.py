from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.api.deps import DB
from app.api.v1.router import api_router
from app.core.exceptions import InventoryError
from app.database import init_db


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup when AUTO_CREATE_TABLES is on; production runs alembic."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if settings.AUTO_CREATE_TABLES:
        await init_db()

    yield

    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Inventory", "description": "Units, branch items, ledger movements, on-hand and stock levels"},
    {"name": "Stock Transfers", "description": "Branch-to-branch transfers as paired ledger movements"},
    {"name": "Stock Counts", "description": "Physical counts, submission and approval into the ledger"},
    {"name": "Variance Analytics", "description": "Consumption variance, count variance history, alerts and root-cause tags"},
    {"name": "Audit Logs", "description": "Who changed what, written with the change itself"},
]

FULL_API_DESCRIPTION = """
## Restaurant Inventory Ledger API

Per-branch stock for restaurants, kept as an **append-only movement ledger**.
On-hand is always derived from the ledger; nothing stores it.

### Core Modules

| Module | Description |
|--------|-------------|
| **Ledger** | Receipts, adjustments, waste, opening stock |
| **Transfers** | Atomic TRANSFER_OUT / TRANSFER_IN pairs |
| **Stock Counts** | DRAFT -> SUBMITTED -> APPROVED / CANCELLED |
| **Reconciliation** | Approved count variances become STOCK_COUNT_ADJUSTMENT movements |
| **Variance Analytics** | Actual vs theoretical consumption, alerts, root-cause tags |

### Identity

Mutating endpoints require the `X-User-Id` header (UUID) set by the gateway.

### Error Codes

Business errors return `{"error": {"code", "message", "details"}}`.

| Code | Description |
|------|-------------|
| 400 | same_branch, no_active_items |
| 401 | Missing or invalid X-User-Id |
| 404 | not_found |
| 409 | insufficient_stock, invalid_transition, count_not_editable |
| 422 | invalid_input, request validation |
| 500 | Internal Server Error |
"""

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
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    """Render typed business errors with their own status code."""
    logger.warning(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}"
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unexpected errors: 500, with the traceback only in DEBUG."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    error_detail = {
        "error": {
            "code": "internal_error",
            "message": str(exc) if settings.DEBUG else "Internal server error",
            "details": {
                "type": type(exc).__name__,
                "path": str(request.url.path),
                "method": request.method,
            },
        }
    }
    if settings.DEBUG:
        error_detail["error"]["details"]["traceback"] = traceback.format_exc()

    return JSONResponse(status_code=500, content=error_detail)


@app.get("/health", tags=["Health"])
async def health_check(db: DB):
    """Liveness plus a round trip to the ledger database. 503 when the database is unreachable."""
    checks = {"database": "connected"}
    healthy = True
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error(f"Health check database error: {exc}")
        checks["database"] = f"error: {exc}"
        healthy = False

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
    if not healthy:
        return JSONResponse(status_code=503, content=body)
    return body
