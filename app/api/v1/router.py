from fastapi import APIRouter

from app.api.v1.endpoints import (
    inventory,
    transfers,
    stock_counts,
    variance,
    audit_logs,
)


api_router = APIRouter(prefix="/api/v1")

# Ledger: units, items, movements, on-hand
api_router.include_router(
    inventory.router,
    prefix="/inventory",
)
api_router.include_router(
    transfers.router,
    prefix="/transfers",
)

# Stock counts and reconciliation
api_router.include_router(
    stock_counts.router,
    prefix="/stock-counts",
)

# Analytics
api_router.include_router(
    variance.router,
    prefix="/variance",
)
api_router.include_router(
    audit_logs.router,
    prefix="/audit-logs",
)
