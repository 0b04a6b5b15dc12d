# Services module
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService
from app.services.ledger_service import LedgerService
from app.services.transfer_service import TransferService
from app.services.stock_count_service import StockCountService
from app.services.reconciliation_service import ReconciliationService

# Analytics
from app.services.variance_service import VarianceService

__all__ = [
    "AuditService",
    "InventoryService",
    "LedgerService",
    "TransferService",
    "StockCountService",
    "ReconciliationService",
    # Analytics
    "VarianceService",
]
