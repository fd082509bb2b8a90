"""Aggregate model imports for Alembic auto-detection."""

# Registry / catalog
from app.models.location import Location  # noqa: F401
from app.models.item import InventoryItem  # noqa: F401

# Quantity store + movement ledger
from app.models.quantity import InventoryQuantity  # noqa: F401
from app.models.movement import StockMovement  # noqa: F401
from app.models.purchase_order import PurchaseOrderLine  # noqa: F401

# Requirements / allocations / consumption
from app.models.requirement import RequirementLine  # noqa: F401
from app.models.allocation import StockAllocation  # noqa: F401
from app.models.consumption import StockConsumption  # noqa: F401

# Dispatch
from app.models.logistics_run import LogisticsRun, LogisticsStop  # noqa: F401

# Audit / reconciliation
from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.reconciliation_alert import ReconciliationAlert  # noqa: F401
