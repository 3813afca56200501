# Services module
from stockflow.services.ledger_service import LedgerService
from stockflow.services.allocation_service import AllocationService
from stockflow.services.fulfillment_service import FulfillmentService
from stockflow.services.demand_forecasting import DemandForecastingService
from stockflow.services.reorder_service import ReorderService
from stockflow.services.procurement_service import ProcurementService
from stockflow.services.notification_service import NotificationDispatcher

__all__ = [
    "LedgerService",
    "AllocationService",
    "FulfillmentService",
    "DemandForecastingService",
    "ReorderService",
    "ProcurementService",
    "NotificationDispatcher",
]
