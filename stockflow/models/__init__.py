from stockflow.models.warehouse import Warehouse
from stockflow.models.supplier import Supplier
from stockflow.models.product import Product
from stockflow.models.inventory import (
    InventoryRecord,
    StockMovement,
    MovementType,
    StockStatus,
    calculate_stock_status,
)
from stockflow.models.order import (
    Order,
    OrderItem,
    OrderAllocation,
    OrderReturn,
    OrderStatus,
    AllocationStatus,
)
from stockflow.models.purchase import (
    PriceList,
    PriceListItem,
    PurchaseOrder,
    PurchaseOrderItem,
)

__all__ = [
    "Warehouse",
    "Supplier",
    "Product",
    "InventoryRecord",
    "StockMovement",
    "MovementType",
    "StockStatus",
    "calculate_stock_status",
    "Order",
    "OrderItem",
    "OrderAllocation",
    "OrderReturn",
    "OrderStatus",
    "AllocationStatus",
    "PriceList",
    "PriceListItem",
    "PurchaseOrder",
    "PurchaseOrderItem",
]
