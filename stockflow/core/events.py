"""
Domain events emitted by the inventory engine.

Services never call listeners directly. They collect events while a
transaction is open and hand them to an EventDispatcher once the commit
has succeeded, so a rolled-back attempt never produces a signal.
"""
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Tuple, Union


@dataclass(frozen=True)
class StockLevelChanged:
    inventory_id: uuid.UUID
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    movement_type: str
    old_on_hand: int
    new_on_hand: int
    quantity_available: int
    stock_status: str


@dataclass(frozen=True)
class LowStockDetected:
    inventory_id: uuid.UUID
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    quantity_available: int
    reorder_point: int
    stock_status: str


@dataclass(frozen=True)
class AllocationShortage:
    order_id: uuid.UUID
    order_number: str
    shortages: Tuple[dict, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BackorderCreated:
    original_order_id: uuid.UUID
    backorder_id: uuid.UUID
    backorder_number: str
    item_count: int


@dataclass(frozen=True)
class OrderShipped:
    order_id: uuid.UUID
    order_number: str
    item_count: int
    shipment_complete: bool
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


@dataclass(frozen=True)
class ReturnProcessed:
    order_id: uuid.UUID
    order_number: str
    restocked_quantity: int
    scrapped_quantity: int


@dataclass(frozen=True)
class PurchaseOrdersCreated:
    orders_created: int
    total_value: float
    items_processed: int
    approval_required: bool


@dataclass(frozen=True)
class SupplierLeadTimesUpdated:
    suppliers_analyzed: int
    suppliers_updated: int


DomainEvent = Union[
    StockLevelChanged,
    LowStockDetected,
    AllocationShortage,
    BackorderCreated,
    OrderShipped,
    ReturnProcessed,
    PurchaseOrdersCreated,
    SupplierLeadTimesUpdated,
]


class EventDispatcher(Protocol):
    """Consumer of committed domain events."""

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        ...


class NullDispatcher:
    """Dispatcher that drops every event."""

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        return None


class RecordingDispatcher:
    """Keeps published events in memory, in publish order."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        self.events.extend(events)

    def of_type(self, event_type) -> List[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]
