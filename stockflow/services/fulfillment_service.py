"""
Fulfillment Service - pick lists, shipments, returns and backorders.

Works on top of the allocations made by AllocationService: shipments
consume reservations as sale movements, restocked returns come back as
return movements into the ledger row the goods were shipped from.
"""
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockflow.config import settings
from stockflow.core.events import (
    DomainEvent,
    EventDispatcher,
    NullDispatcher,
    OrderShipped,
    ReturnProcessed,
)
from stockflow.core.exceptions import InsufficientStock, InvalidState, NotFound, ValidationError
from stockflow.models.inventory import InventoryRecord, MovementType
from stockflow.models.order import (
    AllocationStatus,
    Order,
    OrderAllocation,
    OrderItem,
    OrderReturn,
    OrderStatus,
)
from stockflow.services.allocation_service import AllocationService
from stockflow.services.unit_of_work import run_atomic


logger = logging.getLogger(__name__)


PICKABLE_STATUSES = [
    OrderStatus.ALLOCATED.value,
    OrderStatus.PARTIALLY_ALLOCATED.value,
    OrderStatus.PARTIALLY_SHIPPED.value,
]
SHIPPABLE_STATUSES = PICKABLE_STATUSES
RETURNABLE_STATUSES = [
    OrderStatus.PARTIALLY_SHIPPED.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.PARTIALLY_RETURNED.value,
]
BACKORDERABLE_STATUSES = [
    OrderStatus.PENDING.value,
    OrderStatus.PARTIALLY_ALLOCATED.value,
    OrderStatus.ALLOCATED.value,
    OrderStatus.PARTIALLY_SHIPPED.value,
]
OPEN_ALLOCATION_STATUSES = [
    AllocationStatus.RESERVED.value,
    AllocationStatus.PARTIALLY_SHIPPED.value,
]


@dataclass(frozen=True)
class OrderLine:
    """A quantity against one order item (shipment, return or backorder line)."""
    order_item_id: uuid.UUID
    quantity: int


@dataclass
class PickList:
    id: str
    generated_at: datetime
    generated_by: Optional[str]
    warehouse_id: Optional[uuid.UUID]
    group_by_location: bool
    order_count: int
    total_items: int
    orders: List[dict] = field(default_factory=list)
    groups: List[dict] = field(default_factory=list)
    statistics: Dict[str, int] = field(default_factory=dict)


@dataclass
class ShipmentResult:
    order_id: uuid.UUID
    order_number: str
    status: str
    shipment_complete: bool
    shipped_items: List[dict] = field(default_factory=list)
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


@dataclass
class ReturnResult:
    order_id: uuid.UUID
    order_number: str
    status: str
    returned_items: List[dict] = field(default_factory=list)
    restocked_items: List[dict] = field(default_factory=list)
    non_restockable_items: List[dict] = field(default_factory=list)

    @property
    def restocked_quantity(self) -> int:
        return sum(i["quantity"] for i in self.restocked_items)

    @property
    def non_restockable_quantity(self) -> int:
        return sum(i["quantity"] for i in self.non_restockable_items)


def _merge_lines(lines: Iterable[OrderLine]) -> Dict[uuid.UUID, int]:
    """Sum quantities per order item, keeping first-seen order."""
    merged: Dict[uuid.UUID, int] = OrderedDict()
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError(
                "Line quantities must be positive",
                details={"order_item_id": str(line.order_item_id), "quantity": line.quantity},
            )
        merged[line.order_item_id] = merged.get(line.order_item_id, 0) + line.quantity
    if not merged:
        raise ValidationError("At least one line is required")
    return merged


def _item_for(order: Order, order_item_id: uuid.UUID) -> OrderItem:
    for item in order.items:
        if item.id == order_item_id:
            return item
    raise ValidationError(
        f"Item {order_item_id} is not part of order {order.order_number}",
        details={"order_item_id": str(order_item_id)},
    )


class FulfillmentService:
    """Picking, shipping and returns for allocated orders."""

    def __init__(self, db: AsyncSession, events: Optional[EventDispatcher] = None):
        self.db = db
        self.events = events or NullDispatcher()
        self.allocation = AllocationService(db, self.events)
        self.ledger = self.allocation.ledger

    async def _open_allocations(self, order_id: uuid.UUID) -> List[OrderAllocation]:
        query = (
            select(OrderAllocation)
            .where(
                OrderAllocation.order_id == order_id,
                OrderAllocation.status.in_(OPEN_ALLOCATION_STATUSES),
            )
            .order_by(OrderAllocation.created_at, OrderAllocation.inventory_id)
            .execution_options(populate_existing=True)
        )
        return list((await self.db.execute(query)).scalars().all())

    # ==================== PICK LISTS ====================

    async def generate_pick_list(
        self,
        order_ids: Sequence[uuid.UUID],
        group_by_location: bool = True,
        warehouse_id: Optional[uuid.UUID] = None,
        generated_by: Optional[str] = None,
    ) -> PickList:
        """
        Build a pick list from the open reservations of the given orders.

        Read only. Lines are grouped by warehouse location or by order.
        """
        if not order_ids:
            raise ValidationError("At least one order is required")

        orders_query = (
            select(Order)
            .where(Order.id.in_(list(order_ids)), Order.status.in_(PICKABLE_STATUSES))
            .order_by(Order.created_at)
        )
        orders = (await self.db.execute(orders_query)).scalars().all()
        if not orders:
            raise ValidationError(
                "No valid orders for picking",
                details={"allowed_statuses": PICKABLE_STATUSES},
            )

        stmt = (
            select(OrderAllocation, OrderItem, Order, InventoryRecord)
            .join(OrderItem, OrderItem.id == OrderAllocation.order_item_id)
            .join(Order, Order.id == OrderAllocation.order_id)
            .join(InventoryRecord, InventoryRecord.id == OrderAllocation.inventory_id)
            .where(
                OrderAllocation.order_id.in_([o.id for o in orders]),
                OrderAllocation.status.in_(OPEN_ALLOCATION_STATUSES),
            )
            .order_by(InventoryRecord.warehouse_id, InventoryRecord.location_code, OrderItem.sku)
        )
        if warehouse_id:
            stmt = stmt.where(InventoryRecord.warehouse_id == warehouse_id)
        rows = (await self.db.execute(stmt)).all()

        pick_lines = []
        for allocation, item, order, record in rows:
            if allocation.outstanding <= 0:
                continue
            pick_lines.append({
                "order_id": order.id,
                "order_number": order.order_number,
                "order_item_id": item.id,
                "product_id": item.product_id,
                "sku": item.sku,
                "product_name": item.product_name,
                "quantity": allocation.outstanding,
                "inventory_id": record.id,
                "warehouse_id": record.warehouse_id,
                "location_code": record.location_code,
            })

        groups: Dict[tuple, dict] = OrderedDict()
        for line in pick_lines:
            if group_by_location:
                key = (line["warehouse_id"], line["location_code"])
                group = groups.setdefault(key, {
                    "warehouse_id": line["warehouse_id"],
                    "location_code": line["location_code"],
                    "items": [],
                })
            else:
                key = (line["order_id"],)
                group = groups.setdefault(key, {
                    "order_id": line["order_id"],
                    "order_number": line["order_number"],
                    "items": [],
                })
            group["items"].append(line)

        now = datetime.now(timezone.utc)
        pick_list = PickList(
            id=f"PL-{int(now.timestamp() * 1000)}",
            generated_at=now,
            generated_by=generated_by,
            warehouse_id=warehouse_id,
            group_by_location=group_by_location,
            order_count=len(orders),
            total_items=len(pick_lines),
            orders=[
                {"order_id": o.id, "order_number": o.order_number, "status": o.status}
                for o in orders
            ],
            groups=list(groups.values()),
            statistics={
                "total_quantity": sum(line["quantity"] for line in pick_lines),
                "unique_skus": len({line["sku"] for line in pick_lines}),
                "locations": len({(line["warehouse_id"], line["location_code"]) for line in pick_lines}),
            },
        )
        logger.info(
            f"Pick list {pick_list.id} generated for {pick_list.order_count} orders "
            f"with {pick_list.total_items} lines"
        )
        return pick_list

    # ==================== SHIPMENT ====================

    async def process_shipment(
        self,
        order_id: uuid.UUID,
        lines: Sequence[OrderLine],
        tracking_number: Optional[str] = None,
        carrier: Optional[str] = None,
        shipped_by: Optional[str] = None,
    ) -> ShipmentResult:
        """
        Ship reserved stock: each line becomes sale movements that take the
        quantity out of on-hand and reserved together.

        Raises:
            ValidationError: A line exceeds the item's remaining quantity
            InsufficientStock: A line exceeds the item's open reservation
            InvalidState: The order has nothing allocated to ship
        """
        requested = _merge_lines(lines)

        async def operation(pending: List[DomainEvent]) -> ShipmentResult:
            order = await self.allocation.lock_order(order_id)
            if order.status not in SHIPPABLE_STATUSES:
                raise InvalidState(
                    f"Order {order.order_number} is '{order.status}' and cannot be shipped",
                    details={"order_id": str(order.id), "status": order.status},
                )

            allocations = await self._open_allocations(order.id)
            by_item: Dict[uuid.UUID, List[OrderAllocation]] = {}
            for allocation in allocations:
                by_item.setdefault(allocation.order_item_id, []).append(allocation)

            # Validate every line before touching the ledger
            for order_item_id, quantity in requested.items():
                item = _item_for(order, order_item_id)
                if quantity > item.remaining_to_ship:
                    raise ValidationError(
                        f"Cannot ship {quantity} of {item.sku}: only {item.remaining_to_ship} remaining",
                        details={
                            "order_item_id": str(item.id),
                            "requested": quantity,
                            "remaining": item.remaining_to_ship,
                        },
                    )
                reserved = sum(a.outstanding for a in by_item.get(item.id, []))
                if quantity > reserved:
                    raise InsufficientStock(
                        f"Cannot ship {quantity} of {item.sku}: only {reserved} reserved",
                        details={"order_item_id": str(item.id), "requested": quantity, "reserved": reserved},
                    )

            shipped_items = []
            for order_item_id, quantity in requested.items():
                item = _item_for(order, order_item_id)
                remaining = quantity
                for allocation in by_item[item.id]:
                    if remaining <= 0:
                        break
                    take = min(allocation.outstanding, remaining)
                    if take <= 0:
                        continue
                    record = await self.ledger.lock_record(allocation.inventory_id)
                    self.ledger.apply_movement(
                        record, MovementType.SALE, -take, pending,
                        unit_cost=record.average_cost,
                        reference_type="order",
                        reference_id=order.id,
                        reference_number=order.order_number,
                        performed_by=shipped_by,
                        notes=f"Shipment {tracking_number}" if tracking_number else None,
                    )
                    allocation.quantity_shipped += take
                    allocation.status = (
                        AllocationStatus.SHIPPED.value
                        if allocation.outstanding == 0
                        else AllocationStatus.PARTIALLY_SHIPPED.value
                    )
                    remaining -= take
                    shipped_items.append({
                        "order_item_id": item.id,
                        "sku": item.sku,
                        "inventory_id": record.id,
                        "warehouse_id": record.warehouse_id,
                        "quantity": take,
                    })
                item.quantity_shipped += quantity

            complete = all(item.remaining_to_ship == 0 for item in order.items)
            if not complete:
                order.status = OrderStatus.PARTIALLY_SHIPPED.value
            elif any(item.quantity_returned for item in order.items):
                # Units came back while the rest was still in the warehouse
                order.status = OrderStatus.PARTIALLY_RETURNED.value
            else:
                order.status = OrderStatus.SHIPPED.value
            order.shipped_at = datetime.now(timezone.utc)
            if tracking_number:
                order.tracking_number = tracking_number
            if carrier:
                order.carrier = carrier

            pending.append(OrderShipped(
                order_id=order.id,
                order_number=order.order_number,
                item_count=len(requested),
                shipment_complete=complete,
                tracking_number=tracking_number,
                carrier=carrier,
            ))
            return ShipmentResult(
                order_id=order.id,
                order_number=order.order_number,
                status=order.status,
                shipment_complete=complete,
                shipped_items=shipped_items,
                tracking_number=tracking_number,
                carrier=carrier,
            )

        result = await run_atomic(self.db, operation, events=self.events, label="process_shipment")
        logger.info(f"Order {result.order_number} shipment processed, status {result.status}")
        return result

    # ==================== RETURNS ====================

    async def _restock_target(self, order: Order, item: OrderItem) -> uuid.UUID:
        """Ledger row a returned item goes back to: where it shipped from."""
        query = (
            select(OrderAllocation.inventory_id)
            .where(
                OrderAllocation.order_item_id == item.id,
                OrderAllocation.quantity_shipped > 0,
            )
            .order_by(OrderAllocation.created_at)
            .limit(1)
        )
        inventory_id = await self.db.scalar(query)
        if inventory_id is not None:
            return inventory_id

        fallback = select(InventoryRecord.id).where(InventoryRecord.product_id == item.product_id)
        if order.warehouse_id:
            fallback = fallback.where(InventoryRecord.warehouse_id == order.warehouse_id)
        inventory_id = await self.db.scalar(fallback.order_by(InventoryRecord.created_at).limit(1))
        if inventory_id is None:
            raise NotFound(
                f"No ledger record to restock {item.sku}",
                details={"product_id": str(item.product_id)},
            )
        return inventory_id

    async def process_return(
        self,
        order_id: uuid.UUID,
        lines: Sequence[OrderLine],
        condition: str = "good",
        restockable: bool = True,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> ReturnResult:
        """
        Record returned units. Restockable units in an acceptable condition go
        back to available stock; the rest are kept for audit only.

        Raises:
            ValidationError: A line exceeds shipped minus already returned
        """
        requested = _merge_lines(lines)
        condition = (condition or "").strip().lower()
        restock = restockable and condition in [c.lower() for c in settings.RESTOCKABLE_CONDITIONS]

        async def operation(pending: List[DomainEvent]) -> ReturnResult:
            order = await self.allocation.lock_order(order_id)
            if order.status not in RETURNABLE_STATUSES:
                raise InvalidState(
                    f"Order {order.order_number} is '{order.status}', nothing has shipped to return",
                    details={"order_id": str(order.id), "status": order.status},
                )

            for order_item_id, quantity in requested.items():
                item = _item_for(order, order_item_id)
                returnable = item.quantity_shipped - item.quantity_returned
                if quantity > returnable:
                    raise ValidationError(
                        f"Cannot return {quantity} of {item.sku}: only {returnable} shipped and not yet returned",
                        details={"order_item_id": str(item.id), "requested": quantity, "returnable": returnable},
                    )

            result = ReturnResult(order_id=order.id, order_number=order.order_number, status=order.status)
            audit_rows = []
            for order_item_id, quantity in requested.items():
                item = _item_for(order, order_item_id)
                movement = None
                inventory_id = None

                if restock:
                    inventory_id = await self._restock_target(order, item)
                    record = await self.ledger.lock_record(inventory_id)
                    movement = self.ledger.apply_movement(
                        record, MovementType.RETURN, quantity, pending,
                        unit_cost=record.average_cost,
                        reference_type="customer_return",
                        reference_id=order.id,
                        reference_number=order.order_number,
                        performed_by=performed_by,
                        notes=f"Customer return: {reason or 'customer_return'}",
                    )
                    result.restocked_items.append({
                        "order_item_id": item.id,
                        "sku": item.sku,
                        "inventory_id": inventory_id,
                        "quantity": quantity,
                    })
                else:
                    result.non_restockable_items.append({
                        "order_item_id": item.id,
                        "sku": item.sku,
                        "quantity": quantity,
                        "reason": "damaged" if condition == "damaged" else "non_restockable",
                    })

                item.quantity_returned += quantity
                audit_rows.append(OrderReturn(
                    order_id=order.id,
                    order_item_id=item.id,
                    inventory_id=inventory_id,
                    movement_id=movement.id if movement is not None else None,
                    quantity=quantity,
                    condition=condition,
                    restocked=restock,
                    reason=reason,
                ))
                result.returned_items.append({
                    "order_item_id": item.id,
                    "sku": item.sku,
                    "product_name": item.product_name,
                    "quantity": quantity,
                    "condition": condition,
                    "restocked": restock,
                })

            # Movements first so the audit rows can reference them
            await self.db.flush()
            self.db.add_all(audit_rows)

            # Units still to ship keep the order partially shipped; the return
            # is tracked on the items and in order_returns only
            if all(item.remaining_to_ship == 0 for item in order.items):
                fully_returned = all(item.quantity_returned == item.quantity_shipped for item in order.items)
                order.status = OrderStatus.RETURNED.value if fully_returned else OrderStatus.PARTIALLY_RETURNED.value
            result.status = order.status

            pending.append(ReturnProcessed(
                order_id=order.id,
                order_number=order.order_number,
                restocked_quantity=result.restocked_quantity,
                scrapped_quantity=result.non_restockable_quantity,
            ))
            return result

        result = await run_atomic(self.db, operation, events=self.events, label="process_return")
        logger.info(
            f"Return for {result.order_number}: {result.restocked_quantity} restocked, "
            f"{result.non_restockable_quantity} not restockable"
        )
        return result

    # ==================== BACKORDERS ====================

    async def create_backorder(
        self,
        order_id: uuid.UUID,
        lines: Sequence[OrderLine],
        expected_date: Optional[date] = None,
    ) -> Order:
        """Move unallocated quantities of an order onto a new pending backorder."""
        requested = _merge_lines(lines)

        async def operation(pending: List[DomainEvent]) -> Order:
            order = await self.allocation.lock_order(order_id)
            if order.status not in BACKORDERABLE_STATUSES:
                raise InvalidState(
                    f"Order {order.order_number} is '{order.status}' and cannot be backordered",
                    details={"order_id": str(order.id), "status": order.status},
                )
            backorder_lines = [
                (_item_for(order, order_item_id), quantity)
                for order_item_id, quantity in requested.items()
            ]
            return await self.allocation.add_backorder(order, backorder_lines, pending, expected_date=expected_date)

        backorder = await run_atomic(self.db, operation, events=self.events, label="create_backorder")
        logger.info(f"Backorder {backorder.order_number} created with {len(backorder.items)} items")
        return backorder
