"""
Allocation Service - reserves ledger stock against customer orders.

Candidate ledger rows for an item are tried in a fixed order: the
order's own warehouse first, then by warehouse priority, then oldest
ledger row first. Reservations are reservation movements, so on-hand
never changes here.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stockflow.core.events import (
    AllocationShortage,
    BackorderCreated,
    DomainEvent,
    EventDispatcher,
    NullDispatcher,
)
from stockflow.core.exceptions import InsufficientStock, InvalidState, NotFound, ValidationError
from stockflow.models.inventory import InventoryRecord, MovementType
from stockflow.models.order import (
    AllocationStatus,
    Order,
    OrderAllocation,
    OrderItem,
    OrderStatus,
)
from stockflow.models.warehouse import Warehouse
from stockflow.models.product import Product
from stockflow.services.ledger_service import LedgerService
from stockflow.services.unit_of_work import run_atomic


logger = logging.getLogger(__name__)


CANCELLABLE_STATUSES = (
    OrderStatus.PENDING.value,
    OrderStatus.PARTIALLY_ALLOCATED.value,
    OrderStatus.ALLOCATED.value,
    OrderStatus.PARTIALLY_SHIPPED.value,
)


@dataclass
class ItemAllocation:
    """Allocation outcome for one order item."""
    order_item_id: uuid.UUID
    product_id: uuid.UUID
    sku: str
    requested: int
    allocated: int
    shortfall: int
    locations: List[dict] = field(default_factory=list)


@dataclass
class AllocationResult:
    order_id: uuid.UUID
    order_number: str
    status: str
    allocation_complete: bool
    items: List[ItemAllocation] = field(default_factory=list)
    backorder_id: Optional[uuid.UUID] = None
    backorder_number: Optional[str] = None

    @property
    def total_allocated(self) -> int:
        return sum(item.allocated for item in self.items)

    @property
    def total_shortfall(self) -> int:
        return sum(item.shortfall for item in self.items)


class AllocationService:
    """Reserves and releases stock for orders."""

    def __init__(self, db: AsyncSession, events: Optional[EventDispatcher] = None):
        self.db = db
        self.events = events or NullDispatcher()
        self.ledger = LedgerService(db, self.events)

    async def lock_order(self, order_id: uuid.UUID) -> Order:
        """Load an order and its items FOR UPDATE."""
        await self.db.flush()
        query = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(query)).scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order {order_id} not found", details={"order_id": str(order_id)})
        return order

    async def create_order(
        self,
        lines: Sequence[Tuple[uuid.UUID, int, Decimal]],
        order_number: Optional[str] = None,
        customer_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Register a pending order from (product_id, quantity, unit_price) lines."""
        if not lines:
            raise ValidationError("An order needs at least one item")

        async def operation(pending: List[DomainEvent]) -> Order:
            items = []
            subtotal = Decimal("0")
            for line_number, (product_id, quantity, unit_price) in enumerate(lines, start=1):
                if quantity <= 0:
                    raise ValidationError(
                        "Order quantities must be positive",
                        details={"product_id": str(product_id), "quantity": quantity},
                    )
                product = await self.db.get(Product, product_id)
                if product is None:
                    raise NotFound(f"Product {product_id} not found", details={"product_id": str(product_id)})
                price = Decimal(unit_price or 0)
                items.append(OrderItem(
                    id=uuid.uuid4(),
                    line_number=line_number,
                    product_id=product.id,
                    sku=product.sku,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=price,
                    quantity_allocated=0,
                    quantity_shipped=0,
                    quantity_returned=0,
                    quantity_backordered=0,
                ))
                subtotal += price * quantity

            order = Order(
                id=uuid.uuid4(),
                order_number=order_number or f"ORD-{datetime.now(timezone.utc):%Y%m%d}-{uuid.uuid4().hex[:8].upper()}",
                customer_id=customer_id,
                warehouse_id=warehouse_id,
                status=OrderStatus.PENDING.value,
                is_backorder=False,
                subtotal=subtotal,
                total_amount=subtotal,
                notes=notes,
                items=items,
            )
            self.db.add(order)
            return order

        order = await run_atomic(self.db, operation, events=self.events, label="create_order")
        logger.info(f"Created order {order.order_number} with {len(order.items)} items")
        return order

    async def _candidate_records(
        self,
        product_id: uuid.UUID,
        preferred_warehouse_id: Optional[uuid.UUID],
    ) -> List[uuid.UUID]:
        """Ledger rows with stock for a product, in allocation order."""
        query = (
            select(InventoryRecord.id)
            .join(Warehouse, Warehouse.id == InventoryRecord.warehouse_id)
            .where(
                InventoryRecord.product_id == product_id,
                InventoryRecord.quantity_available > 0,
                Warehouse.is_active.is_(True),
            )
        )
        ordering = []
        if preferred_warehouse_id is not None:
            ordering.append(case((InventoryRecord.warehouse_id == preferred_warehouse_id, 0), else_=1))
        ordering.extend([Warehouse.priority, InventoryRecord.created_at, InventoryRecord.location_code])
        result = await self.db.execute(query.order_by(*ordering))
        return list(result.scalars().all())

    async def allocate_order(
        self,
        order_id: uuid.UUID,
        allow_partial: bool = True,
        create_backorder: bool = True,
        performed_by: Optional[str] = None,
        expected_date: Optional[date] = None,
    ) -> AllocationResult:
        """
        Reserve stock for every item of a pending order.

        Args:
            order_id: Order to allocate
            allow_partial: Keep what could be reserved when stock is short.
                When False a shortfall raises InsufficientStock and nothing
                is reserved.
            create_backorder: Put the unmet quantities on a new backorder
            performed_by: User or job recorded on the movements

        Raises:
            InvalidState: Order is not pending
            InsufficientStock: Stock is short and allow_partial is False
        """
        async def operation(pending: List[DomainEvent]) -> AllocationResult:
            order = await self.lock_order(order_id)
            if order.status != OrderStatus.PENDING.value:
                raise InvalidState(
                    f"Order {order.order_number} is '{order.status}', only pending orders can be allocated",
                    details={"order_id": str(order.id), "status": order.status},
                )
            if not order.items:
                raise ValidationError(f"Order {order.order_number} has no items")

            item_results: List[ItemAllocation] = []
            for item in order.items:
                item_results.append(await self._allocate_item(order, item, pending, performed_by))

            short_items = [r for r in item_results if r.shortfall > 0]
            if short_items and not allow_partial:
                raise InsufficientStock(
                    f"Insufficient stock to fully allocate order {order.order_number}",
                    details={
                        "order_id": str(order.id),
                        "shortages": [
                            {"sku": r.sku, "requested": r.requested, "available": r.allocated}
                            for r in short_items
                        ],
                    },
                )

            total_allocated = sum(r.allocated for r in item_results)
            now = datetime.now(timezone.utc)
            if not short_items:
                order.status = OrderStatus.ALLOCATED.value
                order.allocated_at = now
            elif total_allocated > 0 or create_backorder:
                order.status = OrderStatus.PARTIALLY_ALLOCATED.value
                order.allocated_at = now

            result = AllocationResult(
                order_id=order.id,
                order_number=order.order_number,
                status=order.status,
                allocation_complete=not short_items,
                items=item_results,
            )

            if short_items:
                pending.append(AllocationShortage(
                    order_id=order.id,
                    order_number=order.order_number,
                    shortages=tuple(
                        {"sku": r.sku, "product_id": str(r.product_id), "shortfall": r.shortfall}
                        for r in short_items
                    ),
                ))

            if short_items and create_backorder:
                items_by_id = {item.id: item for item in order.items}
                lines = [(items_by_id[r.order_item_id], r.shortfall) for r in short_items]
                backorder = await self.add_backorder(order, lines, pending, expected_date=expected_date)
                result.backorder_id = backorder.id
                result.backorder_number = backorder.order_number

            return result

        result = await run_atomic(self.db, operation, events=self.events, label="allocate_order")

        if result.allocation_complete:
            logger.info(f"Order {result.order_number} fully allocated ({result.total_allocated} units)")
        else:
            logger.warning(
                f"Order {result.order_number} allocated {result.total_allocated} units, "
                f"short {result.total_shortfall}"
                + (f", backorder {result.backorder_number}" if result.backorder_number else "")
            )
        return result

    async def _allocate_item(
        self,
        order: Order,
        item: OrderItem,
        pending: List[DomainEvent],
        performed_by: Optional[str],
    ) -> ItemAllocation:
        requested = item.unallocated
        remaining = requested
        locations = []

        for inventory_id in await self._candidate_records(item.product_id, order.warehouse_id):
            if remaining <= 0:
                break
            record = await self.ledger.lock_record(inventory_id)
            take = min(record.quantity_available, remaining)
            if take <= 0:
                continue

            self.ledger.apply_movement(
                record, MovementType.RESERVATION, take, pending,
                reference_type="order",
                reference_id=order.id,
                reference_number=order.order_number,
                performed_by=performed_by,
            )
            self.db.add(OrderAllocation(
                order_id=order.id,
                order_item_id=item.id,
                inventory_id=record.id,
                quantity=take,
                quantity_shipped=0,
                quantity_released=0,
                status=AllocationStatus.RESERVED.value,
            ))
            item.quantity_allocated += take
            remaining -= take
            locations.append({
                "inventory_id": record.id,
                "warehouse_id": record.warehouse_id,
                "location_code": record.location_code,
                "quantity": take,
            })

        return ItemAllocation(
            order_item_id=item.id,
            product_id=item.product_id,
            sku=item.sku,
            requested=requested,
            allocated=requested - remaining,
            shortfall=remaining,
            locations=locations,
        )

    async def add_backorder(
        self,
        order: Order,
        lines: Sequence[Tuple[OrderItem, int]],
        pending: List[DomainEvent],
        expected_date: Optional[date] = None,
    ) -> Order:
        """Create a pending backorder carrying (item, quantity) lines of order."""
        if not lines:
            raise ValidationError("A backorder needs at least one item")

        existing = await self.db.scalar(
            select(func.count()).select_from(Order).where(Order.backorder_of_id == order.id)
        )
        backorder_number = f"{order.order_number}-BO-{(existing or 0) + 1:02d}"

        items = []
        subtotal = Decimal("0")
        for line_number, (item, quantity) in enumerate(lines, start=1):
            if quantity <= 0 or quantity > item.unallocated:
                raise ValidationError(
                    f"Cannot backorder {quantity} of {item.sku}, {item.unallocated} unallocated",
                    details={"sku": item.sku, "quantity": quantity, "unallocated": item.unallocated},
                )
            item.quantity_backordered += quantity
            items.append(OrderItem(
                id=uuid.uuid4(),
                line_number=line_number,
                product_id=item.product_id,
                sku=item.sku,
                product_name=item.product_name,
                quantity=quantity,
                unit_price=item.unit_price,
                quantity_allocated=0,
                quantity_shipped=0,
                quantity_returned=0,
                quantity_backordered=0,
            ))
            subtotal += Decimal(item.unit_price or 0) * quantity

        backorder = Order(
            id=uuid.uuid4(),
            order_number=backorder_number,
            customer_id=order.customer_id,
            warehouse_id=order.warehouse_id,
            status=OrderStatus.PENDING.value,
            backorder_of_id=order.id,
            is_backorder=True,
            expected_date=expected_date,
            subtotal=subtotal,
            total_amount=subtotal,
            notes=f"Backorder for {order.order_number}",
            items=items,
        )
        self.db.add(backorder)

        pending.append(BackorderCreated(
            original_order_id=order.id,
            backorder_id=backorder.id,
            backorder_number=backorder_number,
            item_count=len(items),
        ))
        return backorder

    async def release_order_allocations(
        self,
        order_id: uuid.UUID,
        performed_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> dict:
        """Cancel an order and return its unshipped reservations to available."""
        async def operation(pending: List[DomainEvent]) -> dict:
            order = await self.lock_order(order_id)
            if order.status not in CANCELLABLE_STATUSES:
                raise InvalidState(
                    f"Order {order.order_number} is '{order.status}' and cannot be cancelled",
                    details={"order_id": str(order.id), "status": order.status},
                )

            query = (
                select(OrderAllocation)
                .where(
                    OrderAllocation.order_id == order.id,
                    OrderAllocation.status.in_([
                        AllocationStatus.RESERVED.value,
                        AllocationStatus.PARTIALLY_SHIPPED.value,
                    ]),
                )
                .order_by(OrderAllocation.inventory_id)
                .execution_options(populate_existing=True)
            )
            allocations = (await self.db.execute(query)).scalars().all()
            items_by_id = {item.id: item for item in order.items}

            released = 0
            for allocation in allocations:
                quantity = allocation.outstanding
                if quantity <= 0:
                    continue
                record = await self.ledger.lock_record(allocation.inventory_id)
                self.ledger.apply_movement(
                    record, MovementType.RELEASE, quantity, pending,
                    reference_type="order",
                    reference_id=order.id,
                    reference_number=order.order_number,
                    performed_by=performed_by,
                    notes=reason or "Order cancelled",
                )
                allocation.quantity_released += quantity
                allocation.status = AllocationStatus.RELEASED.value
                items_by_id[allocation.order_item_id].quantity_allocated -= quantity
                released += quantity

            order.status = OrderStatus.CANCELLED.value
            order.cancelled_at = datetime.now(timezone.utc)
            return {
                "order_id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "released_quantity": released,
                "allocations_released": sum(1 for a in allocations if a.status == AllocationStatus.RELEASED.value),
            }

        result = await run_atomic(self.db, operation, events=self.events, label="release_order_allocations")
        logger.info(f"Cancelled order {result['order_number']}, released {result['released_quantity']} units")
        return result
