"""
Ledger Service: authoritative stock quantities and the movement log.

Every quantity change is a StockMovement written in the same transaction
as the ledger row update. The row is locked (SELECT ... FOR UPDATE) and
version-checked, so concurrent writers against one row serialize or
retry instead of interleaving.
"""
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from stockflow.core.events import (
    DomainEvent,
    EventDispatcher,
    LowStockDetected,
    NullDispatcher,
    StockLevelChanged,
)
from stockflow.core.exceptions import InsufficientStock, NotFound, ValidationError
from stockflow.models.inventory import (
    INBOUND_MOVEMENTS,
    InventoryRecord,
    MovementType,
    StockMovement,
    calculate_stock_status,
)
from stockflow.models.product import Product
from stockflow.models.warehouse import Warehouse
from stockflow.services.unit_of_work import run_atomic


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Quantities and valuation of one ledger row at a point in its history."""
    quantity_on_hand: int = 0
    quantity_available: int = 0
    quantity_reserved: int = 0
    average_cost: float = 0.0

    @classmethod
    def of(cls, record: InventoryRecord) -> "LedgerSnapshot":
        return cls(
            quantity_on_hand=record.quantity_on_hand,
            quantity_available=record.quantity_available,
            quantity_reserved=record.quantity_reserved,
            average_cost=record.average_cost or 0.0,
        )


def weighted_average_cost(old_average: float, old_on_hand: int, unit_cost: float, quantity: int) -> float:
    if old_on_hand <= 0:
        return round(float(unit_cost), 4)
    total_value = old_average * old_on_hand + float(unit_cost) * quantity
    return round(total_value / (old_on_hand + quantity), 4)


def _require(bucket: str, have: int, need: int, movement_type: MovementType) -> None:
    if have < need:
        raise InsufficientStock(
            f"Insufficient {bucket} stock for {movement_type.value}: have {have}, need {need}",
            details={"bucket": bucket, "available": have, "requested": need},
        )


def apply_movement_rules(
    snapshot: LedgerSnapshot,
    movement_type,
    quantity: int,
    unit_cost: Optional[float] = None,
) -> LedgerSnapshot:
    """
    Compute the ledger state after one movement.

    Quantity is signed: inbound types and reservation/release are positive,
    sale and adjustment_out are negative, transfer is either. Returns keep
    the current average cost; other costed inbound movements re-average.

    Raises:
        ValidationError: zero quantity or a sign that does not fit the type
        InsufficientStock: the movement would drive a bucket below zero
    """
    try:
        movement_type = MovementType(movement_type)
    except ValueError:
        raise ValidationError(f"Unknown movement type: {movement_type}") from None

    if quantity == 0:
        raise ValidationError("Movement quantity must be non-zero")

    on_hand = snapshot.quantity_on_hand
    available = snapshot.quantity_available
    reserved = snapshot.quantity_reserved
    average_cost = snapshot.average_cost

    inbound = movement_type in INBOUND_MOVEMENTS or (
        movement_type == MovementType.TRANSFER and quantity > 0
    )

    if inbound:
        if quantity < 0:
            raise ValidationError(f"{movement_type.value} movements must have a positive quantity")
        if unit_cost is not None and movement_type != MovementType.RETURN:
            average_cost = weighted_average_cost(average_cost, on_hand, unit_cost, quantity)
        on_hand += quantity
        available += quantity

    elif movement_type in (MovementType.ADJUSTMENT_OUT, MovementType.TRANSFER):
        if quantity > 0:
            raise ValidationError(f"{movement_type.value} movements must have a negative quantity")
        _require("available", available, -quantity, movement_type)
        on_hand += quantity
        available += quantity

    elif movement_type == MovementType.SALE:
        if quantity > 0:
            raise ValidationError("sale movements must have a negative quantity")
        _require("reserved", reserved, -quantity, movement_type)
        on_hand += quantity
        reserved += quantity

    elif movement_type == MovementType.RESERVATION:
        if quantity < 0:
            raise ValidationError("reservation movements must have a positive quantity")
        _require("available", available, quantity, movement_type)
        available -= quantity
        reserved += quantity

    elif movement_type == MovementType.RELEASE:
        if quantity < 0:
            raise ValidationError("release movements must have a positive quantity")
        _require("reserved", reserved, quantity, movement_type)
        available += quantity
        reserved -= quantity

    return LedgerSnapshot(
        quantity_on_hand=on_hand,
        quantity_available=available,
        quantity_reserved=reserved,
        average_cost=average_cost,
    )


def generate_movement_number(moment: datetime) -> str:
    return f"MOV-{moment.strftime('%Y%m%d')}-{uuid.uuid4().hex[:12].upper()}"


class LedgerService:
    """Reads and mutates ledger rows, always through the movement path."""

    def __init__(self, db: AsyncSession, events: Optional[EventDispatcher] = None):
        self.db = db
        self.events = events or NullDispatcher()

    # ==================== LOCKING & MUTATION PRIMITIVES ====================

    async def lock_record(self, inventory_id: uuid.UUID) -> InventoryRecord:
        """Load a ledger row FOR UPDATE, refreshing any stale identity-map copy."""
        # Pending changes must reach the database before populate_existing reloads the row
        await self.db.flush()
        query = (
            select(InventoryRecord)
            .where(InventoryRecord.id == inventory_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFound(
                f"Inventory record {inventory_id} not found",
                details={"inventory_id": str(inventory_id)},
            )
        return record

    def apply_movement(
        self,
        record: InventoryRecord,
        movement_type,
        quantity: int,
        pending: List[DomainEvent],
        *,
        unit_cost: Optional[float] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[uuid.UUID] = None,
        reference_number: Optional[str] = None,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> StockMovement:
        """
        Mutate a locked ledger row and append its movement.

        Must run inside run_atomic; the caller commits. Events land in
        pending and are published after the commit.
        """
        before = LedgerSnapshot.of(record)
        after = apply_movement_rules(before, movement_type, quantity, unit_cost)
        movement_type = MovementType(movement_type)
        moment = occurred_at or datetime.now(timezone.utc)

        record.quantity_on_hand = after.quantity_on_hand
        record.quantity_available = after.quantity_available
        record.quantity_reserved = after.quantity_reserved
        record.average_cost = after.average_cost
        record.last_movement_at = moment
        record.movement_count = (record.movement_count or 0) + 1

        movement = StockMovement(
            id=uuid.uuid4(),
            movement_number=generate_movement_number(moment),
            sequence=record.movement_count,
            inventory_id=record.id,
            product_id=record.product_id,
            warehouse_id=record.warehouse_id,
            movement_type=movement_type.value,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=abs(quantity) * unit_cost if unit_cost is not None else None,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_number=reference_number,
            quantity_after=after.quantity_on_hand,
            available_after=after.quantity_available,
            reserved_after=after.quantity_reserved,
            performed_by=performed_by,
            notes=notes,
            created_at=moment,
        )
        self.db.add(movement)

        status = record.stock_status
        pending.append(StockLevelChanged(
            inventory_id=record.id,
            product_id=record.product_id,
            warehouse_id=record.warehouse_id,
            movement_type=movement_type.value,
            old_on_hand=before.quantity_on_hand,
            new_on_hand=after.quantity_on_hand,
            quantity_available=after.quantity_available,
            stock_status=status,
        ))
        if (
            after.quantity_available <= record.reorder_point
            and after.quantity_available < before.quantity_available
        ):
            pending.append(LowStockDetected(
                inventory_id=record.id,
                product_id=record.product_id,
                warehouse_id=record.warehouse_id,
                quantity_available=after.quantity_available,
                reorder_point=record.reorder_point,
                stock_status=status,
            ))
        return movement

    # ==================== LEDGER OPERATIONS ====================

    async def record_movement(
        self,
        inventory_id: uuid.UUID,
        movement_type,
        quantity: int,
        *,
        unit_cost: Optional[float] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[uuid.UUID] = None,
        reference_number: Optional[str] = None,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> StockMovement:
        """Atomically apply one movement to a ledger row."""
        async def operation(pending):
            record = await self.lock_record(inventory_id)
            return self.apply_movement(
                record, movement_type, quantity, pending,
                unit_cost=unit_cost,
                reference_type=reference_type,
                reference_id=reference_id,
                reference_number=reference_number,
                performed_by=performed_by,
                notes=notes,
                occurred_at=occurred_at,
            )

        movement = await run_atomic(self.db, operation, events=self.events, label="record_movement")
        logger.info(
            f"Recorded {movement.movement_type} {movement.quantity} on {inventory_id} "
            f"(on hand {movement.quantity_after})"
        )
        return movement

    async def upsert_ledger_record(
        self,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        location_code: str = "",
        *,
        reorder_point: Optional[int] = None,
        reorder_quantity: Optional[int] = None,
        min_stock_level: Optional[int] = None,
        max_stock_level: Optional[int] = None,
        initial_quantity: int = 0,
        unit_cost: Optional[float] = None,
        performed_by: Optional[str] = None,
    ) -> InventoryRecord:
        """
        Create a ledger row or merge new thresholds into an existing one.

        An initial quantity is booked as an adjustment_in movement, never
        written straight into the quantity columns.
        """
        thresholds = {
            "reorder_point": reorder_point,
            "reorder_quantity": reorder_quantity,
            "min_stock_level": min_stock_level,
            "max_stock_level": max_stock_level,
        }
        for name, value in thresholds.items():
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative", details={name: value})
        if initial_quantity < 0:
            raise ValidationError("initial_quantity cannot be negative")

        async def operation(pending):
            query = (
                select(InventoryRecord)
                .where(
                    and_(
                        InventoryRecord.product_id == product_id,
                        InventoryRecord.warehouse_id == warehouse_id,
                        InventoryRecord.location_code == location_code,
                    )
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            record = (await self.db.execute(query)).scalar_one_or_none()

            if record is None:
                if await self.db.get(Product, product_id) is None:
                    raise NotFound(f"Product {product_id} not found")
                if await self.db.get(Warehouse, warehouse_id) is None:
                    raise NotFound(f"Warehouse {warehouse_id} not found")
                record = InventoryRecord(
                    id=uuid.uuid4(),
                    product_id=product_id,
                    warehouse_id=warehouse_id,
                    location_code=location_code,
                    quantity_on_hand=0,
                    quantity_available=0,
                    quantity_reserved=0,
                    quantity_in_transit=0,
                    reorder_point=0,
                    reorder_quantity=0,
                    min_stock_level=0,
                    average_cost=0.0,
                    movement_count=0,
                )
                self.db.add(record)

            for name, value in thresholds.items():
                if value is not None:
                    setattr(record, name, value)
            await self.db.flush()

            if initial_quantity > 0:
                self.apply_movement(
                    record, MovementType.ADJUSTMENT_IN, initial_quantity, pending,
                    unit_cost=unit_cost,
                    reference_type="adjustment",
                    performed_by=performed_by,
                    notes="Opening balance",
                )
            return record

        record = await run_atomic(self.db, operation, events=self.events, label="upsert_ledger_record")
        logger.info(f"Upserted ledger record {record.id} for product {product_id} in {warehouse_id}")
        return record

    async def adjust_stock(
        self,
        inventory_id: uuid.UUID,
        new_quantity: int,
        reason: str,
        performed_by: Optional[str] = None,
    ) -> Optional[StockMovement]:
        """
        Set on-hand to a counted quantity via adjustment_in/adjustment_out.

        Returns None when the count already matches the ledger.
        """
        if new_quantity < 0:
            raise ValidationError("Counted quantity cannot be negative", details={"new_quantity": new_quantity})
        if not reason:
            raise ValidationError("An adjustment reason is required")

        async def operation(pending):
            record = await self.lock_record(inventory_id)
            delta = new_quantity - record.quantity_on_hand
            if delta == 0:
                return None
            movement_type = MovementType.ADJUSTMENT_IN if delta > 0 else MovementType.ADJUSTMENT_OUT
            return self.apply_movement(
                record, movement_type, delta, pending,
                reference_type="adjustment",
                performed_by=performed_by,
                notes=reason,
            )

        movement = await run_atomic(self.db, operation, events=self.events, label="adjust_stock")
        if movement is None:
            logger.info(f"Stock count for {inventory_id} matches ledger, no adjustment needed")
        else:
            logger.info(f"Adjusted {inventory_id} by {movement.quantity}: {reason}")
        return movement

    async def transfer_stock(
        self,
        from_inventory_id: uuid.UUID,
        to_inventory_id: uuid.UUID,
        quantity: int,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Tuple[StockMovement, StockMovement]:
        """Move available stock between two ledger rows of the same product."""
        if quantity <= 0:
            raise ValidationError("Transfer quantity must be positive", details={"quantity": quantity})
        if from_inventory_id == to_inventory_id:
            raise ValidationError("Cannot transfer stock to the same ledger record")

        transfer_id = uuid.uuid4()

        async def operation(pending):
            # Fixed lock order so two opposite transfers cannot deadlock
            ordered = sorted([from_inventory_id, to_inventory_id], key=str)
            locked = {inventory_id: await self.lock_record(inventory_id) for inventory_id in ordered}
            source = locked[from_inventory_id]
            target = locked[to_inventory_id]
            if source.product_id != target.product_id:
                raise ValidationError(
                    "Transfers must stay within one product",
                    details={"from_product": str(source.product_id), "to_product": str(target.product_id)},
                )
            unit_cost = source.average_cost
            outbound = self.apply_movement(
                source, MovementType.TRANSFER, -quantity, pending,
                unit_cost=unit_cost,
                reference_type="transfer",
                reference_id=transfer_id,
                performed_by=performed_by,
                notes=notes,
            )
            inbound = self.apply_movement(
                target, MovementType.TRANSFER, quantity, pending,
                unit_cost=unit_cost,
                reference_type="transfer",
                reference_id=transfer_id,
                performed_by=performed_by,
                notes=notes,
            )
            return outbound, inbound

        result = await run_atomic(self.db, operation, events=self.events, label="transfer_stock")
        logger.info(f"Transferred {quantity} units from {from_inventory_id} to {to_inventory_id}")
        return result

    # ==================== AUDIT ====================

    async def replay_movements(self, inventory_id: uuid.UUID) -> LedgerSnapshot:
        """Rebuild a ledger row's state from zero using its movement log."""
        query = (
            select(StockMovement)
            .where(StockMovement.inventory_id == inventory_id)
            .order_by(StockMovement.sequence)
        )
        movements = (await self.db.execute(query)).scalars().all()

        snapshot = LedgerSnapshot()
        for movement in movements:
            snapshot = apply_movement_rules(
                snapshot, movement.movement_type, movement.quantity, movement.unit_cost
            )
        return snapshot

    async def verify_ledger(self, inventory_id: Optional[uuid.UUID] = None) -> List[dict]:
        """Compare stored ledger rows with their replayed movement logs."""
        query = (
            select(InventoryRecord)
            .order_by(InventoryRecord.created_at)
            .execution_options(populate_existing=True)
        )
        if inventory_id:
            query = query.where(InventoryRecord.id == inventory_id)
        records = (await self.db.execute(query)).scalars().all()
        if inventory_id and not records:
            raise NotFound(f"Inventory record {inventory_id} not found")

        report = []
        for record in records:
            stored = LedgerSnapshot.of(record)
            replayed = await self.replay_movements(record.id)
            consistent = (
                stored.quantity_on_hand == replayed.quantity_on_hand
                and stored.quantity_available == replayed.quantity_available
                and stored.quantity_reserved == replayed.quantity_reserved
                and math.isclose(stored.average_cost, replayed.average_cost, abs_tol=1e-6)
                and stored.quantity_on_hand == stored.quantity_available + stored.quantity_reserved
            )
            if not consistent:
                logger.warning(f"Ledger record {record.id} does not match its movement log")
            report.append({
                "inventory_id": record.id,
                "consistent": consistent,
                "stored": stored,
                "replayed": replayed,
                "movement_count": record.movement_count,
            })
        return report

    # ==================== QUERIES ====================

    async def get_ledger_record(self, inventory_id: uuid.UUID) -> InventoryRecord:
        record = await self.db.get(InventoryRecord, inventory_id, populate_existing=True)
        if record is None:
            raise NotFound(f"Inventory record {inventory_id} not found")
        return record

    async def get_ledger_records(
        self,
        product_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        stock_status: Optional[str] = None,
    ) -> Sequence[InventoryRecord]:
        query = select(InventoryRecord)
        if product_id:
            query = query.where(InventoryRecord.product_id == product_id)
        if warehouse_id:
            query = query.where(InventoryRecord.warehouse_id == warehouse_id)
        records = (await self.db.execute(query.order_by(InventoryRecord.created_at))).scalars().all()
        if stock_status:
            records = [
                r for r in records
                if calculate_stock_status(r.quantity_available, r.reorder_point, r.min_stock_level) == stock_status
            ]
        return records

    async def get_movements(
        self,
        inventory_id: Optional[uuid.UUID] = None,
        product_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        movement_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[StockMovement], int]:
        """Get movement history, newest first."""
        query = select(StockMovement)

        conditions = []
        if inventory_id:
            conditions.append(StockMovement.inventory_id == inventory_id)
        if product_id:
            conditions.append(StockMovement.product_id == product_id)
        if warehouse_id:
            conditions.append(StockMovement.warehouse_id == warehouse_id)
        if movement_type:
            conditions.append(StockMovement.movement_type == movement_type)
        if date_from:
            conditions.append(StockMovement.created_at >= date_from)
        if date_to:
            conditions.append(StockMovement.created_at <= date_to)

        if conditions:
            query = query.where(and_(*conditions))

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(StockMovement.created_at.desc(), StockMovement.sequence.desc())
        result = await self.db.execute(query.offset(skip).limit(limit))

        return list(result.scalars().all()), total or 0
