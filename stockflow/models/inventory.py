"""Inventory ledger models: per-location stock rows and the movement log."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Integer, Float
from sqlalchemy import UniqueConstraint, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockflow.database import Base
from stockflow.db_types import UUIDType
from stockflow.models.product import Product
from stockflow.models.warehouse import Warehouse


class MovementType(str, Enum):
    """Stock movement type enum."""
    PURCHASE = "purchase"  # Goods received from a supplier
    SALE = "sale"  # Reserved stock shipped to a customer
    ADJUSTMENT_IN = "adjustment_in"
    ADJUSTMENT_OUT = "adjustment_out"
    RETURN = "return"  # Customer return put back on the shelf
    TRANSFER = "transfer"  # Signed: negative leaves, positive arrives
    RESERVATION = "reservation"  # available -> reserved
    RELEASE = "release"  # reserved -> available


INBOUND_MOVEMENTS = frozenset({
    MovementType.PURCHASE,
    MovementType.ADJUSTMENT_IN,
    MovementType.RETURN,
})


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    CRITICAL_STOCK = "critical_stock"
    OUT_OF_STOCK = "out_of_stock"


def calculate_stock_status(quantity_available: int, reorder_point: int, min_stock_level: int) -> str:
    """Classify a ledger row by its available quantity."""
    if quantity_available <= 0:
        return StockStatus.OUT_OF_STOCK.value
    if quantity_available <= min_stock_level:
        return StockStatus.CRITICAL_STOCK.value
    if quantity_available <= reorder_point:
        return StockStatus.LOW_STOCK.value
    return StockStatus.IN_STOCK.value


class InventoryRecord(Base):
    """
    Authoritative stock quantities per product per warehouse location.

    Quantities change only through StockMovement rows written by the
    ledger service. quantity_on_hand == quantity_available + quantity_reserved.
    """

    __tablename__ = "inventory_records"
    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", "location_code", name="uq_inventory_record"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_non_negative"),
        CheckConstraint("quantity_available >= 0", name="ck_inventory_available_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_inventory_reserved_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id"),
        nullable=False,
        index=True
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("warehouses.id"),
        nullable=False,
        index=True
    )
    location_code: Mapped[str] = mapped_column(String(50), default="", nullable=False)

    # Stock levels
    quantity_on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity_available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity_reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity_in_transit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Thresholds
    reorder_point: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reorder_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    min_stock_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_stock_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Valuation
    average_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    last_movement_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    movement_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Optimistic lock counter, bumped by the mapper on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    product: Mapped[Product] = relationship(Product, lazy="raise")
    warehouse: Mapped[Warehouse] = relationship(Warehouse, lazy="raise")

    @property
    def stock_status(self) -> str:
        return calculate_stock_status(
            self.quantity_available, self.reorder_point, self.min_stock_level
        )

    @property
    def is_low_stock(self) -> bool:
        """Check if available stock is at or below the reorder point."""
        return self.quantity_available <= self.reorder_point

    def __repr__(self) -> str:
        return f"<InventoryRecord {self.product_id}@{self.warehouse_id} on_hand={self.quantity_on_hand}>"


class StockMovement(Base):
    """Append-only audit trail. One row per ledger mutation."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_movements_product_type_created", "product_id", "movement_type", "created_at"),
        UniqueConstraint("inventory_id", "sequence", name="uq_stock_movement_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    movement_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    # Position in the owning ledger row's history, starting at 1
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    inventory_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("inventory_records.id"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType, ForeignKey("products.id"), nullable=False)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("warehouses.id"),
        nullable=False,
        index=True
    )

    movement_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="purchase, sale, adjustment_in, adjustment_out, return, transfer, reservation, release"
    )
    # Signed: positive increases the bucket the type targets, negative decreases it
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Reference
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    reference_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Post-mutation snapshot
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    available_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_after: Mapped[int] = mapped_column(Integer, nullable=False)

    performed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<StockMovement {self.movement_number} {self.movement_type} {self.quantity}>"
