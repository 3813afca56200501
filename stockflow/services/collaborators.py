"""
Collaborator interfaces consumed by reorder analysis and procurement,
with the database-backed implementations used by default.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from stockflow.models.purchase import PriceList, PriceListItem, PurchaseOrder, PurchaseOrderItem
from stockflow.models.supplier import Supplier


@dataclass(frozen=True)
class SupplierInfo:
    id: uuid.UUID
    code: str
    name: str
    lead_time_days: Optional[int]
    is_active: bool


@dataclass(frozen=True)
class PriceEntry:
    id: uuid.UUID
    sku: str
    unit_price: Decimal


@dataclass(frozen=True)
class ActivePriceList:
    id: uuid.UUID
    supplier_id: uuid.UUID
    items: Dict[str, PriceEntry] = field(default_factory=dict)

    def price_for(self, sku: str) -> Optional[PriceEntry]:
        return self.items.get(sku)


@dataclass
class PurchaseOrderLineDraft:
    product_id: uuid.UUID
    inventory_id: Optional[uuid.UUID]
    sku: str
    product_name: str
    quantity_ordered: int
    unit_price: Decimal
    price_list_item_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity_ordered).quantize(Decimal("0.01"))


@dataclass
class PurchaseOrderDraft:
    po_number: str
    supplier_id: uuid.UUID
    status: str
    approval_status: str
    price_list_id: Optional[uuid.UUID] = None
    is_automated: bool = False
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None


class SupplierDirectory(Protocol):
    async def get_supplier(self, supplier_id: uuid.UUID) -> Optional[SupplierInfo]:
        ...


class PriceListLookup(Protocol):
    async def get_active_price_list(self, supplier_id: uuid.UUID) -> Optional[ActivePriceList]:
        ...


class PurchaseOrderWriter(Protocol):
    async def create_purchase_order(
        self,
        order_data: PurchaseOrderDraft,
        items: List[PurchaseOrderLineDraft],
    ) -> PurchaseOrder:
        ...


class DatabaseSupplierDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_supplier(self, supplier_id: uuid.UUID) -> Optional[SupplierInfo]:
        supplier = await self.db.get(Supplier, supplier_id)
        if supplier is None:
            return None
        return SupplierInfo(
            id=supplier.id,
            code=supplier.code,
            name=supplier.name,
            lead_time_days=supplier.lead_time_days,
            is_active=supplier.is_active,
        )


class DatabasePriceListLookup:
    """Most recently effective active price list of a supplier."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_price_list(
        self,
        supplier_id: uuid.UUID,
        on_date: Optional[date] = None,
    ) -> Optional[ActivePriceList]:
        today = on_date or datetime.now(timezone.utc).date()
        stmt = (
            select(PriceList)
            .where(
                PriceList.supplier_id == supplier_id,
                PriceList.status == "active",
                PriceList.effective_date <= today,
                or_(PriceList.expiry_date.is_(None), PriceList.expiry_date >= today),
            )
            .order_by(PriceList.effective_date.desc())
            .limit(1)
        )
        price_list = (await self.db.execute(stmt)).scalar_one_or_none()
        if price_list is None:
            return None

        rows = (await self.db.execute(
            select(PriceListItem).where(PriceListItem.price_list_id == price_list.id)
        )).scalars().all()
        return ActivePriceList(
            id=price_list.id,
            supplier_id=supplier_id,
            items={
                row.sku: PriceEntry(id=row.id, sku=row.sku, unit_price=Decimal(row.unit_price))
                for row in rows
            },
        )


class DatabasePurchaseOrderWriter:
    """Adds the purchase order to the session; the caller commits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_purchase_order(
        self,
        order_data: PurchaseOrderDraft,
        items: List[PurchaseOrderLineDraft],
    ) -> PurchaseOrder:
        subtotal = sum((line.line_total for line in items), Decimal("0"))
        now = datetime.now(timezone.utc)
        purchase_order = PurchaseOrder(
            id=uuid.uuid4(),
            po_number=order_data.po_number,
            supplier_id=order_data.supplier_id,
            price_list_id=order_data.price_list_id,
            status=order_data.status,
            approval_status=order_data.approval_status,
            is_automated=order_data.is_automated,
            subtotal=subtotal,
            total_amount=subtotal,
            notes=order_data.notes,
            internal_notes=order_data.internal_notes,
            order_date=now.date(),
            expected_delivery_date=order_data.expected_delivery_date,
            created_by=order_data.created_by,
            approved_by=order_data.approved_by,
            approved_at=now if order_data.approved_by or order_data.approval_status == "auto_approved" else None,
            items=[
                PurchaseOrderItem(
                    id=uuid.uuid4(),
                    line_number=line_number,
                    product_id=line.product_id,
                    inventory_id=line.inventory_id,
                    price_list_item_id=line.price_list_item_id,
                    sku=line.sku,
                    product_name=line.product_name,
                    quantity_ordered=line.quantity_ordered,
                    quantity_received=0,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                    notes=line.notes,
                )
                for line_number, line in enumerate(items, start=1)
            ],
        )
        self.db.add(purchase_order)
        await self.db.flush()
        return purchase_order
