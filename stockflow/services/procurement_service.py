"""
Procurement Service

Automated purchase orders from reorder analysis, goods receipt against
purchase orders, and supplier lead-time recalibration.

Automated creation commits one transaction per supplier. A failing
supplier is reported in the result and never rolls back the orders
already created for the others.
"""
import logging
import math
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stockflow.config import settings
from stockflow.core.events import DomainEvent, EventDispatcher, NullDispatcher, PurchaseOrdersCreated, SupplierLeadTimesUpdated
from stockflow.core.exceptions import InvalidState, NotFound, StockflowError, ValidationError
from stockflow.models.inventory import InventoryRecord, MovementType
from stockflow.models.purchase import PurchaseOrder
from stockflow.models.supplier import Supplier
from stockflow.services.collaborators import (
    DatabasePriceListLookup,
    DatabasePurchaseOrderWriter,
    DatabaseSupplierDirectory,
    PriceListLookup,
    PurchaseOrderDraft,
    PurchaseOrderLineDraft,
    PurchaseOrderWriter,
    SupplierDirectory,
)
from stockflow.services.ledger_service import LedgerService
from stockflow.services.po_state_machine import (
    ApprovalStatus,
    POStatus,
    can_receive_goods,
    receipt_status,
    transition_po,
)
from stockflow.services.reorder_service import ReorderRecommendation, ReorderService
from stockflow.services.unit_of_work import run_atomic


logger = logging.getLogger(__name__)

DEFAULT_PO_NOTES = "Automated reorder based on demand analysis"


@dataclass(frozen=True)
class ReceiptLine:
    purchase_order_item_id: uuid.UUID
    quantity: int


@dataclass
class ProcurementResult:
    purchase_orders: List[dict] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)
    suppliers_processed: int = 0
    items_processed: int = 0
    orders_created: int = 0
    total_value: Decimal = Decimal("0")

    @property
    def summary(self) -> dict:
        return {
            "suppliers_processed": self.suppliers_processed,
            "items_processed": self.items_processed,
            "orders_created": self.orders_created,
            "total_value": float(self.total_value),
        }


def generate_auto_po_number(supplier_id: uuid.UUID, moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    millis = int(moment.timestamp() * 1000)
    return f"AUTO-{millis}-{supplier_id.hex[-6:].upper()}-{uuid.uuid4().hex[:4].upper()}"


def recalibrated_lead_time(lead_times: Sequence[int]) -> int:
    """Larger of 1.2x the mean and the 95th percentile delivery time, in whole days."""
    ordered = sorted(lead_times)
    average = sum(ordered) / len(ordered)
    p95 = ordered[min(int(math.floor(len(ordered) * 0.95)), len(ordered) - 1)]
    return math.ceil(max(average * 1.2, p95))


def _as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


class ProcurementService:
    """Turns reorder recommendations into supplier purchase orders."""

    def __init__(
        self,
        db: AsyncSession,
        events: Optional[EventDispatcher] = None,
        price_lists: Optional[PriceListLookup] = None,
        suppliers: Optional[SupplierDirectory] = None,
        writer: Optional[PurchaseOrderWriter] = None,
    ):
        self.db = db
        self.events = events or NullDispatcher()
        self.price_lists = price_lists or DatabasePriceListLookup(db)
        self.suppliers = suppliers or DatabaseSupplierDirectory(db)
        self.writer = writer or DatabasePurchaseOrderWriter(db)
        self.ledger = LedgerService(db, self.events)

    # ==================== AUTOMATED PURCHASE ORDERS ====================

    async def create_automated_purchase_orders(
        self,
        items: Sequence[ReorderRecommendation],
        approval_required: Optional[bool] = None,
        user_id: Optional[str] = None,
        notes: str = DEFAULT_PO_NOTES,
    ) -> ProcurementResult:
        """
        Create one purchase order per supplier for the given recommendations.

        Items without a supplier, without a price on the supplier's active
        price list, or with nothing to order are reported in errors. A
        supplier without an active price list is reported once with all
        of its SKUs.
        """
        if approval_required is None:
            approval_required = settings.PROCUREMENT_APPROVAL_REQUIRED

        result = ProcurementResult(items_processed=len(items))
        groups: Dict[uuid.UUID, List[ReorderRecommendation]] = OrderedDict()
        for item in items:
            if item.supplier_id is None:
                result.errors.append({
                    "supplier_id": None,
                    "sku": item.sku,
                    "error": "No supplier assigned",
                })
                continue
            groups.setdefault(item.supplier_id, []).append(item)
        result.suppliers_processed = len(groups)

        for supplier_id, supplier_items in groups.items():
            try:
                created, item_errors = await self._create_supplier_order(
                    supplier_id, supplier_items, approval_required, user_id, notes,
                )
            except StockflowError as e:
                result.errors.append({
                    "supplier_id": supplier_id,
                    "error": e.message,
                    "items": [item.sku for item in supplier_items],
                })
                continue
            except Exception as e:
                logger.error(f"Error creating PO for supplier {supplier_id}: {e}")
                result.errors.append({
                    "supplier_id": supplier_id,
                    "error": str(e),
                    "items": [item.sku for item in supplier_items],
                })
                continue

            result.errors.extend(item_errors)
            if created is None:
                continue
            result.purchase_orders.append(created)
            result.orders_created += 1
            result.total_value += created["total_value"]

        if result.orders_created:
            await self.events.publish([PurchaseOrdersCreated(
                orders_created=result.orders_created,
                total_value=float(result.total_value),
                items_processed=result.items_processed,
                approval_required=approval_required,
            )])

        logger.info(
            f"Automated procurement created {result.orders_created} purchase orders "
            f"for {result.suppliers_processed} suppliers ({len(result.errors)} errors)"
        )
        return result

    async def _create_supplier_order(
        self,
        supplier_id: uuid.UUID,
        supplier_items: List[ReorderRecommendation],
        approval_required: bool,
        user_id: Optional[str],
        notes: str,
    ):
        async def operation(pending: List[DomainEvent]):
            item_errors: List[dict] = []
            price_list = await self.price_lists.get_active_price_list(supplier_id)
            if price_list is None:
                raise NotFound(
                    "No active price list found",
                    details={"supplier_id": str(supplier_id)},
                )

            lines: List[PurchaseOrderLineDraft] = []
            for item in supplier_items:
                if item.suggested_order_quantity <= 0:
                    item_errors.append({
                        "supplier_id": supplier_id,
                        "sku": item.sku,
                        "error": "Nothing to order",
                    })
                    continue
                price = price_list.price_for(item.sku)
                if price is None:
                    item_errors.append({
                        "supplier_id": supplier_id,
                        "sku": item.sku,
                        "error": "Price not found in active price list",
                    })
                    continue
                lines.append(PurchaseOrderLineDraft(
                    product_id=item.product_id,
                    inventory_id=item.inventory_id,
                    sku=item.sku,
                    product_name=item.product_name,
                    quantity_ordered=item.suggested_order_quantity,
                    unit_price=price.unit_price,
                    price_list_item_id=price.id,
                    notes=f"Auto-reorder: {item.reason}",
                ))

            if not lines:
                return None, item_errors

            lead_time = max(item.lead_time_days for item in supplier_items)
            draft = PurchaseOrderDraft(
                po_number=generate_auto_po_number(supplier_id),
                supplier_id=supplier_id,
                status=POStatus.DRAFT,
                approval_status=ApprovalStatus.PENDING if approval_required else ApprovalStatus.AUTO_APPROVED,
                price_list_id=price_list.id,
                is_automated=True,
                notes=notes,
                internal_notes=f"Automated PO created from demand analysis. {len(lines)} items.",
                expected_delivery_date=datetime.now(timezone.utc).date() + timedelta(days=lead_time),
                created_by=user_id,
            )
            purchase_order = await self.writer.create_purchase_order(draft, lines)
            if not approval_required:
                transition_po(purchase_order, POStatus.APPROVED, user_id)

            return {
                "purchase_order_id": purchase_order.id,
                "po_number": purchase_order.po_number,
                "supplier_id": supplier_id,
                "supplier_name": supplier_items[0].supplier_name,
                "status": purchase_order.status,
                "approval_status": purchase_order.approval_status,
                "item_count": len(lines),
                "total_value": sum((line.line_total for line in lines), Decimal("0")),
            }, item_errors

        return await run_atomic(
            self.db, operation, events=self.events, label=f"purchase order for supplier {supplier_id}"
        )

    async def run_reorder_cycle(self, user_id: Optional[str] = None) -> ProcurementResult:
        """Analyze reorder needs and raise purchase orders for everything that needs one."""
        analysis = await ReorderService(self.db, self.suppliers).analyze_reorder_needs()
        candidates = analysis.procurement_candidates
        if not candidates:
            logger.info("Reorder cycle found nothing to order")
            return ProcurementResult()
        return await self.create_automated_purchase_orders(candidates, user_id=user_id)

    # ==================== PO LIFECYCLE ====================

    async def get_purchase_order(self, po_id: uuid.UUID) -> PurchaseOrder:
        stmt = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items))
            .where(PurchaseOrder.id == po_id)
            .execution_options(populate_existing=True)
        )
        po = (await self.db.execute(stmt)).scalar_one_or_none()
        if po is None:
            raise NotFound(f"Purchase order {po_id} not found", details={"purchase_order_id": str(po_id)})
        return po

    async def change_purchase_order_status(
        self,
        po_id: uuid.UUID,
        new_status: str,
        user_id: Optional[str] = None,
    ) -> PurchaseOrder:
        """Approve, reject, send, acknowledge, close or cancel a purchase order."""
        if new_status not in POStatus.all():
            raise ValidationError(f"Unknown purchase order status '{new_status}'", details={"requested": new_status})
        if new_status in (POStatus.PARTIALLY_RECEIVED, POStatus.FULLY_RECEIVED):
            raise ValidationError(
                "Receipt statuses are set by receiving goods",
                details={"requested": new_status},
            )

        async def operation(pending: List[DomainEvent]) -> PurchaseOrder:
            po = await self._lock_purchase_order(po_id)
            previous = po.status
            transition_po(po, new_status, user_id)
            logger.info(f"PO {po.po_number}: {previous} -> {po.status}")
            return po

        return await run_atomic(self.db, operation, events=self.events, label="change_purchase_order_status")

    # ==================== GOODS RECEIPT ====================

    async def _lock_purchase_order(self, po_id: uuid.UUID) -> PurchaseOrder:
        await self.db.flush()
        stmt = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items))
            .where(PurchaseOrder.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        po = (await self.db.execute(stmt)).scalar_one_or_none()
        if po is None:
            raise NotFound(f"Purchase order {po_id} not found", details={"purchase_order_id": str(po_id)})
        return po

    async def _receiving_record(self, product_id: uuid.UUID) -> uuid.UUID:
        stmt = (
            select(InventoryRecord.id)
            .where(InventoryRecord.product_id == product_id)
            .order_by(InventoryRecord.created_at, InventoryRecord.location_code)
            .limit(1)
        )
        inventory_id = (await self.db.execute(stmt)).scalar_one_or_none()
        if inventory_id is None:
            raise NotFound(
                f"No inventory record for product {product_id}",
                details={"product_id": str(product_id)},
            )
        return inventory_id

    async def receive_purchase_order(
        self,
        po_id: uuid.UUID,
        lines: Optional[Sequence[ReceiptLine]] = None,
        received_by: Optional[str] = None,
    ) -> dict:
        """
        Book received goods as purchase movements at the PO unit price.

        Without lines, every pending quantity is received. The PO moves to
        PARTIALLY_RECEIVED or FULLY_RECEIVED.
        """
        async def operation(pending: List[DomainEvent]) -> dict:
            po = await self._lock_purchase_order(po_id)
            if not can_receive_goods(po.status):
                raise InvalidState(
                    f"Cannot receive goods against PO in '{po.status}' status",
                    details={"po_number": po.po_number, "status": po.status},
                )

            items = {item.id: item for item in po.items}
            if lines is None:
                requested = [(item, item.pending_quantity) for item in po.items if item.pending_quantity > 0]
            else:
                requested = []
                for line in lines:
                    item = items.get(line.purchase_order_item_id)
                    if item is None:
                        raise ValidationError(
                            "Line does not belong to this purchase order",
                            details={"purchase_order_item_id": str(line.purchase_order_item_id)},
                        )
                    if line.quantity <= 0 or line.quantity > item.pending_quantity:
                        raise ValidationError(
                            f"Cannot receive {line.quantity} of {item.sku}; {item.pending_quantity} pending",
                            details={"sku": item.sku, "pending": item.pending_quantity, "requested": line.quantity},
                        )
                    requested.append((item, line.quantity))
            if not requested:
                raise ValidationError("Nothing to receive", details={"po_number": po.po_number})

            received = []
            for item, quantity in requested:
                inventory_id = item.inventory_id or await self._receiving_record(item.product_id)
                record = await self.ledger.lock_record(inventory_id)
                movement = self.ledger.apply_movement(
                    record, MovementType.PURCHASE, quantity, pending,
                    unit_cost=float(item.unit_price),
                    reference_type="purchase_order",
                    reference_id=po.id,
                    reference_number=po.po_number,
                    performed_by=received_by,
                )
                item.quantity_received += quantity
                received.append({
                    "sku": item.sku,
                    "quantity": quantity,
                    "inventory_id": inventory_id,
                    "movement_number": movement.movement_number,
                })

            transition_po(po, receipt_status(po.items), received_by)
            return {
                "purchase_order_id": po.id,
                "po_number": po.po_number,
                "status": po.status,
                "received": received,
            }

        result = await run_atomic(self.db, operation, events=self.events, label="receive_purchase_order")
        logger.info(f"Received {len(result['received'])} lines on {result['po_number']} ({result['status']})")
        return result

    # ==================== SUPPLIER LEAD TIMES ====================

    async def update_supplier_lead_times(
        self,
        lookback_days: int = 90,
        minimum_orders: int = 3,
        supplier_id: Optional[uuid.UUID] = None,
        as_of: Optional[datetime] = None,
    ) -> dict:
        """
        Recalibrate supplier lead times from received purchase orders.

        Suppliers with fewer than minimum_orders receipts in the window
        are analyzed but left unchanged.
        """
        end = as_of or datetime.now(timezone.utc)
        cutoff = (end - timedelta(days=lookback_days)).date()

        async def operation(pending: List[DomainEvent]) -> dict:
            stmt = (
                select(PurchaseOrder.supplier_id, PurchaseOrder.order_date, PurchaseOrder.received_at)
                .where(
                    PurchaseOrder.received_at.is_not(None),
                    PurchaseOrder.order_date >= cutoff,
                )
                .order_by(PurchaseOrder.supplier_id, PurchaseOrder.received_at.desc())
            )
            if supplier_id is not None:
                stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)

            deliveries: Dict[uuid.UUID, List[int]] = OrderedDict()
            for row_supplier_id, order_date, received_at in (await self.db.execute(stmt)).all():
                elapsed = _as_naive_utc(received_at) - datetime.combine(order_date, datetime.min.time())
                deliveries.setdefault(row_supplier_id, []).append(
                    math.ceil(elapsed.total_seconds() / 86400)
                )

            changes = []
            for sid, lead_times in deliveries.items():
                if len(lead_times) < minimum_orders:
                    continue
                supplier = await self.db.get(Supplier, sid)
                if supplier is None:
                    continue

                new_lead_time = recalibrated_lead_time(lead_times)
                previous = supplier.lead_time_days or settings.DEFAULT_LEAD_TIME_DAYS
                if abs(new_lead_time - previous) < 1:
                    continue

                average = round(sum(lead_times) / len(lead_times), 1)
                p95 = sorted(lead_times)[min(int(math.floor(len(lead_times) * 0.95)), len(lead_times) - 1)]
                supplier.lead_time_days = new_lead_time
                supplier.extra_data = {
                    **(supplier.extra_data or {}),
                    "lead_time_updated": end.isoformat(),
                    "previous_lead_time": previous,
                    "calculated_from": len(lead_times),
                    "average_actual": average,
                    "p95_actual": p95,
                }
                changes.append({
                    "supplier_id": sid,
                    "supplier_name": supplier.name,
                    "previous_lead_time": previous,
                    "new_lead_time": new_lead_time,
                    "average_actual": average,
                    "p95_actual": p95,
                    "data_points": len(lead_times),
                })

            pending.append(SupplierLeadTimesUpdated(
                suppliers_analyzed=len(deliveries),
                suppliers_updated=len(changes),
            ))
            return {
                "suppliers_analyzed": len(deliveries),
                "suppliers_updated": len(changes),
                "lead_time_changes": changes,
            }

        result = await run_atomic(self.db, operation, events=self.events, label="update_supplier_lead_times")
        logger.info(
            f"Lead times updated for {result['suppliers_updated']} of "
            f"{result['suppliers_analyzed']} suppliers"
        )
        return result
