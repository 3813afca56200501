"""Order API endpoints: intake, allocation, cancellation, picking, shipping, returns."""
import uuid

from fastapi import APIRouter, status
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from stockflow.api.deps import DB, Events
from stockflow.core.exceptions import NotFound
from stockflow.models.order import Order
from stockflow.services.allocation_service import AllocationService
from stockflow.services.fulfillment_service import FulfillmentService, OrderLine
from stockflow.schemas.order import (
    AllocateOrderRequest,
    AllocationResponse,
    BackorderRequest,
    CancelOrderRequest,
    CancelOrderResponse,
    OrderCreate,
    OrderResponse,
    PickListRequest,
    PickListResponse,
    ReturnRequest,
    ReturnResponse,
    ShipmentRequest,
    ShipmentResponse,
)


router = APIRouter()


async def _load_order(db, order_id: uuid.UUID) -> Order:
    query = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    order = (await db.execute(query)).scalar_one_or_none()
    if not order:
        raise NotFound(f"Order {order_id} not found", details={"order_id": str(order_id)})
    return order


# ==================== ORDERS ====================

@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(data: OrderCreate, db: DB, events: Events):
    order = await AllocationService(db, events).create_order(
        [(item.product_id, item.quantity, item.unit_price) for item in data.items],
        order_number=data.order_number,
        customer_id=data.customer_id,
        warehouse_id=data.warehouse_id,
        notes=data.notes,
    )
    return OrderResponse.model_validate(order)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: uuid.UUID, db: DB):
    return OrderResponse.model_validate(await _load_order(db, order_id))


@router.post("/{order_id}/allocate", response_model=AllocationResponse)
async def allocate_order(order_id: uuid.UUID, data: AllocateOrderRequest, db: DB, events: Events):
    """Reserve stock for a pending order. Shortfalls are reported, not raised, when partial is allowed."""
    result = await AllocationService(db, events).allocate_order(
        order_id,
        allow_partial=data.allow_partial,
        create_backorder=data.create_backorder,
        performed_by=data.performed_by,
        expected_date=data.expected_date,
    )
    return AllocationResponse.model_validate(result)


@router.post("/{order_id}/cancel", response_model=CancelOrderResponse)
async def cancel_order(order_id: uuid.UUID, data: CancelOrderRequest, db: DB, events: Events):
    result = await AllocationService(db, events).release_order_allocations(
        order_id, performed_by=data.performed_by, reason=data.reason
    )
    return CancelOrderResponse(**result)


# ==================== FULFILLMENT ====================

@router.post("/pick-lists", response_model=PickListResponse)
async def generate_pick_list(data: PickListRequest, db: DB):
    pick_list = await FulfillmentService(db).generate_pick_list(
        data.order_ids,
        group_by_location=data.group_by_location,
        warehouse_id=data.warehouse_id,
        generated_by=data.generated_by,
    )
    return PickListResponse.model_validate(pick_list)


@router.post("/{order_id}/ship", response_model=ShipmentResponse)
async def ship_order(order_id: uuid.UUID, data: ShipmentRequest, db: DB, events: Events):
    result = await FulfillmentService(db, events).process_shipment(
        order_id,
        [OrderLine(line.order_item_id, line.quantity) for line in data.lines],
        tracking_number=data.tracking_number,
        carrier=data.carrier,
        shipped_by=data.shipped_by,
    )
    return ShipmentResponse.model_validate(result)


@router.post("/{order_id}/returns", response_model=ReturnResponse)
async def return_order_items(order_id: uuid.UUID, data: ReturnRequest, db: DB, events: Events):
    result = await FulfillmentService(db, events).process_return(
        order_id,
        [OrderLine(line.order_item_id, line.quantity) for line in data.lines],
        condition=data.condition,
        restockable=data.restockable,
        reason=data.reason,
        performed_by=data.performed_by,
    )
    return ReturnResponse.model_validate(result)


@router.post("/{order_id}/backorders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_backorder(order_id: uuid.UUID, data: BackorderRequest, db: DB, events: Events):
    backorder = await FulfillmentService(db, events).create_backorder(
        order_id,
        [OrderLine(line.order_item_id, line.quantity) for line in data.lines],
        expected_date=data.expected_date,
    )
    return OrderResponse.model_validate(backorder)
