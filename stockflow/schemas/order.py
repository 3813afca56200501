"""Order allocation and fulfillment schemas."""
from pydantic import BaseModel, Field

from stockflow.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Any, Dict, Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid


# ==================== ORDER SCHEMAS ====================

class OrderItemCreate(BaseCreateSchema):
    product_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)


class OrderCreate(BaseCreateSchema):
    order_number: Optional[str] = Field(None, max_length=60)
    customer_id: Optional[uuid.UUID] = None
    warehouse_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    items: List[OrderItemCreate] = Field(..., min_length=1)


class OrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    line_number: int
    product_id: uuid.UUID
    sku: str
    product_name: str
    quantity: int
    unit_price: Decimal
    quantity_allocated: int
    quantity_shipped: int
    quantity_returned: int
    quantity_backordered: int


class OrderResponse(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    customer_id: Optional[uuid.UUID] = None
    warehouse_id: Optional[uuid.UUID] = None
    status: str
    is_backorder: bool
    backorder_of_id: Optional[uuid.UUID] = None
    expected_date: Optional[date] = None
    subtotal: Decimal
    total_amount: Decimal
    items: List[OrderItemResponse] = []
    created_at: datetime


# ==================== ALLOCATION SCHEMAS ====================

class AllocateOrderRequest(BaseCreateSchema):
    allow_partial: bool = True
    create_backorder: bool = True
    expected_date: Optional[date] = None
    performed_by: Optional[str] = None


class ItemAllocationResponse(BaseResponseSchema):
    order_item_id: uuid.UUID
    product_id: uuid.UUID
    sku: str
    requested: int
    allocated: int
    shortfall: int
    locations: List[Dict[str, Any]] = []


class AllocationResponse(BaseResponseSchema):
    order_id: uuid.UUID
    order_number: str
    status: str
    allocation_complete: bool
    total_allocated: int
    total_shortfall: int
    items: List[ItemAllocationResponse]
    backorder_id: Optional[uuid.UUID] = None
    backorder_number: Optional[str] = None


class CancelOrderRequest(BaseCreateSchema):
    reason: Optional[str] = None
    performed_by: Optional[str] = None


class CancelOrderResponse(BaseModel):
    order_id: uuid.UUID
    order_number: str
    status: str
    released_quantity: int
    allocations_released: int


# ==================== FULFILLMENT SCHEMAS ====================

class OrderLineRequest(BaseModel):
    order_item_id: uuid.UUID
    quantity: int = Field(..., gt=0)


class PickListRequest(BaseCreateSchema):
    order_ids: List[uuid.UUID] = Field(..., min_length=1)
    group_by_location: bool = True
    warehouse_id: Optional[uuid.UUID] = None
    generated_by: Optional[str] = None


class PickListResponse(BaseResponseSchema):
    id: str
    generated_at: datetime
    generated_by: Optional[str] = None
    warehouse_id: Optional[uuid.UUID] = None
    group_by_location: bool
    order_count: int
    total_items: int
    orders: List[Dict[str, Any]]
    groups: List[Dict[str, Any]]
    statistics: Dict[str, int]


class ShipmentRequest(BaseCreateSchema):
    lines: List[OrderLineRequest] = Field(..., min_length=1)
    tracking_number: Optional[str] = Field(None, max_length=100)
    carrier: Optional[str] = Field(None, max_length=100)
    shipped_by: Optional[str] = None


class ShipmentResponse(BaseResponseSchema):
    order_id: uuid.UUID
    order_number: str
    status: str
    shipment_complete: bool
    shipped_items: List[Dict[str, Any]]
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class ReturnRequest(BaseCreateSchema):
    lines: List[OrderLineRequest] = Field(..., min_length=1)
    condition: str = "good"
    restockable: bool = True
    reason: Optional[str] = None
    performed_by: Optional[str] = None


class ReturnResponse(BaseResponseSchema):
    order_id: uuid.UUID
    order_number: str
    status: str
    restocked_quantity: int
    non_restockable_quantity: int
    returned_items: List[Dict[str, Any]]
    restocked_items: List[Dict[str, Any]]
    non_restockable_items: List[Dict[str, Any]]


class BackorderRequest(BaseCreateSchema):
    lines: List[OrderLineRequest] = Field(..., min_length=1)
    expected_date: Optional[date] = None
