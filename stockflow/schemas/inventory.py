"""Ledger schemas for API requests/responses."""
from pydantic import BaseModel, Field

from stockflow.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Optional, List
from datetime import datetime
import uuid

from stockflow.models.inventory import MovementType


# ==================== LEDGER RECORD SCHEMAS ====================

class LedgerRecordUpsert(BaseCreateSchema):
    """Create a ledger row or update its thresholds."""
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    location_code: str = Field("", max_length=50)
    reorder_point: Optional[int] = Field(None, ge=0)
    reorder_quantity: Optional[int] = Field(None, ge=0)
    min_stock_level: Optional[int] = Field(None, ge=0)
    max_stock_level: Optional[int] = Field(None, ge=0)
    initial_quantity: int = Field(0, ge=0)
    unit_cost: Optional[float] = Field(None, ge=0)
    performed_by: Optional[str] = None


class LedgerRecordResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    location_code: str
    quantity_on_hand: int
    quantity_available: int
    quantity_reserved: int
    quantity_in_transit: int
    reorder_point: int
    reorder_quantity: int
    min_stock_level: int
    max_stock_level: Optional[int] = None
    average_cost: float
    stock_status: str
    is_low_stock: bool
    movement_count: int
    last_movement_at: Optional[datetime] = None
    created_at: datetime


class LedgerRecordListResponse(BaseModel):
    items: List[LedgerRecordResponse]
    total: int


# ==================== MOVEMENT SCHEMAS ====================

class MovementCreate(BaseCreateSchema):
    """Record one movement against a ledger row."""
    movement_type: MovementType
    quantity: int
    unit_cost: Optional[float] = Field(None, ge=0)
    reference_type: Optional[str] = Field(None, max_length=50)
    reference_id: Optional[uuid.UUID] = None
    reference_number: Optional[str] = Field(None, max_length=100)
    performed_by: Optional[str] = None
    notes: Optional[str] = None


class StockAdjustmentRequest(BaseCreateSchema):
    new_quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1)
    performed_by: Optional[str] = None


class StockTransferRequest(BaseCreateSchema):
    from_inventory_id: uuid.UUID
    to_inventory_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    performed_by: Optional[str] = None
    notes: Optional[str] = None


class MovementResponse(BaseResponseSchema):
    id: uuid.UUID
    movement_number: str
    sequence: int
    inventory_id: uuid.UUID
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    movement_type: str
    quantity: int
    unit_cost: Optional[float] = None
    total_cost: Optional[float] = None
    reference_type: Optional[str] = None
    reference_id: Optional[uuid.UUID] = None
    reference_number: Optional[str] = None
    quantity_after: int
    available_after: int
    reserved_after: int
    performed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class MovementListResponse(BaseModel):
    """Paginated movement history."""
    items: List[MovementResponse]
    total: int
    skip: int
    limit: int


class StockTransferResponse(BaseModel):
    outbound: MovementResponse
    inbound: MovementResponse


class LedgerSnapshotResponse(BaseResponseSchema):
    quantity_on_hand: int
    quantity_available: int
    quantity_reserved: int
    average_cost: float


class LedgerVerificationResponse(BaseResponseSchema):
    inventory_id: uuid.UUID
    consistent: bool
    stored: LedgerSnapshotResponse
    replayed: LedgerSnapshotResponse
    movement_count: int
