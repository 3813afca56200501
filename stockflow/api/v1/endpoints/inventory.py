"""Ledger API endpoints: records, movements, adjustments and transfers."""
from typing import List, Optional
import uuid
from datetime import datetime

from fastapi import APIRouter, Query, status

from stockflow.api.deps import DB, Events
from stockflow.services.ledger_service import LedgerService
from stockflow.schemas.inventory import (
    LedgerRecordUpsert,
    LedgerRecordResponse,
    LedgerRecordListResponse,
    LedgerVerificationResponse,
    MovementCreate,
    MovementResponse,
    MovementListResponse,
    StockAdjustmentRequest,
    StockTransferRequest,
    StockTransferResponse,
)


router = APIRouter()


# ==================== LEDGER RECORDS ====================

@router.get("/records", response_model=LedgerRecordListResponse)
async def list_ledger_records(
    db: DB,
    product_id: Optional[uuid.UUID] = Query(None),
    warehouse_id: Optional[uuid.UUID] = Query(None),
    stock_status: Optional[str] = Query(None),
):
    """List ledger rows, optionally filtered by product, warehouse or stock status."""
    records = await LedgerService(db).get_ledger_records(
        product_id=product_id,
        warehouse_id=warehouse_id,
        stock_status=stock_status,
    )
    return LedgerRecordListResponse(
        items=[LedgerRecordResponse.model_validate(r) for r in records],
        total=len(records),
    )


@router.put("/records", response_model=LedgerRecordResponse)
async def upsert_ledger_record(data: LedgerRecordUpsert, db: DB, events: Events):
    """Create a ledger row or update its thresholds."""
    record = await LedgerService(db, events).upsert_ledger_record(
        data.product_id,
        data.warehouse_id,
        data.location_code,
        reorder_point=data.reorder_point,
        reorder_quantity=data.reorder_quantity,
        min_stock_level=data.min_stock_level,
        max_stock_level=data.max_stock_level,
        initial_quantity=data.initial_quantity,
        unit_cost=data.unit_cost,
        performed_by=data.performed_by,
    )
    return LedgerRecordResponse.model_validate(record)


@router.get("/records/{inventory_id}", response_model=LedgerRecordResponse)
async def get_ledger_record(inventory_id: uuid.UUID, db: DB):
    record = await LedgerService(db).get_ledger_record(inventory_id)
    return LedgerRecordResponse.model_validate(record)


@router.post(
    "/records/{inventory_id}/movements",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_movement(inventory_id: uuid.UUID, data: MovementCreate, db: DB, events: Events):
    movement = await LedgerService(db, events).record_movement(
        inventory_id,
        data.movement_type,
        data.quantity,
        unit_cost=data.unit_cost,
        reference_type=data.reference_type,
        reference_id=data.reference_id,
        reference_number=data.reference_number,
        performed_by=data.performed_by,
        notes=data.notes,
    )
    return MovementResponse.model_validate(movement)


@router.post("/records/{inventory_id}/adjust", response_model=Optional[MovementResponse])
async def adjust_stock(inventory_id: uuid.UUID, data: StockAdjustmentRequest, db: DB, events: Events):
    """Set on-hand to a counted quantity. Returns null when nothing changed."""
    movement = await LedgerService(db, events).adjust_stock(
        inventory_id, data.new_quantity, data.reason, performed_by=data.performed_by
    )
    return MovementResponse.model_validate(movement) if movement else None


@router.post("/transfers", response_model=StockTransferResponse, status_code=status.HTTP_201_CREATED)
async def transfer_stock(data: StockTransferRequest, db: DB, events: Events):
    outbound, inbound = await LedgerService(db, events).transfer_stock(
        data.from_inventory_id,
        data.to_inventory_id,
        data.quantity,
        performed_by=data.performed_by,
        notes=data.notes,
    )
    return StockTransferResponse(
        outbound=MovementResponse.model_validate(outbound),
        inbound=MovementResponse.model_validate(inbound),
    )


@router.get("/verify", response_model=List[LedgerVerificationResponse])
async def verify_ledger(db: DB, inventory_id: Optional[uuid.UUID] = Query(None)):
    """Compare stored ledger rows with a replay of their movement logs."""
    report = await LedgerService(db).verify_ledger(inventory_id)
    return [LedgerVerificationResponse.model_validate(entry) for entry in report]


# ==================== MOVEMENT HISTORY ====================

@router.get("/movements", response_model=MovementListResponse)
async def list_movements(
    db: DB,
    inventory_id: Optional[uuid.UUID] = Query(None),
    product_id: Optional[uuid.UUID] = Query(None),
    warehouse_id: Optional[uuid.UUID] = Query(None),
    movement_type: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """Get paginated movement history, newest first."""
    movements, total = await LedgerService(db).get_movements(
        inventory_id=inventory_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
        movement_type=movement_type,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit,
    )
    return MovementListResponse(
        items=[MovementResponse.model_validate(m) for m in movements],
        total=total,
        skip=skip,
        limit=limit,
    )
