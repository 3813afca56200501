"""Planning API endpoints: demand analysis, reorder analysis and procurement."""
import uuid

from fastapi import APIRouter

from stockflow.api.deps import DB, Events
from stockflow.services.demand_forecasting import DemandForecastingService
from stockflow.services.procurement_service import DEFAULT_PO_NOTES, ProcurementService, ReceiptLine
from stockflow.services.reorder_service import ReorderService
from stockflow.schemas.planning import (
    AutomatedPurchaseOrderRequest,
    DemandAnalysisRequest,
    DemandAnalysisResponse,
    LeadTimeRefreshRequest,
    LeadTimeRefreshResponse,
    ProcurementResponse,
    PurchaseOrderResponse,
    PurchaseOrderStatusUpdate,
    PurchaseOrderReceiptRequest,
    PurchaseOrderReceiptResponse,
    ReorderAnalysisRequest,
    ReorderAnalysisResponse,
)


router = APIRouter()


# ==================== DEMAND ====================

@router.post("/demand-analysis", response_model=DemandAnalysisResponse)
async def analyze_demand(data: DemandAnalysisRequest, db: DB):
    analysis = await DemandForecastingService(db).analyze_demand_patterns(
        time_range_days=data.time_range_days,
        product_ids=data.product_ids,
        warehouse_ids=data.warehouse_ids,
        include_seasonality=data.include_seasonality,
        include_trend=data.include_trend,
        forecast_days=data.forecast_days,
        confidence_level=data.confidence_level,
    )
    return DemandAnalysisResponse.model_validate(analysis)


# ==================== REORDER ====================

@router.post("/reorder-analysis", response_model=ReorderAnalysisResponse)
async def analyze_reorder_needs(data: ReorderAnalysisRequest, db: DB):
    analysis = await ReorderService(db).analyze_reorder_needs(
        warehouse_ids=data.warehouse_ids,
        supplier_ids=data.supplier_ids,
        include_forecasting=data.include_forecasting,
        urgency_only=data.urgency_only,
    )
    return ReorderAnalysisResponse.model_validate(analysis)


# ==================== PROCUREMENT ====================

@router.post("/purchase-orders/automated", response_model=ProcurementResponse)
async def create_automated_purchase_orders(data: AutomatedPurchaseOrderRequest, db: DB, events: Events):
    """Analyze reorder needs and raise one purchase order per supplier."""
    analysis = await ReorderService(db).analyze_reorder_needs(
        warehouse_ids=data.warehouse_ids,
        supplier_ids=data.supplier_ids,
        include_forecasting=data.include_forecasting,
        urgency_only=data.urgency_only,
    )
    result = await ProcurementService(db, events).create_automated_purchase_orders(
        analysis.procurement_candidates,
        approval_required=data.approval_required,
        user_id=data.user_id,
        notes=data.notes or DEFAULT_PO_NOTES,
    )
    return ProcurementResponse.model_validate(result)


@router.get("/purchase-orders/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(po_id: uuid.UUID, db: DB):
    po = await ProcurementService(db).get_purchase_order(po_id)
    return PurchaseOrderResponse.model_validate(po)


@router.post("/purchase-orders/{po_id}/status", response_model=PurchaseOrderResponse)
async def change_purchase_order_status(po_id: uuid.UUID, data: PurchaseOrderStatusUpdate, db: DB, events: Events):
    """Move a purchase order through its lifecycle (approve, send, close, cancel)."""
    po = await ProcurementService(db, events).change_purchase_order_status(
        po_id, data.status, user_id=data.user_id
    )
    return PurchaseOrderResponse.model_validate(po)


@router.post("/purchase-orders/{po_id}/receive", response_model=PurchaseOrderReceiptResponse)
async def receive_purchase_order(po_id: uuid.UUID, data: PurchaseOrderReceiptRequest, db: DB, events: Events):
    lines = None
    if data.lines is not None:
        lines = [ReceiptLine(line.purchase_order_item_id, line.quantity) for line in data.lines]
    result = await ProcurementService(db, events).receive_purchase_order(
        po_id, lines, received_by=data.received_by
    )
    return PurchaseOrderReceiptResponse(**result)


@router.post("/suppliers/lead-times", response_model=LeadTimeRefreshResponse)
async def refresh_supplier_lead_times(data: LeadTimeRefreshRequest, db: DB, events: Events):
    result = await ProcurementService(db, events).update_supplier_lead_times(
        lookback_days=data.lookback_days,
        minimum_orders=data.minimum_orders,
        supplier_id=data.supplier_id,
    )
    return LeadTimeRefreshResponse(**result)
