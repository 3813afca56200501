"""Demand forecasting, reorder analysis and procurement schemas."""
from pydantic import BaseModel, Field

from stockflow.schemas.base import BaseResponseSchema, BaseCreateSchema
from typing import Any, Dict, Optional, List
from datetime import datetime
from decimal import Decimal
import uuid


# ==================== DEMAND FORECAST SCHEMAS ====================

class DemandAnalysisRequest(BaseCreateSchema):
    time_range_days: Optional[int] = Field(None, gt=0)
    product_ids: Optional[List[uuid.UUID]] = None
    warehouse_ids: Optional[List[uuid.UUID]] = None
    include_seasonality: bool = True
    include_trend: bool = True
    forecast_days: Optional[int] = Field(None, gt=0)
    confidence_level: Optional[float] = None


class DemandPatternResponse(BaseResponseSchema):
    product_id: uuid.UUID
    sku: str
    product_name: str
    supplier_id: Optional[uuid.UUID] = None
    total_quantity: int
    total_value: float
    active_days: int
    average_daily_demand: float
    actual_average_daily_demand: float
    max_daily_demand: int
    min_daily_demand: int
    demand_variability: float
    demand_trend: str
    trend_slope: float
    trend_strength: float
    seasonality_score: float
    demand_classification: str


class DemandForecastResponse(BaseResponseSchema):
    product_id: uuid.UUID
    sku: str
    product_name: str
    supplier_id: Optional[uuid.UUID] = None
    forecast_period_days: int
    forecast_demand: int
    confidence_level: float
    lower_bound: int
    upper_bound: int
    demand_classification: str
    forecast_accuracy: str


class DemandAnalysisResponse(BaseResponseSchema):
    time_range_days: int
    start_date: datetime
    end_date: datetime
    total_transactions: int
    products_analyzed: int
    patterns: List[DemandPatternResponse]
    forecasts: List[DemandForecastResponse]


# ==================== REORDER SCHEMAS ====================

class ReorderAnalysisRequest(BaseCreateSchema):
    warehouse_ids: Optional[List[uuid.UUID]] = None
    supplier_ids: Optional[List[uuid.UUID]] = None
    include_forecasting: bool = True
    urgency_only: bool = False


class ReorderRecommendationResponse(BaseResponseSchema):
    inventory_id: uuid.UUID
    product_id: uuid.UUID
    sku: str
    product_name: str
    supplier_id: Optional[uuid.UUID] = None
    supplier_name: Optional[str] = None
    warehouse_id: uuid.UUID
    current_stock: int
    reorder_point: int
    reorder_quantity: int
    suggested_reorder_point: int
    suggested_order_quantity: int
    daily_demand_rate: float
    days_of_stock: float
    lead_time_days: int
    lead_time_demand: int
    recommendation: str
    priority: str
    reason: str
    cost_price: float
    estimated_order_value: float
    last_movement_at: Optional[datetime] = None
    forecast: Optional[Dict[str, Any]] = None


class ReorderAnalysisResponse(BaseResponseSchema):
    summary: Dict[str, int]
    urgent_reorders: List[ReorderRecommendationResponse]
    recommended_reorders: List[ReorderRecommendationResponse]
    stockouts: List[ReorderRecommendationResponse]
    overstocked: List[ReorderRecommendationResponse]


# ==================== PROCUREMENT SCHEMAS ====================

class AutomatedPurchaseOrderRequest(BaseCreateSchema):
    """Run reorder analysis and raise purchase orders for what it recommends."""
    warehouse_ids: Optional[List[uuid.UUID]] = None
    supplier_ids: Optional[List[uuid.UUID]] = None
    include_forecasting: bool = True
    urgency_only: bool = False
    approval_required: Optional[bool] = None
    user_id: Optional[str] = None
    notes: Optional[str] = None


class ProcurementResponse(BaseResponseSchema):
    summary: Dict[str, Any]
    purchase_orders: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]


class ReceiptLineRequest(BaseModel):
    purchase_order_item_id: uuid.UUID
    quantity: int = Field(..., gt=0)


class PurchaseOrderReceiptRequest(BaseCreateSchema):
    lines: Optional[List[ReceiptLineRequest]] = None
    received_by: Optional[str] = None


class PurchaseOrderReceiptResponse(BaseModel):
    purchase_order_id: uuid.UUID
    po_number: str
    status: str
    received: List[Dict[str, Any]]


class LeadTimeRefreshRequest(BaseCreateSchema):
    lookback_days: int = Field(90, gt=0)
    minimum_orders: int = Field(3, gt=0)
    supplier_id: Optional[uuid.UUID] = None


class LeadTimeRefreshResponse(BaseModel):
    suppliers_analyzed: int
    suppliers_updated: int
    lead_time_changes: List[Dict[str, Any]]


class PurchaseOrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    line_number: int
    product_id: uuid.UUID
    sku: str
    product_name: str
    quantity_ordered: int
    quantity_received: int
    unit_price: Decimal
    line_total: Decimal


class PurchaseOrderResponse(BaseResponseSchema):
    id: uuid.UUID
    po_number: str
    supplier_id: uuid.UUID
    status: str
    approval_status: str
    is_automated: bool
    total_amount: Decimal
    items: List[PurchaseOrderItemResponse] = []


class PurchaseOrderStatusUpdate(BaseCreateSchema):
    status: str
    user_id: Optional[str] = None
