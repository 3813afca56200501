"""
Reorder Service - turns ledger levels, lead times and demand into
reorder recommendations.
"""
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stockflow.config import settings
from stockflow.models.inventory import InventoryRecord, MovementType, StockMovement
from stockflow.models.product import Product
from stockflow.services.collaborators import DatabaseSupplierDirectory, SupplierDirectory, SupplierInfo
from stockflow.services.demand_forecasting import DemandForecast, DemandForecastingService


logger = logging.getLogger(__name__)


# Days of stock reported when there is no demand to consume it
NO_DEMAND_DAYS_OF_STOCK = 999

RECOMMENDATION_PRIORITY = {
    "stockout": "critical",
    "urgent_reorder": "high",
    "reorder": "medium",
    "overstock": "low",
    "ok": "low",
}


@dataclass
class ReorderRecommendation:
    inventory_id: uuid.UUID
    product_id: uuid.UUID
    sku: str
    product_name: str
    supplier_id: Optional[uuid.UUID]
    supplier_name: Optional[str]
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
    forecast: Optional[dict] = None


@dataclass
class ReorderAnalysis:
    total_products: int
    urgent_reorders: List[ReorderRecommendation] = field(default_factory=list)
    recommended_reorders: List[ReorderRecommendation] = field(default_factory=list)
    stockouts: List[ReorderRecommendation] = field(default_factory=list)
    overstocked: List[ReorderRecommendation] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total_products": self.total_products,
            "urgent_reorders": len(self.urgent_reorders),
            "recommended_reorders": len(self.recommended_reorders),
            "stockouts": len(self.stockouts),
            "overstocked": len(self.overstocked),
        }

    @property
    def procurement_candidates(self) -> List[ReorderRecommendation]:
        return self.urgent_reorders + self.recommended_reorders


def analyze_inventory_item(
    item: dict,
    daily_demand_rate: float,
    forecast: Optional[DemandForecast] = None,
) -> ReorderRecommendation:
    """
    Classify one ledger row.

    item carries the ledger fields (quantity_available, reorder_point,
    reorder_quantity, max_stock_level), the product fields (sku,
    product_name, cost_price) and the supplier's lead_time_days.
    """
    current_stock = item["quantity_available"]
    reorder_point = item.get("reorder_point") or 0
    reorder_quantity = item.get("reorder_quantity") or 0
    max_stock = item.get("max_stock_level") or 0
    lead_time_days = item.get("lead_time_days") or settings.DEFAULT_LEAD_TIME_DAYS
    cost_price = float(item.get("cost_price") or 0)

    days_of_stock = current_stock / daily_demand_rate if daily_demand_rate > 0 else NO_DEMAND_DAYS_OF_STOCK
    lead_time_demand = daily_demand_rate * lead_time_days
    suggested_reorder_point = math.ceil(lead_time_demand * settings.REORDER_SAFETY_FACTOR)
    suggested_order_quantity = max(
        reorder_quantity,
        math.ceil(daily_demand_rate * settings.REORDER_COVERAGE_DAYS),
    )

    if current_stock <= 0:
        recommendation = "stockout"
        reason = "Out of stock"
    elif current_stock <= suggested_reorder_point * 0.5 or days_of_stock <= settings.URGENT_DAYS_OF_STOCK:
        recommendation = "urgent_reorder"
        reason = f"Critical stock level - {round(days_of_stock)} days remaining"
    elif current_stock <= max(reorder_point, suggested_reorder_point):
        recommendation = "reorder"
        reason = f"Below reorder point - {round(days_of_stock)} days remaining"
    elif max_stock > 0 and current_stock > max_stock:
        recommendation = "overstock"
        reason = "Overstocked"
    else:
        recommendation = "ok"
        reason = "Stock levels adequate"

    return ReorderRecommendation(
        inventory_id=item["inventory_id"],
        product_id=item["product_id"],
        sku=item["sku"],
        product_name=item["product_name"],
        supplier_id=item.get("supplier_id"),
        supplier_name=item.get("supplier_name"),
        warehouse_id=item["warehouse_id"],
        current_stock=current_stock,
        reorder_point=reorder_point,
        reorder_quantity=reorder_quantity,
        suggested_reorder_point=suggested_reorder_point,
        suggested_order_quantity=suggested_order_quantity,
        daily_demand_rate=round(daily_demand_rate, 2),
        days_of_stock=round(days_of_stock, 1),
        lead_time_days=lead_time_days,
        lead_time_demand=round(lead_time_demand),
        recommendation=recommendation,
        priority=RECOMMENDATION_PRIORITY[recommendation],
        reason=reason,
        cost_price=cost_price,
        estimated_order_value=round(suggested_order_quantity * cost_price, 2),
        last_movement_at=item.get("last_movement_at"),
        forecast={
            "forecast_demand": forecast.forecast_demand,
            "forecast_accuracy": forecast.forecast_accuracy,
            "demand_classification": forecast.demand_classification,
        } if forecast else None,
    )


class ReorderService:
    """Scans ledger rows of active suppliers and recommends reorders."""

    def __init__(self, db: AsyncSession, suppliers: Optional[SupplierDirectory] = None):
        self.db = db
        self.suppliers = suppliers or DatabaseSupplierDirectory(db)

    async def historical_demand_rates(
        self,
        product_ids: Sequence[uuid.UUID],
        days: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> Dict[uuid.UUID, float]:
        """Average units sold per day over the trailing window, per product."""
        days = days or settings.REORDER_HISTORY_DAYS
        end = as_of or datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        if not product_ids:
            return {}

        stmt = select(StockMovement.product_id, StockMovement.quantity).where(
            StockMovement.movement_type == MovementType.SALE.value,
            StockMovement.product_id.in_(list(product_ids)),
            StockMovement.created_at >= start,
            StockMovement.created_at <= end,
        )
        totals: Dict[uuid.UUID, int] = {product_id: 0 for product_id in product_ids}
        for product_id, quantity in (await self.db.execute(stmt)).all():
            totals[product_id] += abs(quantity)
        return {product_id: total / days for product_id, total in totals.items()}

    async def analyze_reorder_needs(
        self,
        warehouse_ids: Optional[Sequence[uuid.UUID]] = None,
        supplier_ids: Optional[Sequence[uuid.UUID]] = None,
        include_forecasting: bool = True,
        urgency_only: bool = False,
        as_of: Optional[datetime] = None,
    ) -> ReorderAnalysis:
        """
        Build reorder recommendations for every ledger row whose product has
        an active supplier.

        The demand rate comes from the forecast when one exists, otherwise
        from the trailing sales history. With urgency_only, only stockouts
        and urgent reorders are returned.
        """
        stmt = (
            select(InventoryRecord, Product)
            .join(Product, Product.id == InventoryRecord.product_id)
            .where(Product.supplier_id.is_not(None))
            .order_by(Product.sku, InventoryRecord.created_at)
        )
        if warehouse_ids:
            stmt = stmt.where(InventoryRecord.warehouse_id.in_(list(warehouse_ids)))
        if supplier_ids:
            stmt = stmt.where(Product.supplier_id.in_(list(supplier_ids)))
        rows = (await self.db.execute(stmt)).all()

        supplier_cache: Dict[uuid.UUID, Optional[SupplierInfo]] = {}
        items = []
        for record, product in rows:
            if product.supplier_id not in supplier_cache:
                supplier_cache[product.supplier_id] = await self.suppliers.get_supplier(product.supplier_id)
            supplier = supplier_cache[product.supplier_id]
            if supplier is None or not supplier.is_active:
                continue
            items.append({
                "inventory_id": record.id,
                "product_id": record.product_id,
                "warehouse_id": record.warehouse_id,
                "quantity_available": record.quantity_available,
                "reorder_point": record.reorder_point,
                "reorder_quantity": record.reorder_quantity,
                "max_stock_level": record.max_stock_level,
                "last_movement_at": record.last_movement_at,
                "sku": product.sku,
                "product_name": product.name,
                "cost_price": product.cost_price,
                "supplier_id": supplier.id,
                "supplier_name": supplier.name,
                "lead_time_days": supplier.lead_time_days,
            })

        product_ids = list(dict.fromkeys(item["product_id"] for item in items))

        forecasts: Dict[uuid.UUID, DemandForecast] = {}
        if include_forecasting and product_ids:
            analysis = await DemandForecastingService(self.db).analyze_demand_patterns(
                time_range_days=settings.REORDER_FORECAST_WINDOW_DAYS,
                product_ids=product_ids,
                as_of=as_of,
            )
            forecasts = {f.product_id: f for f in analysis.forecasts}

        missing = [pid for pid in product_ids if pid not in forecasts]
        historical = await self.historical_demand_rates(missing, as_of=as_of) if missing else {}

        result = ReorderAnalysis(total_products=len(items))
        for item in items:
            forecast = forecasts.get(item["product_id"])
            if forecast:
                rate = forecast.forecast_demand / forecast.forecast_period_days
            else:
                rate = historical.get(item["product_id"], 0.0)

            recommendation = analyze_inventory_item(item, rate, forecast)
            if recommendation.recommendation == "urgent_reorder":
                result.urgent_reorders.append(recommendation)
            elif recommendation.recommendation == "reorder":
                result.recommended_reorders.append(recommendation)
            elif recommendation.recommendation == "stockout":
                result.stockouts.append(recommendation)
            elif recommendation.recommendation == "overstock":
                result.overstocked.append(recommendation)

        result.urgent_reorders.sort(key=lambda r: r.days_of_stock)
        result.recommended_reorders.sort(key=lambda r: r.days_of_stock)
        if urgency_only:
            result.recommended_reorders = []
            result.overstocked = []

        summary = result.summary
        logger.info(
            f"Reorder analysis complete: {summary['urgent_reorders']} urgent, "
            f"{summary['recommended_reorders']} recommended, {summary['stockouts']} stockouts"
        )
        return result
