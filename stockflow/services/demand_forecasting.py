"""
Demand Forecasting Service

Turns sale movements into per-product demand patterns and forecasts:
- Daily demand series and coefficient of variation
- Least-squares trend with R-squared strength
- Day-of-week seasonality score
- Demand classification and a horizon forecast with confidence bounds

Pure Python statistics. The database is only read (no row locks), so
analysis can run alongside allocation traffic.
"""
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from stockflow.config import settings
from stockflow.core.exceptions import ValidationError
from stockflow.models.inventory import MovementType, StockMovement
from stockflow.models.product import Product


logger = logging.getLogger(__name__)


Z_SCORES = {
    0.90: 1.64,
    0.95: 1.96,
    0.99: 2.58,
}

CLASSIFICATION_FACTORS = {
    "slow_moving": 0.8,
    "sporadic": 0.7,
    "irregular": 1.2,
    "growing": 1.1,
    "declining": 0.9,
    "stable": 1.0,
    "regular": 1.0,
}

MIN_TREND_POINTS = 7
MIN_SEASONALITY_POINTS = 14


@dataclass
class DailyDemand:
    day: date
    quantity: int
    value: float = 0.0
    transactions: int = 0


@dataclass
class TrendResult:
    trend: str
    slope: float
    strength: float
    intercept: float = 0.0


@dataclass
class DemandPattern:
    product_id: UUID
    sku: str
    product_name: str
    supplier_id: Optional[UUID]
    total_quantity: int
    total_value: float
    active_days: int
    average_daily_demand: float
    actual_average_daily_demand: float
    max_daily_demand: int
    min_daily_demand: int
    demand_variability: float = 0.0
    demand_trend: str = "stable"
    trend_slope: float = 0.0
    trend_strength: float = 0.0
    seasonality_score: float = 0.0
    demand_classification: str = "regular"


@dataclass
class DemandForecast:
    product_id: UUID
    sku: str
    product_name: str
    supplier_id: Optional[UUID]
    forecast_period_days: int
    forecast_demand: int
    confidence_level: float
    lower_bound: int
    upper_bound: int
    demand_classification: str
    forecast_accuracy: str


@dataclass
class DemandAnalysis:
    time_range_days: int
    start_date: datetime
    end_date: datetime
    total_transactions: int
    patterns: List[DemandPattern] = field(default_factory=list)
    forecasts: List[DemandForecast] = field(default_factory=list)

    @property
    def products_analyzed(self) -> int:
        return len(self.patterns)

    def forecast_for(self, product_id: UUID) -> Optional[DemandForecast]:
        for forecast in self.forecasts:
            if forecast.product_id == product_id:
                return forecast
        return None


# ==================== Statistics ====================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def z_score_for(confidence_level: float) -> float:
    for level, z in Z_SCORES.items():
        if math.isclose(level, confidence_level):
            return z
    raise ValidationError(
        f"Unsupported confidence level {confidence_level}",
        details={"supported": sorted(Z_SCORES)},
    )


def build_daily_series(sales: Sequence[dict]) -> List[DailyDemand]:
    """
    Aggregate individual sales into one entry per calendar day.

    Each sale is a dict with created_at, quantity (absolute) and value.
    Days without sales are not included.
    """
    days: Dict[date, DailyDemand] = OrderedDict()
    for sale in sorted(sales, key=lambda s: s["created_at"]):
        day = sale["created_at"].date()
        entry = days.get(day)
        if entry is None:
            entry = days[day] = DailyDemand(day=day, quantity=0)
        entry.quantity += sale["quantity"]
        entry.value += sale.get("value", 0.0)
        entry.transactions += 1
    return list(days.values())


def calculate_trend(quantities: Sequence[float]) -> TrendResult:
    """Ordinary least squares of quantity against position in the series."""
    n = len(quantities)
    if n < 2:
        return TrendResult(trend="stable", slope=0.0, strength=0.0)

    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for x, y in enumerate(quantities):
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_x2 += x * x

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_total = sum((y - mean_y) ** 2 for y in quantities)
    ss_res = sum((y - (slope * x + intercept)) ** 2 for x, y in enumerate(quantities))
    r_squared = 1 - (ss_res / ss_total) if ss_total > 0 else 0.0

    trend = "stable"
    if abs(slope) > 0.1 and r_squared > 0.3:
        trend = "increasing" if slope > 0 else "decreasing"

    return TrendResult(trend=trend, slope=slope, strength=r_squared, intercept=intercept)


def calculate_seasonality(series: Sequence[DailyDemand]) -> float:
    """Coefficient of variation across the seven day-of-week averages, capped at 1."""
    totals = [0.0] * 7
    counts = [0] * 7
    for entry in series:
        weekday = entry.day.weekday()
        totals[weekday] += entry.quantity
        counts[weekday] += 1

    averages = [totals[i] / counts[i] if counts[i] else 0.0 for i in range(7)]
    overall = sum(averages) / 7
    if overall == 0:
        return 0.0

    variance = sum((avg - overall) ** 2 for avg in averages) / 7
    return min(math.sqrt(variance) / overall, 1.0)


def classify_demand_pattern(
    average_daily_demand: float,
    active_days: int,
    demand_variability: float,
    demand_trend: str,
) -> str:
    """First matching rule wins."""
    if average_daily_demand < 0.1:
        return "slow_moving"
    if active_days < 7:
        return "sporadic"
    if demand_variability > 1.5:
        return "irregular"
    if demand_trend == "increasing":
        return "growing"
    if demand_trend == "decreasing":
        return "declining"
    if demand_variability < 0.3:
        return "stable"
    return "regular"


def calculate_demand_pattern(
    product: dict,
    series: Sequence[DailyDemand],
    window_days: int,
    include_trend: bool = True,
    include_seasonality: bool = True,
) -> DemandPattern:
    """Demand statistics for one product over a trailing window."""
    quantities = [entry.quantity for entry in series]
    total_quantity = sum(quantities)
    active_days = len(series)
    actual_average = total_quantity / active_days if active_days else 0.0

    pattern = DemandPattern(
        product_id=product["product_id"],
        sku=product["sku"],
        product_name=product["product_name"],
        supplier_id=product.get("supplier_id"),
        total_quantity=total_quantity,
        total_value=round(sum(entry.value for entry in series), 2),
        active_days=active_days,
        average_daily_demand=total_quantity / window_days,
        actual_average_daily_demand=actual_average,
        max_daily_demand=max(quantities) if quantities else 0,
        min_daily_demand=min(quantities) if quantities else 0,
    )

    if active_days > 1 and actual_average > 0:
        variance = sum((q - actual_average) ** 2 for q in quantities) / active_days
        pattern.demand_variability = math.sqrt(variance) / actual_average

    if include_trend and active_days >= MIN_TREND_POINTS:
        trend = calculate_trend(quantities)
        pattern.demand_trend = trend.trend
        pattern.trend_slope = trend.slope
        pattern.trend_strength = trend.strength

    if include_seasonality and active_days >= MIN_SEASONALITY_POINTS:
        pattern.seasonality_score = calculate_seasonality(series)

    pattern.demand_classification = classify_demand_pattern(
        pattern.average_daily_demand,
        pattern.active_days,
        pattern.demand_variability,
        pattern.demand_trend,
    )
    return pattern


def generate_forecast(
    pattern: DemandPattern,
    forecast_days: int,
    confidence_level: float = 0.95,
) -> DemandForecast:
    """Horizon demand adjusted for trend and classification, with bounds."""
    z = z_score_for(confidence_level)
    forecast = pattern.average_daily_demand * forecast_days

    if pattern.demand_trend == "increasing" and pattern.trend_strength > 0.3:
        forecast *= 1 + (pattern.trend_slope * forecast_days * 0.1)
    elif pattern.demand_trend == "decreasing" and pattern.trend_strength > 0.3:
        forecast *= max(0.1, 1 - (abs(pattern.trend_slope) * forecast_days * 0.1))

    forecast *= CLASSIFICATION_FACTORS.get(pattern.demand_classification, 1.0)

    standard_error = pattern.demand_variability * pattern.average_daily_demand * math.sqrt(forecast_days)

    if pattern.demand_variability < 0.5:
        accuracy = "high"
    elif pattern.demand_variability < 1.0:
        accuracy = "medium"
    else:
        accuracy = "low"

    return DemandForecast(
        product_id=pattern.product_id,
        sku=pattern.sku,
        product_name=pattern.product_name,
        supplier_id=pattern.supplier_id,
        forecast_period_days=forecast_days,
        forecast_demand=max(0, _round_half_up(forecast)),
        confidence_level=confidence_level,
        lower_bound=max(0, _round_half_up(forecast - z * standard_error)),
        upper_bound=max(0, _round_half_up(forecast + z * standard_error)),
        demand_classification=pattern.demand_classification,
        forecast_accuracy=accuracy,
    )


# ==================== Service ====================

class DemandForecastingService:
    """Reads sale history and produces demand patterns and forecasts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_sales(
        self,
        start: datetime,
        end: datetime,
        product_ids: Optional[Sequence[UUID]],
        warehouse_ids: Optional[Sequence[UUID]],
    ) -> List[dict]:
        conditions = [
            StockMovement.movement_type == MovementType.SALE.value,
            StockMovement.created_at >= start,
            StockMovement.created_at <= end,
        ]
        if product_ids:
            conditions.append(StockMovement.product_id.in_(list(product_ids)))
        if warehouse_ids:
            conditions.append(StockMovement.warehouse_id.in_(list(warehouse_ids)))

        stmt = (
            select(
                StockMovement.product_id,
                StockMovement.created_at,
                StockMovement.quantity,
                StockMovement.unit_cost,
                Product.sku,
                Product.name,
                Product.supplier_id,
            )
            .join(Product, Product.id == StockMovement.product_id)
            .where(and_(*conditions))
            .order_by(Product.sku, StockMovement.created_at)
        )
        rows = (await self.db.execute(stmt)).all()
        return [
            {
                "product_id": row.product_id,
                "sku": row.sku,
                "product_name": row.name,
                "supplier_id": row.supplier_id,
                "created_at": row.created_at,
                "quantity": abs(row.quantity),
                "value": abs(row.quantity) * (row.unit_cost or 0.0),
            }
            for row in rows
        ]

    async def analyze_demand_patterns(
        self,
        time_range_days: Optional[int] = None,
        product_ids: Optional[Sequence[UUID]] = None,
        warehouse_ids: Optional[Sequence[UUID]] = None,
        include_seasonality: bool = True,
        include_trend: bool = True,
        forecast_days: Optional[int] = None,
        confidence_level: Optional[float] = None,
        as_of: Optional[datetime] = None,
    ) -> DemandAnalysis:
        """
        Analyze sale movements over a trailing window.

        Args:
            time_range_days: Window length, capped at FORECAST_MAX_WINDOW_DAYS
            product_ids: Restrict to these products
            warehouse_ids: Restrict to sales from these warehouses
            forecast_days: Forecast horizon
            confidence_level: 0.90, 0.95 or 0.99
            as_of: End of the window, defaults to now

        Returns:
            DemandAnalysis with patterns sorted by average daily demand
        """
        window = time_range_days or settings.FORECAST_WINDOW_DAYS
        if window <= 0:
            raise ValidationError("time_range_days must be positive", details={"time_range_days": window})
        if window > settings.FORECAST_MAX_WINDOW_DAYS:
            logger.warning(f"Clamping demand window from {window} to {settings.FORECAST_MAX_WINDOW_DAYS} days")
            window = settings.FORECAST_MAX_WINDOW_DAYS

        horizon = forecast_days or settings.FORECAST_HORIZON_DAYS
        if horizon <= 0:
            raise ValidationError("forecast_days must be positive", details={"forecast_days": horizon})
        level = confidence_level or settings.FORECAST_CONFIDENCE_LEVEL
        z_score_for(level)

        end = as_of or datetime.now(timezone.utc)
        start = end - timedelta(days=window)

        sales = await self._load_sales(start, end, product_ids, warehouse_ids)

        by_product: Dict[UUID, List[dict]] = OrderedDict()
        for sale in sales:
            by_product.setdefault(sale["product_id"], []).append(sale)

        patterns = []
        total_transactions = 0
        for product_id, product_sales in by_product.items():
            series = build_daily_series(product_sales)
            total_transactions += len(series)
            patterns.append(calculate_demand_pattern(
                product_sales[0],
                series,
                window,
                include_trend=include_trend,
                include_seasonality=include_seasonality,
            ))

        patterns.sort(key=lambda p: p.average_daily_demand, reverse=True)
        forecasts = [generate_forecast(p, horizon, level) for p in patterns]

        logger.info(f"Demand analysis complete for {len(patterns)} products over {window} days")
        return DemandAnalysis(
            time_range_days=window,
            start_date=start,
            end_date=end,
            total_transactions=total_transactions,
            patterns=patterns,
            forecasts=forecasts,
        )
