from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from stockflow.core.exceptions import ValidationError
from stockflow.services.demand_forecasting import (
    DailyDemand,
    DemandForecastingService,
    DemandPattern,
    build_daily_series,
    calculate_demand_pattern,
    calculate_seasonality,
    calculate_trend,
    classify_demand_pattern,
    generate_forecast,
    z_score_for,
)


AS_OF = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

PRODUCT = {"product_id": uuid4(), "sku": "SKU-1", "product_name": "Widget", "supplier_id": None}


def series_of(quantities, start=date(2026, 1, 5)):
    return [DailyDemand(day=start + timedelta(days=i), quantity=q) for i, q in enumerate(quantities)]


def make_pattern(**overrides):
    values = dict(
        product_id=PRODUCT["product_id"],
        sku="SKU-1",
        product_name="Widget",
        supplier_id=None,
        total_quantity=300,
        total_value=0.0,
        active_days=30,
        average_daily_demand=10.0,
        actual_average_daily_demand=10.0,
        max_daily_demand=10,
        min_daily_demand=10,
    )
    values.update(overrides)
    return DemandPattern(**values)


# ==================== Statistics ====================

def test_daily_series_merges_same_day_sales():
    sales = [
        {"created_at": datetime(2026, 1, 2, 15), "quantity": 2, "value": 20.0},
        {"created_at": datetime(2026, 1, 1, 9), "quantity": 1},
        {"created_at": datetime(2026, 1, 2, 9), "quantity": 3, "value": 30.0},
    ]
    series = build_daily_series(sales)
    assert [(d.day, d.quantity, d.transactions) for d in series] == [
        (date(2026, 1, 1), 1, 1),
        (date(2026, 1, 2), 5, 2),
    ]
    assert series[1].value == 50.0


def test_trend_detects_growth():
    trend = calculate_trend([1, 2, 3, 4, 5, 6, 7])
    assert trend.trend == "increasing"
    assert trend.slope == pytest.approx(1.0)
    assert trend.strength == pytest.approx(1.0)


def test_flat_series_has_no_trend():
    trend = calculate_trend([4, 4, 4, 4, 4, 4, 4])
    assert trend.trend == "stable"
    assert trend.strength == 0.0


def test_short_series_is_stable():
    assert calculate_trend([9]).trend == "stable"


def test_seasonality_zero_for_even_weekdays():
    assert calculate_seasonality(series_of([5] * 14)) == 0.0


def test_seasonality_capped_at_one():
    # Only Mondays sell
    weekly = [7, 0, 0, 0, 0, 0, 0]
    series = [d for d in series_of(weekly * 2) if d.quantity]
    assert calculate_seasonality(series) == 1.0


@pytest.mark.parametrize("average,active_days,variability,trend,expected", [
    (0.05, 30, 0.1, "stable", "slow_moving"),
    (1.0, 5, 0.1, "stable", "sporadic"),
    (1.0, 30, 1.6, "increasing", "irregular"),
    (1.0, 30, 0.5, "increasing", "growing"),
    (1.0, 30, 0.5, "decreasing", "declining"),
    (1.0, 30, 0.2, "stable", "stable"),
    (1.0, 30, 0.6, "stable", "regular"),
])
def test_classification_first_rule_wins(average, active_days, variability, trend, expected):
    assert classify_demand_pattern(average, active_days, variability, trend) == expected


def test_pattern_averages_over_the_whole_window():
    pattern = calculate_demand_pattern(PRODUCT, series_of([10] * 10), window_days=20)
    assert pattern.total_quantity == 100
    assert pattern.average_daily_demand == 5.0
    assert pattern.actual_average_daily_demand == 10.0
    assert pattern.demand_variability == 0.0
    assert pattern.demand_classification == "stable"


def test_pattern_skips_trend_below_minimum_points():
    pattern = calculate_demand_pattern(PRODUCT, series_of([1, 2, 3, 4, 5, 6]), window_days=6)
    assert pattern.demand_trend == "stable"
    assert pattern.demand_classification == "sporadic"


def test_forecast_for_stable_demand():
    forecast = generate_forecast(make_pattern(demand_classification="stable"), 30)
    assert forecast.forecast_demand == 300
    assert forecast.lower_bound == forecast.upper_bound == 300
    assert forecast.forecast_accuracy == "high"


def test_forecast_applies_classification_factor_and_bounds():
    pattern = make_pattern(demand_classification="sporadic", demand_variability=0.6)
    forecast = generate_forecast(pattern, 10, confidence_level=0.90)
    # 10/day * 10 days * 0.7
    assert forecast.forecast_demand == 70
    # standard error = 0.6 * 10 * sqrt(10)
    assert forecast.lower_bound == 39
    assert forecast.upper_bound == 101
    assert forecast.forecast_accuracy == "medium"


def test_forecast_declining_trend_never_below_ten_percent():
    pattern = make_pattern(
        demand_trend="decreasing",
        trend_slope=-5.0,
        trend_strength=0.9,
        demand_classification="stable",
    )
    forecast = generate_forecast(pattern, 30)
    assert forecast.forecast_demand == 30


def test_forecast_bounds_never_negative():
    pattern = make_pattern(demand_variability=5.0, demand_classification="irregular")
    forecast = generate_forecast(pattern, 30)
    assert forecast.lower_bound == 0
    assert forecast.forecast_accuracy == "low"


def test_unsupported_confidence_level():
    assert z_score_for(0.99) == 2.58
    with pytest.raises(ValidationError):
        z_score_for(0.5)


# ==================== Service ====================

async def test_service_analyzes_sale_history(db, seed):
    warehouse = await seed.warehouse()
    steady = await seed.product("SKU-STEADY")
    rare = await seed.product("SKU-RARE")
    steady_row = await seed.record(steady, warehouse, quantity=500)
    rare_row = await seed.record(rare, warehouse, quantity=50)
    await seed.sales(steady_row.id, [6] * 30, end=AS_OF)
    await seed.sales(rare_row.id, [0] * 25 + [4, 0, 0, 0, 0], end=AS_OF)

    analysis = await DemandForecastingService(db).analyze_demand_patterns(
        time_range_days=30, forecast_days=30, as_of=AS_OF
    )

    assert analysis.products_analyzed == 2
    assert [p.sku for p in analysis.patterns] == ["SKU-STEADY", "SKU-RARE"]
    steady_pattern = analysis.patterns[0]
    assert steady_pattern.total_quantity == 180
    assert steady_pattern.average_daily_demand == 6.0
    assert steady_pattern.demand_classification == "stable"
    assert analysis.forecast_for(steady.id).forecast_demand == 180

    rare_pattern = analysis.patterns[1]
    assert rare_pattern.active_days == 1
    assert rare_pattern.demand_classification == "sporadic"


async def test_service_ignores_sales_outside_window(db, seed):
    warehouse = await seed.warehouse()
    product = await seed.product()
    row = await seed.record(product, warehouse, quantity=100)
    await seed.sales(row.id, [5] * 10 + [0] * 20, end=AS_OF)

    analysis = await DemandForecastingService(db).analyze_demand_patterns(time_range_days=15, as_of=AS_OF)

    assert analysis.products_analyzed == 0
    assert analysis.forecasts == []


async def test_service_filters_by_warehouse(db, seed):
    east = await seed.warehouse("WH-EAST")
    west = await seed.warehouse("WH-WEST")
    product = await seed.product()
    east_row = await seed.record(product, east, quantity=100)
    west_row = await seed.record(product, west, quantity=100)
    await seed.sales(east_row.id, [2] * 10, end=AS_OF)
    await seed.sales(west_row.id, [3] * 10, end=AS_OF)

    analysis = await DemandForecastingService(db).analyze_demand_patterns(
        time_range_days=30, warehouse_ids=[west.id], as_of=AS_OF
    )

    assert analysis.patterns[0].total_quantity == 30


async def test_service_clamps_long_windows(db):
    analysis = await DemandForecastingService(db).analyze_demand_patterns(time_range_days=5000, as_of=AS_OF)
    assert analysis.time_range_days == 365


async def test_service_rejects_bad_confidence(db):
    with pytest.raises(ValidationError):
        await DemandForecastingService(db).analyze_demand_patterns(confidence_level=0.8)
