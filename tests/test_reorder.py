import uuid
from datetime import datetime, timezone

import pytest

from stockflow.services.reorder_service import (
    NO_DEMAND_DAYS_OF_STOCK,
    ReorderService,
    analyze_inventory_item,
)


AS_OF = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


def item(quantity_available, **overrides):
    values = {
        "inventory_id": uuid.uuid4(),
        "product_id": uuid.uuid4(),
        "warehouse_id": uuid.uuid4(),
        "sku": "SKU-1",
        "product_name": "Widget",
        "cost_price": "4.00",
        "supplier_id": uuid.uuid4(),
        "supplier_name": "Acme",
        "lead_time_days": 7,
        "quantity_available": quantity_available,
        "reorder_point": 0,
        "reorder_quantity": 0,
        "max_stock_level": None,
    }
    values.update(overrides)
    return values


# ==================== Classification ====================

def test_zero_stock_is_always_a_stockout():
    result = analyze_inventory_item(item(0, max_stock_level=1, reorder_point=0), 0.0)
    assert result.recommendation == "stockout"
    assert result.priority == "critical"


def test_urgent_when_below_half_the_suggested_reorder_point():
    result = analyze_inventory_item(item(50), 10.0)
    assert result.suggested_reorder_point == 105
    assert result.lead_time_demand == 70
    assert result.recommendation == "urgent_reorder"
    assert result.priority == "high"
    assert result.days_of_stock == 5.0


def test_urgent_when_three_days_or_less_remain():
    result = analyze_inventory_item(item(25, lead_time_days=1), 10.0)
    assert result.suggested_reorder_point == 15
    assert result.recommendation == "urgent_reorder"


def test_reorder_below_suggested_reorder_point():
    result = analyze_inventory_item(item(100), 10.0)
    assert result.recommendation == "reorder"
    assert result.priority == "medium"
    # Thirty days of demand
    assert result.suggested_order_quantity == 300
    assert result.estimated_order_value == 1200.0


def test_reorder_point_applies_without_demand():
    result = analyze_inventory_item(item(5, reorder_point=10, reorder_quantity=20), 0.0)
    assert result.recommendation == "reorder"
    assert result.days_of_stock == NO_DEMAND_DAYS_OF_STOCK
    assert result.suggested_order_quantity == 20


def test_overstock_above_max_level():
    result = analyze_inventory_item(item(500, max_stock_level=100), 1.0)
    assert result.suggested_reorder_point == 11
    assert result.recommendation == "overstock"
    assert result.priority == "low"


def test_adequate_stock_is_ok():
    result = analyze_inventory_item(item(80, max_stock_level=100), 1.0)
    assert result.recommendation == "ok"


def test_missing_lead_time_uses_default():
    result = analyze_inventory_item(item(1000, lead_time_days=None), 2.0)
    assert result.lead_time_days == 7
    assert result.lead_time_demand == 14


# ==================== Service ====================

async def seed_catalog(seed):
    warehouse = await seed.warehouse()
    acme = await seed.supplier("ACME", lead_time_days=7)
    gone = await seed.supplier("GONE", is_active=False)

    fast = await seed.product("SKU-FAST", supplier=acme, cost_price="3.00")
    slow = await seed.product("SKU-SLOW", supplier=acme)
    empty = await seed.product("SKU-EMPTY", supplier=acme)
    orphan = await seed.product("SKU-ORPHAN")
    retired = await seed.product("SKU-RETIRED", supplier=gone)

    fast_row = await seed.record(fast, warehouse, quantity=380)
    slow_row = await seed.record(slow, warehouse, quantity=170, reorder_point=60)
    await seed.record(empty, warehouse)
    await seed.record(orphan, warehouse)
    await seed.record(retired, warehouse)

    await seed.sales(fast_row.id, [6] * 60, end=AS_OF)
    await seed.sales(slow_row.id, [2] * 60, end=AS_OF)
    return {"warehouse": warehouse, "acme": acme, "fast": fast, "slow": slow, "empty": empty}


async def test_analysis_uses_forecast_demand(db, seed):
    catalog = await seed_catalog(seed)

    analysis = await ReorderService(db).analyze_reorder_needs(as_of=AS_OF)

    assert analysis.summary == {
        "total_products": 3,
        "urgent_reorders": 1,
        "recommended_reorders": 1,
        "stockouts": 1,
        "overstocked": 0,
    }
    urgent = analysis.urgent_reorders[0]
    assert urgent.product_id == catalog["fast"].id
    assert urgent.current_stock == 20
    assert urgent.daily_demand_rate == 6.0
    assert urgent.days_of_stock == 3.3
    assert urgent.suggested_reorder_point == 63
    assert urgent.suggested_order_quantity == 180
    assert urgent.estimated_order_value == 540.0
    assert urgent.supplier_name == "Supplier ACME"
    assert urgent.forecast["forecast_demand"] == 180

    recommended = analysis.recommended_reorders[0]
    assert recommended.product_id == catalog["slow"].id
    assert recommended.current_stock == 50
    assert analysis.stockouts[0].product_id == catalog["empty"].id
    assert [r.sku for r in analysis.procurement_candidates] == ["SKU-FAST", "SKU-SLOW"]


async def test_analysis_falls_back_to_sales_history(db, seed):
    await seed_catalog(seed)

    analysis = await ReorderService(db).analyze_reorder_needs(include_forecasting=False, as_of=AS_OF)

    urgent = analysis.urgent_reorders[0]
    assert urgent.daily_demand_rate == 6.0
    assert urgent.forecast is None


async def test_urgency_only_drops_routine_reorders(db, seed):
    await seed_catalog(seed)

    analysis = await ReorderService(db).analyze_reorder_needs(urgency_only=True, as_of=AS_OF)

    assert len(analysis.urgent_reorders) == 1
    assert analysis.recommended_reorders == []
    assert len(analysis.stockouts) == 1


async def test_analysis_filters_by_supplier_and_warehouse(db, seed):
    catalog = await seed_catalog(seed)

    by_other_warehouse = await ReorderService(db).analyze_reorder_needs(
        warehouse_ids=[uuid.uuid4()], as_of=AS_OF
    )
    assert by_other_warehouse.total_products == 0

    by_supplier = await ReorderService(db).analyze_reorder_needs(
        supplier_ids=[catalog["acme"].id], as_of=AS_OF
    )
    assert by_supplier.total_products == 3


async def test_historical_rates_average_over_window(db, seed):
    warehouse = await seed.warehouse()
    product = await seed.product()
    row = await seed.record(product, warehouse, quantity=100)
    await seed.sales(row.id, [3] * 10, end=AS_OF)

    rates = await ReorderService(db).historical_demand_rates([product.id], days=30, as_of=AS_OF)

    assert rates[product.id] == pytest.approx(1.0)
