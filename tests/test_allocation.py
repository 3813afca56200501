import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from stockflow.core.events import AllocationShortage, BackorderCreated
from stockflow.core.exceptions import InsufficientStock, InvalidState, NotFound, ValidationError
from stockflow.models import Order, OrderAllocation, OrderStatus
from stockflow.services.allocation_service import AllocationService
from stockflow.services.ledger_service import LedgerService


async def load_order(db, order_id):
    query = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    return (await db.execute(query)).scalar_one()


async def test_create_order_numbers_lines(db, seed):
    first = await seed.product("SKU-A")
    second = await seed.product("SKU-B")

    order = await seed.order((first, 2, "10.00"), (second, 1, "5.50"))

    assert order.status == OrderStatus.PENDING.value
    assert order.order_number.startswith("ORD-")
    assert [item.line_number for item in order.items] == [1, 2]
    assert [item.sku for item in order.items] == ["SKU-A", "SKU-B"]
    assert str(order.total_amount) == "25.50"


async def test_create_order_rejects_bad_lines(db, seed):
    product = await seed.product()
    service = AllocationService(db)
    with pytest.raises(ValidationError):
        await service.create_order([])
    with pytest.raises(ValidationError):
        await service.create_order([(product.id, 0, 1)])
    with pytest.raises(NotFound):
        await service.create_order([(uuid.uuid4(), 1, 1)])


async def test_full_allocation_reserves_stock(db, seed, events):
    warehouse = await seed.warehouse()
    product = await seed.product()
    record = await seed.record(product, warehouse, quantity=10)
    order = await seed.order((product, 4))

    result = await AllocationService(db, events).allocate_order(order.id)

    assert result.allocation_complete
    assert result.status == OrderStatus.ALLOCATED.value
    assert result.total_allocated == 4
    assert result.items[0].locations[0]["inventory_id"] == record.id
    refreshed = await LedgerService(db).get_ledger_record(record.id)
    assert (refreshed.quantity_on_hand, refreshed.quantity_available, refreshed.quantity_reserved) == (10, 6, 4)
    assert events.of_type(AllocationShortage) == []


async def test_allocation_prefers_order_warehouse_then_priority(db, seed):
    primary = await seed.warehouse("WH-PRIMARY", priority=1)
    overflow = await seed.warehouse("WH-OVERFLOW", priority=50)
    local = await seed.warehouse("WH-LOCAL", priority=90)
    product = await seed.product()
    primary_row = await seed.record(product, primary, quantity=3)
    overflow_row = await seed.record(product, overflow, quantity=10)
    local_row = await seed.record(product, local, quantity=2)
    order = await seed.order((product, 7), warehouse=local)

    result = await AllocationService(db).allocate_order(order.id)

    taken = [(loc["inventory_id"], loc["quantity"]) for loc in result.items[0].locations]
    assert taken == [(local_row.id, 2), (primary_row.id, 3), (overflow_row.id, 2)]


async def test_allocation_skips_inactive_warehouses(db, seed):
    closed = await seed.warehouse("WH-CLOSED", priority=1, is_active=False)
    open_ = await seed.warehouse("WH-OPEN", priority=5)
    product = await seed.product()
    await seed.record(product, closed, quantity=50)
    open_row = await seed.record(product, open_, quantity=5)
    order = await seed.order((product, 2))

    result = await AllocationService(db).allocate_order(order.id)

    assert [loc["inventory_id"] for loc in result.items[0].locations] == [open_row.id]


async def test_partial_allocation_creates_backorder(db, seed, events):
    warehouse = await seed.warehouse()
    product = await seed.product()
    await seed.record(product, warehouse, quantity=3)
    order = await seed.order((product, 5), order_number="ORD-PARTIAL")

    result = await AllocationService(db, events).allocate_order(order.id)

    assert not result.allocation_complete
    assert result.status == OrderStatus.PARTIALLY_ALLOCATED.value
    assert result.total_shortfall == 2
    assert result.backorder_number == "ORD-PARTIAL-BO-01"

    backorder = await load_order(db, result.backorder_id)
    assert backorder.is_backorder
    assert backorder.backorder_of_id == order.id
    assert backorder.items[0].quantity == 2

    original = await load_order(db, order.id)
    assert original.items[0].quantity_backordered == 2
    assert original.items[0].unallocated == 0

    shortage = events.of_type(AllocationShortage)
    assert shortage[0].shortages[0]["shortfall"] == 2
    assert len(events.of_type(BackorderCreated)) == 1


async def test_partial_allocation_without_backorder(db, seed):
    warehouse = await seed.warehouse()
    product = await seed.product()
    await seed.record(product, warehouse, quantity=3)
    order = await seed.order((product, 5))

    result = await AllocationService(db).allocate_order(order.id, create_backorder=False)

    assert result.backorder_id is None
    original = await load_order(db, order.id)
    assert original.items[0].unallocated == 2


async def test_no_partial_reserves_nothing(db, seed, events):
    warehouse = await seed.warehouse()
    plenty = await seed.product("SKU-PLENTY")
    scarce = await seed.product("SKU-SCARCE")
    plenty_row = await seed.record(plenty, warehouse, quantity=100)
    await seed.record(scarce, warehouse, quantity=1)
    order = await seed.order((plenty, 10), (scarce, 2))
    order_id, plenty_row_id = order.id, plenty_row.id

    with pytest.raises(InsufficientStock):
        await AllocationService(db, events).allocate_order(order_id, allow_partial=False)

    record = await LedgerService(db).get_ledger_record(plenty_row_id)
    assert record.quantity_reserved == 0
    assert (await load_order(db, order_id)).status == OrderStatus.PENDING.value
    assert events.events == []


async def test_nothing_in_stock_backorders_everything(db, seed, events):
    product = await seed.product()
    order = await seed.order((product, 10), order_number="ORD-EMPTY")

    result = await AllocationService(db, events).allocate_order(order.id)

    assert result.total_allocated == 0
    assert result.total_shortfall == 10
    assert result.status == OrderStatus.PARTIALLY_ALLOCATED.value
    assert result.backorder_number == "ORD-EMPTY-BO-01"

    backorder = await load_order(db, result.backorder_id)
    assert backorder.status == OrderStatus.PENDING.value
    assert backorder.items[0].quantity == 10
    original = await load_order(db, order.id)
    assert original.items[0].quantity_backordered == 10
    assert len(events.of_type(BackorderCreated)) == 1


async def test_nothing_in_stock_without_backorder_stays_pending(db, seed):
    product = await seed.product()
    order = await seed.order((product, 2))

    result = await AllocationService(db).allocate_order(order.id, create_backorder=False)

    assert result.status == OrderStatus.PENDING.value
    assert result.backorder_id is None


async def test_only_pending_orders_allocate(db, seed):
    warehouse = await seed.warehouse()
    product = await seed.product()
    await seed.record(product, warehouse, quantity=10)
    order = await seed.order((product, 1))
    service = AllocationService(db)
    await service.allocate_order(order.id)

    with pytest.raises(InvalidState):
        await service.allocate_order(order.id)


async def test_cancel_releases_reservations(db, seed):
    east = await seed.warehouse("WH-EAST", priority=1)
    west = await seed.warehouse("WH-WEST", priority=2)
    product = await seed.product()
    east_row = await seed.record(product, east, quantity=2)
    west_row = await seed.record(product, west, quantity=5)
    order = await seed.order((product, 4))
    service = AllocationService(db)
    await service.allocate_order(order.id)

    result = await service.release_order_allocations(order.id, reason="customer changed mind")

    assert result["status"] == OrderStatus.CANCELLED.value
    assert result["released_quantity"] == 4
    assert result["allocations_released"] == 2
    ledger = LedgerService(db)
    for row_id, expected in ((east_row.id, 2), (west_row.id, 5)):
        record = await ledger.get_ledger_record(row_id)
        assert record.quantity_available == expected
        assert record.quantity_reserved == 0

    allocations = (await db.execute(
        select(OrderAllocation).execution_options(populate_existing=True)
    )).scalars().all()
    assert {a.status for a in allocations} == {"released"}


async def test_cancelled_order_cannot_be_cancelled_again(db, seed):
    product = await seed.product()
    order = await seed.order((product, 1))
    service = AllocationService(db)
    await service.release_order_allocations(order.id)

    with pytest.raises(InvalidState):
        await service.release_order_allocations(order.id)
