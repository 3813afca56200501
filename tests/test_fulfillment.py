from datetime import date

import pytest
from sqlalchemy import select

from stockflow.core.events import OrderShipped, ReturnProcessed
from stockflow.core.exceptions import InsufficientStock, InvalidState, ValidationError
from stockflow.models import MovementType, OrderReturn, OrderStatus
from stockflow.services.allocation_service import AllocationService
from stockflow.services.fulfillment_service import FulfillmentService, OrderLine
from stockflow.services.ledger_service import LedgerService


async def allocated_order(db, seed, quantity=5, stock=10, unit_cost=6.0):
    warehouse = await seed.warehouse()
    product = await seed.product()
    record = await seed.record(product, warehouse, quantity=stock, unit_cost=unit_cost, location_code="A-01")
    order = await seed.order((product, quantity))
    await AllocationService(db).allocate_order(order.id)
    return order, order.items[0], record


# ==================== Pick lists ====================

async def test_pick_list_grouped_by_location(db, seed):
    warehouse = await seed.warehouse()
    first = await seed.product("SKU-A")
    second = await seed.product("SKU-B")
    await seed.record(first, warehouse, quantity=10, location_code="A-01")
    await seed.record(second, warehouse, quantity=10, location_code="B-07")
    one = await seed.order((first, 2), (second, 1))
    two = await seed.order((first, 3))
    allocation = AllocationService(db)
    await allocation.allocate_order(one.id)
    await allocation.allocate_order(two.id)

    pick_list = await FulfillmentService(db).generate_pick_list([one.id, two.id], generated_by="picker-7")

    assert pick_list.order_count == 2
    assert pick_list.total_items == 3
    assert [g["location_code"] for g in pick_list.groups] == ["A-01", "B-07"]
    assert sum(line["quantity"] for line in pick_list.groups[0]["items"]) == 5
    assert pick_list.statistics == {"total_quantity": 6, "unique_skus": 2, "locations": 2}


async def test_pick_list_grouped_by_order(db, seed):
    order, _, _ = await allocated_order(db, seed)

    pick_list = await FulfillmentService(db).generate_pick_list([order.id], group_by_location=False)

    assert pick_list.groups[0]["order_number"] == order.order_number


async def test_pick_list_needs_allocated_orders(db, seed):
    product = await seed.product()
    order = await seed.order((product, 1))
    with pytest.raises(ValidationError):
        await FulfillmentService(db).generate_pick_list([order.id])


# ==================== Shipments ====================

async def test_full_shipment_consumes_reservation(db, seed, events):
    order, item, record = await allocated_order(db, seed, quantity=5, stock=10)

    result = await FulfillmentService(db, events).process_shipment(
        order.id, [OrderLine(item.id, 5)], tracking_number="1Z999", carrier="UPS"
    )

    assert result.shipment_complete
    assert result.status == OrderStatus.SHIPPED.value
    ledger_row = await LedgerService(db).get_ledger_record(record.id)
    assert (ledger_row.quantity_on_hand, ledger_row.quantity_available, ledger_row.quantity_reserved) == (5, 5, 0)
    movements, _ = await LedgerService(db).get_movements(inventory_id=record.id, movement_type="sale")
    assert movements[0].quantity == -5
    assert movements[0].unit_cost == 6.0
    shipped = events.of_type(OrderShipped)
    assert shipped[0].tracking_number == "1Z999"


async def test_partial_shipment_then_rest(db, seed):
    order, item, _ = await allocated_order(db, seed, quantity=5)
    service = FulfillmentService(db)

    first = await service.process_shipment(order.id, [OrderLine(item.id, 2)])
    assert first.status == OrderStatus.PARTIALLY_SHIPPED.value
    assert not first.shipment_complete

    second = await service.process_shipment(order.id, [OrderLine(item.id, 3)])
    assert second.status == OrderStatus.SHIPPED.value


async def test_cannot_ship_more_than_ordered(db, seed):
    order, item, _ = await allocated_order(db, seed, quantity=2)
    with pytest.raises(ValidationError):
        await FulfillmentService(db).process_shipment(order.id, [OrderLine(item.id, 3)])


async def test_cannot_ship_unreserved_quantity(db, seed):
    warehouse = await seed.warehouse()
    product = await seed.product()
    await seed.record(product, warehouse, quantity=2)
    order = await seed.order((product, 4))
    await AllocationService(db).allocate_order(order.id, create_backorder=False)
    order_id, item_id = order.id, order.items[0].id

    with pytest.raises(InsufficientStock):
        await FulfillmentService(db).process_shipment(order_id, [OrderLine(item_id, 3)])


async def test_pending_order_cannot_ship(db, seed):
    product = await seed.product()
    order = await seed.order((product, 1))
    with pytest.raises(InvalidState):
        await FulfillmentService(db).process_shipment(order.id, [OrderLine(order.items[0].id, 1)])


async def test_shipment_line_must_belong_to_order(db, seed):
    order, _, _ = await allocated_order(db, seed)
    other = await seed.order((await seed.product("SKU-OTHER"), 1))
    with pytest.raises(ValidationError):
        await FulfillmentService(db).process_shipment(order.id, [OrderLine(other.items[0].id, 1)])


# ==================== Returns ====================

async def test_restockable_return_goes_back_to_available(db, seed, events):
    order, item, record = await allocated_order(db, seed, quantity=4, stock=10, unit_cost=6.0)
    service = FulfillmentService(db, events)
    await service.process_shipment(order.id, [OrderLine(item.id, 4)])

    result = await service.process_return(order.id, [OrderLine(item.id, 1)], condition="Good", reason="wrong size")

    assert result.restocked_quantity == 1
    assert result.status == OrderStatus.PARTIALLY_RETURNED.value
    ledger_row = await LedgerService(db).get_ledger_record(record.id)
    assert ledger_row.quantity_on_hand == 7
    assert ledger_row.quantity_available == 7
    assert ledger_row.average_cost == 6.0

    audit = (await db.execute(select(OrderReturn))).scalars().all()
    assert len(audit) == 1
    assert audit[0].restocked
    assert audit[0].movement_id is not None
    assert events.of_type(ReturnProcessed)[0].restocked_quantity == 1


async def test_damaged_return_is_audited_but_not_restocked(db, seed):
    order, item, record = await allocated_order(db, seed, quantity=2, stock=2)
    service = FulfillmentService(db)
    await service.process_shipment(order.id, [OrderLine(item.id, 2)])

    result = await service.process_return(order.id, [OrderLine(item.id, 2)], condition="damaged")

    assert result.restocked_quantity == 0
    assert result.non_restockable_items[0]["reason"] == "damaged"
    assert result.status == OrderStatus.RETURNED.value
    ledger_row = await LedgerService(db).get_ledger_record(record.id)
    assert ledger_row.quantity_on_hand == 0
    movements, _ = await LedgerService(db).get_movements(inventory_id=record.id, movement_type=MovementType.RETURN.value)
    assert movements == []


async def test_cannot_return_more_than_shipped(db, seed):
    order, item, _ = await allocated_order(db, seed, quantity=3)
    service = FulfillmentService(db)
    await service.process_shipment(order.id, [OrderLine(item.id, 2)])
    order_id, item_id = order.id, item.id

    await service.process_return(order_id, [OrderLine(item_id, 1)])
    with pytest.raises(ValidationError):
        await service.process_return(order_id, [OrderLine(item_id, 2)])


async def test_return_mid_shipment_keeps_rest_shippable(db, seed):
    order, item, record = await allocated_order(db, seed, quantity=10, stock=10)
    service = FulfillmentService(db)
    await service.process_shipment(order.id, [OrderLine(item.id, 5)])
    order_id, item_id = order.id, item.id

    returned = await service.process_return(order_id, [OrderLine(item_id, 1)])
    assert returned.status == OrderStatus.PARTIALLY_SHIPPED.value
    ledger_row = await LedgerService(db).get_ledger_record(record.id)
    assert ledger_row.quantity_reserved == 5

    shipped = await service.process_shipment(order_id, [OrderLine(item_id, 5)])
    assert shipped.shipment_complete
    assert shipped.status == OrderStatus.PARTIALLY_RETURNED.value
    ledger_row = await LedgerService(db).get_ledger_record(record.id)
    assert (ledger_row.quantity_on_hand, ledger_row.quantity_reserved) == (1, 0)


async def test_return_mid_shipment_still_cancellable(db, seed):
    order, item, record = await allocated_order(db, seed, quantity=10, stock=10)
    service = FulfillmentService(db)
    await service.process_shipment(order.id, [OrderLine(item.id, 5)])
    order_id, item_id, record_id = order.id, item.id, record.id
    await service.process_return(order_id, [OrderLine(item_id, 1)])

    await AllocationService(db).release_order_allocations(order_id, reason="customer request")

    ledger_row = await LedgerService(db).get_ledger_record(record_id)
    assert ledger_row.quantity_reserved == 0
    assert ledger_row.quantity_available == 6


async def test_return_requires_shipped_order(db, seed):
    order, item, _ = await allocated_order(db, seed)
    with pytest.raises(InvalidState):
        await FulfillmentService(db).process_return(order.id, [OrderLine(item.id, 1)])


# ==================== Backorders ====================

async def test_backorder_moves_unallocated_quantity(db, seed):
    warehouse = await seed.warehouse()
    product = await seed.product()
    await seed.record(product, warehouse, quantity=1)
    order = await seed.order((product, 3))
    await AllocationService(db).allocate_order(order.id, create_backorder=False)

    backorder = await FulfillmentService(db).create_backorder(
        order.id, [OrderLine(order.items[0].id, 2)], expected_date=date(2030, 1, 15)
    )

    assert backorder.is_backorder
    assert backorder.status == OrderStatus.PENDING.value
    assert backorder.expected_date == date(2030, 1, 15)
    assert backorder.items[0].quantity == 2


async def test_backorder_cannot_exceed_unallocated(db, seed):
    order, item, _ = await allocated_order(db, seed, quantity=2)
    with pytest.raises(ValidationError):
        await FulfillmentService(db).create_backorder(order.id, [OrderLine(item.id, 1)])


async def test_line_quantities_must_be_positive(db, seed):
    order, item, _ = await allocated_order(db, seed)
    with pytest.raises(ValidationError):
        await FulfillmentService(db).process_shipment(order.id, [OrderLine(item.id, 0)])
