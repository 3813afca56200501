import uuid

import httpx
import pytest_asyncio

from stockflow.api.deps import get_event_dispatcher
from stockflow.core.events import OrderShipped
from stockflow.database import get_db
from stockflow.main import app


@pytest_asyncio.fixture
async def client(session_factory, events):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_dispatcher] = lambda: events
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def catalog(seed):
    warehouse = await seed.warehouse()
    supplier = await seed.supplier("ACME", lead_time_days=5)
    product = await seed.product("SKU-1", supplier=supplier)
    return {"warehouse_id": str(warehouse.id), "product_id": str(product.id), "supplier": supplier}


async def create_record(client, catalog, quantity=10, **extra):
    response = await client.put("/api/v1/inventory/records", json={
        "product_id": catalog["product_id"],
        "warehouse_id": catalog["warehouse_id"],
        "initial_quantity": quantity,
        "unit_cost": 4.0,
        **extra,
    })
    assert response.status_code == 200
    return response.json()


# ==================== Inventory ====================

async def test_ledger_record_lifecycle(client, catalog):
    record = await create_record(client, catalog, reorder_point=5)
    assert record["quantity_on_hand"] == 10
    assert record["stock_status"] == "in_stock"

    response = await client.post(f"/api/v1/inventory/records/{record['id']}/movements", json={
        "movement_type": "reservation",
        "quantity": 6,
        "reference_number": "HOLD-1",
    })
    assert response.status_code == 201
    movement = response.json()
    assert movement["available_after"] == 4
    assert movement["reserved_after"] == 6

    fetched = (await client.get(f"/api/v1/inventory/records/{record['id']}")).json()
    assert fetched["quantity_available"] == 4
    assert fetched["is_low_stock"] is True

    history = (await client.get("/api/v1/inventory/movements", params={"inventory_id": record["id"]})).json()
    assert history["total"] == 2
    assert history["items"][0]["movement_type"] == "reservation"

    low = (await client.get("/api/v1/inventory/records", params={"stock_status": "low_stock"})).json()
    assert [r["id"] for r in low["items"]] == [record["id"]]


async def test_adjust_and_verify(client, catalog):
    record = await create_record(client, catalog)

    response = await client.post(f"/api/v1/inventory/records/{record['id']}/adjust", json={
        "new_quantity": 7,
        "reason": "cycle count",
    })
    assert response.status_code == 200
    assert response.json()["movement_type"] == "adjustment_out"

    unchanged = await client.post(f"/api/v1/inventory/records/{record['id']}/adjust", json={
        "new_quantity": 7,
        "reason": "recount",
    })
    assert unchanged.json() is None

    report = (await client.get("/api/v1/inventory/verify", params={"inventory_id": record["id"]})).json()
    assert report[0]["consistent"] is True
    assert report[0]["stored"]["quantity_on_hand"] == 7


async def test_transfer_between_locations(client, catalog):
    source = await create_record(client, catalog, quantity=10, location_code="A-01")
    target = await create_record(client, catalog, quantity=0, location_code="B-01")

    response = await client.post("/api/v1/inventory/transfers", json={
        "from_inventory_id": source["id"],
        "to_inventory_id": target["id"],
        "quantity": 4,
    })
    assert response.status_code == 201
    body = response.json()
    assert body["outbound"]["quantity"] == -4
    assert body["inbound"]["quantity_after"] == 4


# ==================== Error mapping ====================

async def test_unknown_record_is_404(client):
    response = await client.get(f"/api/v1/inventory/records/{uuid.uuid4()}")
    assert response.status_code == 404
    body = response.json()
    assert body["type"] == "NotFound"
    assert body["path"].startswith("/api/v1/inventory/records/")


async def test_overdraw_is_409(client, catalog):
    record = await create_record(client, catalog, quantity=2)
    response = await client.post(f"/api/v1/inventory/records/{record['id']}/movements", json={
        "movement_type": "reservation",
        "quantity": 3,
    })
    assert response.status_code == 409
    assert response.json()["type"] == "InsufficientStock"


async def test_adjustment_without_reason_is_rejected(client, catalog):
    record = await create_record(client, catalog)
    response = await client.post(f"/api/v1/inventory/records/{record['id']}/adjust", json={
        "new_quantity": 3,
        "reason": "",
    })
    assert response.status_code == 422


async def test_transfer_to_same_row_is_400(client, catalog):
    record = await create_record(client, catalog)
    response = await client.post("/api/v1/inventory/transfers", json={
        "from_inventory_id": record["id"],
        "to_inventory_id": record["id"],
        "quantity": 1,
    })
    assert response.status_code == 400
    assert response.json()["type"] == "ValidationError"


# ==================== Orders ====================

async def test_order_allocate_ship_return(client, catalog, events):
    await create_record(client, catalog, quantity=10, location_code="A-01")

    response = await client.post("/api/v1/orders", json={
        "order_number": "ORD-API-1",
        "items": [{"product_id": catalog["product_id"], "quantity": 4, "unit_price": "12.50"}],
    })
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "pending"
    assert float(order["total_amount"]) == 50.0
    item_id = order["items"][0]["id"]

    allocation = (await client.post(f"/api/v1/orders/{order['id']}/allocate", json={})).json()
    assert allocation["status"] == "allocated"
    assert allocation["total_allocated"] == 4

    pick_list = (await client.post("/api/v1/orders/pick-lists", json={"order_ids": [order["id"]]})).json()
    assert pick_list["statistics"]["total_quantity"] == 4

    shipment = (await client.post(f"/api/v1/orders/{order['id']}/ship", json={
        "lines": [{"order_item_id": item_id, "quantity": 4}],
        "tracking_number": "TRK-1",
        "carrier": "UPS",
    })).json()
    assert shipment["shipment_complete"] is True
    assert shipment["status"] == "shipped"
    assert events.of_type(OrderShipped)[0].tracking_number == "TRK-1"

    returned = (await client.post(f"/api/v1/orders/{order['id']}/returns", json={
        "lines": [{"order_item_id": item_id, "quantity": 1}],
        "condition": "good",
    })).json()
    assert returned["restocked_quantity"] == 1
    assert returned["status"] == "partially_returned"

    fetched = (await client.get(f"/api/v1/orders/{order['id']}")).json()
    assert fetched["items"][0]["quantity_returned"] == 1


async def test_cancel_releases_reservations(client, catalog):
    record = await create_record(client, catalog, quantity=5)
    order = (await client.post("/api/v1/orders", json={
        "items": [{"product_id": catalog["product_id"], "quantity": 3}],
    })).json()
    await client.post(f"/api/v1/orders/{order['id']}/allocate", json={})

    cancelled = (await client.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": "customer"})).json()
    assert cancelled["released_quantity"] == 3
    assert cancelled["status"] == "cancelled"

    fetched = (await client.get(f"/api/v1/inventory/records/{record['id']}")).json()
    assert fetched["quantity_available"] == 5

    again = await client.post(f"/api/v1/orders/{order['id']}/cancel", json={})
    assert again.status_code == 409
    assert again.json()["type"] == "InvalidState"


async def test_unknown_order_is_404(client):
    response = await client.get(f"/api/v1/orders/{uuid.uuid4()}")
    assert response.status_code == 404
    body = response.json()
    assert body["type"] == "NotFound"
    assert "order_id" in body["details"]


async def test_order_needs_items(client):
    response = await client.post("/api/v1/orders", json={"items": []})
    assert response.status_code == 422


# ==================== Planning ====================

async def test_reorder_analysis_and_procurement(client, catalog, seed):
    record = await create_record(client, catalog, quantity=200)
    await seed.sales(uuid.UUID(record["id"]), [6] * 30)
    await seed.price_list(catalog["supplier"], {"SKU-1": "2.00"})

    analysis = (await client.post("/api/v1/planning/reorder-analysis", json={})).json()
    summary = analysis["summary"]
    assert summary["urgent_reorders"] + summary["recommended_reorders"] == 1
    flagged = (analysis["urgent_reorders"] + analysis["recommended_reorders"])[0]
    assert flagged["current_stock"] == 20
    assert flagged["lead_time_days"] == 5

    procurement = (await client.post("/api/v1/planning/purchase-orders/automated", json={
        "approval_required": False,
        "user_id": "planner",
    })).json()
    assert procurement["summary"]["orders_created"] == 1
    po_id = procurement["purchase_orders"][0]["purchase_order_id"]

    purchase_order = (await client.get(f"/api/v1/planning/purchase-orders/{po_id}")).json()
    assert purchase_order["status"] == "APPROVED"
    assert purchase_order["approval_status"] == "auto_approved"
    ordered = purchase_order["items"][0]["quantity_ordered"]

    receipt = (await client.post(f"/api/v1/planning/purchase-orders/{po_id}/receive", json={})).json()
    assert receipt["status"] == "FULLY_RECEIVED"

    fetched = (await client.get(f"/api/v1/inventory/records/{record['id']}")).json()
    assert ordered == flagged["suggested_order_quantity"]
    assert fetched["quantity_on_hand"] == 20 + ordered

    closed = await client.post(f"/api/v1/planning/purchase-orders/{po_id}/status", json={"status": "CLOSED"})
    assert closed.status_code == 200
    reopened = await client.post(f"/api/v1/planning/purchase-orders/{po_id}/status", json={"status": "APPROVED"})
    assert reopened.status_code == 409


async def test_demand_analysis(client, catalog, seed):
    record = await create_record(client, catalog, quantity=500)
    await seed.sales(uuid.UUID(record["id"]), [5] * 20)

    response = await client.post("/api/v1/planning/demand-analysis", json={"time_range_days": 30})
    assert response.status_code == 200
    body = response.json()
    assert body["products_analyzed"] == 1
    assert body["patterns"][0]["total_quantity"] == 100

    bad = await client.post("/api/v1/planning/demand-analysis", json={"confidence_level": 0.42})
    assert bad.status_code == 400


async def test_lead_time_refresh_without_history(client):
    response = await client.post("/api/v1/planning/suppliers/lead-times", json={})
    assert response.status_code == 200
    assert response.json() == {"suppliers_analyzed": 0, "suppliers_updated": 0, "lead_time_changes": []}
