import json
import uuid

import httpx
import pytest

from stockflow.config import settings
from stockflow.core.events import (
    AllocationShortage,
    LowStockDetected,
    PurchaseOrdersCreated,
    StockLevelChanged,
)
from stockflow.services.notification_service import (
    CollectingNotificationSink,
    NotificationDispatcher,
    NotificationPriority,
    NotificationType,
    WebhookNotificationSink,
    build_notification,
    default_dispatcher,
    render,
)


def low_stock(quantity_available):
    return LowStockDetected(
        inventory_id=uuid.uuid4(),
        product_id=uuid.uuid4(),
        warehouse_id=uuid.uuid4(),
        quantity_available=quantity_available,
        reorder_point=10,
        stock_status="low_stock",
    )


def test_low_stock_notification():
    notification = build_notification(low_stock(4))
    assert notification.type == NotificationType.LOW_STOCK_ALERT
    assert notification.priority == NotificationPriority.HIGH
    assert "4 available (Reorder point: 10)" in notification.message


def test_depleted_stock_is_out_of_stock_alert():
    notification = build_notification(low_stock(0))
    assert notification.type == NotificationType.OUT_OF_STOCK_ALERT


def test_shortage_notification_sums_shortfall():
    event = AllocationShortage(
        order_id=uuid.uuid4(),
        order_number="ORD-1",
        shortages=({"sku": "A", "shortfall": 2}, {"sku": "B", "shortfall": 3}),
    )
    notification = build_notification(event)
    assert notification.message == "Order #ORD-1 could not be fully allocated: 2 item(s) short by 5 units"


def test_purchase_order_summary_notification():
    event = PurchaseOrdersCreated(orders_created=2, total_value=1234.5, items_processed=7, approval_required=True)
    notification = build_notification(event)
    assert "Created 2 purchase order(s) for 7 item(s). Total value: 1234.50" == notification.message


def test_stock_level_changes_are_not_announced():
    event = StockLevelChanged(
        inventory_id=uuid.uuid4(),
        product_id=uuid.uuid4(),
        warehouse_id=uuid.uuid4(),
        movement_type="sale",
        old_on_hand=5,
        new_on_hand=4,
        quantity_available=4,
        stock_status="in_stock",
    )
    assert build_notification(event) is None


async def test_dispatcher_delivers_to_sink():
    sink = CollectingNotificationSink()
    await NotificationDispatcher(sink).publish([low_stock(1), low_stock(0)])
    assert [n.type for n in sink.notifications] == [
        NotificationType.LOW_STOCK_ALERT,
        NotificationType.OUT_OF_STOCK_ALERT,
    ]


async def test_sink_failures_do_not_reach_caller():
    class BrokenSink:
        async def notify(self, notification):
            raise ConnectionError("smtp down")

    await NotificationDispatcher(BrokenSink()).publish([low_stock(1)])


async def test_webhook_sink_posts_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    sink = WebhookNotificationSink("https://hooks.example.com/stock", transport=httpx.MockTransport(handler))
    await sink.notify(build_notification(low_stock(3)))

    assert received[0]["type"] == "low_stock_alert"
    assert received[0]["data"]["quantity_available"] == 3
    assert received[0]["priority"] == "high"


async def test_webhook_error_status_raises():
    sink = WebhookNotificationSink(
        "https://hooks.example.com/stock",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
    )
    with pytest.raises(RuntimeError):
        await sink.notify(build_notification(low_stock(3)))


def test_default_dispatcher_uses_webhook_when_configured(monkeypatch):
    assert not isinstance(default_dispatcher().sink, WebhookNotificationSink)
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "https://hooks.example.com/stock")
    assert isinstance(default_dispatcher().sink, WebhookNotificationSink)


def test_render_falls_back_to_template_on_missing_variable():
    message = render(NotificationType.BACKORDER_CREATED, {"backorder_number": "ORD-1-BO-01"})
    assert message == "Backorder #{backorder_number} created with {item_count} item(s)"
