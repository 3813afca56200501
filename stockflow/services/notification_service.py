"""
Inventory Notification Service

Turns committed domain events into internal notifications (low stock,
shortages, shipments, purchase orders) and hands them to a sink.

The default sink only logs. Delivery failures are logged and swallowed
so they never fail the business operation that produced the event.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence
from uuid import uuid4

import httpx

from stockflow.config import settings
from stockflow.core.events import (
    DomainEvent,
    LowStockDetected,
    AllocationShortage,
    BackorderCreated,
    OrderShipped,
    ReturnProcessed,
    PurchaseOrdersCreated,
    SupplierLeadTimesUpdated,
)


logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Types of notifications."""
    LOW_STOCK_ALERT = "low_stock_alert"
    OUT_OF_STOCK_ALERT = "out_of_stock_alert"
    ALLOCATION_SHORTAGE = "allocation_shortage"
    BACKORDER_CREATED = "backorder_created"
    ORDER_SHIPPED = "order_shipped"
    RETURN_PROCESSED = "return_processed"
    PURCHASE_ORDERS_CREATED = "purchase_orders_created"
    LEAD_TIMES_UPDATED = "lead_times_updated"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


TEMPLATES = {
    NotificationType.LOW_STOCK_ALERT: (
        "[LOW STOCK] Product {product_id} in warehouse {warehouse_id}: "
        "{quantity_available} available (Reorder point: {reorder_point})"
    ),
    NotificationType.OUT_OF_STOCK_ALERT: (
        "[OUT OF STOCK] Product {product_id} in warehouse {warehouse_id}: "
        "Stock depleted. Immediate reorder required."
    ),
    NotificationType.ALLOCATION_SHORTAGE: (
        "Order #{order_number} could not be fully allocated: "
        "{shortage_count} item(s) short by {shortage_quantity} units"
    ),
    NotificationType.BACKORDER_CREATED: (
        "Backorder #{backorder_number} created with {item_count} item(s)"
    ),
    NotificationType.ORDER_SHIPPED: (
        "Order #{order_number} shipped via {carrier}. Tracking: {tracking_number}"
    ),
    NotificationType.RETURN_PROCESSED: (
        "Return for order #{order_number}: {restocked_quantity} restocked, "
        "{scrapped_quantity} not restockable"
    ),
    NotificationType.PURCHASE_ORDERS_CREATED: (
        "Created {orders_created} purchase order(s) for {items_processed} item(s). "
        "Total value: {total_value:.2f}"
    ),
    NotificationType.LEAD_TIMES_UPDATED: (
        "Updated lead times for {suppliers_updated} of {suppliers_analyzed} suppliers"
    ),
}


@dataclass
class Notification:
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationSink(Protocol):
    async def notify(self, notification: Notification) -> None:
        ...


class LoggingNotificationSink:
    """Placeholder sink that writes notifications to the log."""

    async def notify(self, notification: Notification) -> None:
        logger.info(
            f"[NOTIFICATION] {notification.priority.value.upper()} "
            f"{notification.type.value}: {notification.message[:200]}"
        )


class WebhookNotificationSink:
    """Posts notifications as JSON to an HTTP endpoint."""

    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def notify(self, notification: Notification) -> None:
        payload = {
            "id": notification.id,
            "type": notification.type.value,
            "title": notification.title,
            "message": notification.message,
            "priority": notification.priority.value,
            "data": notification.data,
            "created_at": notification.created_at.isoformat(),
        }
        async with httpx.AsyncClient(transport=self.transport) as client:
            response = await client.post(
                self.url,
                content=json.dumps(payload, default=str),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )

        if response.status_code >= 400:
            raise RuntimeError(f"Webhook returned {response.status_code}: {response.text[:200]}")
        logger.info(f"Notification {notification.type.value} delivered to webhook")


def render(notification_type: NotificationType, data: Dict[str, Any]) -> str:
    template = TEMPLATES.get(notification_type, "")
    try:
        return template.format(**data)
    except (KeyError, ValueError) as e:
        logger.warning(f"Missing template variable: {e}")
        return template


def build_notification(event: DomainEvent) -> Optional[Notification]:
    """Map a domain event to a notification, or None if it is not announced."""
    if isinstance(event, LowStockDetected):
        out_of_stock = event.quantity_available <= 0
        ntype = NotificationType.OUT_OF_STOCK_ALERT if out_of_stock else NotificationType.LOW_STOCK_ALERT
        data = {
            "inventory_id": str(event.inventory_id),
            "product_id": str(event.product_id),
            "warehouse_id": str(event.warehouse_id),
            "quantity_available": event.quantity_available,
            "reorder_point": event.reorder_point,
            "stock_status": event.stock_status,
        }
        return Notification(
            type=ntype,
            title="Out of stock" if out_of_stock else "Low stock",
            message=render(ntype, data),
            data=data,
            priority=NotificationPriority.HIGH,
        )

    if isinstance(event, AllocationShortage):
        data = {
            "order_id": str(event.order_id),
            "order_number": event.order_number,
            "shortage_count": len(event.shortages),
            "shortage_quantity": sum(s.get("shortfall", 0) for s in event.shortages),
            "shortages": list(event.shortages),
        }
        return Notification(
            type=NotificationType.ALLOCATION_SHORTAGE,
            title="Allocation shortage",
            message=render(NotificationType.ALLOCATION_SHORTAGE, data),
            data=data,
            priority=NotificationPriority.HIGH,
        )

    if isinstance(event, BackorderCreated):
        data = {
            "original_order_id": str(event.original_order_id),
            "backorder_id": str(event.backorder_id),
            "backorder_number": event.backorder_number,
            "item_count": event.item_count,
        }
        return Notification(
            type=NotificationType.BACKORDER_CREATED,
            title="Backorder created",
            message=render(NotificationType.BACKORDER_CREATED, data),
            data=data,
        )

    if isinstance(event, OrderShipped):
        data = {
            "order_id": str(event.order_id),
            "order_number": event.order_number,
            "item_count": event.item_count,
            "shipment_complete": event.shipment_complete,
            "carrier": event.carrier or "-",
            "tracking_number": event.tracking_number or "-",
        }
        return Notification(
            type=NotificationType.ORDER_SHIPPED,
            title="Order shipped",
            message=render(NotificationType.ORDER_SHIPPED, data),
            data=data,
        )

    if isinstance(event, ReturnProcessed):
        data = {
            "order_id": str(event.order_id),
            "order_number": event.order_number,
            "restocked_quantity": event.restocked_quantity,
            "scrapped_quantity": event.scrapped_quantity,
        }
        return Notification(
            type=NotificationType.RETURN_PROCESSED,
            title="Return processed",
            message=render(NotificationType.RETURN_PROCESSED, data),
            data=data,
        )

    if isinstance(event, PurchaseOrdersCreated):
        data = {
            "orders_created": event.orders_created,
            "total_value": event.total_value,
            "items_processed": event.items_processed,
            "approval_required": event.approval_required,
        }
        return Notification(
            type=NotificationType.PURCHASE_ORDERS_CREATED,
            title="Automated purchase orders created",
            message=render(NotificationType.PURCHASE_ORDERS_CREATED, data),
            data=data,
            priority=NotificationPriority.HIGH if event.approval_required else NotificationPriority.NORMAL,
        )

    if isinstance(event, SupplierLeadTimesUpdated):
        data = {
            "suppliers_analyzed": event.suppliers_analyzed,
            "suppliers_updated": event.suppliers_updated,
        }
        return Notification(
            type=NotificationType.LEAD_TIMES_UPDATED,
            title="Supplier lead times updated",
            message=render(NotificationType.LEAD_TIMES_UPDATED, data),
            data=data,
            priority=NotificationPriority.LOW,
        )

    # StockLevelChanged is too chatty to announce
    return None


class NotificationDispatcher:
    """EventDispatcher that announces events through a NotificationSink."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LoggingNotificationSink()

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        for event in events:
            notification = build_notification(event)
            if notification is None:
                continue
            try:
                await self.sink.notify(notification)
            except Exception as e:
                # Delivery problems never reach the caller
                logger.warning(f"Failed to deliver {notification.type.value} notification: {e}")


class CollectingNotificationSink:
    """Sink that keeps notifications in memory."""

    def __init__(self):
        self.notifications: List[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)


def default_dispatcher() -> NotificationDispatcher:
    """Webhook delivery when NOTIFICATION_WEBHOOK_URL is set, log-only otherwise."""
    if settings.NOTIFICATION_WEBHOOK_URL:
        return NotificationDispatcher(WebhookNotificationSink(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        ))
    return NotificationDispatcher()
