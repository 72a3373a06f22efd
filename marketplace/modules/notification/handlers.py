"""Outbox handlers that turn order events into customer notifications."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.enums import NotificationPriority, NotificationType, OrderStatus, VendorOrderStatus
from marketplace.models.event_outbox import EventOutbox
from marketplace.models.notification import Notification
from marketplace.models.order import Order
from marketplace.modules.events.handlers import EventHandlerRegistry
from marketplace.modules.order.constants import (
    EVENT_ORDER_CANCELLED,
    EVENT_ORDER_CREATED,
    EVENT_ORDER_PAYMENT_CONFIRMED,
    EVENT_ORDER_PAYMENT_FAILED,
    EVENT_ORDER_REFUND_PROCESSED,
    EVENT_ORDER_STATUS_UPDATED,
    EVENT_VENDOR_ORDER_SHIPMENT_UPDATED,
)

logger = logging.getLogger(__name__)

# (type, priority, title, message) or None when the event is not customer-facing
Rendered = tuple[NotificationType, NotificationPriority, str, str] | None


def _order_created(order_id: str, payload: dict) -> Rendered:
    vendor_count = int(payload.get("vendor_count") or 1)
    amount = payload.get("final_order_amount")
    if vendor_count > 1:
        return (
            NotificationType.MULTI_VENDOR_ORDER_CREATED,
            NotificationPriority.MEDIUM,
            "Order placed",
            f"Your order {order_id} for Rs. {amount} has been placed and will ship "
            f"from {vendor_count} sellers separately.",
        )
    return (
        NotificationType.ORDER_CREATED,
        NotificationPriority.MEDIUM,
        "Order placed",
        f"Your order {order_id} for Rs. {amount} has been placed.",
    )


def _payment_confirmed(order_id: str, payload: dict) -> Rendered:
    return (
        NotificationType.PAYMENT_CONFIRMATION,
        NotificationPriority.HIGH,
        "Payment received",
        f"We received Rs. {payload.get('paid_amount')} for order {order_id}.",
    )


def _payment_failed(order_id: str, payload: dict) -> Rendered:
    return (
        NotificationType.PAYMENT_FAILED,
        NotificationPriority.HIGH,
        "Payment failed",
        f"Payment for order {order_id} could not be verified. You can retry from your orders page.",
    )


def _cancelled(order_id: str, payload: dict) -> Rendered:
    reason = payload.get("reason")
    message = f"Order {order_id} has been cancelled."
    if reason:
        message = f"{message} Reason: {reason}"
    return NotificationType.ORDER_CANCELLED, NotificationPriority.HIGH, "Order cancelled", message[:1000]


def _status_updated(order_id: str, payload: dict) -> Rendered:
    new_status = payload.get("to")
    if new_status == OrderStatus.DELIVERED.value:
        return (
            NotificationType.ORDER_DELIVERED,
            NotificationPriority.MEDIUM,
            "Order delivered",
            f"Order {order_id} has been delivered.",
        )
    if new_status == OrderStatus.CANCELLED.value:
        # order.cancelled is not emitted for admin status overrides
        return _cancelled(order_id, {"reason": payload.get("note")})
    return (
        NotificationType.ORDER_STATUS_UPDATE,
        NotificationPriority.LOW,
        "Order update",
        f"Order {order_id} is now {str(new_status).replace('_', ' ')}.",
    )


def _shipment_updated(order_id: str, payload: dict) -> Rendered:
    waybill = payload.get("waybill_no")
    status = payload.get("status", VendorOrderStatus.SHIPPED.value)
    part = f"Part of order {order_id} ({payload.get('sub_order_id')})"
    if status == VendorOrderStatus.SHIPPED.value and waybill:
        title, message = "Shipment on its way", f"{part} shipped with tracking number {waybill}."
    elif status == VendorOrderStatus.OUT_FOR_DELIVERY.value:
        title, message = "Out for delivery", f"{part} is out for delivery."
    elif status == VendorOrderStatus.DELIVERED.value:
        title, message = "Package delivered", f"{part} has been delivered."
    else:
        return None
    return NotificationType.ORDER_STATUS_UPDATE, NotificationPriority.MEDIUM, title, message


def _refund_processed(order_id: str, payload: dict) -> Rendered:
    return (
        NotificationType.REFUND_PROCESSED,
        NotificationPriority.HIGH,
        "Refund processed",
        f"A refund of Rs. {payload.get('amount')} for order {order_id} has been processed.",
    )


RENDERERS: dict[str, Callable[[str, dict], Rendered]] = {
    EVENT_ORDER_CREATED: _order_created,
    EVENT_ORDER_PAYMENT_CONFIRMED: _payment_confirmed,
    EVENT_ORDER_PAYMENT_FAILED: _payment_failed,
    EVENT_ORDER_CANCELLED: _cancelled,
    EVENT_ORDER_STATUS_UPDATED: _status_updated,
    EVENT_VENDOR_ORDER_SHIPMENT_UPDATED: _shipment_updated,
    EVENT_ORDER_REFUND_PROCESSED: _refund_processed,
}


async def _order_owner(session: AsyncSession, order_id: str) -> uuid.UUID | None:
    result = await session.execute(select(Order.user_id).where(Order.order_id == order_id))
    return result.scalar_one_or_none()


async def notify_customer(session: AsyncSession, event: EventOutbox) -> None:
    """Write at most one notification per outbox event."""
    renderer = RENDERERS.get(event.event_type)
    rendered = renderer(event.aggregate_id, event.payload or {}) if renderer else None
    if rendered is None:
        return

    owner = event.payload.get("user_id") if event.payload else None
    user_id = uuid.UUID(owner) if owner else await _order_owner(session, event.aggregate_id)
    if user_id is None:
        logger.warning("No owner for order %s, skipping %s notification", event.aggregate_id, event.event_type)
        return

    notification_type, priority, title, message = rendered
    await session.execute(
        insert(Notification)
        .values(
            user_id=user_id,
            event_id=event.id,
            order_id=event.aggregate_id,
            type=notification_type,
            priority=priority,
            title=title,
            message=message,
        )
        .on_conflict_do_nothing(index_elements=[Notification.event_id])
    )


def register_handlers() -> None:
    for event_type in RENDERERS:
        EventHandlerRegistry.register(event_type, notify_customer)
