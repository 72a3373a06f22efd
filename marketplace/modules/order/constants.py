"""Order status transitions, event types, and terminal states."""

from __future__ import annotations

from marketplace.models.enums import OrderStatus, VendorOrderStatus

# ---------------------------------------------------------------------------
# Valid status transitions: current_status -> set of allowed next statuses
# ---------------------------------------------------------------------------

_ALWAYS = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}

ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PAYMENT_PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.PAYMENT_FAILED,
        *_ALWAYS,
    },
    # Leaving payment_failed goes through PaymentService.initiate_payment
    OrderStatus.PAYMENT_FAILED: {*_ALWAYS},
    OrderStatus.CONFIRMED: {
        OrderStatus.PROCESSING,
        OrderStatus.PENDING,
        *_ALWAYS,
    },
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        *_ALWAYS,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.READY_TO_SHIP,
        OrderStatus.SHIPPED,
        *_ALWAYS,
    },
    OrderStatus.READY_TO_SHIP: {
        OrderStatus.SHIPPED,
        *_ALWAYS,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        *_ALWAYS,
    },
}

ORDER_TERMINAL_STATUSES: set[OrderStatus] = {
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
}

# Statuses from which a customer or operator may cancel the whole order
ORDER_CANCELLABLE_STATUSES: set[OrderStatus] = {
    OrderStatus.PAYMENT_PENDING,
    OrderStatus.PAYMENT_FAILED,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
}

VENDOR_ORDER_TERMINAL_STATUSES: set[VendorOrderStatus] = {
    VendorOrderStatus.DELIVERED,
    VendorOrderStatus.CANCELLED,
}

# ---------------------------------------------------------------------------
# Event type strings for the outbox
# ---------------------------------------------------------------------------

EVENT_ORDER_CREATED = "order.created"
EVENT_ORDER_STATUS_UPDATED = "order.status_updated"
EVENT_ORDER_PAYMENT_CONFIRMED = "order.payment_confirmed"
EVENT_ORDER_PAYMENT_FAILED = "order.payment_failed"
EVENT_ORDER_CANCELLED = "order.cancelled"
EVENT_ORDER_REFUND_REQUESTED = "order.refund_requested"
EVENT_ORDER_REFUND_PROCESSED = "order.refund_processed"
EVENT_VENDOR_ORDER_CANCELLED = "vendor_order.cancelled"
EVENT_ORDER_ITEM_CANCELLED = "order_item.cancelled"
EVENT_VENDOR_ORDER_SHIPMENT_UPDATED = "vendor_order.shipment_updated"
EVENT_VENDOR_WAREHOUSE_REGISTERED = "vendor.warehouse_registered"
