# Import all models so SQLAlchemy metadata is populated for Alembic
from marketplace.models.coupon import Coupon
from marketplace.models.enums import (
    CouponType,
    EventStatus,
    ItemStatus,
    NotificationPriority,
    NotificationType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    ShippingMethod,
    VendorOrderStatus,
    WarehouseStatus,
)
from marketplace.models.event_outbox import EventOutbox
from marketplace.models.notification import Notification
from marketplace.models.order import Order
from marketplace.models.order_counter import OrderCounter
from marketplace.models.order_item import OrderItem
from marketplace.models.product import Product
from marketplace.models.vendor import Vendor
from marketplace.models.vendor_order import VendorOrder

__all__ = [
    "Coupon",
    "CouponType",
    "EventOutbox",
    "EventStatus",
    "ItemStatus",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "Order",
    "OrderCounter",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "RefundStatus",
    "ShippingMethod",
    "Vendor",
    "VendorOrder",
    "VendorOrderStatus",
    "WarehouseStatus",
]
