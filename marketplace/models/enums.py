import enum


class OrderStatus(str, enum.Enum):
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_FAILED = "payment_failed"
    CONFIRMED = "confirmed"
    PENDING = "pending"
    PROCESSING = "processing"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    PREPAID = "prepaid"
    COD = "cod"


class VendorOrderStatus(str, enum.Enum):
    READY_TO_SHIP = "ready_to_ship"
    PROCESSING = "processing"
    PENDING = "pending"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ItemStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class ShippingMethod(str, enum.Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    AUTOMATIC_MANUAL = "automatic+manual"
    MANUAL_AUTOMATIC = "manual+automatic"

    @property
    def allows_manual(self) -> bool:
        return self is not ShippingMethod.AUTOMATIC

    @property
    def allows_automatic(self) -> bool:
        return self is not ShippingMethod.MANUAL


class WarehouseStatus(str, enum.Enum):
    PENDING = "pending"
    REGISTERED = "registered"
    FAILED = "failed"
    RETRYING = "retrying"


class RefundStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class CouponType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class EventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NotificationType(str, enum.Enum):
    ORDER_CREATED = "order_created"
    MULTI_VENDOR_ORDER_CREATED = "multi_vendor_order_created"
    ORDER_STATUS_UPDATE = "order_status_update"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PAYMENT_FAILED = "payment_failed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_DELIVERED = "order_delivered"
    REFUND_PROCESSED = "refund_processed"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"
