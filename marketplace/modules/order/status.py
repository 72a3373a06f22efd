"""Pure helpers over the order aggregate: history entries, derived statuses and totals.

Nothing here touches the database. Callers load the full aggregate
(order -> vendor orders -> items), mutate it through these helpers and let
the session flush the result.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from marketplace.models.enums import ItemStatus, OrderStatus, RefundStatus, VendorOrderStatus
from marketplace.models.order import Order
from marketplace.models.order_item import OrderItem
from marketplace.models.vendor_order import VendorOrder

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(UTC)


def _history_entry(status: str, note: str | None, at: datetime | None) -> dict:
    entry = {"status": status, "at": (at or utcnow()).isoformat()}
    if note:
        entry["note"] = note
    return entry


# ---------------------------------------------------------------------------
# History (append-only)
# ---------------------------------------------------------------------------


def set_order_status(
    order: Order, status: OrderStatus, note: str | None = None, at: datetime | None = None
) -> None:
    """Move the order to ``status`` and append exactly one history entry."""
    order.status = status
    # Reassign so the JSONB column is flagged dirty
    order.status_history = [*(order.status_history or []), _history_entry(status.value, note, at)]


def set_vendor_order_status(
    vendor_order: VendorOrder,
    status: VendorOrderStatus,
    note: str | None = None,
    at: datetime | None = None,
) -> None:
    vendor_order.status = status
    if note:
        vendor_order.note = note
    vendor_order.tracking = [
        *(vendor_order.tracking or []),
        _history_entry(status.value, note, at),
    ]


def add_tracking_note(vendor_order: VendorOrder, note: str, at: datetime | None = None) -> None:
    """Record a note on the tracking log without changing status."""
    vendor_order.tracking = [
        *(vendor_order.tracking or []),
        _history_entry(vendor_order.status.value, note, at),
    ]


# ---------------------------------------------------------------------------
# Cancellation (parent -> child)
# ---------------------------------------------------------------------------


def cancel_item(item: OrderItem, reason: str, at: datetime | None = None) -> None:
    item.status = ItemStatus.CANCELLED
    item.cancelled_at = at or utcnow()
    item.cancel_reason = reason


def cancel_vendor_order_tree(vendor_order: VendorOrder, reason: str, at: datetime | None = None) -> None:
    """Cancel a vendor order and every still-active line in it."""
    at = at or utcnow()
    for item in vendor_order.items or []:
        if item.status == ItemStatus.ACTIVE:
            cancel_item(item, reason, at)
    set_vendor_order_status(vendor_order, VendorOrderStatus.CANCELLED, reason, at)


# ---------------------------------------------------------------------------
# Derived status (child -> parent)
# ---------------------------------------------------------------------------


def derive_vendor_order_status(vendor_order: VendorOrder) -> VendorOrderStatus:
    """A vendor order whose every line is cancelled is itself cancelled."""
    items = vendor_order.items or []
    if items and all(item.status == ItemStatus.CANCELLED for item in items):
        return VendorOrderStatus.CANCELLED
    return vendor_order.status


def derive_order_status(order: Order) -> OrderStatus:
    """An order whose every vendor order is cancelled is itself cancelled."""
    vendor_orders = order.vendor_orders or []
    if vendor_orders and all(vo.status == VendorOrderStatus.CANCELLED for vo in vendor_orders):
        return OrderStatus.CANCELLED
    return order.status


def apply_derived_statuses(order: Order, note: str | None = None) -> bool:
    """Propagate cancellation upward. Returns True when the order itself changed."""
    for vendor_order in order.vendor_orders or []:
        derived = derive_vendor_order_status(vendor_order)
        if derived != vendor_order.status:
            set_vendor_order_status(vendor_order, derived, note or "All products cancelled")

    derived_order = derive_order_status(order)
    if derived_order != order.status:
        set_order_status(order, derived_order, note or "All vendor orders cancelled")
        return True
    return False


_SHIPPABLE_ORDER_STATUSES = {
    OrderStatus.CONFIRMED,
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.READY_TO_SHIP,
}


def derive_fulfillment_status(order: Order) -> OrderStatus:
    """Roll vendor-order shipping progress up to the order.

    Only moves forward: every live vendor order shipped (or further) makes
    the order shipped; every live vendor order delivered makes it delivered.
    """
    live = [vo for vo in order.vendor_orders or [] if vo.status != VendorOrderStatus.CANCELLED]
    if not live:
        return order.status
    if all(vo.status == VendorOrderStatus.DELIVERED for vo in live):
        if order.status in _SHIPPABLE_ORDER_STATUSES or order.status == OrderStatus.SHIPPED:
            return OrderStatus.DELIVERED
    elif all(
        vo.status in (VendorOrderStatus.SHIPPED, VendorOrderStatus.OUT_FOR_DELIVERY, VendorOrderStatus.DELIVERED)
        for vo in live
    ):
        if order.status in _SHIPPABLE_ORDER_STATUSES:
            return OrderStatus.SHIPPED
    return order.status


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


def active_items_total(vendor_order: VendorOrder) -> Decimal:
    return sum(
        (item.item_cost * item.quantity for item in vendor_order.items or [] if item.status == ItemStatus.ACTIVE),
        ZERO,
    )


def recompute_totals(order: Order) -> None:
    """amount = active items + every vendor order's shipping; final = amount - coupon, floored at 0."""
    items_total = sum((active_items_total(vo) for vo in order.vendor_orders or []), ZERO)
    shipping_total = sum((Decimal(vo.shipping_cost or 0) for vo in order.vendor_orders or []), ZERO)
    order.amount = items_total + shipping_total
    order.final_order_amount = max(ZERO, order.amount - Decimal(order.coupon_discount or 0))


# ---------------------------------------------------------------------------
# Refund ledger
# ---------------------------------------------------------------------------


def refunded_total(order: Order) -> Decimal:
    return Decimal(str((order.refund_info or {}).get("refunded_total") or 0))


def refund_base(order: Order) -> Decimal:
    """What the customer paid: the captured amount, else the current final amount."""
    if order.paid_amount is not None:
        return Decimal(order.paid_amount)
    return order.final_order_amount


def refundable_amount(order: Order) -> Decimal:
    return max(ZERO, refund_base(order) - refunded_total(order))


def record_refund(
    order: Order, amount: Decimal, reason: str, refund_status: RefundStatus, **details
) -> Decimal:
    """Add ``amount`` to the order's cumulative ``refunded_total`` and return the new total.

    Cancellation refunds and operator refunds share this ledger, so their sum
    can never pass what was paid once callers check ``refundable_amount``.
    """
    total = refunded_total(order) + amount
    order.refund_info = {
        **(order.refund_info or {}),
        "refund_requested": True,
        "refund_status": refund_status.value,
        "refund_amount": float(amount),
        "refunded_total": float(total),
        "refund_reason": reason,
        **details,
    }
    return total
