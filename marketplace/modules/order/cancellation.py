"""Cancellation at item, vendor-order and whole-order granularity.

Every operation validates first and mutates second: a rejected request leaves
the aggregate untouched. After a mutation the derived statuses are re-applied
child to parent and the totals recomputed.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import flush_or_conflict
from marketplace.exceptions import BusinessRuleException, NotFoundException
from marketplace.models.enums import ItemStatus, OrderStatus, PaymentStatus, RefundStatus, VendorOrderStatus
from marketplace.models.order import Order
from marketplace.models.order_item import OrderItem
from marketplace.models.vendor_order import VendorOrder
from marketplace.modules.events.outbox_service import OutboxService
from marketplace.modules.order.constants import (
    EVENT_ORDER_CANCELLED,
    EVENT_ORDER_ITEM_CANCELLED,
    EVENT_VENDOR_ORDER_CANCELLED,
    ORDER_CANCELLABLE_STATUSES,
)
from marketplace.modules.order.queries import find_vendor_order, get_order_aggregate
from marketplace.modules.order.status import (
    ZERO,
    active_items_total,
    apply_derived_statuses,
    cancel_item,
    cancel_vendor_order_tree,
    record_refund,
    recompute_totals,
    refund_base,
    refundable_amount,
    set_order_status,
    utcnow,
)

logger = logging.getLogger(__name__)


def validate_refund(order: Order, refund_amount: Decimal | None, scope_value: Decimal) -> None:
    """A refund must be positive, fit within the cancelled scope and within what is still refundable."""
    if refund_amount is None:
        return
    if order.payment_status != PaymentStatus.PAID:
        raise BusinessRuleException("Refunds apply only to paid orders")
    if refund_amount <= ZERO:
        raise BusinessRuleException("Refund amount must be greater than 0")
    if refund_amount > scope_value:
        raise BusinessRuleException(
            f"Refund amount {refund_amount} exceeds the cancelled value {scope_value}"
        )
    refundable = refundable_amount(order)
    if refund_amount > refundable:
        raise BusinessRuleException(
            f"Refund amount {refund_amount} exceeds the refundable balance {refundable}"
        )


def apply_refund(order: Order, amount: Decimal, reason: str, base: Decimal) -> None:
    """Record a cancellation refund; payment is refunded once the ledger covers ``base``."""
    total = record_refund(
        order, amount, reason, RefundStatus.PENDING, requested_at=utcnow().isoformat()
    )
    if total >= base:
        order.payment_status = PaymentStatus.REFUNDED


def find_active_item(vendor_order: VendorOrder, product_id: uuid.UUID) -> OrderItem:
    matches = [item for item in vendor_order.items or [] if item.product_id == product_id]
    if not matches:
        raise NotFoundException(
            f"Product {product_id} not found in vendor order {vendor_order.sub_order_id}"
        )
    for item in matches:
        if item.status == ItemStatus.ACTIVE:
            return item
    raise BusinessRuleException(f"Product {product_id} is already cancelled")


class CancellationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _finish(self, order: Order, event_type: str, payload: dict) -> Order:
        await flush_or_conflict(self.db)
        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=event_type,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload=payload,
        )
        if order.status == OrderStatus.CANCELLED and event_type != EVENT_ORDER_CANCELLED:
            # A partial cancel that emptied the order
            await outbox.publish_event(
                event_type=EVENT_ORDER_CANCELLED,
                aggregate_type="order",
                aggregate_id=order.order_id,
                payload={"reason": payload.get("reason"), "derived": True},
            )
        return order

    # ------------------------------------------------------------------
    # Whole order
    # ------------------------------------------------------------------

    async def cancel_order(
        self,
        order_id: str,
        reason: str,
        cancelled_by: uuid.UUID,
        refund_amount: Decimal | None = None,
        user_id: uuid.UUID | None = None,
    ) -> Order:
        """Cancel the order and cascade to every non-terminal vendor order.

        When ``user_id`` is given the order must belong to that customer, and a
        paid order with no explicit amount refunds its remaining balance.
        """
        order = await get_order_aggregate(self.db, order_id, user_id=user_id, for_update=True)
        if order.status not in ORDER_CANCELLABLE_STATUSES:
            raise BusinessRuleException(
                f"Order cannot be cancelled in status '{order.status.value}'"
            )

        if refund_amount is None and user_id is not None and order.payment_status == PaymentStatus.PAID:
            refund_amount = min(refundable_amount(order), order.final_order_amount) or None
        validate_refund(order, refund_amount, order.final_order_amount)

        now = utcnow()
        previous_status = order.status
        base = refund_base(order)
        for vendor_order in order.vendor_orders or []:
            if vendor_order.status not in (VendorOrderStatus.CANCELLED, VendorOrderStatus.DELIVERED):
                cancel_vendor_order_tree(vendor_order, reason, now)
        set_order_status(order, OrderStatus.CANCELLED, reason, at=now)
        recompute_totals(order)

        if refund_amount is not None:
            apply_refund(order, refund_amount, reason, base)

        order.extra_data = {
            **(order.extra_data or {}),
            "cancellation": {
                "by": str(cancelled_by),
                "at": now.isoformat(),
                "reason": reason,
                "previous_status": previous_status.value,
            },
        }

        logger.info("Order %s cancelled by %s: %s", order.order_id, cancelled_by, reason)
        return await self._finish(
            order,
            EVENT_ORDER_CANCELLED,
            {
                "reason": reason,
                "cancelled_by": str(cancelled_by),
                "refund_amount": str(refund_amount) if refund_amount is not None else None,
            },
        )

    # ------------------------------------------------------------------
    # Vendor order
    # ------------------------------------------------------------------

    async def cancel_vendor_order(
        self,
        order_id: str,
        sub_order_id: str,
        reason: str,
        refund_amount: Decimal | None = None,
    ) -> Order:
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        vendor_order = find_vendor_order(order, sub_order_id)
        if vendor_order.status in (VendorOrderStatus.CANCELLED, VendorOrderStatus.DELIVERED):
            raise BusinessRuleException(
                f"Vendor order {sub_order_id} cannot be cancelled in status '{vendor_order.status.value}'"
            )
        validate_refund(order, refund_amount, active_items_total(vendor_order))
        base = refund_base(order)

        cancel_vendor_order_tree(vendor_order, reason)
        apply_derived_statuses(order, reason)
        recompute_totals(order)
        if refund_amount is not None:
            apply_refund(order, refund_amount, reason, base)

        logger.info("Vendor order %s cancelled: %s", sub_order_id, reason)
        return await self._finish(
            order,
            EVENT_VENDOR_ORDER_CANCELLED,
            {
                "sub_order_id": sub_order_id,
                "vendor_id": str(vendor_order.vendor_id),
                "reason": reason,
                "refund_amount": str(refund_amount) if refund_amount is not None else None,
            },
        )

    # ------------------------------------------------------------------
    # Single item
    # ------------------------------------------------------------------

    async def cancel_item(
        self,
        order_id: str,
        sub_order_id: str,
        product_id: uuid.UUID,
        reason: str,
        refund_amount: Decimal | None = None,
    ) -> Order:
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        vendor_order = find_vendor_order(order, sub_order_id)
        item = find_active_item(vendor_order, product_id)
        validate_refund(order, refund_amount, item.item_cost * item.quantity)
        base = refund_base(order)

        cancel_item(item, reason)
        apply_derived_statuses(order, reason)
        recompute_totals(order)
        if refund_amount is not None:
            apply_refund(order, refund_amount, reason, base)

        logger.info("Item %s in %s cancelled: %s", product_id, sub_order_id, reason)
        return await self._finish(
            order,
            EVENT_ORDER_ITEM_CANCELLED,
            {
                "sub_order_id": sub_order_id,
                "product_id": str(product_id),
                "reason": reason,
                "refund_amount": str(refund_amount) if refund_amount is not None else None,
            },
        )
