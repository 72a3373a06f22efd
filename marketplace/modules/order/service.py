"""Order lifecycle service: checkout, queries, refunds and operator actions."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.config import settings
from marketplace.database.session import flush_or_conflict
from marketplace.exceptions import BusinessRuleException
from marketplace.models.coupon import Coupon
from marketplace.models.enums import (
    ItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    VendorOrderStatus,
)
from marketplace.models.order import Order
from marketplace.models.order_item import OrderItem
from marketplace.models.vendor_order import VendorOrder
from marketplace.modules.events.outbox_service import OutboxService
from marketplace.modules.order.constants import (
    EVENT_ORDER_CREATED,
    EVENT_ORDER_REFUND_PROCESSED,
    EVENT_ORDER_REFUND_REQUESTED,
    EVENT_ORDER_STATUS_UPDATED,
    EVENT_VENDOR_ORDER_SHIPMENT_UPDATED,
    ORDER_TERMINAL_STATUSES,
    ORDER_TRANSITIONS,
)
from marketplace.modules.order.queries import find_vendor_order, get_order_aggregate
from marketplace.modules.order.sequence import (
    OrderSequence,
    PostgresOrderSequence,
    compose_sub_order_id,
    generate_order_id,
)
from marketplace.modules.order.status import (
    ZERO,
    cancel_vendor_order_tree,
    derive_fulfillment_status,
    recompute_totals,
    record_refund,
    refund_base,
    refundable_amount,
    set_order_status,
    set_vendor_order_status,
    utcnow,
)
from marketplace.modules.shipping.resolver import CartLine, ShippingResolver, validate_pincode

logger = logging.getLogger(__name__)


def empty_refund_info() -> dict:
    return {
        "refund_requested": False,
        "refund_status": RefundStatus.NONE.value,
        "refund_amount": 0.0,
    }


class OrderService:
    def __init__(
        self,
        db: AsyncSession,
        resolver: ShippingResolver | None = None,
        sequence: OrderSequence | None = None,
    ):
        self.db = db
        self._resolver = resolver
        self.sequence = sequence or PostgresOrderSequence(db)

    @property
    def resolver(self) -> ShippingResolver:
        if self._resolver is None:
            self._resolver = ShippingResolver(self.db)
        return self._resolver

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def _coupon_discount(self, code: str | None, subtotal: Decimal, now: datetime) -> tuple[str | None, Decimal]:
        """Unknown, inactive, expired or under-minimum coupons silently drop the discount."""
        if not code:
            return None, ZERO
        result = await self.db.execute(select(Coupon).where(Coupon.code == code))
        coupon = result.scalar_one_or_none()
        if coupon is None or not coupon.is_applicable(subtotal, now):
            logger.info("Coupon %s not applicable, ignoring", code)
            return None, ZERO
        return coupon.code, coupon.discount_for(subtotal)

    async def create_order(
        self,
        user_id: uuid.UUID,
        lines: list[CartLine],
        shipping_address: dict,
        payment_method: PaymentMethod = PaymentMethod.PREPAID,
        coupon_code: str | None = None,
        notes: str | None = None,
        metadata: dict | None = None,
    ) -> Order:
        """Split the cart by vendor, price shipping per vendor and persist the aggregate.

        Runs inside the request's unit of work, counter increment included:
        any failure leaves nothing behind.
        """
        pincode = validate_pincode(str(shipping_address.get("pincode", "")))
        groups = await self.resolver.split_by_vendor(lines)
        quotes = await asyncio.gather(
            *(self.resolver.resolve_group(group, pincode, payment_method) for group in groups)
        )

        now = utcnow()
        items_subtotal = sum((group.items_subtotal for group in groups), ZERO)
        applied_code, coupon_discount = await self._coupon_discount(coupon_code, items_subtotal, now)

        order_id = await generate_order_id(self.sequence, now)
        is_cod = payment_method == PaymentMethod.COD

        order = Order(
            order_id=order_id,
            user_id=user_id,
            amount=ZERO,
            discount=coupon_discount,
            coupon_code=applied_code,
            coupon_discount=coupon_discount,
            final_order_amount=ZERO,
            currency=settings.order_currency,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            status_history=[],
            shipping_address=dict(shipping_address),
            refund_info=empty_refund_info(),
            extra_data={"notes": notes, "metadata": metadata or {}},
            confirmed_at=now if is_cod else None,
            is_deleted=False,
        )
        set_order_status(
            order, OrderStatus.CONFIRMED if is_cod else OrderStatus.PAYMENT_PENDING, at=now
        )

        vendor_orders = []
        for index, (group, quote) in enumerate(zip(groups, quotes)):
            vendor_order = VendorOrder(
                position=index,
                sub_order_id=compose_sub_order_id(order_id, index),
                vendor_id=group.vendor.id,
                vendor_name=group.vendor.name,
                shipping_method=quote.delivery_mode,
                shipping_provider=quote.provider,
                shipping_cost=quote.cost,
                estimated_delivery_days=quote.estimated_delivery_days,
                expected_arrival=now + timedelta(days=quote.estimated_delivery_days),
                shipment_retry_count=0,
                tracking=[],
                items=[
                    OrderItem(
                        position=position,
                        product_id=line.product.id,
                        name=line.product.name,
                        quantity=line.quantity,
                        item_cost=Decimal(line.product.selling_price),
                        is_customizable=bool(line.customization),
                        customization=line.customization,
                        status=ItemStatus.ACTIVE,
                    )
                    for position, line in enumerate(group.lines)
                ],
            )
            set_vendor_order_status(vendor_order, VendorOrderStatus.READY_TO_SHIP, at=now)
            vendor_orders.append(vendor_order)
        order.vendor_orders = vendor_orders

        recompute_totals(order)
        self.db.add(order)
        await flush_or_conflict(self.db)

        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=EVENT_ORDER_CREATED,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload={
                "user_id": str(user_id),
                "vendor_count": len(vendor_orders),
                "final_order_amount": str(order.final_order_amount),
                "payment_method": payment_method.value,
            },
        )

        logger.info(
            "Order %s created for user %s: %d vendor order(s), final amount %s",
            order.order_id, user_id, len(vendor_orders), order.final_order_amount,
        )
        return order

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(
        self, order_id: str, user_id: uuid.UUID | None = None, include_deleted: bool = False
    ) -> Order:
        return await get_order_aggregate(
            self.db, order_id, user_id=user_id, include_deleted=include_deleted
        )

    async def list_orders(
        self,
        user_id: uuid.UUID | None = None,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
        vendor_id: uuid.UUID | None = None,
        include_deleted: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        """Customer listing when ``user_id`` is set, operator listing otherwise."""
        filters = []
        if user_id is not None:
            filters.append(Order.user_id == user_id)
        if status is not None:
            filters.append(Order.status == status)
        if payment_status is not None:
            filters.append(Order.payment_status == payment_status)
        if vendor_id is not None:
            filters.append(
                Order.id.in_(select(VendorOrder.parent_order_id).where(VendorOrder.vendor_id == vendor_id))
            )
        if not include_deleted:
            filters.append(Order.is_deleted.is_(False))

        count_result = await self.db.execute(select(func.count()).select_from(Order).where(*filters))
        total = count_result.scalar() or 0

        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.vendor_orders).selectinload(VendorOrder.items))
            .where(*filters)
            .order_by(Order.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def request_refund(
        self,
        user_id: uuid.UUID,
        order_id: str,
        reason: str,
        amount: Decimal | None = None,
    ) -> Order:
        """Customer refund request; paid orders only, at most once."""
        order = await get_order_aggregate(self.db, order_id, user_id=user_id, for_update=True)
        if order.payment_status != PaymentStatus.PAID:
            raise BusinessRuleException("Refunds can only be requested for paid orders")
        if (order.refund_info or {}).get("refund_requested"):
            raise BusinessRuleException("A refund has already been requested for this order")

        refund_amount = order.final_order_amount if amount is None else amount
        if refund_amount <= ZERO or refund_amount > order.final_order_amount:
            raise BusinessRuleException(
                f"Refund amount must be greater than 0 and at most {order.final_order_amount}"
            )

        order.refund_info = {
            **(order.refund_info or {}),
            "refund_requested": True,
            "refund_status": RefundStatus.PENDING.value,
            "refund_amount": float(refund_amount),
            "refund_reason": reason,
            "requested_at": utcnow().isoformat(),
        }
        await flush_or_conflict(self.db)

        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=EVENT_ORDER_REFUND_REQUESTED,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload={"amount": str(refund_amount), "reason": reason},
        )
        logger.info("Refund of %s requested on order %s", refund_amount, order.order_id)
        return order

    async def process_refund(
        self,
        order_id: str,
        amount: Decimal,
        reason: str,
        method: str | None = None,
        reference: str | None = None,
    ) -> Order:
        """Operator refund, possibly partial. A refund reaching the paid total marks payment refunded."""
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        if order.payment_status != PaymentStatus.PAID:
            raise BusinessRuleException(
                f"Cannot refund an order with payment status '{order.payment_status.value}'"
            )

        refundable = refundable_amount(order)
        if amount <= ZERO or amount > refundable:
            raise BusinessRuleException(
                f"Refund amount must be greater than 0 and at most {refundable}"
            )

        base = refund_base(order)
        now = utcnow()
        total = record_refund(
            order,
            amount,
            reason,
            RefundStatus.PROCESSED,
            refund_method=method,
            refund_reference=reference,
            refund_processed_at=now.isoformat(),
        )

        if total >= base:
            order.payment_status = PaymentStatus.REFUNDED
            if order.status not in ORDER_TERMINAL_STATUSES:
                set_order_status(order, OrderStatus.REFUNDED, reason, at=now)

        await flush_or_conflict(self.db)

        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=EVENT_ORDER_REFUND_PROCESSED,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload={
                "amount": str(amount),
                "refunded_total": str(total),
                "method": method,
                "reference": reference,
            },
        )
        logger.info(
            "Refunded %s on order %s (total refunded %s)", amount, order.order_id, total
        )
        return order

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def update_status(self, order_id: str, new_status: OrderStatus, note: str | None = None) -> Order:
        """Manual status override, validated against the transition table."""
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        current = order.status
        if current in ORDER_TERMINAL_STATUSES:
            raise BusinessRuleException(
                f"Order {order.order_id} is in terminal status '{current.value}'"
            )

        allowed = ORDER_TRANSITIONS.get(current, set())
        if new_status not in allowed:
            raise BusinessRuleException(
                f"Cannot transition from '{current.value}' to '{new_status.value}'. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        now = utcnow()
        if new_status == OrderStatus.CANCELLED:
            for vendor_order in order.vendor_orders or []:
                if vendor_order.status not in (VendorOrderStatus.CANCELLED, VendorOrderStatus.DELIVERED):
                    cancel_vendor_order_tree(vendor_order, note or "Order cancelled by admin", now)
            recompute_totals(order)
        elif new_status == OrderStatus.REFUNDED and order.payment_status == PaymentStatus.PAID:
            remaining = refundable_amount(order)
            if remaining > ZERO:
                record_refund(
                    order,
                    remaining,
                    note or "Order refunded by admin",
                    RefundStatus.PROCESSED,
                    refund_processed_at=now.isoformat(),
                )
            order.payment_status = PaymentStatus.REFUNDED

        set_order_status(order, new_status, note, at=now)
        await flush_or_conflict(self.db)

        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=EVENT_ORDER_STATUS_UPDATED,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload={"from": current.value, "to": new_status.value, "note": note},
        )
        logger.info("Order %s: %s -> %s (admin)", order.order_id, current.value, new_status.value)
        return order

    async def update_vendor_shipment(
        self,
        order_id: str,
        sub_order_id: str,
        waybill_no: str | None = None,
        shipping_provider: str | None = None,
        shipping_cost: Decimal | None = None,
        expected_arrival: datetime | None = None,
        status: VendorOrderStatus | None = None,
        note: str | None = None,
    ) -> Order:
        """Record manual fulfilment details. A waybill with no explicit status means shipped."""
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        vendor_order = find_vendor_order(order, sub_order_id)
        if vendor_order.status == VendorOrderStatus.CANCELLED:
            raise BusinessRuleException(f"Vendor order {sub_order_id} is cancelled")
        if status == VendorOrderStatus.CANCELLED:
            raise BusinessRuleException("Use the vendor order cancel endpoint to cancel")

        if waybill_no:
            vendor_order.waybill_no = waybill_no
        if shipping_provider is not None:
            vendor_order.shipping_provider = shipping_provider
        if expected_arrival is not None:
            vendor_order.expected_arrival = expected_arrival
        if shipping_cost is not None:
            if shipping_cost < ZERO:
                raise BusinessRuleException("Shipping cost cannot be negative")
            vendor_order.shipping_cost = shipping_cost
            recompute_totals(order)

        target = status
        if target is None and waybill_no and vendor_order.status not in (
            VendorOrderStatus.SHIPPED,
            VendorOrderStatus.OUT_FOR_DELIVERY,
            VendorOrderStatus.DELIVERED,
        ):
            target = VendorOrderStatus.SHIPPED
        if target == VendorOrderStatus.SHIPPED and not vendor_order.waybill_no:
            raise BusinessRuleException("A waybill number is required to mark a vendor order shipped")

        if target is not None and target != vendor_order.status:
            set_vendor_order_status(vendor_order, target, note)
        elif note:
            vendor_order.note = note

        rolled_up = derive_fulfillment_status(order)
        if rolled_up != order.status:
            set_order_status(order, rolled_up, f"Vendor order {sub_order_id} {vendor_order.status.value}")

        await flush_or_conflict(self.db)

        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=EVENT_VENDOR_ORDER_SHIPMENT_UPDATED,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload={
                "sub_order_id": sub_order_id,
                "status": vendor_order.status.value,
                "waybill_no": vendor_order.waybill_no,
            },
        )
        return order

    async def soft_delete(self, order_id: str, deleted_by: uuid.UUID, reason: str | None = None) -> Order:
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        order.is_deleted = True
        order.extra_data = {
            **(order.extra_data or {}),
            "deleted": {"by": str(deleted_by), "at": utcnow().isoformat(), "reason": reason},
        }
        await flush_or_conflict(self.db)
        logger.info("Order %s soft-deleted by %s", order.order_id, deleted_by)
        return order

    async def add_admin_note(self, order_id: str, author: uuid.UUID, note: str) -> Order:
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        extra = dict(order.extra_data or {})
        extra["admin_notes"] = [
            *extra.get("admin_notes", []),
            {"by": str(author), "at": utcnow().isoformat(), "note": note},
        ]
        order.extra_data = extra
        await flush_or_conflict(self.db)
        return order
