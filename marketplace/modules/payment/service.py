"""Payment initiation and confirmation, including the shipment fan-out on success."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import flush_or_conflict
from marketplace.exceptions import BusinessRuleException, NotFoundException, UnauthorizedException
from marketplace.models.enums import OrderStatus, PaymentMethod, PaymentStatus
from marketplace.models.order import Order
from marketplace.modules.carrier.base import CarrierBase
from marketplace.modules.events.outbox_service import OutboxService
from marketplace.modules.order.constants import (
    EVENT_ORDER_PAYMENT_CONFIRMED,
    EVENT_ORDER_PAYMENT_FAILED,
    EVENT_VENDOR_ORDER_SHIPMENT_UPDATED,
    ORDER_TERMINAL_STATUSES,
)
from marketplace.modules.order.queries import find_by_gateway_order_id, get_order_aggregate
from marketplace.modules.order.status import add_tracking_note, set_order_status, utcnow
from marketplace.modules.payment.gateway import RazorpayGateway, get_gateway
from marketplace.modules.shipment.creator import OutcomeKind, ShipmentOutcome
from marketplace.modules.shipment.service import ShipmentService, order_status_after_dispatch

logger = logging.getLogger(__name__)

WEBHOOK_PAYMENT_CAPTURED = "payment.captured"


@dataclass
class PaymentConfirmation:
    order: Order
    verified: bool
    outcomes: list[ShipmentOutcome] = field(default_factory=list)
    message: str = ""


class PaymentService:
    def __init__(
        self,
        db: AsyncSession,
        gateway: RazorpayGateway | None = None,
        carrier: CarrierBase | None = None,
    ):
        self.db = db
        self.gateway = gateway or get_gateway()
        self.shipments = ShipmentService(db, carrier)

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_payment(self, user_id: uuid.UUID, order_id: str) -> dict:
        """Create (or reuse) the gateway order the checkout widget pays against."""
        order = await get_order_aggregate(self.db, order_id, user_id=user_id, for_update=True)
        if order.payment_method == PaymentMethod.COD:
            raise BusinessRuleException("Cash-on-delivery orders do not take online payment")
        if order.payment_status == PaymentStatus.PAID:
            raise BusinessRuleException("Order is already paid")
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise BusinessRuleException(f"Order is {order.status.value}")

        if order.status == OrderStatus.PAYMENT_FAILED:
            # Fresh attempt: new gateway order, back to awaiting payment
            order.gateway_order_id = None
            order.payment_status = PaymentStatus.PENDING
            set_order_status(order, OrderStatus.PAYMENT_PENDING, "Payment retry initiated")

        if not order.gateway_order_id:
            gateway_order = await self.gateway.create_order(
                order.final_order_amount, receipt_id=order.order_id, currency=order.currency
            )
            order.gateway_order_id = gateway_order["id"]
            logger.info("Gateway order %s created for %s", order.gateway_order_id, order.order_id)

        await flush_or_conflict(self.db)
        return {
            "order_id": order.order_id,
            "gateway_order_id": order.gateway_order_id,
            "amount": order.final_order_amount,
            "currency": order.currency,
            "key_id": self.gateway.key_id,
        }

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def _load_pending(self, gateway_order_id: str, user_id: uuid.UUID | None) -> Order:
        order = await find_by_gateway_order_id(self.db, gateway_order_id, for_update=True)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise NotFoundException(f"No order for payment reference {gateway_order_id}")
        if order.status in ORDER_TERMINAL_STATUSES:
            raise BusinessRuleException(
                f"Order {order.order_id} is {order.status.value} and cannot take payment"
            )
        if order.payment_status != PaymentStatus.PENDING:
            raise BusinessRuleException(
                f"Payment for order {order.order_id} is already {order.payment_status.value}"
            )
        return order

    async def _mark_failed(self, order: Order, note: str) -> PaymentConfirmation:
        order.payment_status = PaymentStatus.FAILED
        set_order_status(order, OrderStatus.PAYMENT_FAILED, note)
        await flush_or_conflict(self.db)

        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=EVENT_ORDER_PAYMENT_FAILED,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload={"gateway_order_id": order.gateway_order_id, "reason": note},
        )
        logger.warning("Payment failed for order %s: %s", order.order_id, note)
        return PaymentConfirmation(order=order, verified=False, message=note)

    async def _mark_paid(
        self, order: Order, payment_id: str, signature: str | None, amount: Decimal | None = None
    ) -> PaymentConfirmation:
        now = utcnow()
        order.gateway_payment_id = payment_id
        order.gateway_signature = signature
        order.paid_amount = amount if amount is not None else order.final_order_amount
        order.payment_status = PaymentStatus.PAID
        order.confirmed_at = now
        set_order_status(order, OrderStatus.CONFIRMED, "Payment confirmed", at=now)
        for vendor_order in order.vendor_orders or []:
            add_tracking_note(vendor_order, "Payment confirmed", at=now)

        outcomes = await self.shipments.dispatch_order(order)
        next_status = order_status_after_dispatch(outcomes)
        note = None
        if next_status == OrderStatus.PENDING:
            note = "Awaiting shipment creation"
        set_order_status(order, next_status, note)
        await flush_or_conflict(self.db)

        outbox = OutboxService(self.db)
        await outbox.publish_event(
            event_type=EVENT_ORDER_PAYMENT_CONFIRMED,
            aggregate_type="order",
            aggregate_id=order.order_id,
            payload={
                "gateway_payment_id": payment_id,
                "paid_amount": str(order.paid_amount),
                "shipments": {o.sub_order_id: o.kind.value for o in outcomes},
            },
        )
        for outcome in outcomes:
            if outcome.kind == OutcomeKind.CREATED:
                await outbox.publish_event(
                    event_type=EVENT_VENDOR_ORDER_SHIPMENT_UPDATED,
                    aggregate_type="order",
                    aggregate_id=order.order_id,
                    payload={"sub_order_id": outcome.sub_order_id, "waybill_no": outcome.waybill},
                )

        logger.info(
            "Payment confirmed for %s, order now %s (%s)",
            order.order_id,
            order.status.value,
            ", ".join(f"{o.sub_order_id}={o.kind.value}" for o in outcomes),
        )
        return PaymentConfirmation(order=order, verified=True, outcomes=outcomes)

    async def confirm_payment(
        self,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        user_id: uuid.UUID | None = None,
    ) -> PaymentConfirmation:
        """Verify the checkout callback and move the order forward.

        Only a pending payment can be confirmed, so a replayed callback is
        rejected instead of creating shipments twice.
        """
        order = await self._load_pending(gateway_order_id, user_id)
        try:
            verified = self.gateway.verify(gateway_order_id, payment_id, signature)
        except (TypeError, ValueError) as exc:
            logger.error("Signature verification errored for %s: %s", order.order_id, exc)
            verified = False

        if not verified:
            return await self._mark_failed(order, "Payment signature verification failed")
        return await self._mark_paid(order, payment_id, signature)

    async def handle_webhook(self, body: bytes, signature: str | None, event: dict) -> dict:
        """Gateway webhook. A verified ``payment.captured`` runs the same confirmation path."""
        if not self.gateway.verify_webhook(body, signature):
            raise UnauthorizedException("Invalid webhook signature")

        event_type = event.get("event")
        if event_type != WEBHOOK_PAYMENT_CAPTURED:
            return {"status": "ignored", "event": event_type}

        entity = ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}
        gateway_order_id = entity.get("order_id")
        payment_id = entity.get("id")
        if not gateway_order_id or not payment_id:
            return {"status": "ignored", "reason": "missing payment reference"}

        order = await find_by_gateway_order_id(self.db, gateway_order_id, for_update=True)
        if order is None:
            return {"status": "ignored", "reason": "unknown order"}
        if order.status in ORDER_TERMINAL_STATUSES:
            # Captured after cancellation; the reference is kept for a manual refund
            logger.warning(
                "Payment %s captured for %s order %s, not confirming",
                payment_id,
                order.status.value,
                order.order_id,
            )
            return {"status": "ignored", "reason": f"order {order.status.value}"}
        if order.payment_status != PaymentStatus.PENDING:
            return {"status": "ignored", "reason": f"payment already {order.payment_status.value}"}

        amount = entity.get("amount")
        confirmation = await self._mark_paid(
            order,
            payment_id,
            signature=None,
            amount=Decimal(amount) / 100 if amount is not None else None,
        )
        return {"status": "ok", "order_id": confirmation.order.order_id}
