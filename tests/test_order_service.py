"""Unit tests for OrderService: checkout, refunds and operator actions."""

from __future__ import annotations

import re
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import ORDER_ID, make_item, make_order, make_vendor_order, registered_vendor, scalar_result
from sqlalchemy.dialects import postgresql

from marketplace.exceptions import BusinessRuleException, NotFoundException, ValidationException
from marketplace.models.coupon import Coupon
from marketplace.models.enums import (
    CouponType,
    ItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
    VendorOrderStatus,
)
from marketplace.models.product import Product
from marketplace.modules.order.constants import (
    EVENT_ORDER_CREATED,
    EVENT_ORDER_REFUND_PROCESSED,
    EVENT_ORDER_REFUND_REQUESTED,
    EVENT_ORDER_STATUS_UPDATED,
    EVENT_VENDOR_ORDER_SHIPMENT_UPDATED,
)
from marketplace.modules.order.sequence import OrderSequence
from marketplace.modules.order.service import OrderService
from marketplace.modules.shipping.resolver import CartLine, GroupLine, ShippingQuote, VendorGroup


class FixedSequence(OrderSequence):
    def __init__(self, value: int = 7):
        self.value = value
        self.keys: list[str] = []

    async def next_sequence(self, date_key: str) -> int:
        self.keys.append(date_key)
        return self.value


@pytest.fixture
def outbox():
    with patch("marketplace.modules.order.service.OutboxService") as mock_outbox_cls:
        instance = AsyncMock()
        mock_outbox_cls.return_value = instance
        yield instance


def _product(vendor, price, name="Mug") -> Product:
    return Product(id=uuid.uuid4(), name=name, vendor_id=vendor.id, selling_price=Decimal(price))


@pytest.fixture
def cart():
    """Two vendors: A ships manually at 40, B through the carrier at 65."""
    vendor_a = registered_vendor(name="A")
    vendor_b = registered_vendor(name="B")
    groups = [
        VendorGroup(vendor=vendor_a, lines=[GroupLine(product=_product(vendor_a, "250"), quantity=2)]),
        VendorGroup(
            vendor=vendor_b,
            lines=[GroupLine(product=_product(vendor_b, "300", "Lamp"), quantity=1, customization={"text": "Hi"})],
        ),
    ]
    quotes = [
        ShippingQuote(cost=Decimal("40"), delivery_mode=ShippingMethod.MANUAL, estimated_delivery_days=3),
        ShippingQuote(cost=Decimal("65"), delivery_mode=ShippingMethod.AUTOMATIC, estimated_delivery_days=5),
    ]
    resolver = MagicMock()
    resolver.split_by_vendor = AsyncMock(return_value=groups)
    resolver.resolve_group = AsyncMock(side_effect=quotes)
    lines = [CartLine(product_id=line.product.id, quantity=line.quantity) for g in groups for line in g.lines]
    return resolver, lines


def _published(outbox) -> list[str]:
    return [c.kwargs["event_type"] for c in outbox.publish_event.await_args_list]


def _paid_order(total="500", status=OrderStatus.PROCESSING):
    return make_order(
        vendor_orders=[make_vendor_order(items=[make_item(total)])],
        status=status,
        payment_status=PaymentStatus.PAID,
    )


# ---------------------------------------------------------------------------
# create_order
# ---------------------------------------------------------------------------


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_splits_cart_per_vendor(self, mock_db, cart, outbox):
        resolver, lines = cart
        sequence = FixedSequence()
        service = OrderService(mock_db, resolver=resolver, sequence=sequence)

        order = await service.create_order(uuid.uuid4(), lines, {"pincode": "560001", "city": "Bengaluru"})

        assert re.fullmatch(r"ODR\d{8}[A-Z0-9]{2}0007", order.order_id)
        assert order.order_id[3:11] == sequence.keys[0]
        first, second = order.vendor_orders
        assert first.sub_order_id == f"{order.order_id}-V01"
        assert second.sub_order_id == f"{order.order_id}-V02"
        assert first.shipping_method == ShippingMethod.MANUAL
        assert first.shipping_provider is None
        assert second.shipping_provider == "Delhivery"
        assert second.items[0].is_customizable is True
        assert first.status == VendorOrderStatus.READY_TO_SHIP

        assert order.amount == Decimal("905")
        assert order.final_order_amount == Decimal("905")
        assert order.status == OrderStatus.PAYMENT_PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert [e["status"] for e in order.status_history] == ["payment_pending"]

        mock_db.add.assert_called_once_with(order)
        assert _published(outbox) == [EVENT_ORDER_CREATED]
        assert outbox.publish_event.await_args.kwargs["payload"]["vendor_count"] == 2

    @pytest.mark.asyncio
    async def test_cod_is_confirmed_immediately(self, mock_db, cart, outbox):
        resolver, lines = cart
        service = OrderService(mock_db, resolver=resolver, sequence=FixedSequence())

        order = await service.create_order(
            uuid.uuid4(), lines, {"pincode": "560001"}, payment_method=PaymentMethod.COD
        )

        assert order.status == OrderStatus.CONFIRMED
        assert order.confirmed_at is not None

    @pytest.mark.asyncio
    async def test_coupon_discount(self, mock_db, cart, outbox):
        resolver, lines = cart
        coupon = Coupon(
            code="SAVE100", discount_type=CouponType.FIXED, discount_value=Decimal("100"),
            min_purchase=Decimal("500"), is_active=True,
        )
        mock_db.execute.return_value = scalar_result(coupon)
        service = OrderService(mock_db, resolver=resolver, sequence=FixedSequence())

        order = await service.create_order(uuid.uuid4(), lines, {"pincode": "560001"}, coupon_code="SAVE100")

        assert order.coupon_code == "SAVE100"
        assert order.coupon_discount == Decimal("100")
        assert order.final_order_amount == Decimal("805")

    @pytest.mark.asyncio
    async def test_inactive_coupon_is_ignored(self, mock_db, cart, outbox):
        resolver, lines = cart
        coupon = Coupon(
            code="OLD", discount_type=CouponType.PERCENTAGE, discount_value=Decimal("10"),
            min_purchase=Decimal("0"), is_active=False,
        )
        mock_db.execute.return_value = scalar_result(coupon)
        service = OrderService(mock_db, resolver=resolver, sequence=FixedSequence())

        order = await service.create_order(uuid.uuid4(), lines, {"pincode": "560001"}, coupon_code="OLD")

        assert order.coupon_code is None
        assert order.final_order_amount == Decimal("905")

    @pytest.mark.asyncio
    async def test_invalid_pincode_rejected_before_pricing(self, mock_db, cart, outbox):
        resolver, lines = cart
        service = OrderService(mock_db, resolver=resolver, sequence=FixedSequence())

        with pytest.raises(ValidationException):
            await service.create_order(uuid.uuid4(), lines, {"pincode": "5600"})
        resolver.split_by_vendor.assert_not_awaited()
        mock_db.add.assert_not_called()


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


class TestProcessRefund:
    @pytest.mark.asyncio
    async def test_partial_refunds_accumulate(self, mock_db, outbox):
        order = _paid_order("500")
        mock_db.execute.return_value = scalar_result(order)
        service = OrderService(mock_db, sequence=FixedSequence())

        await service.process_refund(ORDER_ID, Decimal("200"), "Damaged box")
        assert order.payment_status == PaymentStatus.PAID
        assert order.refund_info["refunded_total"] == 200.0

        await service.process_refund(ORDER_ID, Decimal("300"), "Item missing", reference="rfnd_1")

        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.status == OrderStatus.REFUNDED
        assert order.refund_info["refunded_total"] == 500.0
        assert order.refund_info["refund_reference"] == "rfnd_1"
        assert _published(outbox) == [EVENT_ORDER_REFUND_PROCESSED, EVENT_ORDER_REFUND_PROCESSED]

    @pytest.mark.asyncio
    async def test_refund_beyond_remaining_rejected(self, mock_db, outbox):
        order = _paid_order("500")
        order.refund_info = {**order.refund_info, "refunded_total": 400.0}
        mock_db.execute.return_value = scalar_result(order)

        with pytest.raises(BusinessRuleException, match="at most 100"):
            await OrderService(mock_db, sequence=FixedSequence()).process_refund(ORDER_ID, Decimal("150"), "x")
        assert order.payment_status == PaymentStatus.PAID
        outbox.publish_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unpaid_order_rejected(self, mock_db, outbox):
        mock_db.execute.return_value = scalar_result(make_order())
        with pytest.raises(BusinessRuleException, match="payment status"):
            await OrderService(mock_db, sequence=FixedSequence()).process_refund(ORDER_ID, Decimal("10"), "x")

    @pytest.mark.asyncio
    async def test_delivered_order_keeps_status(self, mock_db, outbox):
        order = _paid_order("500", status=OrderStatus.DELIVERED)
        mock_db.execute.return_value = scalar_result(order)

        await OrderService(mock_db, sequence=FixedSequence()).process_refund(ORDER_ID, Decimal("500"), "Return")

        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.status == OrderStatus.DELIVERED


class TestRequestRefund:
    @pytest.mark.asyncio
    async def test_defaults_to_full_amount(self, mock_db, outbox):
        order = _paid_order("500")
        mock_db.execute.return_value = scalar_result(order)

        await OrderService(mock_db, sequence=FixedSequence()).request_refund(order.user_id, ORDER_ID, "Too late")

        assert order.refund_info["refund_requested"] is True
        assert order.refund_info["refund_status"] == "pending"
        assert order.refund_info["refund_amount"] == 500.0
        assert _published(outbox) == [EVENT_ORDER_REFUND_REQUESTED]

    @pytest.mark.asyncio
    async def test_second_request_rejected(self, mock_db, outbox):
        order = _paid_order("500")
        order.refund_info = {**order.refund_info, "refund_requested": True}
        mock_db.execute.return_value = scalar_result(order)

        with pytest.raises(BusinessRuleException, match="already been requested"):
            await OrderService(mock_db, sequence=FixedSequence()).request_refund(order.user_id, ORDER_ID, "Again")

    @pytest.mark.asyncio
    async def test_amount_above_total_rejected(self, mock_db, outbox):
        order = _paid_order("500")
        mock_db.execute.return_value = scalar_result(order)

        with pytest.raises(BusinessRuleException):
            await OrderService(mock_db, sequence=FixedSequence()).request_refund(
                order.user_id, ORDER_ID, "Greedy", amount=Decimal("501")
            )


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_cancel_cascades_to_vendor_orders(self, mock_db, outbox):
        delivered = make_vendor_order(1, status=VendorOrderStatus.DELIVERED)
        open_vo = make_vendor_order(0, items=[make_item("200"), make_item("100", position=1)])
        order = make_order(vendor_orders=[open_vo, delivered], status=OrderStatus.PROCESSING)
        mock_db.execute.return_value = scalar_result(order)

        await OrderService(mock_db, sequence=FixedSequence()).update_status(
            ORDER_ID, OrderStatus.CANCELLED, "Fraud check"
        )

        assert order.status == OrderStatus.CANCELLED
        assert open_vo.status == VendorOrderStatus.CANCELLED
        assert all(item.status == ItemStatus.CANCELLED for item in open_vo.items)
        assert delivered.status == VendorOrderStatus.DELIVERED
        assert order.status_history[-1]["status"] == "cancelled"
        assert order.status_history[-1]["note"] == "Fraud check"
        assert _published(outbox) == [EVENT_ORDER_STATUS_UPDATED]
        assert outbox.publish_event.await_args.kwargs["payload"]["from"] == "processing"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, mock_db, outbox):
        order = make_order(status=OrderStatus.SHIPPED)
        mock_db.execute.return_value = scalar_result(order)

        with pytest.raises(BusinessRuleException, match="Cannot transition"):
            await OrderService(mock_db, sequence=FixedSequence()).update_status(ORDER_ID, OrderStatus.CONFIRMED)
        assert order.status == OrderStatus.SHIPPED
        outbox.publish_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_terminal_status(self, mock_db, outbox):
        mock_db.execute.return_value = scalar_result(make_order(status=OrderStatus.DELIVERED))

        with pytest.raises(BusinessRuleException, match="terminal"):
            await OrderService(mock_db, sequence=FixedSequence()).update_status(ORDER_ID, OrderStatus.REFUNDED)

    @pytest.mark.asyncio
    async def test_refunded_marks_paid_order_refunded(self, mock_db, outbox):
        order = _paid_order("500")
        mock_db.execute.return_value = scalar_result(order)

        await OrderService(mock_db, sequence=FixedSequence()).update_status(
            ORDER_ID, OrderStatus.REFUNDED, "Chargeback"
        )

        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.refund_info["refund_status"] == "processed"
        assert order.refund_info["refund_amount"] == 500.0
        assert order.refund_info["refunded_total"] == 500.0
        assert order.refund_info["refund_reason"] == "Chargeback"

    @pytest.mark.asyncio
    async def test_refunded_records_only_the_remaining_balance(self, mock_db, outbox):
        order = _paid_order("500")
        order.refund_info = {**order.refund_info, "refunded_total": 200.0}
        mock_db.execute.return_value = scalar_result(order)

        await OrderService(mock_db, sequence=FixedSequence()).update_status(ORDER_ID, OrderStatus.REFUNDED)

        assert order.refund_info["refund_amount"] == 300.0
        assert order.refund_info["refunded_total"] == 500.0

    @pytest.mark.asyncio
    async def test_missing_order(self, mock_db, outbox):
        mock_db.execute.return_value = scalar_result(None)
        with pytest.raises(NotFoundException):
            await OrderService(mock_db, sequence=FixedSequence()).update_status(ORDER_ID, OrderStatus.CANCELLED)


class TestUpdateVendorShipment:
    @pytest.fixture
    def order(self, mock_db):
        order = make_order(
            vendor_orders=[make_vendor_order(0), make_vendor_order(1)],
            status=OrderStatus.PROCESSING,
            payment_status=PaymentStatus.PAID,
        )
        mock_db.execute.return_value = scalar_result(order)
        return order

    @pytest.mark.asyncio
    async def test_waybill_marks_shipped_and_rolls_up(self, mock_db, order, outbox):
        service = OrderService(mock_db, sequence=FixedSequence())
        first, second = order.vendor_orders

        await service.update_vendor_shipment(ORDER_ID, first.sub_order_id, waybill_no="WB1", shipping_provider="DTDC")
        assert first.status == VendorOrderStatus.SHIPPED
        assert first.shipping_provider == "DTDC"
        assert order.status == OrderStatus.PROCESSING

        await service.update_vendor_shipment(ORDER_ID, second.sub_order_id, waybill_no="WB2")
        assert order.status == OrderStatus.SHIPPED
        assert order.status_history[-1]["status"] == "shipped"
        assert _published(outbox) == [EVENT_VENDOR_ORDER_SHIPMENT_UPDATED] * 2

    @pytest.mark.asyncio
    async def test_shipping_cost_recomputes_totals(self, mock_db, order, outbox):
        before = order.amount
        await OrderService(mock_db, sequence=FixedSequence()).update_vendor_shipment(
            ORDER_ID, order.vendor_orders[0].sub_order_id, shipping_cost=Decimal("30")
        )
        assert order.amount == before + Decimal("30")

    @pytest.mark.asyncio
    async def test_shipped_requires_waybill(self, mock_db, order, outbox):
        with pytest.raises(BusinessRuleException, match="waybill"):
            await OrderService(mock_db, sequence=FixedSequence()).update_vendor_shipment(
                ORDER_ID, order.vendor_orders[0].sub_order_id, status=VendorOrderStatus.SHIPPED
            )

    @pytest.mark.asyncio
    async def test_negative_shipping_cost(self, mock_db, order, outbox):
        with pytest.raises(BusinessRuleException, match="negative"):
            await OrderService(mock_db, sequence=FixedSequence()).update_vendor_shipment(
                ORDER_ID, order.vendor_orders[0].sub_order_id, shipping_cost=Decimal("-1")
            )

    @pytest.mark.asyncio
    async def test_unknown_sub_order(self, mock_db, order, outbox):
        with pytest.raises(NotFoundException):
            await OrderService(mock_db, sequence=FixedSequence()).update_vendor_shipment(
                ORDER_ID, f"{ORDER_ID}-V09", waybill_no="WB9"
            )


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_soft_delete(self, mock_db):
        order = make_order()
        admin_id = uuid.uuid4()
        mock_db.execute.return_value = scalar_result(order)

        await OrderService(mock_db, sequence=FixedSequence()).soft_delete(ORDER_ID, admin_id, "duplicate")

        assert order.is_deleted is True
        assert order.extra_data["deleted"]["by"] == str(admin_id)
        assert order.extra_data["deleted"]["reason"] == "duplicate"

    @pytest.mark.asyncio
    async def test_admin_notes_append(self, mock_db):
        order = make_order()
        mock_db.execute.return_value = scalar_result(order)
        service = OrderService(mock_db, sequence=FixedSequence())

        await service.add_admin_note(ORDER_ID, uuid.uuid4(), "Called customer")
        await service.add_admin_note(ORDER_ID, uuid.uuid4(), "Rescheduled pickup")

        assert [n["note"] for n in order.extra_data["admin_notes"]] == ["Called customer", "Rescheduled pickup"]

    @pytest.mark.asyncio
    async def test_admin_note_locks_the_order_row(self, mock_db):
        mock_db.execute.return_value = scalar_result(make_order())

        await OrderService(mock_db, sequence=FixedSequence()).add_admin_note(ORDER_ID, uuid.uuid4(), "Checked stock")

        statement = mock_db.execute.await_args.args[0]
        assert "FOR UPDATE OF orders" in str(statement.compile(dialect=postgresql.dialect()))
