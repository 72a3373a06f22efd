"""Unit tests for the pure order-aggregate helpers: history, derived statuses, totals."""

from __future__ import annotations

from decimal import Decimal

from conftest import make_item, make_order, make_vendor_order

from marketplace.models.enums import ItemStatus, OrderStatus, VendorOrderStatus
from marketplace.modules.order.status import (
    active_items_total,
    add_tracking_note,
    apply_derived_statuses,
    cancel_vendor_order_tree,
    derive_fulfillment_status,
    derive_order_status,
    derive_vendor_order_status,
    recompute_totals,
    set_order_status,
    set_vendor_order_status,
)


class TestHistory:
    def test_set_order_status_appends_one_entry(self):
        order = make_order()
        set_order_status(order, OrderStatus.CONFIRMED, "Payment confirmed")
        set_order_status(order, OrderStatus.PROCESSING)

        assert order.status == OrderStatus.PROCESSING
        assert [e["status"] for e in order.status_history] == ["confirmed", "processing"]
        assert order.status_history[0]["note"] == "Payment confirmed"
        assert "note" not in order.status_history[1]

    def test_vendor_order_status_keeps_note(self):
        vendor_order = make_vendor_order()
        set_vendor_order_status(vendor_order, VendorOrderStatus.PENDING, "Warehouse not registered")

        assert vendor_order.note == "Warehouse not registered"
        assert vendor_order.tracking[-1]["status"] == "pending"

    def test_tracking_note_leaves_status(self):
        vendor_order = make_vendor_order(status=VendorOrderStatus.SHIPPED)
        add_tracking_note(vendor_order, "Picked up")

        assert vendor_order.status == VendorOrderStatus.SHIPPED
        assert vendor_order.tracking == [
            {"status": "shipped", "at": vendor_order.tracking[0]["at"], "note": "Picked up"}
        ]


class TestDerivedStatus:
    def test_vendor_order_cancelled_when_all_items_cancelled(self):
        vendor_order = make_vendor_order(
            items=[make_item("10", status=ItemStatus.CANCELLED), make_item("20", status=ItemStatus.CANCELLED)]
        )
        assert derive_vendor_order_status(vendor_order) == VendorOrderStatus.CANCELLED

    def test_vendor_order_unchanged_with_one_active_item(self):
        vendor_order = make_vendor_order(
            items=[make_item("10", status=ItemStatus.CANCELLED), make_item("20")]
        )
        assert derive_vendor_order_status(vendor_order) == VendorOrderStatus.READY_TO_SHIP

    def test_order_cancelled_when_all_vendor_orders_cancelled(self):
        order = make_order(
            vendor_orders=[
                make_vendor_order(0, status=VendorOrderStatus.CANCELLED),
                make_vendor_order(1, status=VendorOrderStatus.CANCELLED),
            ],
            status=OrderStatus.PROCESSING,
        )
        assert derive_order_status(order) == OrderStatus.CANCELLED

    def test_apply_derived_statuses_propagates_upward(self):
        only = make_vendor_order(items=[make_item("10", status=ItemStatus.CANCELLED)])
        order = make_order(vendor_orders=[only], status=OrderStatus.CONFIRMED)

        changed = apply_derived_statuses(order, "Out of stock")

        assert changed is True
        assert only.status == VendorOrderStatus.CANCELLED
        assert order.status == OrderStatus.CANCELLED
        assert order.status_history[-1]["note"] == "Out of stock"

    def test_apply_derived_statuses_noop_for_partial_cancel(self):
        order = make_order(
            vendor_orders=[
                make_vendor_order(0, status=VendorOrderStatus.CANCELLED),
                make_vendor_order(1),
            ],
            status=OrderStatus.CONFIRMED,
        )
        assert apply_derived_statuses(order) is False
        assert order.status == OrderStatus.CONFIRMED

    def test_cancel_tree_cancels_only_active_items(self):
        already = make_item("10", status=ItemStatus.CANCELLED)
        active = make_item("20")
        vendor_order = make_vendor_order(items=[already, active])

        cancel_vendor_order_tree(vendor_order, "Vendor closed")

        assert vendor_order.status == VendorOrderStatus.CANCELLED
        assert active.status == ItemStatus.CANCELLED
        assert active.cancel_reason == "Vendor closed"
        assert already.cancel_reason is None


class TestFulfillmentRollUp:
    def test_all_live_shipped_marks_order_shipped(self):
        order = make_order(
            vendor_orders=[
                make_vendor_order(0, status=VendorOrderStatus.SHIPPED),
                make_vendor_order(1, status=VendorOrderStatus.OUT_FOR_DELIVERY),
                make_vendor_order(2, status=VendorOrderStatus.CANCELLED),
            ],
            status=OrderStatus.PROCESSING,
        )
        assert derive_fulfillment_status(order) == OrderStatus.SHIPPED

    def test_all_live_delivered_marks_order_delivered(self):
        order = make_order(
            vendor_orders=[
                make_vendor_order(0, status=VendorOrderStatus.DELIVERED),
                make_vendor_order(1, status=VendorOrderStatus.CANCELLED),
            ],
            status=OrderStatus.SHIPPED,
        )
        assert derive_fulfillment_status(order) == OrderStatus.DELIVERED

    def test_partial_shipment_keeps_status(self):
        order = make_order(
            vendor_orders=[
                make_vendor_order(0, status=VendorOrderStatus.SHIPPED),
                make_vendor_order(1, status=VendorOrderStatus.PENDING),
            ],
            status=OrderStatus.PROCESSING,
        )
        assert derive_fulfillment_status(order) == OrderStatus.PROCESSING

    def test_never_moves_an_unpaid_order(self):
        order = make_order(
            vendor_orders=[make_vendor_order(0, status=VendorOrderStatus.SHIPPED)],
            status=OrderStatus.PAYMENT_PENDING,
        )
        assert derive_fulfillment_status(order) == OrderStatus.PAYMENT_PENDING


class TestTotals:
    def test_amount_is_active_items_plus_shipping(self):
        order = make_order(
            vendor_orders=[
                make_vendor_order(0, items=[make_item("500"), make_item("300")], shipping_cost="40"),
                make_vendor_order(1, items=[make_item("250", quantity=2)], shipping_cost="60"),
            ]
        )
        assert order.amount == Decimal("1400")
        assert order.final_order_amount == Decimal("1400")

    def test_cancelled_items_leave_amount(self):
        cancelled = make_item("300", status=ItemStatus.CANCELLED)
        vendor_order = make_vendor_order(items=[make_item("500"), cancelled], shipping_cost="40")
        order = make_order(vendor_orders=[vendor_order])

        assert active_items_total(vendor_order) == Decimal("500")
        assert order.amount == Decimal("540")

    def test_coupon_never_drives_final_below_zero(self):
        order = make_order(
            vendor_orders=[make_vendor_order(items=[make_item("100")])],
            coupon_discount="250",
        )
        recompute_totals(order)
        assert order.final_order_amount == Decimal("0")
