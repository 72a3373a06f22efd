"""Marketplace orders - vendors, catalog, split orders, outbox, notifications

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# --- Enum types (labels are the Python member names) ---
order_status_enum = sa.Enum(
    "PAYMENT_PENDING", "PAYMENT_FAILED", "CONFIRMED", "PENDING", "PROCESSING",
    "READY_TO_SHIP", "SHIPPED", "DELIVERED", "CANCELLED", "REFUNDED",
    name="orderstatus", create_type=False,
)
payment_status_enum = sa.Enum(
    "PENDING", "PAID", "FAILED", "REFUNDED", name="paymentstatus", create_type=False
)
payment_method_enum = sa.Enum("PREPAID", "COD", name="paymentmethod", create_type=False)
vendor_order_status_enum = sa.Enum(
    "READY_TO_SHIP", "PROCESSING", "PENDING", "SHIPPED", "OUT_FOR_DELIVERY",
    "DELIVERED", "CANCELLED", "FAILED",
    name="vendororderstatus", create_type=False,
)
item_status_enum = sa.Enum("ACTIVE", "CANCELLED", name="itemstatus", create_type=False)
shipping_method_enum = sa.Enum(
    "MANUAL", "AUTOMATIC", "AUTOMATIC_MANUAL", "MANUAL_AUTOMATIC",
    name="shippingmethod", create_type=False,
)
warehouse_status_enum = sa.Enum(
    "PENDING", "REGISTERED", "FAILED", "RETRYING", name="warehousestatus", create_type=False
)
coupon_type_enum = sa.Enum("PERCENTAGE", "FIXED", name="coupontype", create_type=False)
event_status_enum = sa.Enum(
    "PENDING", "PROCESSING", "COMPLETED", "FAILED", name="eventstatus", create_type=False
)
notification_type_enum = sa.Enum(
    "ORDER_CREATED", "MULTI_VENDOR_ORDER_CREATED", "ORDER_STATUS_UPDATE",
    "PAYMENT_CONFIRMATION", "PAYMENT_FAILED", "ORDER_CANCELLED", "ORDER_DELIVERED",
    "REFUND_PROCESSED",
    name="notificationtype", create_type=False,
)
notification_priority_enum = sa.Enum(
    "LOW", "MEDIUM", "HIGH", "URGENT", name="notificationpriority", create_type=False
)

ALL_ENUMS = [
    order_status_enum,
    payment_status_enum,
    payment_method_enum,
    vendor_order_status_enum,
    item_status_enum,
    shipping_method_enum,
    warehouse_status_enum,
    coupon_type_enum,
    event_status_enum,
    notification_type_enum,
    notification_priority_enum,
]


def _id() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    for enum_type in ALL_ENUMS:
        enum_type.create(op.get_bind(), checkfirst=True)

    # 1. vendors
    op.create_table(
        "vendors",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("contact_number", sa.String(20), nullable=True),
        sa.Column("gstin", sa.String(20), nullable=True),
        sa.Column("address", sa.Text, nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(100), nullable=True),
        sa.Column("pincode", sa.String(10), nullable=True),
        sa.Column("country", sa.String(50), server_default="India", nullable=False),
        sa.Column("warehouse_name", sa.String(255), nullable=True),
        sa.Column("warehouse_status", warehouse_status_enum, server_default="PENDING", nullable=False),
        sa.Column("warehouse_retry_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("warehouse_max_retries", sa.Integer, server_default="3", nullable=False),
        sa.Column("warehouse_last_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("warehouse_error_message", sa.Text, nullable=True),
        sa.Column("carrier_warehouse_id", sa.String(100), nullable=True),
        sa.Column("is_carrier_registered", sa.Boolean, server_default="false", nullable=False),
        sa.Column("pickup_location_name", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_vendors_warehouse_status", "vendors", ["warehouse_status"])

    # 2. products
    op.create_table(
        "products",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("vendor_id", UUID(as_uuid=True), sa.ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True),
        sa.Column("selling_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_customizable", sa.Boolean, server_default="false", nullable=False),
        sa.Column("weight_kg", sa.Numeric(8, 3), nullable=True),
        sa.Column("length_cm", sa.Numeric(8, 2), nullable=True),
        sa.Column("width_cm", sa.Numeric(8, 2), nullable=True),
        sa.Column("height_cm", sa.Numeric(8, 2), nullable=True),
        sa.Column("hsn_code", sa.String(20), nullable=True),
        sa.Column("delivery_mode", shipping_method_enum, server_default="AUTOMATIC", nullable=False),
        sa.Column("deliverable_pincodes", JSONB, server_default="[]", nullable=False),
        sa.Column("distance_ranges", JSONB, server_default="[]", nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_products_vendor_id", "products", ["vendor_id"],
        postgresql_where=sa.text("vendor_id IS NOT NULL"),
    )

    # 3. coupons
    op.create_table(
        "coupons",
        _id(),
        sa.Column("code", sa.String(50), unique=True, nullable=False),
        sa.Column("discount_type", coupon_type_enum, nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("min_purchase", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # 4. order_counters - one row per UTC day
    op.create_table(
        "order_counters",
        sa.Column("date_key", sa.String(8), primary_key=True),
        sa.Column("seq", sa.Integer, server_default="0", nullable=False),
    )

    # 5. orders
    op.create_table(
        "orders",
        _id(),
        sa.Column("order_id", sa.String(32), unique=True, nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("coupon_code", sa.String(50), nullable=True),
        sa.Column("coupon_discount", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("final_order_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), server_default="INR", nullable=False),
        sa.Column("payment_method", payment_method_enum, nullable=False),
        sa.Column("payment_status", payment_status_enum, server_default="PENDING", nullable=False),
        sa.Column("gateway_order_id", sa.String(100), nullable=True),
        sa.Column("gateway_payment_id", sa.String(100), nullable=True),
        sa.Column("gateway_signature", sa.String(255), nullable=True),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", order_status_enum, server_default="PAYMENT_PENDING", nullable=False),
        sa.Column("status_history", JSONB, server_default="[]", nullable=False),
        sa.Column("shipping_address", JSONB, server_default="{}", nullable=False),
        sa.Column("refund_info", JSONB, server_default="{}", nullable=False),
        sa.Column("extra_data", JSONB, server_default="{}", nullable=False),
        sa.Column("is_deleted", sa.Boolean, server_default="false", nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index(
        "ix_orders_gateway_order_id", "orders", ["gateway_order_id"],
        postgresql_where=sa.text("gateway_order_id IS NOT NULL"),
    )

    # 6. vendor_orders
    op.create_table(
        "vendor_orders",
        _id(),
        sa.Column("parent_order_id", UUID(as_uuid=True), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("sub_order_id", sa.String(40), unique=True, nullable=False),
        sa.Column("vendor_id", UUID(as_uuid=True), nullable=False),
        sa.Column("vendor_name", sa.String(255), nullable=False),
        sa.Column("shipping_method", shipping_method_enum, nullable=False),
        sa.Column("shipping_provider", sa.String(50), nullable=True),
        sa.Column("shipping_cost", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("estimated_delivery_days", sa.Integer, nullable=True),
        sa.Column("waybill_no", sa.String(50), nullable=True),
        sa.Column("expected_arrival", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipment_retry_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("status", vendor_order_status_enum, server_default="READY_TO_SHIP", nullable=False),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("tracking", JSONB, server_default="[]", nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_vendor_orders_parent_order_id", "vendor_orders", ["parent_order_id"])
    op.create_index("ix_vendor_orders_vendor_id", "vendor_orders", ["vendor_id"])
    op.create_index(
        "ix_vendor_orders_waybill_no", "vendor_orders", ["waybill_no"],
        postgresql_where=sa.text("waybill_no IS NOT NULL"),
    )

    # 7. order_items
    op.create_table(
        "order_items",
        _id(),
        sa.Column("vendor_order_id", UUID(as_uuid=True), sa.ForeignKey("vendor_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("item_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_customizable", sa.Boolean, server_default="false", nullable=False),
        sa.Column("customization", JSONB, nullable=True),
        sa.Column("status", item_status_enum, server_default="ACTIVE", nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_order_items_vendor_order_id", "order_items", ["vendor_order_id"])
    op.create_index("ix_order_items_product_id", "order_items", ["product_id"])

    # 8. event_outbox
    op.create_table(
        "event_outbox",
        _id(),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("aggregate_type", sa.String(50), nullable=False),
        sa.Column("aggregate_id", sa.String(64), nullable=False),
        sa.Column("payload", JSONB, server_default="{}", nullable=False),
        sa.Column("status", event_status_enum, server_default="PENDING", nullable=False),
        sa.Column("retry_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("max_retries", sa.Integer, server_default="3", nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_event_outbox_aggregate", "event_outbox", ["aggregate_type", "aggregate_id"])
    op.create_index(
        "ix_event_outbox_pending", "event_outbox", ["created_at"],
        postgresql_where=sa.text("status = 'PENDING'"),
    )
    op.create_index(
        "ix_event_outbox_completed", "event_outbox", ["processed_at"],
        postgresql_where=sa.text("status = 'COMPLETED'"),
    )

    # 9. notifications
    op.create_table(
        "notifications",
        _id(),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("event_id", UUID(as_uuid=True), unique=True, nullable=False),
        sa.Column("order_id", sa.String(32), nullable=True),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("priority", notification_priority_enum, server_default="MEDIUM", nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.String(1000), nullable=False),
        sa.Column("is_read", sa.Boolean, server_default="false", nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_notifications_user_unread", "notifications", ["user_id", "is_read", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("event_outbox")
    op.drop_table("order_items")
    op.drop_table("vendor_orders")
    op.drop_table("orders")
    op.drop_table("order_counters")
    op.drop_table("coupons")
    op.drop_table("products")
    op.drop_table("vendors")

    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(op.get_bind(), checkfirst=True)
