"""VendorOrder model: one vendor's share of an order, shipped independently."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.models.enums import ShippingMethod, VendorOrderStatus

if TYPE_CHECKING:
    from marketplace.models.order import Order
    from marketplace.models.order_item import OrderItem


class VendorOrder(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "vendor_orders"

    parent_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    sub_order_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)

    # Weak reference: vendors may be deleted without touching order history
    vendor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)

    shipping_method: Mapped[ShippingMethod] = mapped_column(nullable=False)
    shipping_provider: Mapped[str | None] = mapped_column(String(50))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, server_default="0")
    estimated_delivery_days: Mapped[int | None] = mapped_column(Integer)
    waybill_no: Mapped[str | None] = mapped_column(String(50))
    expected_arrival: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    shipment_retry_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    status: Mapped[VendorOrderStatus] = mapped_column(nullable=False, server_default="READY_TO_SHIP")
    note: Mapped[str | None] = mapped_column(Text)
    # [{"status": ..., "at": iso8601, "note": ...}]
    tracking: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")

    order: Mapped[Order] = relationship("Order", back_populates="vendor_orders", lazy="noload")
    items: Mapped[list[OrderItem]] = relationship(
        "OrderItem",
        back_populates="vendor_order",
        lazy="noload",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    __table_args__ = (
        Index("ix_vendor_orders_parent_order_id", "parent_order_id"),
        Index("ix_vendor_orders_vendor_id", "vendor_id"),
        Index("ix_vendor_orders_waybill_no", "waybill_no", postgresql_where="waybill_no IS NOT NULL"),
    )
