"""Order model: the customer-facing aggregate root."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.models.enums import OrderStatus, PaymentMethod, PaymentStatus

if TYPE_CHECKING:
    from marketplace.models.vendor_order import VendorOrder


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Money
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, server_default="0")
    coupon_code: Mapped[str | None] = mapped_column(String(50))
    coupon_discount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, server_default="0"
    )
    final_order_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default="INR")

    # Payment
    payment_method: Mapped[PaymentMethod] = mapped_column(nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(nullable=False, server_default="PENDING")
    gateway_order_id: Mapped[str | None] = mapped_column(String(100))
    gateway_payment_id: Mapped[str | None] = mapped_column(String(100))
    gateway_signature: Mapped[str | None] = mapped_column(String(255))
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    status: Mapped[OrderStatus] = mapped_column(nullable=False, server_default="PAYMENT_PENDING")
    # [{"status": ..., "at": iso8601, "note": ...}]
    status_history: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")

    shipping_address: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    refund_info: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    extra_data: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    vendor_orders: Mapped[list[VendorOrder]] = relationship(
        "VendorOrder",
        back_populates="order",
        lazy="noload",
        cascade="all, delete-orphan",
        order_by="VendorOrder.position",
    )

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    __table_args__ = (
        Index("ix_orders_user_id", "user_id"),
        Index("ix_orders_status", "status"),
        Index(
            "ix_orders_gateway_order_id",
            "gateway_order_id",
            postgresql_where="gateway_order_id IS NOT NULL",
        ),
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_id} status={self.status} payment={self.payment_status}>"
