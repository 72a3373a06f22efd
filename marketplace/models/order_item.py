"""OrderItem model: a price-snapshotted product line within a vendor order."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.models.enums import ItemStatus

if TYPE_CHECKING:
    from marketplace.models.vendor_order import VendorOrder


class OrderItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "order_items"

    vendor_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vendor_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    item_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_customizable: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    customization: Mapped[dict | None] = mapped_column(JSONB)

    status: Mapped[ItemStatus] = mapped_column(nullable=False, server_default="ACTIVE")
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(Text)

    vendor_order: Mapped[VendorOrder] = relationship(
        "VendorOrder", back_populates="items", lazy="noload"
    )

    __table_args__ = (
        Index("ix_order_items_vendor_order_id", "vendor_order_id"),
        Index("ix_order_items_product_id", "product_id"),
    )

    @property
    def line_total(self) -> Decimal:
        return self.item_cost * self.quantity
