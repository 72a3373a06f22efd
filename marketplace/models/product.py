"""Product model: catalog entries, read-only to the order flow."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.models.enums import ShippingMethod

if TYPE_CHECKING:
    from marketplace.models.vendor import Vendor


class Product(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vendors.id", ondelete="SET NULL"),
    )
    selling_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_customizable: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    # Physical attributes used for carrier rating and manifests
    weight_kg: Mapped[Decimal | None] = mapped_column(Numeric(8, 3))
    length_cm: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    width_cm: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    height_cm: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    hsn_code: Mapped[str | None] = mapped_column(String(20))

    # Shipping configuration
    delivery_mode: Mapped[ShippingMethod] = mapped_column(
        nullable=False, server_default="AUTOMATIC"
    )
    deliverable_pincodes: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    # [{"min_distance": km, "max_distance": km, "price": amount, "delivery_days": n}]
    distance_ranges: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")

    vendor: Mapped[Vendor | None] = relationship("Vendor", lazy="noload")

    __table_args__ = (
        Index("ix_products_vendor_id", "vendor_id", postgresql_where="vendor_id IS NOT NULL"),
    )
