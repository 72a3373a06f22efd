"""Coupon model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.models.enums import CouponType


class Coupon(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "coupons"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    discount_type: Mapped[CouponType] = mapped_column(nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    min_purchase: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, server_default="0"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def is_applicable(self, subtotal: Decimal, now: datetime) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is not None and self.expires_at < now:
            return False
        return subtotal >= (self.min_purchase or Decimal("0"))

    def discount_for(self, subtotal: Decimal) -> Decimal:
        if self.discount_type == CouponType.PERCENTAGE:
            discount = (subtotal * self.discount_value / Decimal("100")).quantize(Decimal("0.01"))
        else:
            discount = self.discount_value
        return max(Decimal("0"), discount)
