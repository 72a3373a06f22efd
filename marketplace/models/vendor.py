"""Vendor model: seller account plus its carrier pickup warehouse state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from marketplace.models.enums import WarehouseStatus


class Vendor(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "vendors"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    contact_number: Mapped[str | None] = mapped_column(String(20))
    gstin: Mapped[str | None] = mapped_column(String(20))

    # Pickup address
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(String(100))
    state: Mapped[str | None] = mapped_column(String(100))
    pincode: Mapped[str | None] = mapped_column(String(10))
    country: Mapped[str] = mapped_column(String(50), nullable=False, server_default="India")

    # Carrier warehouse registration
    warehouse_name: Mapped[str | None] = mapped_column(String(255))
    warehouse_status: Mapped[WarehouseStatus] = mapped_column(
        nullable=False, server_default="PENDING"
    )
    warehouse_retry_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    warehouse_max_retries: Mapped[int] = mapped_column(Integer, nullable=False, server_default="3")
    warehouse_last_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    warehouse_error_message: Mapped[str | None] = mapped_column(Text)
    carrier_warehouse_id: Mapped[str | None] = mapped_column(String(100))

    # Cached eligibility for automatic shipment
    is_carrier_registered: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default="false"
    )
    pickup_location_name: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        Index("ix_vendors_warehouse_status", "warehouse_status"),
    )

    @property
    def can_retry_warehouse(self) -> bool:
        return (
            self.warehouse_status == WarehouseStatus.FAILED
            and self.warehouse_retry_count < self.warehouse_max_retries
        )
