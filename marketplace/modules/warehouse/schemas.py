"""Pydantic v2 schemas for the vendor warehouse endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from marketplace.models.enums import WarehouseStatus


class WarehouseStatusResponse(BaseModel):
    vendor_id: uuid.UUID
    vendor_name: str
    status: WarehouseStatus
    warehouse_name: str | None = None
    carrier_warehouse_id: str | None = None
    retry_count: int
    max_retries: int
    retries_remaining: int
    can_retry: bool
    last_attempt: datetime | None = None
    error_message: str | None = None
    is_carrier_registered: bool
    pickup_location_name: str | None = None
