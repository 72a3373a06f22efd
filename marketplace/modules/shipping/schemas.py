"""Pydantic v2 schemas for shipping quotes and serviceability."""

from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from marketplace.models.enums import PaymentMethod, ShippingMethod


class QuoteLine(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(1, gt=0)


class ShippingQuoteRequest(BaseModel):
    pincode: str
    payment_method: PaymentMethod = PaymentMethod.PREPAID
    items: list[QuoteLine] = Field(..., min_length=1)


class VendorShippingQuote(BaseModel):
    vendor_id: uuid.UUID
    vendor_name: str
    items_subtotal: Decimal
    shipping_cost: Decimal
    delivery_mode: ShippingMethod
    shipping_provider: str | None = None
    estimated_delivery_days: int
    distance_km: float | None = None
    is_default: bool = False


class ShippingQuoteResponse(BaseModel):
    pincode: str
    vendors: list[VendorShippingQuote]
    total_shipping: Decimal


class ServiceabilityResponse(BaseModel):
    pincode: str
    serviceable: bool
    cod: bool = False
    prepaid: bool = False
    message: str = ""
