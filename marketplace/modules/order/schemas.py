"""Pydantic v2 schemas for the order, payment and admin order endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.enums import (
    ItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
    VendorOrderStatus,
)
from marketplace.modules.shipment.creator import OutcomeKind

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CartLineIn(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    customization: dict | None = None


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=10, max_length=20)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str
    country: str = "India"
    email: str | None = None


class OrderCreate(BaseModel):
    items: list[CartLineIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.PREPAID
    coupon_code: str | None = Field(None, max_length=50)
    notes: str | None = None
    metadata: dict | None = None


class OrderCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    refund_amount: Decimal | None = Field(None, gt=0)


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    amount: Decimal | None = Field(None, gt=0)


class AdminRefundRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=1000)
    method: str | None = Field(None, max_length=50)
    reference: str | None = Field(None, max_length=100)


class PaymentConfirmRequest(BaseModel):
    gateway_order_id: str
    payment_id: str
    signature: str


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: str | None = Field(None, max_length=1000)


class VendorShipmentUpdate(BaseModel):
    waybill_no: str | None = Field(None, max_length=50)
    shipping_provider: str | None = Field(None, max_length=50)
    shipping_cost: Decimal | None = None
    expected_arrival: datetime | None = None
    status: VendorOrderStatus | None = None
    note: str | None = Field(None, max_length=1000)


class AdminNoteCreate(BaseModel):
    note: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: uuid.UUID
    name: str
    quantity: int
    item_cost: Decimal
    line_total: Decimal
    is_customizable: bool
    customization: dict | None = None
    status: ItemStatus
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None


class VendorOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sub_order_id: str
    vendor_id: uuid.UUID
    vendor_name: str
    shipping_method: ShippingMethod
    shipping_provider: str | None = None
    shipping_cost: Decimal
    estimated_delivery_days: int | None = None
    waybill_no: str | None = None
    expected_arrival: datetime | None = None
    status: VendorOrderStatus
    note: str | None = None
    tracking: list[dict] = Field(default_factory=list)
    items: list[OrderItemResponse] = Field(default_factory=list)


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: str
    user_id: uuid.UUID
    status: OrderStatus
    status_history: list[dict] = Field(default_factory=list)
    amount: Decimal
    discount: Decimal
    coupon_code: str | None = None
    coupon_discount: Decimal
    final_order_amount: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    gateway_order_id: str | None = None
    paid_amount: Decimal | None = None
    confirmed_at: datetime | None = None
    shipping_address: dict = Field(default_factory=dict)
    refund_info: dict = Field(default_factory=dict)
    vendor_orders: list[VendorOrderResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class AdminOrderResponse(OrderResponse):
    gateway_payment_id: str | None = None
    extra_data: dict = Field(default_factory=dict)
    is_deleted: bool = False
    version: int


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    limit: int
    offset: int


class AdminOrderListResponse(BaseModel):
    items: list[AdminOrderResponse]
    total: int
    limit: int
    offset: int


class PaymentInitiationResponse(BaseModel):
    order_id: str
    gateway_order_id: str
    amount: Decimal
    currency: str
    key_id: str


class ShipmentOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sub_order_id: str
    kind: OutcomeKind
    waybill: str | None = None
    error: str | None = None


class PaymentConfirmResponse(BaseModel):
    verified: bool
    order: OrderResponse
    shipments: list[ShipmentOutcomeResponse] = Field(default_factory=list)


class ShipmentDispatchResponse(BaseModel):
    order: AdminOrderResponse
    shipments: list[ShipmentOutcomeResponse] = Field(default_factory=list)


class TrackingEntry(BaseModel):
    sub_order_id: str
    waybill_no: str | None = None
    tracking: dict | None = None
    error: str | None = None


class OrderTrackingResponse(BaseModel):
    order_id: str
    status: OrderStatus
    shipments: list[TrackingEntry] = Field(default_factory=list)
