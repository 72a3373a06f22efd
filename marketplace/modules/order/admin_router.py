"""Operator order API. Every route requires the admin role."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.models.enums import OrderStatus, PaymentStatus
from marketplace.modules.auth.dependencies import AuthenticatedUser, require_admin
from marketplace.modules.order.cancellation import CancellationService
from marketplace.modules.order.schemas import (
    AdminNoteCreate,
    AdminOrderListResponse,
    AdminOrderResponse,
    AdminRefundRequest,
    OrderCancelRequest,
    OrderStatusUpdate,
    ShipmentDispatchResponse,
    ShipmentOutcomeResponse,
    VendorShipmentUpdate,
)
from marketplace.modules.order.service import OrderService
from marketplace.modules.shipment.service import ShipmentService

router = APIRouter(prefix="/admin/orders", tags=["admin-orders"])


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/", response_model=AdminOrderListResponse)
async def list_orders(
    status: OrderStatus | None = Query(None),
    payment_status: PaymentStatus | None = Query(None),
    vendor_id: uuid.UUID | None = Query(None),
    user_id: uuid.UUID | None = Query(None),
    include_deleted: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    svc = OrderService(db)
    items, total = await svc.list_orders(
        user_id=user_id,
        status=status,
        payment_status=payment_status,
        vendor_id=vendor_id,
        include_deleted=include_deleted,
        limit=limit,
        offset=offset,
    )
    return AdminOrderListResponse(
        items=[AdminOrderResponse.model_validate(o) for o in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=AdminOrderResponse)
async def get_order(
    order_id: str,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await OrderService(db).get_order(order_id, include_deleted=True)
    return AdminOrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Status & fulfilment
# ---------------------------------------------------------------------------


@router.put("/{order_id}/status", response_model=AdminOrderResponse)
async def update_status(
    order_id: str,
    body: OrderStatusUpdate,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await OrderService(db).update_status(order_id, body.status, body.note)
    return AdminOrderResponse.model_validate(order)


@router.put("/{order_id}/vendor-orders/{sub_order_id}/shipment", response_model=AdminOrderResponse)
async def update_vendor_shipment(
    order_id: str,
    sub_order_id: str,
    body: VendorShipmentUpdate,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Record manual fulfilment details for one vendor order."""
    order = await OrderService(db).update_vendor_shipment(
        order_id,
        sub_order_id,
        waybill_no=body.waybill_no,
        shipping_provider=body.shipping_provider,
        shipping_cost=body.shipping_cost,
        expected_arrival=body.expected_arrival,
        status=body.status,
        note=body.note,
    )
    return AdminOrderResponse.model_validate(order)


@router.post("/{order_id}/shipments", response_model=ShipmentDispatchResponse)
async def create_shipments(
    order_id: str,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Retry carrier shipment creation for every eligible vendor order."""
    order, outcomes = await ShipmentService(db).create_shipments(order_id)
    return ShipmentDispatchResponse(
        order=AdminOrderResponse.model_validate(order),
        shipments=[ShipmentOutcomeResponse.model_validate(o) for o in outcomes],
    )


# ---------------------------------------------------------------------------
# Cancellation & refunds
# ---------------------------------------------------------------------------


@router.post("/{order_id}/cancel", response_model=AdminOrderResponse)
async def cancel_order(
    order_id: str,
    body: OrderCancelRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await CancellationService(db).cancel_order(
        order_id=order_id,
        reason=body.reason,
        cancelled_by=admin.id,
        refund_amount=body.refund_amount,
    )
    return AdminOrderResponse.model_validate(order)


@router.post("/{order_id}/vendor-orders/{sub_order_id}/cancel", response_model=AdminOrderResponse)
async def cancel_vendor_order(
    order_id: str,
    sub_order_id: str,
    body: OrderCancelRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await CancellationService(db).cancel_vendor_order(
        order_id, sub_order_id, reason=body.reason, refund_amount=body.refund_amount
    )
    return AdminOrderResponse.model_validate(order)


@router.post(
    "/{order_id}/vendor-orders/{sub_order_id}/items/{product_id}/cancel",
    response_model=AdminOrderResponse,
)
async def cancel_item(
    order_id: str,
    sub_order_id: str,
    product_id: uuid.UUID,
    body: OrderCancelRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await CancellationService(db).cancel_item(
        order_id, sub_order_id, product_id, reason=body.reason, refund_amount=body.refund_amount
    )
    return AdminOrderResponse.model_validate(order)


@router.post("/{order_id}/refund", response_model=AdminOrderResponse)
async def process_refund(
    order_id: str,
    body: AdminRefundRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await OrderService(db).process_refund(
        order_id, body.amount, body.reason, method=body.method, reference=body.reference
    )
    return AdminOrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Housekeeping
# ---------------------------------------------------------------------------


@router.post("/{order_id}/notes", response_model=AdminOrderResponse)
async def add_note(
    order_id: str,
    body: AdminNoteCreate,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await OrderService(db).add_admin_note(order_id, admin.id, body.note)
    return AdminOrderResponse.model_validate(order)


@router.delete("/{order_id}", response_model=AdminOrderResponse)
async def delete_order(
    order_id: str,
    reason: str | None = Query(None, max_length=1000),
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete; the order stays queryable with ``include_deleted``."""
    order = await OrderService(db).soft_delete(order_id, admin.id, reason)
    return AdminOrderResponse.model_validate(order)
