"""Customer order API: checkout, listing, cancellation, refunds, payment and tracking."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.exceptions import BusinessRuleException
from marketplace.models.enums import OrderStatus
from marketplace.modules.auth.dependencies import AuthenticatedUser, get_current_user
from marketplace.modules.order.cancellation import CancellationService
from marketplace.modules.order.schemas import (
    OrderCancelRequest,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderTrackingResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    PaymentInitiationResponse,
    RefundRequest,
    ShipmentOutcomeResponse,
    TrackingEntry,
)
from marketplace.modules.order.service import OrderService
from marketplace.modules.payment.service import PaymentService
from marketplace.modules.shipment.service import ShipmentService
from marketplace.modules.shipping.resolver import CartLine

router = APIRouter(prefix="/orders", tags=["orders"])


# ---------------------------------------------------------------------------
# Checkout & queries
# ---------------------------------------------------------------------------


@router.post("/", response_model=OrderResponse, status_code=201)
async def create_order(
    body: OrderCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Place an order; the cart is split into one vendor order per vendor."""
    svc = OrderService(db)
    order = await svc.create_order(
        user_id=user.id,
        lines=[
            CartLine(product_id=line.product_id, quantity=line.quantity, customization=line.customization)
            for line in body.items
        ],
        shipping_address=body.shipping_address.model_dump(),
        payment_method=body.payment_method,
        coupon_code=body.coupon_code,
        notes=body.notes,
        metadata=body.metadata,
    )
    return OrderResponse.model_validate(order)


@router.get("/", response_model=OrderListResponse)
async def list_orders(
    status: OrderStatus | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    svc = OrderService(db)
    items, total = await svc.list_orders(user_id=user.id, status=status, limit=limit, offset=offset)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


@router.post("/payment/confirm", response_model=PaymentConfirmResponse)
async def confirm_payment(
    body: PaymentConfirmRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Checkout callback: verify the gateway signature and fan out shipments."""
    svc = PaymentService(db)
    confirmation = await svc.confirm_payment(
        gateway_order_id=body.gateway_order_id,
        payment_id=body.payment_id,
        signature=body.signature,
        user_id=user.id,
    )
    if not confirmation.verified:
        # The failed attempt is recorded even though the request is rejected
        await db.commit()
        raise BusinessRuleException(confirmation.message)
    return PaymentConfirmResponse(
        verified=True,
        order=OrderResponse.model_validate(confirmation.order),
        shipments=[ShipmentOutcomeResponse.model_validate(o) for o in confirmation.outcomes],
    )


@router.post("/{order_id}/payment", response_model=PaymentInitiationResponse)
async def initiate_payment(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    svc = PaymentService(db)
    return PaymentInitiationResponse(**await svc.initiate_payment(user.id, order_id))


# ---------------------------------------------------------------------------
# Single order
# ---------------------------------------------------------------------------


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    svc = OrderService(db)
    order = await svc.get_order(order_id, user_id=user.id)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    body: OrderCancelRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel the whole order. Paid orders are refunded in full unless an amount is given."""
    svc = CancellationService(db)
    order = await svc.cancel_order(
        order_id=order_id,
        reason=body.reason,
        cancelled_by=user.id,
        refund_amount=body.refund_amount,
        user_id=user.id,
    )
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/refund", response_model=OrderResponse)
async def request_refund(
    order_id: str,
    body: RefundRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    svc = OrderService(db)
    order = await svc.request_refund(user.id, order_id, reason=body.reason, amount=body.amount)
    return OrderResponse.model_validate(order)


@router.get("/{order_id}/tracking", response_model=OrderTrackingResponse)
async def track_order(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Live carrier tracking for every vendor order that has a waybill."""
    order = await OrderService(db).get_order(order_id, user_id=user.id)
    entries = await ShipmentService(db).track_order(order)
    return OrderTrackingResponse(
        order_id=order.order_id,
        status=order.status,
        shipments=[TrackingEntry(**entry) for entry in entries],
    )
