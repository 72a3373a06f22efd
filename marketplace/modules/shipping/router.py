"""Shipping API: cart quotes and pincode serviceability."""

from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.modules.auth.dependencies import AuthenticatedUser, get_current_user
from marketplace.modules.shipping.resolver import CartLine, ShippingResolver
from marketplace.modules.shipping.schemas import (
    ServiceabilityResponse,
    ShippingQuoteRequest,
    ShippingQuoteResponse,
    VendorShippingQuote,
)

router = APIRouter(prefix="/shipping", tags=["shipping"])


@router.post("/quote", response_model=ShippingQuoteResponse)
async def quote_shipping(
    body: ShippingQuoteRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Preview per-vendor shipping for a cart without placing an order."""
    resolver = ShippingResolver(db)
    quoted = await resolver.quote_cart(
        [CartLine(product_id=line.product_id, quantity=line.quantity) for line in body.items],
        body.pincode,
        body.payment_method,
    )
    vendors = [
        VendorShippingQuote(
            vendor_id=group.vendor.id,
            vendor_name=group.vendor.name,
            items_subtotal=group.items_subtotal,
            shipping_cost=quote.cost,
            delivery_mode=quote.delivery_mode,
            shipping_provider=quote.provider,
            estimated_delivery_days=quote.estimated_delivery_days,
            distance_km=quote.distance_km,
            is_default=quote.is_default,
        )
        for group, quote in quoted
    ]
    return ShippingQuoteResponse(
        pincode=body.pincode,
        vendors=vendors,
        total_shipping=sum((v.shipping_cost for v in vendors), Decimal("0")),
    )


@router.get("/serviceability/{pincode}", response_model=ServiceabilityResponse)
async def check_serviceability(pincode: str, db: AsyncSession = Depends(get_db)):
    resolver = ShippingResolver(db)
    result = await resolver.check_serviceability(pincode)
    return ServiceabilityResponse(**asdict(result))
