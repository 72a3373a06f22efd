"""Loading the full order aggregate (order -> vendor orders -> items)."""

from __future__ import annotations

import uuid

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from marketplace.exceptions import NotFoundException
from marketplace.models.order import Order
from marketplace.models.vendor_order import VendorOrder


def aggregate_query() -> Select:
    return select(Order).options(
        joinedload(Order.vendor_orders).joinedload(VendorOrder.items)
    )


async def get_order_aggregate(
    db: AsyncSession,
    order_id: str,
    *,
    user_id: uuid.UUID | None = None,
    for_update: bool = False,
    include_deleted: bool = False,
) -> Order:
    """Fetch by business key. ``user_id`` scopes the lookup to the owning customer."""
    stmt = aggregate_query().where(Order.order_id == order_id)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    if not include_deleted:
        stmt = stmt.where(Order.is_deleted.is_(False))
    if for_update:
        # Lock only the order row; children ride along on the outer join
        stmt = stmt.with_for_update(of=Order)

    result = await db.execute(stmt)
    order = result.unique().scalar_one_or_none()
    if order is None:
        raise NotFoundException(f"Order {order_id} not found")
    return order


async def find_by_gateway_order_id(
    db: AsyncSession, gateway_order_id: str, *, for_update: bool = True
) -> Order | None:
    stmt = aggregate_query().where(
        Order.gateway_order_id == gateway_order_id,
        Order.is_deleted.is_(False),
    )
    if for_update:
        stmt = stmt.with_for_update(of=Order)
    result = await db.execute(stmt)
    return result.unique().scalar_one_or_none()


def find_vendor_order(order: Order, sub_order_id: str) -> VendorOrder:
    for vendor_order in order.vendor_orders or []:
        if vendor_order.sub_order_id == sub_order_id:
            return vendor_order
    raise NotFoundException(f"Vendor order {sub_order_id} not found in order {order.order_id}")
