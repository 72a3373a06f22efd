"""Shipment fan-out across an order's vendor orders, plus tracking."""

from __future__ import annotations

import asyncio
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.exceptions import BusinessRuleException
from marketplace.models.enums import OrderStatus, PaymentMethod, PaymentStatus, VendorOrderStatus
from marketplace.models.order import Order
from marketplace.models.product import Product
from marketplace.models.vendor import Vendor
from marketplace.models.vendor_order import VendorOrder
from marketplace.modules.carrier.base import CarrierBase, CarrierError
from marketplace.modules.carrier.factory import get_carrier
from marketplace.modules.events.outbox_service import OutboxService
from marketplace.modules.order.constants import EVENT_VENDOR_ORDER_SHIPMENT_UPDATED
from marketplace.modules.order.queries import get_order_aggregate
from marketplace.modules.order.status import set_order_status, set_vendor_order_status
from marketplace.modules.shipment.creator import OutcomeKind, ShipmentCreator, ShipmentOutcome

logger = logging.getLogger(__name__)

CARRIER_NAME = "Delhivery"


def order_status_after_dispatch(outcomes: list[ShipmentOutcome]) -> OrderStatus:
    """processing once any vendor order has a shipment, otherwise pending."""
    if any(outcome.has_shipment for outcome in outcomes):
        return OrderStatus.PROCESSING
    return OrderStatus.PENDING


def apply_outcome(vendor_order: VendorOrder, outcome: ShipmentOutcome) -> None:
    """Write one shipment outcome onto its vendor order."""
    if outcome.kind == OutcomeKind.CREATED:
        vendor_order.waybill_no = outcome.waybill
        vendor_order.shipping_provider = CARRIER_NAME
        set_vendor_order_status(
            vendor_order, VendorOrderStatus.SHIPPED, f"Shipment created, waybill {outcome.waybill}"
        )
    elif outcome.kind == OutcomeKind.FAILED:
        vendor_order.shipment_retry_count = (vendor_order.shipment_retry_count or 0) + 1
        set_vendor_order_status(
            vendor_order, VendorOrderStatus.PENDING, f"Shipment creation failed: {outcome.error}"
        )
    elif outcome.kind == OutcomeKind.INELIGIBLE:
        set_vendor_order_status(
            vendor_order, VendorOrderStatus.PENDING, f"Awaiting shipment: {outcome.error}"
        )


class ShipmentService:
    def __init__(self, db: AsyncSession, carrier: CarrierBase | None = None):
        self.db = db
        self.carrier = carrier or get_carrier()
        self.creator = ShipmentCreator(self.carrier)

    async def _load_vendors(self, vendor_ids: set[uuid.UUID]) -> dict[uuid.UUID, Vendor]:
        if not vendor_ids:
            return {}
        result = await self.db.execute(select(Vendor).where(Vendor.id.in_(vendor_ids)))
        return {v.id: v for v in result.scalars().all()}

    async def _load_products(self, product_ids: set[uuid.UUID]) -> dict[uuid.UUID, Product]:
        if not product_ids:
            return {}
        result = await self.db.execute(select(Product).where(Product.id.in_(product_ids)))
        return {p.id: p for p in result.scalars().all()}

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def dispatch_order(self, order: Order) -> list[ShipmentOutcome]:
        """Create carrier shipments for every eligible vendor order of a loaded aggregate.

        Carrier calls run concurrently; each vendor order's outcome is
        independent of its siblings. Results are applied to the in-memory
        aggregate and flushed once.
        """
        vendor_orders = list(order.vendor_orders or [])
        vendors = await self._load_vendors({vo.vendor_id for vo in vendor_orders})
        products = await self._load_products(
            {item.product_id for vo in vendor_orders for item in vo.items or []}
        )

        results = await asyncio.gather(
            *(
                self.creator.create(order, vo, vendors.get(vo.vendor_id), products)
                for vo in vendor_orders
            ),
            return_exceptions=True,
        )

        outcomes: list[ShipmentOutcome] = []
        for vendor_order, result in zip(vendor_orders, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected shipment error for %s", vendor_order.sub_order_id, exc_info=result
                )
                result = ShipmentOutcome(vendor_order.sub_order_id, OutcomeKind.FAILED, error=str(result))
            apply_outcome(vendor_order, result)
            outcomes.append(result)

        await self.db.flush()
        return outcomes

    async def create_shipments(self, order_id: str) -> tuple[Order, list[ShipmentOutcome]]:
        """Operator-triggered dispatch, e.g. after a vendor finishes warehouse registration."""
        order = await get_order_aggregate(self.db, order_id, for_update=True)
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise BusinessRuleException(f"Cannot ship an order in status '{order.status.value}'")
        if order.payment_method == PaymentMethod.PREPAID and order.payment_status != PaymentStatus.PAID:
            raise BusinessRuleException("Prepaid orders must be paid before shipments are created")

        outcomes = await self.dispatch_order(order)
        if order.status in (OrderStatus.CONFIRMED, OrderStatus.PENDING):
            next_status = order_status_after_dispatch(outcomes)
            if next_status != order.status:
                set_order_status(order, next_status, "Shipments dispatched")

        created = [o for o in outcomes if o.kind == OutcomeKind.CREATED]
        if created:
            outbox = OutboxService(self.db)
            for outcome in created:
                await outbox.publish_event(
                    event_type=EVENT_VENDOR_ORDER_SHIPMENT_UPDATED,
                    aggregate_type="order",
                    aggregate_id=order.order_id,
                    payload={"sub_order_id": outcome.sub_order_id, "waybill_no": outcome.waybill},
                )
        await self.db.flush()
        logger.info(
            "Shipment dispatch for %s: %s",
            order.order_id,
            ", ".join(f"{o.sub_order_id}={o.kind.value}" for o in outcomes),
        )
        return order, outcomes

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def _track_one(self, vendor_order: VendorOrder) -> dict:
        entry = {"sub_order_id": vendor_order.sub_order_id, "waybill_no": vendor_order.waybill_no}
        try:
            info = await self.carrier.track(vendor_order.waybill_no)
        except CarrierError as exc:
            logger.warning("Tracking %s failed: %s", vendor_order.waybill_no, exc)
            entry["error"] = str(exc)
            return entry
        entry["tracking"] = {
            "status": info.status,
            "status_description": info.status_description,
            "location": info.location,
            "destination": info.destination,
            "expected_delivery": info.expected_delivery,
            "scans": info.scans,
        }
        return entry

    async def track_order(self, order: Order) -> list[dict]:
        """Carrier tracking for every vendor order that has a waybill; failures are reported per waybill."""
        shipped = [vo for vo in order.vendor_orders or [] if vo.waybill_no]
        return list(await asyncio.gather(*(self._track_one(vo) for vo in shipped)))
