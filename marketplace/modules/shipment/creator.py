"""Builds and submits one carrier shipment for one vendor order.

The creator works on already-loaded objects and never touches the session;
the caller decides how outcomes are written back.
"""

from __future__ import annotations

import enum
import logging
import re
import uuid
from dataclasses import dataclass
from decimal import Decimal

from marketplace.models.enums import ItemStatus, PaymentMethod, ShippingMethod, VendorOrderStatus, WarehouseStatus
from marketplace.models.order import Order
from marketplace.models.product import Product
from marketplace.models.vendor import Vendor
from marketplace.models.vendor_order import VendorOrder
from marketplace.modules.carrier.base import CarrierBase, ShipmentResult

logger = logging.getLogger(__name__)

DEFAULT_HSN_CODE = "6109"
DEFAULT_DIMENSION_CM = Decimal("10")
DEFAULT_UNIT_WEIGHT_KG = Decimal("0.1")
MIN_WEIGHT_KG = Decimal("0.5")
PRODUCTS_DESC_LIMIT = 100
MIN_PHONE_DIGITS = 10


class OutcomeKind(str, enum.Enum):
    CREATED = "created"
    EXISTING = "existing"
    MANUAL = "manual"
    CANCELLED = "cancelled"
    INELIGIBLE = "ineligible"
    FAILED = "failed"


@dataclass
class ShipmentOutcome:
    sub_order_id: str
    kind: OutcomeKind
    waybill: str | None = None
    error: str | None = None

    @property
    def has_shipment(self) -> bool:
        return self.kind in (OutcomeKind.CREATED, OutcomeKind.EXISTING)


class ShipmentPayloadError(ValueError):
    """Order or vendor data is incomplete for a carrier manifest."""


def _digits(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def _clamp(value, low: Decimal, high: Decimal) -> Decimal:
    if not value:
        return DEFAULT_DIMENSION_CM
    return min(max(Decimal(value), low), high)


class ShipmentCreator:
    def __init__(self, carrier: CarrierBase):
        self.carrier = carrier

    def check_preconditions(self, vendor_order: VendorOrder, vendor: Vendor | None) -> ShipmentOutcome | None:
        """Return a terminal outcome when no carrier call should be made."""
        sub_order_id = vendor_order.sub_order_id
        if vendor_order.status == VendorOrderStatus.CANCELLED:
            return ShipmentOutcome(sub_order_id, OutcomeKind.CANCELLED)
        if vendor_order.waybill_no:
            return ShipmentOutcome(sub_order_id, OutcomeKind.EXISTING, waybill=vendor_order.waybill_no)
        if vendor_order.shipping_method == ShippingMethod.MANUAL:
            return ShipmentOutcome(sub_order_id, OutcomeKind.MANUAL)
        if vendor is None:
            return ShipmentOutcome(sub_order_id, OutcomeKind.INELIGIBLE, error="Vendor not found")
        if vendor.warehouse_status != WarehouseStatus.REGISTERED:
            return ShipmentOutcome(
                sub_order_id,
                OutcomeKind.INELIGIBLE,
                error=f"Vendor {vendor.name} warehouse is not registered with the carrier",
            )
        return None

    def build_payload(
        self,
        order: Order,
        vendor_order: VendorOrder,
        vendor: Vendor,
        products: dict[uuid.UUID, Product],
    ) -> dict:
        address = order.shipping_address or {}
        items = [item for item in vendor_order.items or [] if item.status == ItemStatus.ACTIVE]
        if not items:
            raise ShipmentPayloadError("Vendor order has no active items")

        pickup_name = vendor.pickup_location_name or vendor.warehouse_name
        if not pickup_name:
            raise ShipmentPayloadError(f"Pickup location name not found for vendor {vendor.name}")

        missing = [
            name
            for name in ("address", "pincode", "city", "state")
            if not getattr(vendor, name)
        ]
        if missing:
            raise ShipmentPayloadError(
                f"Incomplete vendor address for {vendor.name}, missing: {', '.join(missing)}"
            )

        destination_pin = str(address.get("pincode") or "")
        if len(destination_pin) != 6:
            raise ShipmentPayloadError(f"Invalid destination pincode: {destination_pin or 'missing'}")

        customer_phone = _digits(address.get("phone"))
        if len(customer_phone) < MIN_PHONE_DIGITS:
            raise ShipmentPayloadError("Customer phone number must have at least 10 digits")
        vendor_phone = _digits(vendor.contact_number)
        if len(vendor_phone) < MIN_PHONE_DIGITS:
            raise ShipmentPayloadError("Vendor phone number must have at least 10 digits")

        weight = Decimal("0")
        descriptions = []
        hsn_codes = []
        for item in items:
            product = products.get(item.product_id)
            unit_weight = Decimal(product.weight_kg) if product and product.weight_kg else DEFAULT_UNIT_WEIGHT_KG
            weight += unit_weight * item.quantity
            descriptions.append(f"{item.name} (Qty: {item.quantity})")
            if product and product.hsn_code and product.hsn_code not in hsn_codes:
                hsn_codes.append(product.hsn_code)
        weight = max(MIN_WEIGHT_KG, weight)

        first = products.get(items[0].product_id)
        length = _clamp(first.length_cm if first else None, Decimal("5"), Decimal("100"))
        width = _clamp(first.width_cm if first else None, Decimal("5"), Decimal("100"))
        height = _clamp(first.height_cm if first else None, Decimal("2"), Decimal("50"))

        items_total = sum((item.item_cost * item.quantity for item in items), Decimal("0"))
        is_cod = order.payment_method == PaymentMethod.COD

        shipment = {
            "name": (address.get("name") or "Customer").strip(),
            "order": order.order_id,
            "phone": [customer_phone],
            "add": (address.get("address") or "").strip(),
            "pin": int(destination_pin),
            "city": address.get("city") or "",
            "state": address.get("state") or "",
            "country": address.get("country") or "India",
            "address_type": "home",
            "hsn_code": hsn_codes[0] if hsn_codes else DEFAULT_HSN_CODE,
            "shipping_mode": "Surface",
            "seller_inv": vendor_order.sub_order_id,
            "seller_name": vendor.name,
            "seller_add": vendor.address,
            "weight": float(weight),
            "shipment_length": float(length),
            "shipment_width": float(width),
            "shipment_height": float(height),
            "return_name": vendor.name,
            "return_address": vendor.address,
            "return_city": vendor.city,
            "return_state": vendor.state,
            "return_country": vendor.country or "India",
            "return_pin": int(_digits(vendor.pincode)),
            "return_phone": [vendor_phone],
            "cod_amount": float(items_total) if is_cod else 0.0,
            "total_amount": float(items_total),
            "products_desc": ", ".join(descriptions)[:PRODUCTS_DESC_LIMIT],
            "quantity": str(sum(item.quantity for item in items)),
            "payment_mode": "COD" if is_cod else "Prepaid",
            "fragile_shipment": False,
            "dangerous_good": False,
            "waybill": "",
        }
        if address.get("email"):
            shipment["email"] = address["email"].strip()

        return {"shipments": [shipment], "pickup_location": {"name": pickup_name}}

    async def create(
        self,
        order: Order,
        vendor_order: VendorOrder,
        vendor: Vendor | None,
        products: dict[uuid.UUID, Product],
    ) -> ShipmentOutcome:
        skipped = self.check_preconditions(vendor_order, vendor)
        if skipped is not None:
            return skipped

        try:
            payload = self.build_payload(order, vendor_order, vendor, products)
        except ShipmentPayloadError as exc:
            return ShipmentOutcome(vendor_order.sub_order_id, OutcomeKind.FAILED, error=str(exc))

        result: ShipmentResult = await self.carrier.create_shipment(payload)
        if result.success and result.waybill:
            logger.info(
                "Shipment created for %s, waybill %s", vendor_order.sub_order_id, result.waybill
            )
            return ShipmentOutcome(vendor_order.sub_order_id, OutcomeKind.CREATED, waybill=result.waybill)

        logger.warning(
            "Shipment creation failed for %s: %s", vendor_order.sub_order_id, result.error
        )
        return ShipmentOutcome(
            vendor_order.sub_order_id,
            OutcomeKind.FAILED,
            error=result.error or "Unknown carrier error",
        )
