"""Cart splitting by vendor and per-vendor shipping resolution.

Manual pricing comes from a product's configured distance ranges; automatic
pricing comes from the carrier's rate API. Manual wins whenever it matches.
A group that resolves to nothing gets the flat default so checkout is never
blocked on shipping.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.exceptions import NotFoundException, ProductNotShippableException, ValidationException
from marketplace.models.enums import PaymentMethod, ShippingMethod
from marketplace.models.product import Product
from marketplace.models.vendor import Vendor
from marketplace.modules.carrier.base import CarrierBase, CarrierError, Serviceability
from marketplace.modules.carrier.factory import get_carrier
from marketplace.modules.shipping.distance import DistanceService, get_distance_service

logger = logging.getLogger(__name__)

PINCODE_RE = re.compile(r"^\d{6}$")

DEFAULT_UNIT_WEIGHT_KG = Decimal("0.1")
MIN_WEIGHT_KG = Decimal("0.5")


def validate_pincode(pincode: str) -> str:
    pincode = (pincode or "").strip()
    if not PINCODE_RE.match(pincode):
        raise ValidationException(
            "Invalid pincode format. Must be 6 digits.",
            details=[{"field": "pincode", "message": "must be 6 digits"}],
        )
    return pincode


@dataclass
class CartLine:
    product_id: uuid.UUID
    quantity: int
    customization: dict | None = None


@dataclass
class GroupLine:
    product: Product
    quantity: int
    customization: dict | None = None

    @property
    def value(self) -> Decimal:
        return Decimal(self.product.selling_price) * self.quantity

    @property
    def weight_kg(self) -> Decimal:
        return Decimal(self.product.weight_kg or DEFAULT_UNIT_WEIGHT_KG) * self.quantity


@dataclass
class VendorGroup:
    vendor: Vendor
    lines: list[GroupLine] = field(default_factory=list)

    @property
    def items_subtotal(self) -> Decimal:
        return sum((line.value for line in self.lines), Decimal("0"))

    @property
    def total_weight_kg(self) -> Decimal:
        return max(MIN_WEIGHT_KG, sum((line.weight_kg for line in self.lines), Decimal("0")))


@dataclass
class ShippingQuote:
    cost: Decimal
    delivery_mode: ShippingMethod
    estimated_delivery_days: int
    distance_km: float | None = None
    is_default: bool = False

    @property
    def provider(self) -> str | None:
        return "Delhivery" if self.delivery_mode == ShippingMethod.AUTOMATIC else None


def default_quote() -> ShippingQuote:
    return ShippingQuote(
        cost=Decimal(str(settings.default_shipping_cost)),
        delivery_mode=ShippingMethod.MANUAL,
        estimated_delivery_days=settings.default_delivery_days,
        is_default=True,
    )


def match_distance_range(ranges: list[dict], distance_km: float) -> dict | None:
    """First range with min_distance <= distance <= max_distance (inclusive both ends)."""
    for rng in ranges or []:
        try:
            low = float(rng.get("min_distance", 0))
            high = float(rng.get("max_distance"))
        except (TypeError, ValueError):
            continue
        if low <= distance_km <= high:
            return rng
    return None


def _allows_pincode(product: Product, pincode: str) -> bool:
    allowed = product.deliverable_pincodes or []
    if not allowed:
        return True
    codes = {str(p.get("code") if isinstance(p, dict) else p) for p in allowed}
    return pincode in codes


class ShippingResolver:
    def __init__(
        self,
        db: AsyncSession,
        carrier: CarrierBase | None = None,
        distance: DistanceService | None = None,
    ):
        self.db = db
        self.carrier = carrier or get_carrier()
        self.distance = distance or get_distance_service()

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    async def split_by_vendor(self, lines: list[CartLine]) -> list[VendorGroup]:
        """Group cart lines by owning vendor, in first-seen order."""
        if not lines:
            raise ValidationException("At least one product is required")

        product_ids = {line.product_id for line in lines}
        result = await self.db.execute(select(Product).where(Product.id.in_(product_ids)))
        products = {p.id: p for p in result.scalars().all()}

        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                raise NotFoundException(f"Product {line.product_id} not found")
            if product.vendor_id is None:
                raise ProductNotShippableException(
                    f"Product {line.product_id} has no vendor assigned"
                )

        vendor_ids = {p.vendor_id for p in products.values()}
        result = await self.db.execute(select(Vendor).where(Vendor.id.in_(vendor_ids)))
        vendors = {v.id: v for v in result.scalars().all()}

        groups: dict[uuid.UUID, VendorGroup] = {}
        for line in lines:
            product = products[line.product_id]
            vendor = vendors.get(product.vendor_id)
            if vendor is None:
                raise ProductNotShippableException(
                    f"Vendor for product {line.product_id} no longer exists"
                )
            group = groups.setdefault(vendor.id, VendorGroup(vendor=vendor))
            group.lines.append(GroupLine(product, line.quantity, line.customization))
        return list(groups.values())

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    async def _manual_quote(
        self, product: Product, vendor: Vendor, destination_pincode: str
    ) -> ShippingQuote | None:
        if not product.distance_ranges or not vendor.pincode:
            return None
        distance_km = await self.distance.driving_distance_km(vendor.pincode, destination_pincode)
        matched = match_distance_range(product.distance_ranges, distance_km)
        if matched is None:
            logger.debug(
                "No manual range for product %s at %.1f km", product.id, distance_km
            )
            return None
        return ShippingQuote(
            cost=Decimal(str(matched.get("price") or 0)),
            delivery_mode=ShippingMethod.MANUAL,
            estimated_delivery_days=int(matched.get("delivery_days") or settings.default_delivery_days),
            distance_km=distance_km,
        )

    async def _automatic_quote(
        self,
        vendor: Vendor,
        destination_pincode: str,
        weight_kg: Decimal,
        payment_method: PaymentMethod,
        value: Decimal,
    ) -> ShippingQuote | None:
        if not vendor.pincode:
            return None
        try:
            rate = await self.carrier.rate(
                origin_pincode=vendor.pincode,
                destination_pincode=destination_pincode,
                weight_kg=max(MIN_WEIGHT_KG, weight_kg),
                payment_mode="COD" if payment_method == PaymentMethod.COD else "Pre-paid",
                value=value,
            )
        except CarrierError as exc:
            logger.warning("Carrier rate lookup failed for vendor %s: %s", vendor.id, exc)
            return None
        if rate is None:
            return None
        return ShippingQuote(
            cost=rate.cost,
            delivery_mode=ShippingMethod.AUTOMATIC,
            estimated_delivery_days=rate.estimated_days,
        )

    async def quote_product(
        self,
        product: Product,
        vendor: Vendor,
        destination_pincode: str,
        quantity: int = 1,
        payment_method: PaymentMethod = PaymentMethod.PREPAID,
    ) -> ShippingQuote | None:
        """Quote a single product; None when it cannot be delivered to the pincode."""
        if not _allows_pincode(product, destination_pincode):
            return None

        mode = product.delivery_mode or ShippingMethod.MANUAL
        if mode.allows_manual:
            quote = await self._manual_quote(product, vendor, destination_pincode)
            if quote is not None:
                return quote

        if mode.allows_automatic:
            line = GroupLine(product, quantity)
            return await self._automatic_quote(
                vendor,
                destination_pincode,
                line.weight_kg,
                payment_method,
                line.value,
            )
        return None

    async def resolve_group(
        self,
        group: VendorGroup,
        destination_pincode: str,
        payment_method: PaymentMethod = PaymentMethod.PREPAID,
    ) -> ShippingQuote:
        if len(group.lines) == 1:
            line = group.lines[0]
            quote = await self.quote_product(
                line.product, group.vendor, destination_pincode, line.quantity, payment_method
            )
            if quote is None:
                logger.warning(
                    "No shipping quote for vendor %s to %s, using default",
                    group.vendor.id, destination_pincode,
                )
                return default_quote()
            return quote

        best_manual: ShippingQuote | None = None
        wants_automatic = False
        for line in group.lines:
            mode = line.product.delivery_mode or ShippingMethod.MANUAL
            if mode.allows_automatic:
                wants_automatic = True
            if not mode.allows_manual or not _allows_pincode(line.product, destination_pincode):
                continue
            quote = await self._manual_quote(line.product, group.vendor, destination_pincode)
            if quote is not None and (best_manual is None or quote.cost > best_manual.cost):
                best_manual = quote

        if best_manual is not None:
            return best_manual

        if wants_automatic:
            quote = await self._automatic_quote(
                group.vendor,
                destination_pincode,
                group.total_weight_kg,
                payment_method,
                group.items_subtotal,
            )
            if quote is not None:
                return quote

        logger.warning(
            "Shipping resolution failed for vendor %s to %s, using default",
            group.vendor.id, destination_pincode,
        )
        return default_quote()

    # ------------------------------------------------------------------
    # Serviceability
    # ------------------------------------------------------------------

    async def check_serviceability(self, pincode: str) -> Serviceability:
        pincode = validate_pincode(pincode)
        try:
            return await self.carrier.check_serviceability(pincode)
        except CarrierError as exc:
            logger.warning("Serviceability check for %s failed, assuming serviceable: %s", pincode, exc)
            return Serviceability(
                pincode=pincode,
                serviceable=True,
                message="Serviceability check unavailable. Assuming serviceable.",
            )

    # ------------------------------------------------------------------
    # Cart preview
    # ------------------------------------------------------------------

    async def quote_cart(
        self,
        lines: list[CartLine],
        destination_pincode: str,
        payment_method: PaymentMethod = PaymentMethod.PREPAID,
    ) -> list[tuple[VendorGroup, ShippingQuote]]:
        """Per-vendor shipping for a cart, exactly as checkout would price it."""
        destination_pincode = validate_pincode(destination_pincode)
        groups = await self.split_by_vendor(lines)
        quotes = await asyncio.gather(
            *(self.resolve_group(group, destination_pincode, payment_method) for group in groups)
        )
        return list(zip(groups, quotes))
