"""Vendor pickup-warehouse registration with the carrier, with a bounded retry budget."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.exceptions import BusinessRuleException, NotFoundException
from marketplace.models.enums import WarehouseStatus
from marketplace.models.vendor import Vendor
from marketplace.modules.carrier.base import CarrierBase
from marketplace.modules.carrier.factory import get_carrier
from marketplace.modules.events.outbox_service import OutboxService
from marketplace.modules.order.constants import EVENT_VENDOR_WAREHOUSE_REGISTERED

logger = logging.getLogger(__name__)


def warehouse_name_for(vendor: Vendor) -> str:
    return f"{vendor.name}{settings.warehouse_name_suffix}"


def build_registration_payload(vendor: Vendor) -> dict:
    name = warehouse_name_for(vendor)
    phone = re.sub(r"\D", "", vendor.contact_number or "")
    pin = re.sub(r"\D", "", vendor.pincode or "")
    address = (vendor.address or "").strip()
    city = (vendor.city or "").strip()
    country = (vendor.country or "India").strip()
    payload = {
        "name": name,
        "registered_name": (vendor.name or name).strip(),
        "phone": phone,
        "address": address,
        "city": city,
        "pin": pin,
        "country": country,
        "return_address": address,
        "return_pin": pin,
        "return_city": city,
        "return_state": (vendor.state or "").strip(),
        "return_country": country,
    }
    if vendor.email:
        payload["email"] = vendor.email
    return payload


def warehouse_status_view(vendor: Vendor) -> dict:
    return {
        "vendor_id": vendor.id,
        "vendor_name": vendor.name,
        "status": vendor.warehouse_status,
        "warehouse_name": vendor.warehouse_name,
        "carrier_warehouse_id": vendor.carrier_warehouse_id,
        "retry_count": vendor.warehouse_retry_count,
        "max_retries": vendor.warehouse_max_retries,
        "retries_remaining": max(0, vendor.warehouse_max_retries - vendor.warehouse_retry_count),
        "can_retry": vendor.can_retry_warehouse,
        "last_attempt": vendor.warehouse_last_attempt,
        "error_message": vendor.warehouse_error_message,
        "is_carrier_registered": vendor.is_carrier_registered,
        "pickup_location_name": vendor.pickup_location_name,
    }


class WarehouseService:
    def __init__(self, db: AsyncSession, carrier: CarrierBase | None = None):
        self.db = db
        self.carrier = carrier or get_carrier()

    async def _get_vendor(self, vendor_id: uuid.UUID, for_update: bool = False) -> Vendor:
        stmt = select(Vendor).where(Vendor.id == vendor_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        vendor = result.scalar_one_or_none()
        if vendor is None:
            raise NotFoundException(f"Vendor {vendor_id} not found")
        return vendor

    async def register(self, vendor_id: uuid.UUID) -> Vendor:
        """Make one registration attempt.

        The vendor row stays locked for the attempt so concurrent retries
        serialize on it. Already-registered vendors are returned untouched;
        vendors that used up their budget are rejected before the carrier is
        called.
        """
        vendor = await self._get_vendor(vendor_id, for_update=True)
        if vendor.warehouse_status == WarehouseStatus.REGISTERED:
            return vendor

        max_retries = vendor.warehouse_max_retries or settings.warehouse_max_retries
        if vendor.warehouse_retry_count >= max_retries:
            raise BusinessRuleException(
                f"Warehouse registration for vendor {vendor.name} exhausted "
                f"{max_retries} attempts. Reset it before retrying."
            )

        vendor.warehouse_status = WarehouseStatus.RETRYING
        vendor.warehouse_retry_count += 1
        vendor.warehouse_last_attempt = datetime.now(UTC)
        await self.db.flush()

        result = await self.carrier.register_warehouse(build_registration_payload(vendor))
        if result.success:
            vendor.warehouse_status = WarehouseStatus.REGISTERED
            vendor.warehouse_name = result.warehouse_name
            vendor.carrier_warehouse_id = result.carrier_warehouse_id
            vendor.warehouse_error_message = None
            vendor.is_carrier_registered = True
            vendor.pickup_location_name = result.warehouse_name

            outbox = OutboxService(self.db)
            await outbox.publish_event(
                event_type=EVENT_VENDOR_WAREHOUSE_REGISTERED,
                aggregate_type="vendor",
                aggregate_id=str(vendor.id),
                payload={
                    "warehouse_name": result.warehouse_name,
                    "carrier_warehouse_id": result.carrier_warehouse_id,
                },
            )
            logger.info(
                "Warehouse %s registered for vendor %s (attempt %d)",
                result.warehouse_name, vendor.id, vendor.warehouse_retry_count,
            )
        else:
            vendor.warehouse_status = WarehouseStatus.FAILED
            vendor.warehouse_error_message = result.error
            logger.warning(
                "Warehouse registration failed for vendor %s (attempt %d/%d): %s",
                vendor.id, vendor.warehouse_retry_count, max_retries, result.error,
            )

        await self.db.flush()
        return vendor

    async def get_status(self, vendor_id: uuid.UUID) -> dict:
        vendor = await self._get_vendor(vendor_id)
        return warehouse_status_view(vendor)

    async def reset(self, vendor_id: uuid.UUID) -> Vendor:
        """Operator action: restore the retry budget of a failed vendor."""
        vendor = await self._get_vendor(vendor_id, for_update=True)
        if vendor.warehouse_status == WarehouseStatus.REGISTERED:
            raise BusinessRuleException("Warehouse is already registered")
        vendor.warehouse_status = WarehouseStatus.PENDING
        vendor.warehouse_retry_count = 0
        vendor.warehouse_error_message = None
        await self.db.flush()
        logger.info("Warehouse registration reset for vendor %s", vendor.id)
        return vendor

    async def list_retryable(self, limit: int = 50) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(Vendor.id)
            .where(
                Vendor.warehouse_status == WarehouseStatus.FAILED,
                Vendor.warehouse_retry_count < Vendor.warehouse_max_retries,
            )
            .order_by(Vendor.warehouse_last_attempt.asc().nulls_first())
            .limit(limit)
        )
        return list(result.scalars().all())
