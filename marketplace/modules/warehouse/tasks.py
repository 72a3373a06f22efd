"""Celery tasks for carrier warehouse registration."""

from __future__ import annotations

import asyncio
import logging
import uuid

from celery_app import celery
from marketplace.database.engine import task_session
from marketplace.exceptions import BusinessRuleException, NotFoundException
from marketplace.modules.carrier.factory import close_carrier, get_carrier
from marketplace.modules.warehouse.service import WarehouseService

logger = logging.getLogger(__name__)


async def _register_async(vendor_id: str) -> dict:
    try:
        async with task_session() as session:
            service = WarehouseService(session, get_carrier())
            try:
                vendor = await service.register(uuid.UUID(vendor_id))
            except (BusinessRuleException, NotFoundException) as exc:
                logger.warning("Warehouse registration skipped for %s: %s", vendor_id, exc.message)
                return {"vendor_id": vendor_id, "status": "skipped", "reason": exc.message}
            await session.commit()
            return {"vendor_id": vendor_id, "status": vendor.warehouse_status.value}
    finally:
        await close_carrier()


async def _retry_failed_async(batch_size: int) -> dict:
    stats = {"attempted": 0, "registered": 0, "failed": 0}
    try:
        async with task_session() as session:
            service = WarehouseService(session, get_carrier())
            vendor_ids = await service.list_retryable(limit=batch_size)
            for vendor_id in vendor_ids:
                stats["attempted"] += 1
                try:
                    vendor = await service.register(vendor_id)
                except BusinessRuleException:
                    continue
                # Commit per vendor so one failure never discards earlier attempts
                await session.commit()
                if vendor.is_carrier_registered:
                    stats["registered"] += 1
                else:
                    stats["failed"] += 1
    finally:
        await close_carrier()
    return stats


@celery.task(name="marketplace.modules.warehouse.tasks.register_vendor_warehouse")
def register_vendor_warehouse(vendor_id: str):
    """Register a newly onboarded vendor's pickup warehouse; never fails the onboarding."""
    result = asyncio.run(_register_async(vendor_id))
    logger.info("register_vendor_warehouse complete: %s", result)
    return result


@celery.task(name="marketplace.modules.warehouse.tasks.retry_failed_warehouses")
def retry_failed_warehouses(batch_size: int = 50):
    """Retry failed registrations that still have budget left."""
    stats = asyncio.run(_retry_failed_async(batch_size))
    logger.info("retry_failed_warehouses complete: %s", stats)
    return stats
