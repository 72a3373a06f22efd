"""Celery tasks for relaying and pruning the event outbox."""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from marketplace.config import settings
from marketplace.database.engine import task_session
from marketplace.modules.events.outbox_service import OutboxService
from marketplace.modules.events.relay import OutboxRelay
from marketplace.modules.notification.handlers import register_handlers

logger = logging.getLogger(__name__)

register_handlers()


async def _relay_async(batch_size: int) -> dict:
    async with task_session() as session:
        stats = await OutboxRelay(session).process_batch(batch_size)
        await session.commit()
    return stats


async def _purge_async(older_than_days: int) -> int:
    async with task_session() as session:
        deleted = await OutboxService(session).purge_completed(older_than_days)
        await session.commit()
    return deleted


@celery.task(name="marketplace.modules.events.tasks.relay_outbox")
def relay_outbox(batch_size: int | None = None):
    """Deliver a batch of pending outbox events to their handlers."""
    stats = asyncio.run(_relay_async(batch_size or settings.outbox_relay_batch_size))
    if stats["processed"] or stats["failed"]:
        logger.info("relay_outbox complete: %s", stats)
    return stats


@celery.task(name="marketplace.modules.events.tasks.purge_outbox")
def purge_outbox():
    """Delete completed outbox events past the retention window."""
    deleted = asyncio.run(_purge_async(settings.outbox_retention_days))
    logger.info("Purged %d completed outbox events", deleted)
    return {"deleted": deleted}
