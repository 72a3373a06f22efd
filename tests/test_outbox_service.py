"""Unit tests for the event outbox: staging, retry bookkeeping, relay and handler registry."""

import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marketplace.models.enums import EventStatus
from marketplace.models.event_outbox import EventOutbox
from marketplace.modules.events import tasks
from marketplace.modules.events.handlers import EventHandlerRegistry
from marketplace.modules.events.outbox_service import OutboxService
from marketplace.modules.events.relay import OutboxRelay


def _event(event_type="order.created", retry_count=0, max_retries=3) -> EventOutbox:
    return EventOutbox(
        id=uuid.uuid4(),
        event_type=event_type,
        aggregate_type="order",
        aggregate_id="ODR20260315AB0001",
        payload={},
        status=EventStatus.PENDING,
        retry_count=retry_count,
        max_retries=max_retries,
    )


def _session_with_savepoints(events):
    session = AsyncMock()
    session.add = MagicMock()
    result = MagicMock()
    result.scalars.return_value.all.return_value = events
    session.execute.return_value = result

    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=None)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=savepoint)
    return session


@pytest.fixture
def registry():
    saved = {k: list(v) for k, v in EventHandlerRegistry._handlers.items()}
    EventHandlerRegistry.clear()
    yield EventHandlerRegistry
    EventHandlerRegistry.clear()
    EventHandlerRegistry._handlers.update(saved)


class TestOutboxServicePublish:
    """Tests for OutboxService.publish_event."""

    @pytest.mark.asyncio
    async def test_publish_event_stages_pending_event(self, mock_db):
        service = OutboxService(mock_db)

        event = await service.publish_event(
            event_type="order.created",
            aggregate_type="order",
            aggregate_id="ODR20260315AB0001",
            payload={"vendor_count": 2},
        )

        mock_db.add.assert_called_once_with(event)
        mock_db.flush.assert_awaited_once()
        assert event.status == EventStatus.PENDING
        assert event.retry_count == 0
        assert event.max_retries == 3
        assert event.payload == {"vendor_count": 2}


class TestOutboxServiceMarking:
    def test_mark_completed_sets_timestamp(self):
        event = _event()
        event.last_error = "previous failure"

        OutboxService.mark_completed(event)

        assert event.status == EventStatus.COMPLETED
        assert event.processed_at is not None
        assert event.last_error is None

    def test_mark_failed_increments_retry_and_stays_pending(self):
        event = _event()

        OutboxService.mark_failed(event, "Connection timeout")

        assert event.retry_count == 1
        assert event.last_error == "Connection timeout"
        assert event.status == EventStatus.PENDING

    def test_mark_failed_sets_failed_when_max_retries_reached(self):
        event = _event()
        for i in range(3):
            OutboxService.mark_failed(event, f"Failure #{i + 1}")

        assert event.retry_count == 3
        assert event.status == EventStatus.FAILED
        assert event.last_error == "Failure #3"


class TestHandlerRegistry:
    @pytest.mark.asyncio
    async def test_dispatch_runs_handlers_in_order(self, registry):
        calls = []

        async def first(session, event):
            calls.append("first")

        async def second(session, event):
            calls.append("second")

        registry.register("order.created", first)
        registry.register("order.created", second)
        registry.register("order.created", first)

        names = await registry.dispatch(AsyncMock(), _event())

        assert names == ["first", "second"]
        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_unknown_event_has_no_handlers(self, registry):
        assert await registry.dispatch(AsyncMock(), _event("order.unknown")) == []


class TestOutboxRelay:
    @pytest.mark.asyncio
    async def test_batch_completes_and_retries(self, registry):
        async def ok(session, event):
            return None

        async def broken(session, event):
            raise RuntimeError("template missing")

        registry.register("order.created", ok)
        registry.register("order.cancelled", broken)

        good = _event("order.created")
        bad = _event("order.cancelled")
        session = _session_with_savepoints([good, bad])

        stats = await OutboxRelay(session).process_batch(batch_size=10)

        assert stats == {"processed": 1, "failed": 1}
        assert good.status == EventStatus.COMPLETED
        assert bad.status == EventStatus.PENDING
        assert bad.retry_count == 1
        assert bad.last_error == "template missing"
        assert session.begin_nested.call_count == 2
        session.flush.assert_awaited()

    @pytest.mark.asyncio
    async def test_last_retry_marks_failed(self, registry):
        async def broken(session, event):
            raise RuntimeError("still broken")

        registry.register("order.cancelled", broken)
        event = _event("order.cancelled", retry_count=2)

        stats = await OutboxRelay(_session_with_savepoints([event])).process_batch()

        assert stats == {"processed": 0, "failed": 1}
        assert event.status == EventStatus.FAILED

    @pytest.mark.asyncio
    async def test_events_without_handlers_complete(self, registry):
        event = _event("vendor.warehouse_registered")

        stats = await OutboxRelay(_session_with_savepoints([event])).process_batch()

        assert stats == {"processed": 1, "failed": 0}
        assert event.status == EventStatus.COMPLETED


class TestRelayTasks:
    @pytest.mark.asyncio
    async def test_relay_commits_batch(self):
        session = AsyncMock()

        @asynccontextmanager
        async def fake_task_session():
            yield session

        relay = MagicMock()
        relay.process_batch = AsyncMock(return_value={"processed": 2, "failed": 0})
        with (
            patch.object(tasks, "task_session", fake_task_session),
            patch.object(tasks, "OutboxRelay", return_value=relay),
        ):
            stats = await tasks._relay_async(batch_size=25)

        assert stats == {"processed": 2, "failed": 0}
        relay.process_batch.assert_awaited_once_with(25)
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_purge_removes_completed(self):
        session = AsyncMock()
        session.execute.return_value = MagicMock(rowcount=12)

        @asynccontextmanager
        async def fake_task_session():
            yield session

        with patch.object(tasks, "task_session", fake_task_session):
            deleted = await tasks._purge_async(older_than_days=30)

        assert deleted == 12
        session.commit.assert_awaited_once()
