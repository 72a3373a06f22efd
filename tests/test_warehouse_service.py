"""Unit tests for WarehouseService: registration attempts and the retry budget."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import registered_vendor, scalar_result

from marketplace.exceptions import BusinessRuleException, NotFoundException
from marketplace.models.enums import WarehouseStatus
from marketplace.modules.carrier.base import WarehouseRegistrationResult
from marketplace.modules.order.constants import EVENT_VENDOR_WAREHOUSE_REGISTERED
from marketplace.modules.warehouse import tasks
from marketplace.modules.warehouse.service import (
    WarehouseService,
    build_registration_payload,
    warehouse_status_view,
)


def _pending_vendor(**overrides):
    fields = dict(
        warehouse_status=WarehouseStatus.PENDING,
        warehouse_retry_count=0,
        warehouse_max_retries=3,
        warehouse_name=None,
        pickup_location_name=None,
        is_carrier_registered=False,
        email="ops@acme.test",
    )
    fields.update(overrides)
    return registered_vendor(**fields)


@pytest.fixture
def outbox():
    with patch("marketplace.modules.warehouse.service.OutboxService") as mock_outbox_cls:
        instance = AsyncMock()
        mock_outbox_cls.return_value = instance
        yield instance


@pytest.fixture
def carrier():
    carrier = AsyncMock()
    carrier.register_warehouse.return_value = WarehouseRegistrationResult(
        success=True, warehouse_name="Acme_gipza", carrier_warehouse_id="77"
    )
    return carrier


@pytest.fixture
def service(mock_db, carrier, outbox):
    return WarehouseService(mock_db, carrier)


class TestPayload:
    def test_normalises_contact_fields(self):
        vendor = _pending_vendor(contact_number="+91 80-4000-1234", pincode=" 411 001")
        payload = build_registration_payload(vendor)

        assert payload["name"] == "Acme_gipza"
        assert payload["phone"] == "918040001234"
        assert payload["pin"] == "411001"
        assert payload["return_state"] == "Maharashtra"
        assert payload["email"] == "ops@acme.test"

    def test_status_view_budget(self):
        vendor = _pending_vendor(warehouse_status=WarehouseStatus.FAILED, warehouse_retry_count=2)
        view = warehouse_status_view(vendor)

        assert view["retries_remaining"] == 1
        assert view["can_retry"] is True


class TestRegister:
    @pytest.mark.asyncio
    async def test_success_marks_vendor_registered(self, service, mock_db, carrier, outbox):
        vendor = _pending_vendor()
        mock_db.execute.return_value = scalar_result(vendor)

        result = await service.register(vendor.id)

        assert result.warehouse_status == WarehouseStatus.REGISTERED
        assert result.is_carrier_registered is True
        assert result.pickup_location_name == "Acme_gipza"
        assert result.carrier_warehouse_id == "77"
        assert result.warehouse_retry_count == 1
        assert result.warehouse_last_attempt is not None
        outbox.publish_event.assert_awaited_once()
        assert outbox.publish_event.await_args.kwargs["event_type"] == EVENT_VENDOR_WAREHOUSE_REGISTERED

    @pytest.mark.asyncio
    async def test_failure_consumes_one_attempt(self, service, mock_db, carrier, outbox):
        carrier.register_warehouse.return_value = WarehouseRegistrationResult(
            success=False, warehouse_name="Acme_gipza", error="Delhivery API key not configured"
        )
        vendor = _pending_vendor(warehouse_status=WarehouseStatus.FAILED, warehouse_retry_count=1)
        mock_db.execute.return_value = scalar_result(vendor)

        result = await service.register(vendor.id)

        assert result.warehouse_status == WarehouseStatus.FAILED
        assert result.warehouse_retry_count == 2
        assert result.warehouse_error_message == "Delhivery API key not configured"
        assert result.is_carrier_registered is False
        outbox.publish_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_budget_rejected_before_carrier_call(self, service, mock_db, carrier):
        vendor = _pending_vendor(warehouse_status=WarehouseStatus.FAILED, warehouse_retry_count=3)
        mock_db.execute.return_value = scalar_result(vendor)

        with pytest.raises(BusinessRuleException, match="exhausted"):
            await service.register(vendor.id)
        carrier.register_warehouse.assert_not_awaited()
        assert vendor.warehouse_retry_count == 3

    @pytest.mark.asyncio
    async def test_already_registered_is_noop(self, service, mock_db, carrier):
        vendor = registered_vendor(warehouse_retry_count=1, warehouse_max_retries=3)
        mock_db.execute.return_value = scalar_result(vendor)

        assert await service.register(vendor.id) is vendor
        carrier.register_warehouse.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_vendor(self, service, mock_db):
        mock_db.execute.return_value = scalar_result(None)
        with pytest.raises(NotFoundException):
            await service.register(uuid.uuid4())


class TestReset:
    @pytest.mark.asyncio
    async def test_restores_budget(self, service, mock_db):
        vendor = _pending_vendor(
            warehouse_status=WarehouseStatus.FAILED, warehouse_retry_count=3, warehouse_error_message="boom"
        )
        mock_db.execute.return_value = scalar_result(vendor)

        await service.reset(vendor.id)

        assert vendor.warehouse_status == WarehouseStatus.PENDING
        assert vendor.warehouse_retry_count == 0
        assert vendor.warehouse_error_message is None

    @pytest.mark.asyncio
    async def test_registered_vendor_cannot_reset(self, service, mock_db):
        mock_db.execute.return_value = scalar_result(registered_vendor(warehouse_retry_count=1))
        with pytest.raises(BusinessRuleException):
            await service.reset(uuid.uuid4())


class TestRetryTask:
    @pytest.mark.asyncio
    async def test_commits_per_vendor_and_counts_outcomes(self):
        session = AsyncMock()

        @asynccontextmanager
        async def fake_task_session():
            yield session

        registered = MagicMock(is_carrier_registered=True)
        failed = MagicMock(is_carrier_registered=False)
        service = MagicMock()
        service.list_retryable = AsyncMock(return_value=[uuid.uuid4(), uuid.uuid4(), uuid.uuid4()])
        service.register = AsyncMock(side_effect=[registered, BusinessRuleException("exhausted"), failed])

        with (
            patch.object(tasks, "task_session", fake_task_session),
            patch.object(tasks, "WarehouseService", return_value=service),
            patch.object(tasks, "get_carrier"),
            patch.object(tasks, "close_carrier", new=AsyncMock()) as close_carrier,
        ):
            stats = await tasks._retry_failed_async(batch_size=10)

        assert stats == {"attempted": 3, "registered": 1, "failed": 1}
        assert session.commit.await_count == 2
        close_carrier.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_register_task_reports_skip_without_commit(self):
        session = AsyncMock()

        @asynccontextmanager
        async def fake_task_session():
            yield session

        service = MagicMock()
        service.register = AsyncMock(side_effect=NotFoundException("Vendor missing"))
        vendor_id = str(uuid.uuid4())

        with (
            patch.object(tasks, "task_session", fake_task_session),
            patch.object(tasks, "WarehouseService", return_value=service),
            patch.object(tasks, "get_carrier"),
            patch.object(tasks, "close_carrier", new=AsyncMock()),
        ):
            result = await tasks._register_async(vendor_id)

        assert result == {"vendor_id": vendor_id, "status": "skipped", "reason": "Vendor missing"}
        session.commit.assert_not_awaited()
