"""Tests for the Delhivery REST client against a mocked transport."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from marketplace.modules.carrier.base import CarrierError
from marketplace.modules.carrier.delhivery import (
    CREATE_SHIPMENT_PATH,
    CREATE_WAREHOUSE_PATH,
    RATE_PATH,
    SERVICEABILITY_PATH,
    DelhiveryClient,
)


def _client(handler, api_key="test-token") -> DelhiveryClient:
    transport = httpx.MockTransport(handler)
    client = DelhiveryClient(
        client=httpx.AsyncClient(transport=transport, base_url="https://carrier.test")
    )
    client.api_key = api_key
    return client


class TestServiceability:
    @pytest.mark.asyncio
    async def test_serviceable_pincode(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == SERVICEABILITY_PATH
            assert request.url.params["filter_codes"] == "560001"
            assert request.headers["Authorization"] == "Token test-token"
            return httpx.Response(
                200, json={"delivery_codes": [{"postal_code": {"pre_paid": "Y", "cod": "N"}}]}
            )

        result = await _client(handler).check_serviceability("560001")

        assert result.serviceable is True
        assert result.prepaid is True
        assert result.cod is False

    @pytest.mark.asyncio
    async def test_unknown_pincode(self):
        result = await _client(lambda r: httpx.Response(200, json={"delivery_codes": []})).check_serviceability(
            "999999"
        )
        assert result.serviceable is False

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        with pytest.raises(CarrierError):
            await _client(lambda r: httpx.Response(503)).check_serviceability("560001")

    @pytest.mark.asyncio
    async def test_unconfigured_key_raises(self):
        with pytest.raises(CarrierError, match="not configured"):
            await _client(lambda r: httpx.Response(200), api_key="").check_serviceability("560001")


class TestRate:
    @pytest.mark.asyncio
    async def test_rate_parses_total_and_edd(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            assert request.url.path == RATE_PATH
            return httpx.Response(200, json=[{"total_amount": 72.5, "edd": "4 days"}])

        rate = await _client(handler).rate("560001", "110001", Decimal("0.2"), "Pre-paid", Decimal("900"))

        assert rate.cost == Decimal("72.5")
        assert rate.estimated_days == 4
        # Minimum chargeable weight
        assert seen["cgm"] == "500"
        assert seen["pt"] == "Pre-paid"
        assert seen["cod"] == "0"

    @pytest.mark.asyncio
    async def test_cod_sends_collectable_value(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(200, json={"total_amount": "80"})

        rate = await _client(handler).rate("560001", "110001", Decimal("1.2"), "COD", Decimal("900"))

        assert seen["pt"] == "COD"
        assert seen["cod"] == "900"
        assert seen["cgm"] == "1200"
        assert rate.estimated_days == 5

    @pytest.mark.asyncio
    async def test_unserviceable_lane_returns_none(self):
        handler = lambda r: httpx.Response(200, json=[{"status": "error"}])  # noqa: E731
        assert await _client(handler).rate("560001", "110001", Decimal("1"), "Pre-paid", Decimal("1")) is None


class TestCreateShipment:
    @pytest.mark.asyncio
    async def test_success_returns_waybill(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == CREATE_SHIPMENT_PATH
            form = dict(httpx.QueryParams(request.content.decode()))
            assert form["format"] == "json"
            assert json.loads(form["data"])["shipments"][0]["order"] == "ODR1-V01"
            return httpx.Response(200, json={"packages": [{"waybill": "1234567890", "refnum": "ODR1-V01"}]})

        result = await _client(handler).create_shipment({"shipments": [{"order": "ODR1-V01"}]})

        assert result.success is True
        assert result.waybill == "1234567890"
        assert result.shipment_id == "ODR1-V01"

    @pytest.mark.asyncio
    async def test_er0005_message_mentions_pickup_location(self):
        handler = lambda r: httpx.Response(  # noqa: E731
            200, json={"packages": [{"err_code": "ER0005", "remarks": ["internal error"]}]}
        )
        result = await _client(handler).create_shipment({})

        assert result.success is False
        assert result.error_code == "ER0005"
        assert "pickup location" in result.error

    @pytest.mark.asyncio
    async def test_auth_failure_is_data(self):
        result = await _client(lambda r: httpx.Response(401)).create_shipment({})
        assert result.success is False
        assert result.error_code == "401"

    @pytest.mark.asyncio
    async def test_transport_error_is_data(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await _client(handler).create_shipment({})
        assert result.success is False
        assert "request failed" in result.error


class TestRegisterWarehouse:
    @pytest.mark.asyncio
    async def test_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == CREATE_WAREHOUSE_PATH
            return httpx.Response(201, json={"success": True, "data": {"warehouse_id": 77}})

        result = await _client(handler).register_warehouse({"name": "acme_gipza"})

        assert result.success is True
        assert result.carrier_warehouse_id == "77"

    @pytest.mark.asyncio
    async def test_rejection_carries_error(self):
        handler = lambda r: httpx.Response(400, json={"error": ["Duplicate name"]})  # noqa: E731
        result = await _client(handler).register_warehouse({"name": "acme_gipza"})

        assert result.success is False
        assert result.error == "Duplicate name"
        assert result.warehouse_name == "acme_gipza"


class TestTrack:
    @pytest.mark.asyncio
    async def test_nested_status(self):
        body = {
            "ShipmentData": [
                {
                    "Shipment": {
                        "Status": {"Status": "In Transit", "Instructions": "Reached hub", "StatusLocation": "Pune"},
                        "Destination": "Bengaluru",
                        "Scans": [{"ScanDetail": {"Scan": "Manifested"}}],
                    }
                }
            ]
        }
        info = await _client(lambda r: httpx.Response(200, json=body)).track("1234567890")

        assert info.status == "In Transit"
        assert info.location == "Pune"
        assert info.destination == "Bengaluru"
        assert len(info.scans) == 1

    @pytest.mark.asyncio
    async def test_unknown_waybill(self):
        info = await _client(lambda r: httpx.Response(200, json={"ShipmentData": []})).track("0")
        assert info.status == "Not Found"
