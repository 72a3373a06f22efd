"""Delhivery REST client."""

from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation

import httpx

from marketplace.config import settings
from marketplace.modules.carrier.base import (
    CarrierBase,
    CarrierError,
    CarrierRate,
    Serviceability,
    ShipmentResult,
    TrackingInfo,
    WarehouseRegistrationResult,
)

logger = logging.getLogger(__name__)

SERVICEABILITY_PATH = "/c/api/pin-codes/json/"
RATE_PATH = "/api/kinko/v1/invoice/charges/.json"
CREATE_SHIPMENT_PATH = "/api/cmu/create.json"
CREATE_WAREHOUSE_PATH = "/api/backend/clientwarehouse/create/"
TRACK_PATH = "/api/v1/packages/json/"

# Minimum chargeable weight in grams
_MIN_WEIGHT_GRAMS = 500


class DelhiveryClient(CarrierBase):
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self.api_key = settings.delhivery_api_key
        self.base_url = settings.delhivery_base_url
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.delhivery_timeout_seconds,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self.api_key}", "Accept": "application/json"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.is_configured:
            raise CarrierError("Delhivery API key not configured")
        client = await self._get_client()
        try:
            return await client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise CarrierError(f"Delhivery {path} timed out") from exc
        except httpx.RequestError as exc:
            raise CarrierError(f"Delhivery {path} request failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Serviceability and rates
    # ------------------------------------------------------------------

    async def check_serviceability(self, pincode: str) -> Serviceability:
        response = await self._request("GET", SERVICEABILITY_PATH, params={"filter_codes": pincode})
        if response.status_code >= 400:
            raise CarrierError(f"Serviceability lookup returned {response.status_code}")

        codes = response.json().get("delivery_codes") or []
        if not codes:
            return Serviceability(pincode=pincode, serviceable=False, message="Pincode not found in serviceable areas")

        entry = codes[0].get("postal_code", codes[0])
        prepaid = entry.get("pre_paid") == "Y"
        cod = entry.get("cod") == "Y"
        serviceable = prepaid or cod
        return Serviceability(
            pincode=pincode,
            serviceable=serviceable,
            cod=cod,
            prepaid=prepaid,
            message="Pincode is serviceable" if serviceable else "Pincode is not serviceable",
        )

    async def rate(
        self,
        origin_pincode: str,
        destination_pincode: str,
        weight_kg: Decimal,
        payment_mode: str,
        value: Decimal,
    ) -> CarrierRate | None:
        is_cod = payment_mode.upper() == "COD"
        params = {
            "md": "S",
            "ss": "Delivered",
            "d_pin": destination_pincode,
            "o_pin": origin_pincode,
            "cgm": max(_MIN_WEIGHT_GRAMS, int(round(Decimal(weight_kg) * 1000))),
            "pt": "COD" if is_cod else "Pre-paid",
            "cod": str(value) if is_cod else "0",
        }
        response = await self._request("GET", RATE_PATH, params=params)
        if response.status_code >= 400:
            raise CarrierError(f"Rate lookup returned {response.status_code}")

        data = response.json()
        rate_data = data[0] if isinstance(data, list) and data else data
        if not isinstance(rate_data, dict):
            raise CarrierError("Rate lookup returned an empty body")
        if rate_data.get("status") == "error" or rate_data.get("serviceable") is False:
            return None

        try:
            cost = Decimal(str(rate_data.get("total_amount")))
        except (InvalidOperation, ValueError) as exc:
            raise CarrierError("Rate lookup returned no total_amount") from exc
        return CarrierRate(cost=cost, estimated_days=_parse_edd(rate_data.get("edd")))

    # ------------------------------------------------------------------
    # Shipments
    # ------------------------------------------------------------------

    async def create_shipment(self, payload: dict) -> ShipmentResult:
        form = {"format": "json", "data": json.dumps(payload)}
        try:
            response = await self._request("POST", CREATE_SHIPMENT_PATH, data=form)
        except CarrierError as exc:
            return ShipmentResult(success=False, error=str(exc))

        if response.status_code in (401, 403):
            return ShipmentResult(
                success=False,
                error="Delhivery authentication failed, check the API key",
                error_code=str(response.status_code),
            )
        if response.status_code == 400:
            return ShipmentResult(
                success=False,
                error=f"Delhivery rejected the shipment payload: {response.text[:200]}",
                error_code="400",
            )

        try:
            data = response.json()
        except ValueError:
            return ShipmentResult(success=False, error=f"Unreadable response ({response.status_code})")

        packages = data.get("packages") or []
        package = packages[0] if packages else {}
        waybill = package.get("waybill")
        if waybill:
            return ShipmentResult(
                success=True,
                waybill=str(waybill),
                shipment_id=package.get("refnum") or package.get("package_id"),
                raw=data,
            )

        error_code = package.get("err_code")
        remarks = package.get("remarks") or data.get("rmk") or data.get("error")
        if isinstance(remarks, list):
            remarks = "; ".join(str(r) for r in remarks)
        message = str(remarks or json.dumps(data)[:200])
        if error_code == "ER0005":
            message = (
                f"Delhivery internal error (ER0005): {message}. "
                "Check that the pickup location name matches the registered warehouse."
            )
        return ShipmentResult(success=False, error=message, error_code=error_code, raw=data)

    async def register_warehouse(self, payload: dict) -> WarehouseRegistrationResult:
        name = payload.get("name", "")
        try:
            response = await self._request("POST", CREATE_WAREHOUSE_PATH, json=payload)
        except CarrierError as exc:
            return WarehouseRegistrationResult(success=False, warehouse_name=name, error=str(exc))

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code in (200, 201) and data.get("success", True) is not False:
            body = data.get("data") if isinstance(data.get("data"), dict) else data
            carrier_id = body.get("warehouse_id") or body.get("id") or name
            return WarehouseRegistrationResult(
                success=True, warehouse_name=name, carrier_warehouse_id=str(carrier_id)
            )

        error = data.get("error") or data.get("message") or f"HTTP {response.status_code}"
        if isinstance(error, list):
            error = "; ".join(str(e) for e in error)
        return WarehouseRegistrationResult(success=False, warehouse_name=name, error=str(error))

    async def track(self, waybill: str) -> TrackingInfo:
        response = await self._request("GET", TRACK_PATH, params={"waybill": waybill})
        if response.status_code >= 400:
            raise CarrierError(f"Tracking returned {response.status_code}")

        shipments = response.json().get("ShipmentData") or []
        if not shipments:
            return TrackingInfo(waybill=waybill, status="Not Found")

        shipment = shipments[0].get("Shipment", shipments[0])
        status = shipment.get("Status")
        if isinstance(status, dict):
            description = status.get("Instructions", "")
            location = status.get("StatusLocation", "")
            status = status.get("Status", "Unknown")
        else:
            description = shipment.get("StatusDescription", "")
            location = shipment.get("Origin", "")
        return TrackingInfo(
            waybill=waybill,
            status=status or "Unknown",
            status_description=description,
            location=location,
            destination=shipment.get("Destination", ""),
            expected_delivery=shipment.get("ExpectedDeliveryDate") or "",
            scans=shipment.get("Scans") or shipment.get("Scan") or [],
        )


def _parse_edd(edd) -> int:
    """'3 days' -> 3; anything unparseable falls back to the default delivery window."""
    if edd is None:
        return settings.default_delivery_days
    try:
        return int(str(edd).split()[0])
    except (ValueError, IndexError):
        return settings.default_delivery_days
