"""Abstract carrier interface and the result types it returns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal


class CarrierError(Exception):
    """Transport or protocol failure talking to the carrier."""


@dataclass
class Serviceability:
    pincode: str
    serviceable: bool
    cod: bool = False
    prepaid: bool = False
    message: str = ""


@dataclass
class CarrierRate:
    cost: Decimal
    estimated_days: int


@dataclass
class ShipmentResult:
    """Outcome of one create-shipment call. Failures are data, not exceptions."""

    success: bool
    waybill: str | None = None
    shipment_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass
class WarehouseRegistrationResult:
    success: bool
    warehouse_name: str
    carrier_warehouse_id: str | None = None
    error: str | None = None


@dataclass
class TrackingInfo:
    waybill: str
    status: str
    status_description: str = ""
    location: str = ""
    destination: str = ""
    expected_delivery: str = ""
    scans: list[dict] = field(default_factory=list)


class CarrierBase(ABC):
    @abstractmethod
    async def check_serviceability(self, pincode: str) -> Serviceability:
        """Raise CarrierError when the carrier cannot be reached."""

    @abstractmethod
    async def rate(
        self,
        origin_pincode: str,
        destination_pincode: str,
        weight_kg: Decimal,
        payment_mode: str,
        value: Decimal,
    ) -> CarrierRate | None:
        """Return the carrier's quote, or None when the lane is not serviceable."""

    @abstractmethod
    async def create_shipment(self, payload: dict) -> ShipmentResult:
        """Never raises; transport errors come back as ``success=False``."""

    @abstractmethod
    async def register_warehouse(self, payload: dict) -> WarehouseRegistrationResult:
        """Never raises; transport errors come back as ``success=False``."""

    @abstractmethod
    async def track(self, waybill: str) -> TrackingInfo:
        """Raise CarrierError when tracking data cannot be fetched."""
