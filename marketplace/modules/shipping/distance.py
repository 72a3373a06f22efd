"""Vendor-to-customer driving distance via Nominatim + OpenRouteService."""

from __future__ import annotations

import logging

import httpx

from marketplace.config import settings

logger = logging.getLogger(__name__)

# Estimates used when geocoding or routing is unavailable (km)
SAME_PINCODE_KM = 0.0
SAME_ZONE_KM = 25.0
OTHER_ZONE_KM = 100.0


def estimate_distance_km(origin_pincode: str, destination_pincode: str) -> float:
    """Coarse estimate from Indian postal zones (first two pincode digits)."""
    if origin_pincode == destination_pincode:
        return SAME_PINCODE_KM
    if origin_pincode[:2] == destination_pincode[:2]:
        return SAME_ZONE_KM
    return OTHER_ZONE_KM


class DistanceService:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client
        self._coordinates: dict[str, tuple[float, float] | None] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.geo_timeout_seconds,
                headers={"User-Agent": settings.nominatim_user_agent},
            )
        return self._client

    async def geocode(self, pincode: str) -> tuple[float, float] | None:
        """Return (lon, lat) for an Indian pincode, cached per instance."""
        if pincode in self._coordinates:
            return self._coordinates[pincode]

        client = await self._get_client()
        response = await client.get(
            f"{settings.nominatim_base_url}/search",
            params={"postalcode": pincode, "country": "India", "format": "json", "limit": 1},
        )
        response.raise_for_status()
        results = response.json()
        coords = None
        if results:
            coords = (float(results[0]["lon"]), float(results[0]["lat"]))
        self._coordinates[pincode] = coords
        return coords

    async def _route_km(self, start: tuple[float, float], end: tuple[float, float]) -> float:
        client = await self._get_client()
        response = await client.get(
            f"{settings.openrouteservice_base_url}/v2/directions/driving-car",
            params={
                "api_key": settings.openrouteservice_api_key,
                "start": f"{start[0]},{start[1]}",
                "end": f"{end[0]},{end[1]}",
            },
        )
        response.raise_for_status()
        meters = response.json()["features"][0]["properties"]["summary"]["distance"]
        return round(float(meters) / 1000, 2)

    async def driving_distance_km(self, origin_pincode: str, destination_pincode: str) -> float:
        """Driving distance in km; never raises, falls back to the postal-zone estimate."""
        if origin_pincode == destination_pincode:
            return SAME_PINCODE_KM
        if not settings.openrouteservice_api_key:
            return estimate_distance_km(origin_pincode, destination_pincode)

        try:
            start = await self.geocode(origin_pincode)
            end = await self.geocode(destination_pincode)
            if start is None or end is None:
                return estimate_distance_km(origin_pincode, destination_pincode)
            return await self._route_km(start, end)
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            logger.warning(
                "Distance lookup %s -> %s failed, using estimate: %s",
                origin_pincode, destination_pincode, exc,
            )
            return estimate_distance_km(origin_pincode, destination_pincode)


_service: DistanceService | None = None


def get_distance_service() -> DistanceService:
    global _service
    if _service is None:
        _service = DistanceService()
    return _service


async def close_distance_service() -> None:
    global _service
    if _service is not None and _service._client is not None and not _service._client.is_closed:
        await _service._client.aclose()
    _service = None
