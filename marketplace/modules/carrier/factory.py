"""Process-wide carrier client."""

from __future__ import annotations

from marketplace.modules.carrier.base import CarrierBase
from marketplace.modules.carrier.delhivery import DelhiveryClient

_instance: CarrierBase | None = None


def get_carrier() -> CarrierBase:
    """FastAPI dependency and service default."""
    global _instance
    if _instance is None:
        _instance = DelhiveryClient()
    return _instance


async def close_carrier() -> None:
    """Close the cached httpx client.

    Must be called at the end of each asyncio.run() invocation in Celery tasks
    so a client is never reused across event loops.
    """
    global _instance
    client = getattr(_instance, "_client", None)
    if client is not None and not client.is_closed:
        await client.aclose()
    _instance = None
