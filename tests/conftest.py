"""Shared fixtures: order aggregate builders, a mocked session and an API client."""

import os

# Before any marketplace import so Settings() and the limiter pick these up
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")

import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from marketplace.config import settings
from marketplace.models.enums import (
    ItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
    VendorOrderStatus,
    WarehouseStatus,
)
from marketplace.models.order import Order
from marketplace.models.order_item import OrderItem
from marketplace.models.vendor import Vendor
from marketplace.models.vendor_order import VendorOrder
from marketplace.modules.order.status import recompute_totals

ORDER_ID = "ODR20260315AB0001"


def make_token(user_id: uuid.UUID | None = None, role: str = "customer", email: str = "buyer@example.com") -> str:
    claims = {"sub": str(user_id or uuid.uuid4()), "email": email, "role": role}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def make_item(cost, quantity=1, product_id=None, status=ItemStatus.ACTIVE, position=0) -> OrderItem:
    return OrderItem(
        id=uuid.uuid4(),
        position=position,
        product_id=product_id or uuid.uuid4(),
        name="Product",
        quantity=quantity,
        item_cost=Decimal(str(cost)),
        is_customizable=False,
        status=status,
    )


def make_vendor_order(
    index=0,
    items=None,
    shipping_cost="0",
    status=VendorOrderStatus.READY_TO_SHIP,
    shipping_method=ShippingMethod.AUTOMATIC,
    vendor_id=None,
    waybill_no=None,
) -> VendorOrder:
    return VendorOrder(
        id=uuid.uuid4(),
        position=index,
        sub_order_id=f"{ORDER_ID}-V{index + 1:02d}",
        vendor_id=vendor_id or uuid.uuid4(),
        vendor_name=f"Vendor {index + 1}",
        shipping_method=shipping_method,
        shipping_cost=Decimal(str(shipping_cost)),
        estimated_delivery_days=5,
        waybill_no=waybill_no,
        shipment_retry_count=0,
        status=status,
        tracking=[],
        items=items if items is not None else [make_item("100")],
    )


def make_order(
    vendor_orders=None,
    status=OrderStatus.PAYMENT_PENDING,
    payment_status=PaymentStatus.PENDING,
    payment_method=PaymentMethod.PREPAID,
    coupon_discount="0",
    user_id=None,
) -> Order:
    order = Order(
        id=uuid.uuid4(),
        order_id=ORDER_ID,
        user_id=user_id or uuid.uuid4(),
        amount=Decimal("0"),
        discount=Decimal(str(coupon_discount)),
        coupon_discount=Decimal(str(coupon_discount)),
        final_order_amount=Decimal("0"),
        currency="INR",
        payment_method=payment_method,
        payment_status=payment_status,
        status=status,
        status_history=[],
        shipping_address={"name": "Asha", "pincode": "560001", "city": "Bengaluru"},
        refund_info={"refund_requested": False, "refund_status": "none", "refund_amount": 0.0},
        extra_data={},
        is_deleted=False,
        version=1,
        vendor_orders=vendor_orders if vendor_orders is not None else [make_vendor_order()],
    )
    recompute_totals(order)
    return order


def scalar_result(value):
    """Mock ``Result`` answering the scalar accessors used by the services."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    result.scalar.return_value = value
    unique_mock = MagicMock()
    unique_mock.scalar_one_or_none.return_value = value
    result.unique.return_value = unique_mock
    scalars_mock = MagicMock()
    scalars_mock.all.return_value = value if isinstance(value, list) else ([value] if value else [])
    scalars_mock.first.return_value = value
    result.scalars.return_value = scalars_mock
    return result


@pytest.fixture
def mock_db():
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    return session


@pytest.fixture
def customer_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def customer_headers(customer_id) -> dict:
    return {"Authorization": f"Bearer {make_token(customer_id)}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(role='admin', email='ops@example.com')}"}


@pytest_asyncio.fixture
async def async_client(mock_db) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient wired to the FastAPI app with the mocked session."""
    from marketplace.app import app
    from marketplace.database.session import get_db

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


ADDRESS = {
    "name": "Asha Rao",
    "phone": "+91 98450-12345",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
    "email": "asha@example.com",
}


def registered_vendor(**overrides) -> Vendor:
    fields = dict(
        id=uuid.uuid4(),
        name="Acme",
        contact_number="080-4000-1234",
        address="4 Industrial Area",
        city="Pune",
        state="Maharashtra",
        pincode="411001",
        country="India",
        warehouse_name="acme_gipza",
        pickup_location_name="acme_gipza",
        warehouse_status=WarehouseStatus.REGISTERED,
    )
    fields.update(overrides)
    return Vendor(**fields)
