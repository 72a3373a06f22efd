"""Centralized v1 API router; every module router is included here."""

from fastapi import APIRouter

from marketplace.modules.notification.router import router as notification_router
from marketplace.modules.order.admin_router import router as admin_order_router
from marketplace.modules.order.router import router as order_router
from marketplace.modules.payment.router import router as payment_router
from marketplace.modules.shipping.router import router as shipping_router
from marketplace.modules.warehouse.router import router as warehouse_router
from marketplace.schemas.responses import ErrorResponse

_error_responses = {
    status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 422)
}

v1_router = APIRouter(prefix="/api/v1", responses=_error_responses)
v1_router.include_router(order_router)
v1_router.include_router(payment_router)
v1_router.include_router(shipping_router)
v1_router.include_router(notification_router)
v1_router.include_router(admin_order_router)
v1_router.include_router(warehouse_router)
