"""Operator API for carrier warehouse registration."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.modules.auth.dependencies import AuthenticatedUser, require_admin
from marketplace.modules.warehouse.schemas import WarehouseStatusResponse
from marketplace.modules.warehouse.service import WarehouseService, warehouse_status_view

router = APIRouter(prefix="/admin/vendors", tags=["admin-warehouse"])


@router.get("/{vendor_id}/warehouse", response_model=WarehouseStatusResponse)
async def get_warehouse_status(
    vendor_id: uuid.UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return WarehouseStatusResponse(**await WarehouseService(db).get_status(vendor_id))


@router.post("/{vendor_id}/warehouse/register", response_model=WarehouseStatusResponse)
async def register_warehouse(
    vendor_id: uuid.UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Run one registration attempt now. Consumes one retry from the vendor's budget."""
    vendor = await WarehouseService(db).register(vendor_id)
    return WarehouseStatusResponse(**warehouse_status_view(vendor))


@router.post("/{vendor_id}/warehouse/reset", response_model=WarehouseStatusResponse)
async def reset_warehouse(
    vendor_id: uuid.UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    vendor = await WarehouseService(db).reset(vendor_id)
    return WarehouseStatusResponse(**warehouse_status_view(vendor))
