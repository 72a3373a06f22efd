"""Payment gateway webhook endpoint."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.session import get_db
from marketplace.exceptions import ValidationException
from marketplace.modules.payment.service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Gateway server-to-server notification, authenticated by HMAC over the raw body."""
    body = await request.body()
    try:
        event = json.loads(body)
    except ValueError as exc:
        raise ValidationException("Webhook body is not valid JSON") from exc
    svc = PaymentService(db)
    return await svc.handle_webhook(body, x_razorpay_signature, event)
