"""
Gateway webhook endpoint
========================

POST /api/v1/webhooks/stripe -- Stripe events (``Stripe-Signature`` header)

Authentication and payload errors answer 400 so the provider does not
retry a delivery that can never succeed; everything else answers 200.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_gateway
from src.domain.errors import ErrorKind
from src.infrastructure.gateway import GatewayClient
from src.services.reconciler import WebhookReconciler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", summary="Receive Stripe webhook events")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    payload = await request.body()
    result = await WebhookReconciler(db, gateway).handle_webhook_event(
        payload, stripe_signature
    )
    if result.success:
        status = 200
    elif result.error_kind is ErrorKind.VALIDATION:
        status = 400
    else:
        status = 500
    return JSONResponse(status_code=status, content=jsonable_encoder(result.to_dict()))
