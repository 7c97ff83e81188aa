"""
Payment endpoints
=================

POST /api/v1/trips/{trip_id}/payment          -- initiate the customer payment
POST /api/v1/trips/{trip_id}/payment/confirm  -- confirm it (by trip)
POST /api/v1/payments/{payment_id}/confirm    -- confirm it (by payment)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.middleware import RATE_LIMIT, limiter
from src.api.responses import to_response
from src.api.schemas import PaymentInitiateRequest
from src.services.payment_flow import PaymentFlowService

router = APIRouter(tags=["payments"])


@router.post(
    "/trips/{trip_id}/payment",
    summary="Initiate the customer payment of a DRAFT trip",
)
@limiter.limit(RATE_LIMIT)
async def initiate_payment(
    request: Request,
    trip_id: int,
    body: Optional[PaymentInitiateRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    body = body or PaymentInitiateRequest()
    result = await PaymentFlowService(db).initiate(trip_id, body.method)
    return to_response(result, success_status=201)


@router.post(
    "/trips/{trip_id}/payment/confirm",
    summary="Confirm the customer payment and publish the trip",
)
@limiter.limit(RATE_LIMIT)
async def confirm_trip_payment(
    request: Request,
    trip_id: int,
    db: AsyncSession = Depends(get_db),
):
    return to_response(await PaymentFlowService(db).confirm(trip_id=trip_id))


@router.post(
    "/payments/{payment_id}/confirm",
    summary="Confirm a payment by id",
)
@limiter.limit(RATE_LIMIT)
async def confirm_payment(
    request: Request,
    payment_id: int,
    db: AsyncSession = Depends(get_db),
):
    return to_response(await PaymentFlowService(db).confirm(payment_id=payment_id))
