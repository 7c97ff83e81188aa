"""
Payout endpoints
================

POST /api/v1/payouts/{payout_id}/disburse -- transfer a pending payout
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_gateway
from src.api.middleware import RATE_LIMIT, limiter
from src.api.responses import to_response
from src.infrastructure.gateway import GatewayClient
from src.services.disbursement import PayoutDisbursementService

router = APIRouter(prefix="/payouts", tags=["payouts"])


@router.post(
    "/{payout_id}/disburse",
    summary="Pay a pending payout to the beneficiary's connected account",
    description=(
        "Runs at most once per payout: a second call answers 409 "
        "with a message saying the payout was already processed, or that "
        "its transfer is still in progress."
    ),
)
@limiter.limit(RATE_LIMIT)
async def disburse_payout(
    request: Request,
    payout_id: int,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    return to_response(await PayoutDisbursementService(db, gateway).disburse(payout_id))
