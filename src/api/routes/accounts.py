"""
Connected-account endpoints
===========================

POST /api/v1/accounts/{driver|fleet}/{beneficiary_id}/onboard
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_gateway
from src.api.middleware import RATE_LIMIT, limiter
from src.api.responses import to_response
from src.api.schemas import OnboardRequest
from src.domain.enums import BeneficiaryType
from src.infrastructure.gateway import GatewayClient
from src.services.onboarding import AccountOnboardingService

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post(
    "/{kind}/{beneficiary_id}/onboard",
    summary="Create (if needed) a connected account and return its onboarding link",
)
@limiter.limit(RATE_LIMIT)
async def onboard_account(
    request: Request,
    kind: BeneficiaryType,
    beneficiary_id: int,
    body: OnboardRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    service = AccountOnboardingService(db, gateway)
    return to_response(await service.onboard(kind, beneficiary_id, body.return_base_url))
