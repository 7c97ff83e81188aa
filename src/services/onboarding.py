"""Connected-account onboarding for payout beneficiaries (drivers and fleets)."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.enums import BeneficiaryType
from src.domain.errors import ExternalServiceError, NotFoundError
from src.domain.results import OperationResult
from src.infrastructure.gateway import GatewayClient
from src.infrastructure.repositories import BeneficiaryRepository

logger = logging.getLogger(__name__)

_BUSINESS_TYPES = {
    BeneficiaryType.DRIVER: "individual",
    BeneficiaryType.FLEET: "company",
}


def _return_path(kind: BeneficiaryType, beneficiary_id: int) -> str:
    if kind is BeneficiaryType.DRIVER:
        return "/driver/payouts"
    return f"/admin/fleets/{beneficiary_id}"


class AccountOnboardingService:
    def __init__(self, session: AsyncSession, gateway: GatewayClient):
        self.session = session
        self.gateway = gateway
        self.beneficiaries = BeneficiaryRepository(session)

    async def onboard(
        self, kind: BeneficiaryType, beneficiary_id: int, return_base_url: str
    ) -> OperationResult:
        """
        Ensure the beneficiary has a connected account and return a link
        to the provider-hosted onboarding form.  The account id is stored
        before the link is requested, so a failure there loses nothing.
        """
        beneficiary = await self.beneficiaries.get(kind, beneficiary_id)
        if beneficiary is None:
            return OperationResult.fail(NotFoundError(f"{kind.value} not found"))

        account_id = beneficiary.stripe_account_id
        created = False
        try:
            if not account_id:
                email = (
                    beneficiary.email
                    if kind is BeneficiaryType.DRIVER
                    else beneficiary.contact_email
                )
                new_id = await self.gateway.create_connected_account(
                    settings.connect_country,
                    email,
                    _BUSINESS_TYPES[kind],
                    {"entity_type": kind.value, "entity_id": str(beneficiary_id)},
                    idempotency_key=f"connect-{kind.value}-{beneficiary_id}",
                )
                account_id = await self.beneficiaries.set_account_id(
                    kind, beneficiary_id, new_id
                )
                await self.session.commit()
                created = True
                logger.info(
                    "Connected account %s created for %s %s",
                    account_id, kind.value, beneficiary_id,
                )

            base = return_base_url.rstrip("/")
            path = _return_path(kind, beneficiary_id)
            url = await self.gateway.create_account_onboarding_link(
                account_id,
                refresh_url=f"{base}{path}?stripe_refresh=true",
                return_url=f"{base}{path}?stripe_success=true",
            )
        except ExternalServiceError as exc:
            logger.error(
                "Onboarding %s %s failed: %s", kind.value, beneficiary_id, exc.message
            )
            return OperationResult.fail(exc)

        return OperationResult.ok(
            account_id=account_id,
            onboarding_url=url,
            already_connected=not created,
        )
