"""Pays a pending payout out to the beneficiary's connected account."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.enums import BeneficiaryType, PayoutStatus
from src.domain.errors import (
    ALREADY_PROCESSED,
    NO_CONNECTED_ACCOUNT,
    ExternalServiceError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from src.domain.money import to_minor_units
from src.domain.results import OperationResult
from src.infrastructure.gateway import GatewayClient
from src.infrastructure.repositories import BeneficiaryRepository, PayoutRepository

logger = logging.getLogger(__name__)

TRANSFER_METHOD = "stripe_connect"
TRANSFER_RECEIPT_URL = "https://dashboard.stripe.com/transfers/{transfer_id}"
TRANSFER_IN_PROGRESS = "a transfer for this payout is already in progress"


class PayoutDisbursementService:
    def __init__(self, session: AsyncSession, gateway: GatewayClient):
        self.session = session
        self.gateway = gateway
        self.payouts = PayoutRepository(session)
        self.beneficiaries = BeneficiaryRepository(session)

    async def disburse(self, payout_id: int) -> OperationResult:
        """
        Transfer the payout amount and mark it paid.

        The payout is reserved (``disbursing_at``) and committed before the
        gateway call, so a concurrent disbursement or an ``invoice.paid``
        event cannot settle it while the transfer is in flight.  The
        transfer carries the idempotency key ``payout-<id>``; a failed
        transfer releases the reservation so the call can be retried.
        """
        payout = await self.payouts.get_by_id(payout_id, fresh=True)
        if payout is None:
            return OperationResult.fail(NotFoundError("payout not found"))
        if payout.status != PayoutStatus.PENDING:
            return OperationResult.fail(StateConflictError(ALREADY_PROCESSED))

        if payout.driver_id is not None:
            kind, beneficiary_id = BeneficiaryType.DRIVER, payout.driver_id
        else:
            kind, beneficiary_id = BeneficiaryType.FLEET, payout.fleet_id
        beneficiary = await self.beneficiaries.get(kind, beneficiary_id)
        account_id = beneficiary.stripe_account_id if beneficiary is not None else None
        if not account_id:
            return OperationResult.fail(ValidationError(NO_CONNECTED_ACCOUNT))

        amount, trip_id = payout.amount, payout.trip_id
        reserved_at = datetime.now(timezone.utc)
        if not await self.payouts.reserve_for_transfer(payout_id, reserved_at):
            await self.session.rollback()
            payout = await self.payouts.get_by_id(payout_id, fresh=True)
            still_pending = payout is not None and payout.status == PayoutStatus.PENDING
            await self.session.rollback()
            if not still_pending:
                return OperationResult.fail(StateConflictError(ALREADY_PROCESSED))
            return OperationResult.fail(StateConflictError(TRANSFER_IN_PROGRESS))
        # Commit the reservation before the network call
        await self.session.commit()

        try:
            transfer_id = await self.gateway.create_transfer(
                to_minor_units(amount),
                settings.currency,
                account_id,
                {"payout_id": str(payout_id), "trip_id": str(trip_id)},
                idempotency_key=f"payout-{payout_id}",
            )
        except ExternalServiceError as exc:
            logger.error("Transfer for payout %s failed: %s", payout_id, exc.message)
            # The idempotency key makes a retry safe even if the outcome is unknown
            await self.payouts.release_reservation(payout_id, reserved_at)
            await self.session.commit()
            return OperationResult.fail(exc)

        now = datetime.now(timezone.utc)
        receipt_url = TRANSFER_RECEIPT_URL.format(transfer_id=transfer_id)
        marked = await self.payouts.mark_paid(
            payout_id,
            payment_date=now,
            reserved_at=reserved_at,
            method=TRANSFER_METHOD,
            transfer_reference=transfer_id,
            receipt_url=receipt_url,
        )
        if not marked:
            await self.session.rollback()
            logger.error(
                "Payout %s lost its reservation; transfer %s is not recorded",
                payout_id, transfer_id,
            )
            return OperationResult.fail(StateConflictError(ALREADY_PROCESSED))

        await self.session.commit()
        logger.info(
            "Payout %s paid to %s %s via transfer %s (%s)",
            payout_id, kind.value, beneficiary_id, transfer_id, amount,
        )
        return OperationResult.ok(
            payout_id=payout_id,
            trip_id=trip_id,
            amount=amount,
            status=PayoutStatus.PAID.value,
            transfer_id=transfer_id,
            receipt_url=receipt_url,
            payment_date=now,
        )
