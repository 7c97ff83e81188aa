"""
Payment Flow Coordinator
========================

initiate: DRAFT trip  -> customer payment (pending) + trip PENDING_PAYMENT
confirm:  payment pending -> paid, trip PENDING_PAYMENT -> PUBLISHED

Both writes of each step share one transaction.  Confirming an already
paid payment is a successful no-op that leaves ``paid_at`` untouched.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.enums import PaymentMethod, PaymentPayer, PaymentStatus, TripStatus
from src.domain.errors import (
    DomainError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from src.domain.results import OperationResult
from src.infrastructure.models import PaymentModel
from src.infrastructure.repositories import PaymentRepository, TripRepository

logger = logging.getLogger(__name__)


class PaymentFlowService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.trips = TripRepository(session)
        self.payments = PaymentRepository(session)

    async def _fail(self, error: DomainError) -> OperationResult:
        await self.session.rollback()
        return OperationResult.fail(error)

    async def initiate(
        self, trip_id: int, method: PaymentMethod = PaymentMethod.PIX
    ) -> OperationResult:
        if method is PaymentMethod.INVOICE:
            return OperationResult.fail(
                ValidationError("invoice payments are issued to suppliers only")
            )

        moved = await self.trips.transition(
            trip_id,
            from_statuses=[TripStatus.DRAFT],
            to_status=TripStatus.PENDING_PAYMENT,
        )
        trip = await self.trips.get_by_id(trip_id, fresh=True)
        if trip is None:
            return await self._fail(NotFoundError("trip not found"))
        if not moved:
            return await self._fail(
                StateConflictError(
                    "payment can only be initiated for DRAFT trips "
                    f"(status {TripStatus(trip.status).value})"
                )
            )

        payment = await self.payments.create(
            trip_id=trip_id, amount=trip.price_customer, method=method
        )
        if payment is None:
            return await self._fail(
                StateConflictError("a payment already exists for this trip")
            )

        await self.session.commit()
        logger.info(
            "Payment %s initiated for trip %s (%s %s)",
            payment.id, trip_id, method.value, payment.amount,
        )
        return OperationResult.ok(
            payment_id=payment.id,
            trip_id=trip_id,
            amount=payment.amount,
            method=method.value,
            payment_status=PaymentStatus.PENDING.value,
            trip_status=TripStatus.PENDING_PAYMENT.value,
        )

    async def _resolve(
        self, payment_id: Optional[int], trip_id: Optional[int]
    ) -> Optional[PaymentModel]:
        if payment_id is not None:
            payment = await self.payments.get_by_id(payment_id, fresh=True)
            if payment is not None and payment.payer != PaymentPayer.CUSTOMER:
                return None
            return payment
        return await self.payments.get_for_trip(trip_id, PaymentPayer.CUSTOMER)

    async def _confirmed(self, payment: PaymentModel, *, already: bool) -> OperationResult:
        # The trip may have moved on (claimed, completed...) since it was published
        trip = await self.trips.get_by_id(payment.trip_id, fresh=True)
        return OperationResult.ok(
            payment_id=payment.id,
            trip_id=payment.trip_id,
            paid_at=payment.paid_at,
            payment_status=PaymentStatus.PAID.value,
            trip_status=TripStatus(trip.status).value,
            already_confirmed=already,
        )

    @staticmethod
    def _not_pending(payment: PaymentModel) -> NotFoundError:
        return NotFoundError(
            "no pending payment for this trip "
            f"(status {PaymentStatus(payment.status).value})"
        )

    async def confirm(
        self, payment_id: Optional[int] = None, trip_id: Optional[int] = None
    ) -> OperationResult:
        """Confirm by payment id, or by trip id (its customer payment)."""
        if (payment_id is None) == (trip_id is None):
            return OperationResult.fail(
                ValidationError("pass exactly one of payment_id or trip_id")
            )

        payment = await self._resolve(payment_id, trip_id)
        if payment is None:
            return await self._fail(NotFoundError("no payment found for this trip"))
        if payment.status == PaymentStatus.PAID:
            result = await self._confirmed(payment, already=True)
            await self.session.rollback()
            return result
        if payment.status != PaymentStatus.PENDING:
            return await self._fail(self._not_pending(payment))

        now = datetime.now(timezone.utc)
        payment_id, paid_trip_id = payment.id, payment.trip_id
        if not await self.payments.mark_paid(payment_id, now):
            # Another confirmation won the race
            await self.session.rollback()
            payment = await self.payments.get_by_id(payment_id, fresh=True)
            if payment.status == PaymentStatus.PAID:
                result = await self._confirmed(payment, already=True)
                await self.session.rollback()
                return result
            return await self._fail(self._not_pending(payment))

        published = await self.trips.transition(
            paid_trip_id,
            from_statuses=[TripStatus.PENDING_PAYMENT],
            to_status=TripStatus.PUBLISHED,
        )
        if not published:
            return await self._fail(
                StateConflictError("trip is not awaiting payment")
            )

        await self.session.commit()
        logger.info("Payment %s confirmed; trip %s published", payment_id, paid_trip_id)
        payment = await self.payments.get_by_id(payment_id, fresh=True)
        result = await self._confirmed(payment, already=False)
        await self.session.commit()
        return result
