"""
Trip State Transition Engine
============================

DRAFT -> PENDING_PAYMENT -> PUBLISHED -> CLAIMED -> IN_PROGRESS -> COMPLETED
any non-terminal -> CANCELED
COMPLETED | CANCELED (with a paid customer payment) -> REFUNDED

Every operation is *write first, explain afterwards*: the status
precondition is part of a single conditional ``UPDATE``.  Only when that
update touches no row do we read the trip back to tell the caller why
(not found, wrong driver, lost the race, wrong status).

Each call is its own unit of work: it commits on success and rolls back on
a business failure.  ``complete`` commits the transition and payout before
supplier invoicing starts, so a billing failure never reverts the ride.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import exists
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.enums import (
    TERMINAL_STATUSES,
    PaymentPayer,
    PaymentStatus,
    TripStatus,
    sources_for,
)
from src.domain.errors import (
    ALREADY_CLAIMED,
    NOT_ASSIGNED_DRIVER,
    AuthorizationError,
    DomainError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from src.domain.results import OperationResult
from src.infrastructure.models import PaymentModel, TripModel
from src.infrastructure.repositories import (
    BeneficiaryRepository,
    PaymentRepository,
    TripRepository,
)
from src.services.settlement import SettlementOrchestrator

logger = logging.getLogger(__name__)

_ASSIGNED_STATUSES = {TripStatus.CLAIMED, TripStatus.IN_PROGRESS, TripStatus.COMPLETED}


class TripTransitionService:
    def __init__(self, session: AsyncSession, settlement: SettlementOrchestrator):
        self.session = session
        self.trips = TripRepository(session)
        self.payments = PaymentRepository(session)
        self.beneficiaries = BeneficiaryRepository(session)
        self.settlement = settlement

    async def _fail(self, error: DomainError) -> OperationResult:
        await self.session.rollback()
        return OperationResult.fail(error)

    # ── claim ─────────────────────────────────────────────────────────

    async def claim(self, trip_id: int, driver_id: int) -> OperationResult:
        now = datetime.now(timezone.utc)
        if await self.trips.claim(trip_id, driver_id, now):
            await self.session.commit()
            logger.info("Trip %s claimed by driver %s", trip_id, driver_id)
            return OperationResult.ok(
                trip_id=trip_id,
                status=TripStatus.CLAIMED.value,
                driver_id=driver_id,
                claimed_at=now,
            )

        trip = await self.trips.get_by_id(trip_id, fresh=True)
        if trip is None:
            return await self._fail(NotFoundError("trip not found"))
        driver = await self.beneficiaries.get_driver(driver_id)
        if driver is None:
            return await self._fail(NotFoundError("driver not found"))
        if not driver.verified:
            return await self._fail(AuthorizationError("driver is not verified"))
        if trip.driver_id is not None or trip.status in _ASSIGNED_STATUSES:
            logger.info("Driver %s lost the claim race for trip %s", driver_id, trip_id)
            return await self._fail(StateConflictError(ALREADY_CLAIMED))
        return await self._fail(
            StateConflictError(
                f"trip is not open for claims (status {TripStatus(trip.status).value})"
            )
        )

    # ── start / complete ──────────────────────────────────────────────

    async def _explain_driver_transition(
        self, trip_id: int, driver_id: int, expected: TripStatus, action: str
    ) -> DomainError:
        trip = await self.trips.get_by_id(trip_id, fresh=True)
        if trip is None:
            return NotFoundError("trip not found")
        if trip.driver_id != driver_id:
            return AuthorizationError(NOT_ASSIGNED_DRIVER)
        return StateConflictError(
            f"cannot {action} a trip in status {TripStatus(trip.status).value}; "
            f"expected {expected.value}"
        )

    async def start(self, trip_id: int, driver_id: int) -> OperationResult:
        now = datetime.now(timezone.utc)
        moved = await self.trips.transition(
            trip_id,
            from_statuses=[TripStatus.CLAIMED],
            to_status=TripStatus.IN_PROGRESS,
            conditions=[TripModel.driver_id == driver_id],
            started_at=now,
        )
        if not moved:
            return await self._fail(
                await self._explain_driver_transition(
                    trip_id, driver_id, TripStatus.CLAIMED, "start"
                )
            )
        await self.session.commit()
        logger.info("Trip %s started by driver %s", trip_id, driver_id)
        return OperationResult.ok(
            trip_id=trip_id, status=TripStatus.IN_PROGRESS.value, started_at=now
        )

    async def complete(self, trip_id: int, driver_id: int) -> OperationResult:
        """
        Complete the trip, create its payout and invoice the supplier.

        A retried completion by the assigned driver is accepted: the payout
        insert is idempotent and invoicing skips trips already invoiced.
        """
        now = datetime.now(timezone.utc)
        moved = await self.trips.transition(
            trip_id,
            from_statuses=[TripStatus.IN_PROGRESS],
            to_status=TripStatus.COMPLETED,
            conditions=[TripModel.driver_id == driver_id],
            completed_at=now,
        )
        trip = await self.trips.get_by_id(trip_id, fresh=True)
        if not moved:
            error = await self._explain_driver_transition(
                trip_id, driver_id, TripStatus.IN_PROGRESS, "complete"
            )
            if not (
                isinstance(error, StateConflictError)
                and trip is not None
                and trip.status == TripStatus.COMPLETED
            ):
                return await self._fail(error)
            logger.info("Trip %s already completed; re-running settlement", trip_id)

        payout, created = await self.settlement.create_payout(trip)
        await self.session.commit()
        if moved:
            logger.info(
                "Trip %s completed by driver %s (payout %s, amount %s)",
                trip_id, driver_id, payout.id, payout.amount,
            )

        result = OperationResult.ok(
            trip_id=trip_id,
            status=TripStatus.COMPLETED.value,
            completed_at=trip.completed_at,
            already_completed=not moved,
            payout_id=payout.id,
            payout_amount=payout.amount,
            payout_created=created,
        )

        invoicing = await self.settlement.invoice_supplier(trip)
        if invoicing.success:
            result.data.update(invoicing.data)
        else:
            logger.warning(
                "Trip %s completed but supplier invoicing failed: %s",
                trip_id, invoicing.error.message,
            )
            result.warnings.append(invoicing.error)
        return result

    # ── cancel / refund ───────────────────────────────────────────────

    async def cancel(self, trip_id: int, reason: str) -> OperationResult:
        if not reason or not reason.strip():
            return OperationResult.fail(ValidationError("cancel reason is required"))

        now = datetime.now(timezone.utc)
        moved = await self.trips.transition(
            trip_id,
            from_statuses=sources_for(TripStatus.CANCELED),
            to_status=TripStatus.CANCELED,
            canceled_at=now,
            cancel_reason=reason.strip(),
        )
        if not moved:
            trip = await self.trips.get_by_id(trip_id, fresh=True)
            if trip is None:
                return await self._fail(NotFoundError("trip not found"))
            return await self._fail(
                StateConflictError(
                    f"cannot cancel a trip in status {TripStatus(trip.status).value}"
                )
            )
        await self.session.commit()
        logger.info("Trip %s canceled: %s", trip_id, reason)
        return OperationResult.ok(
            trip_id=trip_id, status=TripStatus.CANCELED.value, canceled_at=now
        )

    async def refund(self, trip_id: int) -> OperationResult:
        now = datetime.now(timezone.utc)
        paid_customer_payment = exists().where(
            PaymentModel.trip_id == TripModel.id,
            PaymentModel.payer == PaymentPayer.CUSTOMER,
            PaymentModel.status == PaymentStatus.PAID,
        )
        moved = await self.trips.transition(
            trip_id,
            from_statuses=sources_for(TripStatus.REFUNDED),
            to_status=TripStatus.REFUNDED,
            conditions=[paid_customer_payment],
        )
        if not moved:
            trip = await self.trips.get_by_id(trip_id, fresh=True)
            if trip is None:
                return await self._fail(NotFoundError("trip not found"))
            if trip.status not in TERMINAL_STATUSES or trip.status == TripStatus.REFUNDED:
                return await self._fail(
                    StateConflictError(
                        f"cannot refund a trip in status {TripStatus(trip.status).value}"
                    )
                )
            return await self._fail(
                StateConflictError("trip has no paid payment to refund")
            )

        payment = await self.payments.get_for_trip(trip_id, PaymentPayer.CUSTOMER)
        if payment is None or not await self.payments.mark_refunded(payment.id, now):
            return await self._fail(StateConflictError("payment is no longer refundable"))

        await self.session.commit()
        logger.info("Trip %s refunded (payment %s)", trip_id, payment.id)
        return OperationResult.ok(
            trip_id=trip_id,
            status=TripStatus.REFUNDED.value,
            payment_id=payment.id,
            refunded_at=now,
        )
