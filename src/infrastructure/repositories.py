"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Status changes are always *conditional updates*: the expected current
status is part of the ``WHERE`` clause and the caller inspects the
affected-row count.  Two concurrent writers against the same precondition
can therefore never both succeed.  Inserts that must be idempotent run
inside a SAVEPOINT so a unique-constraint violation leaves the enclosing
transaction usable.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import ColumnElement, exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DriverModel,
    FleetModel,
    PaymentModel,
    PayoutModel,
    SupplierModel,
    TripModel,
    WebhookEventModel,
)
from src.config import settings
from src.domain.enums import (
    BeneficiaryType,
    PaymentMethod,
    PaymentPayer,
    PaymentStatus,
    PayoutStatus,
    TripStatus,
)
from src.domain.money import calculate_margin


def beneficiary_key(kind: BeneficiaryType, beneficiary_id: int) -> str:
    return f"{kind.value}:{beneficiary_id}"


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> TripModel:
        fields.setdefault("status", TripStatus.DRAFT)
        fields["calculated_margin"] = calculate_margin(
            fields["price_customer"],
            fields["payout_driver"],
            fields.get("estimated_costs"),
        )
        trip = TripModel(**fields)
        self.session.add(trip)
        await self.session.flush()
        # Load server-side defaults (created_at) while we are in async context
        await self.session.refresh(trip)
        return trip

    async def get_by_id(
        self, trip_id: int, *, fresh: bool = False
    ) -> Optional[TripModel]:
        """``fresh=True`` bypasses the identity map after a bulk UPDATE."""
        if not fresh:
            return await self.session.get(TripModel, trip_id)
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        trip_id: int,
        *,
        from_statuses: Iterable[TripStatus],
        to_status: TripStatus,
        conditions: Iterable[ColumnElement[bool]] = (),
        **values: Any,
    ) -> bool:
        """
        Atomically move a trip to *to_status* if its current status is one
        of *from_statuses* and every extra condition holds.

        Returns ``True`` when exactly this call performed the transition.
        """
        stmt = (
            update(TripModel)
            .where(
                TripModel.id == trip_id,
                TripModel.status.in_(list(from_statuses)),
                *conditions,
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def claim(
        self, trip_id: int, driver_id: int, claimed_at: datetime
    ) -> bool:
        verified_driver = exists().where(
            DriverModel.id == driver_id, DriverModel.verified.is_(True)
        )
        return await self.transition(
            trip_id,
            from_statuses=[TripStatus.PUBLISHED],
            to_status=TripStatus.CLAIMED,
            conditions=[TripModel.driver_id.is_(None), verified_driver],
            driver_id=driver_id,
            claimed_at=claimed_at,
        )

    async def get_completed_awaiting_invoice(self, limit: int = 50) -> list[int]:
        """COMPLETED trips with a supplier but no supplier payment yet."""
        has_supplier_payment = exists().where(
            PaymentModel.trip_id == TripModel.id,
            PaymentModel.payer == PaymentPayer.SUPPLIER,
        )
        result = await self.session.execute(
            select(TripModel.id)
            .where(
                TripModel.status == TripStatus.COMPLETED,
                TripModel.supplier_id.is_not(None),
                ~has_supplier_payment,
            )
            .order_by(TripModel.completed_at)
            .limit(limit)
        )
        return list(result.scalars().all())


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        trip_id: int,
        amount: Decimal,
        method: PaymentMethod,
        payer: PaymentPayer = PaymentPayer.CUSTOMER,
        gateway_payment_id: Optional[str] = None,
    ) -> Optional[PaymentModel]:
        """Insert a pending payment; ``None`` if one already exists for the payer."""
        payment = PaymentModel(
            trip_id=trip_id,
            payer=payer,
            amount=amount,
            method=method,
            status=PaymentStatus.PENDING,
            gateway_payment_id=gateway_payment_id,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(payment)
        except IntegrityError:
            return None
        return payment

    async def get_by_id(
        self, payment_id: int, *, fresh: bool = False
    ) -> Optional[PaymentModel]:
        if not fresh:
            return await self.session.get(PaymentModel, payment_id)
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_trip(
        self, trip_id: int, payer: PaymentPayer = PaymentPayer.CUSTOMER
    ) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.trip_id == trip_id, PaymentModel.payer == payer)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_trip(self, trip_id: int) -> list[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.trip_id == trip_id)
            .order_by(PaymentModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def set_status(
        self,
        *,
        where: Iterable[ColumnElement[bool]],
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        **values: Any,
    ) -> int:
        stmt = (
            update(PaymentModel)
            .where(*where, PaymentModel.status.in_(list(from_statuses)))
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def mark_paid(
        self,
        payment_id: int,
        paid_at: datetime,
        from_statuses: Iterable[PaymentStatus] = (PaymentStatus.PENDING,),
    ) -> bool:
        return (
            await self.set_status(
                where=[PaymentModel.id == payment_id],
                from_statuses=from_statuses,
                to_status=PaymentStatus.PAID,
                paid_at=paid_at,
            )
            == 1
        )

    async def mark_refunded(self, payment_id: int, refunded_at: datetime) -> bool:
        return (
            await self.set_status(
                where=[PaymentModel.id == payment_id],
                from_statuses=[PaymentStatus.PAID],
                to_status=PaymentStatus.REFUNDED,
                refunded_at=refunded_at,
            )
            == 1
        )

    async def upsert_supplier_invoice(
        self, *, trip_id: int, amount: Decimal, invoice_id: str
    ) -> Optional[PaymentModel]:
        """
        Insert-or-update the supplier payment for a trip.  A payment that
        has already been paid is never reset to pending.  Returns ``None``
        when the insert conflicted but no supplier payment can be read back.
        """
        created = await self.create(
            trip_id=trip_id,
            amount=amount,
            method=PaymentMethod.INVOICE,
            payer=PaymentPayer.SUPPLIER,
            gateway_payment_id=invoice_id,
        )
        if created is not None:
            return created

        await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.trip_id == trip_id,
                PaymentModel.payer == PaymentPayer.SUPPLIER,
                PaymentModel.status != PaymentStatus.PAID,
            )
            .values(
                amount=amount,
                method=PaymentMethod.INVOICE,
                gateway_payment_id=invoice_id,
                status=PaymentStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        )
        return await self.get_for_trip(trip_id, PaymentPayer.SUPPLIER)


def _unreserved(now: datetime) -> ColumnElement[bool]:
    stale = now - timedelta(seconds=settings.disbursement_reservation_seconds)
    return or_(PayoutModel.disbursing_at.is_(None), PayoutModel.disbursing_at < stale)


class PayoutRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_idempotent(
        self,
        *,
        trip_id: int,
        kind: BeneficiaryType,
        beneficiary_id: int,
        amount: Decimal,
    ) -> tuple[PayoutModel, bool]:
        """Return ``(payout, created)``; a duplicate returns the existing row."""
        key = beneficiary_key(kind, beneficiary_id)
        payout = PayoutModel(
            trip_id=trip_id,
            driver_id=beneficiary_id if kind is BeneficiaryType.DRIVER else None,
            fleet_id=beneficiary_id if kind is BeneficiaryType.FLEET else None,
            beneficiary_key=key,
            amount=amount,
            status=PayoutStatus.PENDING,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(payout)
        except IntegrityError:
            result = await self.session.execute(
                select(PayoutModel).where(
                    PayoutModel.trip_id == trip_id,
                    PayoutModel.beneficiary_key == key,
                )
            )
            return result.scalar_one(), False
        return payout, True

    async def get_by_id(
        self, payout_id: int, *, fresh: bool = False
    ) -> Optional[PayoutModel]:
        if not fresh:
            return await self.session.get(PayoutModel, payout_id)
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.id == payout_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_trip(self, trip_id: int) -> list[PayoutModel]:
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.trip_id == trip_id)
            .order_by(PayoutModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_pending_for_invoice(
        self, invoice_id: str, trip_id: Optional[int] = None
    ) -> Optional[PayoutModel]:
        """Match on the stored invoice reference first, then on trip id."""
        result = await self.session.execute(
            select(PayoutModel).where(
                PayoutModel.stripe_invoice_id == invoice_id,
                PayoutModel.status == PayoutStatus.PENDING,
            )
        )
        payout = result.scalars().first()
        if payout is not None or trip_id is None:
            return payout
        result = await self.session.execute(
            select(PayoutModel)
            .where(
                PayoutModel.trip_id == trip_id,
                PayoutModel.status == PayoutStatus.PENDING,
            )
            .order_by(PayoutModel.id)
        )
        return result.scalars().first()

    async def reserve_for_transfer(self, payout_id: int, reserved_at: datetime) -> bool:
        """Claim a pending payout for one transfer attempt."""
        result = await self.session.execute(
            update(PayoutModel)
            .where(
                PayoutModel.id == payout_id,
                PayoutModel.status == PayoutStatus.PENDING,
                _unreserved(reserved_at),
            )
            .values(disbursing_at=reserved_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_reservation(self, payout_id: int, reserved_at: datetime) -> bool:
        result = await self.session.execute(
            update(PayoutModel)
            .where(
                PayoutModel.id == payout_id,
                PayoutModel.status == PayoutStatus.PENDING,
                PayoutModel.disbursing_at == reserved_at,
            )
            .values(disbursing_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_paid(
        self,
        payout_id: int,
        *,
        payment_date: datetime,
        reserved_at: Optional[datetime] = None,
        **values: Any,
    ) -> bool:
        """
        pending -> paid.  With ``reserved_at`` only the holder of that
        transfer reservation may settle the payout; without it a reserved
        payout is left alone.
        """
        if reserved_at is not None:
            held = PayoutModel.disbursing_at == reserved_at
        else:
            held = _unreserved(datetime.now(timezone.utc))
        stmt = (
            update(PayoutModel)
            .where(
                PayoutModel.id == payout_id,
                PayoutModel.status == PayoutStatus.PENDING,
                held,
            )
            .values(
                status=PayoutStatus.PAID,
                payment_date=payment_date,
                disbursing_at=None,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def attach_invoice(self, trip_id: int, invoice_id: str) -> int:
        result = await self.session.execute(
            update(PayoutModel)
            .where(PayoutModel.trip_id == trip_id)
            .values(stripe_invoice_id=invoice_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class SupplierRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, supplier_id: int) -> Optional[SupplierModel]:
        return await self.session.get(SupplierModel, supplier_id)

    async def set_customer_id(self, supplier_id: int, customer_id: str) -> str:
        """
        Persist the gateway customer id unless another request already did;
        returns the id that is stored afterwards.
        """
        await self.session.execute(
            update(SupplierModel)
            .where(
                SupplierModel.id == supplier_id,
                SupplierModel.stripe_customer_id.is_(None),
            )
            .values(stripe_customer_id=customer_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(SupplierModel.stripe_customer_id).where(
                SupplierModel.id == supplier_id
            )
        )
        return result.scalar_one()


class BeneficiaryRepository:
    """Drivers and fleets, looked up by beneficiary type."""

    _MODELS = {
        BeneficiaryType.DRIVER: DriverModel,
        BeneficiaryType.FLEET: FleetModel,
    }

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, kind: BeneficiaryType, beneficiary_id: int):
        return await self.session.get(self._MODELS[kind], beneficiary_id)

    async def get_driver(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id)

    async def set_account_id(
        self, kind: BeneficiaryType, beneficiary_id: int, account_id: str
    ) -> str:
        model = self._MODELS[kind]
        await self.session.execute(
            update(model)
            .where(model.id == beneficiary_id, model.stripe_account_id.is_(None))
            .values(stripe_account_id=account_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(model.stripe_account_id).where(model.id == beneficiary_id)
        )
        return result.scalar_one()


class WebhookEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self, *, event_id: str, event_type: str, signature_valid: bool = True
    ) -> bool:
        """Insert an accepted event; ``False`` if this event id was seen before."""
        event = WebhookEventModel(
            event_id=event_id,
            event_type=event_type,
            signature_valid=signature_valid,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(event)
        except IntegrityError:
            return False
        return True

    async def set_outcome(
        self, event_id: str, *, applied: bool, ignore_reason: Optional[str] = None
    ) -> None:
        await self.session.execute(
            update(WebhookEventModel)
            .where(WebhookEventModel.event_id == event_id)
            .values(applied=applied, ignore_reason=ignore_reason)
            .execution_options(synchronize_session=False)
        )
