"""
Settlement Orchestrator
=======================

Side effects of a completed trip:

1. **Payout** -- one pending payout per (trip, beneficiary).  The
   beneficiary is the trip's fleet when one is set, otherwise the driver.
   The insert is idempotent, so repeated completion never duplicates it.

2. **Supplier invoice** -- only for trips with a supplier:
   resolve / create the gateway customer (persisted and committed at once),
   create a ``send_invoice`` invoice with a single line, finalize and send
   it, then upsert the supplier payment and tag the payout with the invoice
   id.  Gateway failures are returned as a failed result; the caller
   decides whether that is fatal (retry endpoint) or a warning (complete).
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.enums import BeneficiaryType, PaymentPayer, TripStatus
from src.domain.errors import (
    ExternalServiceError,
    NotFoundError,
    StateConflictError,
)
from src.domain.money import to_minor_units
from src.domain.results import OperationResult
from src.infrastructure.gateway import GatewayClient
from src.infrastructure.models import PayoutModel, TripModel
from src.infrastructure.repositories import (
    PaymentRepository,
    PayoutRepository,
    SupplierRepository,
    TripRepository,
)

logger = logging.getLogger(__name__)


def payout_beneficiary(trip: TripModel) -> tuple[BeneficiaryType, int]:
    if trip.fleet_id is not None:
        return BeneficiaryType.FLEET, trip.fleet_id
    return BeneficiaryType.DRIVER, trip.driver_id


def invoice_description(trip: TripModel) -> str:
    return f"Transport service - {trip.origin_text} → {trip.destination_text}"


class SettlementOrchestrator:
    def __init__(self, session: AsyncSession, gateway: GatewayClient):
        self.session = session
        self.gateway = gateway
        self.trips = TripRepository(session)
        self.payments = PaymentRepository(session)
        self.payouts = PayoutRepository(session)
        self.suppliers = SupplierRepository(session)

    # ── Payout ────────────────────────────────────────────────────────

    async def create_payout(self, trip: TripModel) -> tuple[PayoutModel, bool]:
        """Does not commit; runs inside the caller's completion transaction."""
        kind, beneficiary_id = payout_beneficiary(trip)
        payout, created = await self.payouts.create_idempotent(
            trip_id=trip.id,
            kind=kind,
            beneficiary_id=beneficiary_id,
            amount=trip.payout_driver,
        )
        if not created:
            logger.info("Payout for trip %s already exists (id %s)", trip.id, payout.id)
        return payout, created

    # ── Supplier invoicing ────────────────────────────────────────────

    async def invoice_supplier(self, trip: TripModel) -> OperationResult:
        if trip.supplier_id is None:
            return OperationResult.ok(invoicing="skipped")

        existing = await self.payments.get_for_trip(trip.id, PaymentPayer.SUPPLIER)
        if existing is not None:
            return OperationResult.ok(
                invoicing="already_invoiced",
                invoice_id=existing.gateway_payment_id,
                supplier_payment_id=existing.id,
            )

        supplier = await self.suppliers.get_by_id(trip.supplier_id)
        if supplier is None:
            return OperationResult.fail(NotFoundError("supplier not found"))

        try:
            customer_id = supplier.stripe_customer_id
            if not customer_id:
                created_id = await self.gateway.create_customer(
                    supplier.email,
                    supplier.name,
                    {"supplier_id": str(supplier.id), "supplier_code": supplier.code},
                    idempotency_key=f"supplier-customer-{supplier.id}",
                )
                customer_id = await self.suppliers.set_customer_id(
                    supplier.id, created_id
                )
                await self.session.commit()
                logger.info(
                    "Supplier %s linked to gateway customer %s", supplier.id, customer_id
                )

            invoice_id = await self.gateway.create_invoice(
                customer_id,
                settings.invoice_due_days,
                {"trip_id": str(trip.id), "supplier_id": str(supplier.id)},
                idempotency_key=f"trip-invoice-{trip.id}",
            )
            await self.gateway.add_invoice_line(
                customer_id,
                invoice_id,
                to_minor_units(trip.price_customer),
                settings.currency,
                invoice_description(trip),
                idempotency_key=f"trip-invoice-line-{trip.id}",
            )
            invoice = await self.gateway.finalize_and_send(invoice_id)
        except ExternalServiceError as exc:
            logger.warning("Invoicing supplier for trip %s failed: %s", trip.id, exc.message)
            return OperationResult.fail(exc)

        payment = await self.payments.upsert_supplier_invoice(
            trip_id=trip.id, amount=trip.price_customer, invoice_id=invoice.id
        )
        if payment is None:
            logger.error(
                "Supplier payment for trip %s could not be recorded (invoice %s)",
                trip.id, invoice.id,
            )
            return OperationResult.fail(
                StateConflictError("supplier payment could not be recorded")
            )
        await self.payouts.attach_invoice(trip.id, invoice.id)
        await self.session.commit()
        logger.info("Trip %s invoiced to supplier %s (%s)", trip.id, supplier.id, invoice.id)
        return OperationResult.ok(
            invoicing="sent",
            invoice_id=invoice.id,
            invoice_url=invoice.hosted_url,
            supplier_payment_id=payment.id,
        )

    async def retry_invoicing(self, trip_id: int) -> OperationResult:
        """Re-run supplier invoicing alone for an already completed trip."""
        trip = await self.trips.get_by_id(trip_id, fresh=True)
        if trip is None:
            return OperationResult.fail(NotFoundError("trip not found"))
        if trip.status != TripStatus.COMPLETED:
            return OperationResult.fail(
                StateConflictError(
                    f"only COMPLETED trips can be invoiced (status {TripStatus(trip.status).value})"
                )
            )
        return await self.invoice_supplier(trip)
