"""
Test doubles and builders shared by the test modules.

* ``FakeGateway``  -- in-memory ``GatewayClient`` that records every call
  and can be told to fail a given operation.
* ``stripe_signature`` -- builds a real ``Stripe-Signature`` header.
* ``Seeder``       -- inserts rows through short-lived sessions.
* ``Services``     -- runs each service operation in its own session, the
  way the API does per request.
"""

from __future__ import annotations

import hashlib
import hmac
import itertools
import json
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.domain.enums import (
    BeneficiaryType,
    PaymentMethod,
    PaymentPayer,
    PaymentStatus,
    TripStatus,
)
from src.domain.errors import ExternalServiceError
from src.infrastructure.gateway import FinalizedInvoice, StripeGatewayClient
from src.infrastructure.models import (
    DriverModel,
    FleetModel,
    PaymentModel,
    PayoutModel,
    SupplierModel,
    TripModel,
    WebhookEventModel,
)
from src.infrastructure.repositories import PayoutRepository, TripRepository
from src.services.disbursement import PayoutDisbursementService
from src.services.onboarding import AccountOnboardingService
from src.services.payment_flow import PaymentFlowService
from src.services.reconciler import WebhookReconciler
from src.services.settlement import SettlementOrchestrator
from src.services.transitions import TripTransitionService

WEBHOOK_SECRET = "whsec_test_secret"


# ── Gateway double ────────────────────────────────────────────────────


class FakeGateway:
    def __init__(self) -> None:
        self.calls: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.fail_on: dict[str, ExternalServiceError] = {}
        self._ids = itertools.count(1)
        self._by_idempotency_key: dict[str, str] = {}
        self._verifier = StripeGatewayClient(api_key="sk_test_fake")

    def _record(self, operation: str, **params: Any) -> None:
        self.calls[operation].append(params)
        if operation in self.fail_on:
            raise self.fail_on[operation]

    def _new_id(self, prefix: str, idempotency_key: Optional[str]) -> str:
        if idempotency_key and idempotency_key in self._by_idempotency_key:
            return self._by_idempotency_key[idempotency_key]
        new_id = f"{prefix}_{next(self._ids)}"
        if idempotency_key:
            self._by_idempotency_key[idempotency_key] = new_id
        return new_id

    async def create_customer(self, email, name, metadata, idempotency_key=None):
        self._record("create_customer", email=email, name=name, metadata=metadata,
                     idempotency_key=idempotency_key)
        return self._new_id("cus", idempotency_key)

    async def create_invoice(self, customer_id, due_days, metadata, idempotency_key=None):
        self._record("create_invoice", customer_id=customer_id, due_days=due_days,
                     metadata=metadata, idempotency_key=idempotency_key)
        return self._new_id("in", idempotency_key)

    async def add_invoice_line(self, customer_id, invoice_id, amount_minor_units,
                               currency, description, idempotency_key=None):
        self._record("add_invoice_line", customer_id=customer_id, invoice_id=invoice_id,
                     amount_minor_units=amount_minor_units, currency=currency,
                     description=description, idempotency_key=idempotency_key)

    async def finalize_and_send(self, invoice_id):
        self._record("finalize_and_send", invoice_id=invoice_id)
        return FinalizedInvoice(
            id=invoice_id, hosted_url=f"https://invoice.stripe.test/{invoice_id}"
        )

    async def create_connected_account(self, country, email, business_type, metadata,
                                       idempotency_key=None):
        self._record("create_connected_account", country=country, email=email,
                     business_type=business_type, metadata=metadata,
                     idempotency_key=idempotency_key)
        return self._new_id("acct", idempotency_key)

    async def create_account_onboarding_link(self, account_id, refresh_url, return_url):
        self._record("create_account_onboarding_link", account_id=account_id,
                     refresh_url=refresh_url, return_url=return_url)
        return f"https://connect.stripe.test/setup/{account_id}"

    async def create_transfer(self, amount_minor_units, currency, destination_account,
                              metadata, idempotency_key):
        self._record("create_transfer", amount_minor_units=amount_minor_units,
                     currency=currency, destination_account=destination_account,
                     metadata=metadata, idempotency_key=idempotency_key)
        return self._new_id("tr", idempotency_key)

    def verify_webhook_signature(self, payload, signature, secret):
        return self._verifier.verify_webhook_signature(payload, signature, secret)


# ── Webhook helpers ───────────────────────────────────────────────────


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET,
                     timestamp: Optional[int] = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def invoice_event(event_type: str, invoice_id: str, *, event_id: str = "evt_1",
                  trip_id: Optional[int] = None, created: Optional[int] = None) -> bytes:
    metadata = {"trip_id": str(trip_id)} if trip_id is not None else {}
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": {"id": invoice_id, "object": "invoice", "metadata": metadata}},
    }).encode("utf-8")


# ── Builders ──────────────────────────────────────────────────────────


class Seeder:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._seq = itertools.count(1)

    async def _add(self, obj) -> int:
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            return obj.id

    async def driver(self, *, verified: bool = True,
                     stripe_account_id: Optional[str] = None) -> int:
        n = next(self._seq)
        return await self._add(DriverModel(
            name=f"Driver {n}", email=f"driver{n}@example.com",
            verified=verified, stripe_account_id=stripe_account_id,
        ))

    async def fleet(self, *, stripe_account_id: Optional[str] = None) -> int:
        n = next(self._seq)
        return await self._add(FleetModel(
            company_name=f"Fleet {n}", contact_email=f"fleet{n}@example.com",
            stripe_account_id=stripe_account_id,
        ))

    async def supplier(self, *, stripe_customer_id: Optional[str] = None) -> int:
        n = next(self._seq)
        return await self._add(SupplierModel(
            name=f"Supplier {n}", code=f"SUP{n}", email=f"billing{n}@example.com",
            stripe_customer_id=stripe_customer_id,
        ))

    async def trip(self, *, status: TripStatus = TripStatus.DRAFT,
                   price: str = "500.00", payout: str = "350.00",
                   **fields: Any) -> int:
        fields.setdefault("customer_name", "Ana Ribeiro")
        fields.setdefault("customer_phone", "+55 11 90000-0000")
        fields.setdefault("origin_text", "GRU Airport")
        fields.setdefault("destination_text", "Hotel Centro")
        fields.setdefault("pickup_datetime", datetime.now(timezone.utc) + timedelta(days=1))
        async with self.session_factory() as session:
            trip = await TripRepository(session).create(
                status=status,
                price_customer=Decimal(price),
                payout_driver=Decimal(payout),
                **fields,
            )
            await session.commit()
            return trip.id

    async def payment(self, trip_id: int, *, status: PaymentStatus = PaymentStatus.PENDING,
                      payer: PaymentPayer = PaymentPayer.CUSTOMER,
                      amount: str = "500.00", method: PaymentMethod = PaymentMethod.PIX,
                      gateway_payment_id: Optional[str] = None,
                      paid_at: Optional[datetime] = None) -> int:
        return await self._add(PaymentModel(
            trip_id=trip_id, payer=payer, amount=Decimal(amount), method=method,
            status=status, gateway_payment_id=gateway_payment_id, paid_at=paid_at,
        ))

    async def payout(self, trip_id: int, *, kind: BeneficiaryType = BeneficiaryType.DRIVER,
                     beneficiary_id: int, amount: str = "350.00",
                     stripe_invoice_id: Optional[str] = None) -> int:
        async with self.session_factory() as session:
            payout, _ = await PayoutRepository(session).create_idempotent(
                trip_id=trip_id, kind=kind, beneficiary_id=beneficiary_id,
                amount=Decimal(amount),
            )
            payout.stripe_invoice_id = stripe_invoice_id
            await session.commit()
            return payout.id

    # ── Reads (fresh session each time) ───────────────────────────────

    async def get(self, model, row_id: int):
        async with self.session_factory() as session:
            return await session.get(model, row_id)

    async def trip_row(self, trip_id: int) -> TripModel:
        return await self.get(TripModel, trip_id)

    async def payment_row(self, payment_id: int) -> PaymentModel:
        return await self.get(PaymentModel, payment_id)

    async def payout_row(self, payout_id: int) -> PayoutModel:
        return await self.get(PayoutModel, payout_id)

    async def supplier_row(self, supplier_id: int) -> SupplierModel:
        return await self.get(SupplierModel, supplier_id)

    async def all(self, model) -> list:
        async with self.session_factory() as session:
            result = await session.execute(select(model).order_by(model.id))
            return list(result.scalars().all())

    async def payouts(self) -> list[PayoutModel]:
        return await self.all(PayoutModel)

    async def payments(self) -> list[PaymentModel]:
        return await self.all(PaymentModel)

    async def webhook_events(self) -> list[WebhookEventModel]:
        return await self.all(WebhookEventModel)


class Services:
    """One session per call, like one request per call through the API."""

    def __init__(self, session_factory: async_sessionmaker, gateway: FakeGateway):
        self.session_factory = session_factory
        self.gateway = gateway

    async def claim(self, trip_id, driver_id):
        async with self.session_factory() as s:
            return await self._transitions(s).claim(trip_id, driver_id)

    async def start(self, trip_id, driver_id):
        async with self.session_factory() as s:
            return await self._transitions(s).start(trip_id, driver_id)

    async def complete(self, trip_id, driver_id):
        async with self.session_factory() as s:
            return await self._transitions(s).complete(trip_id, driver_id)

    async def cancel(self, trip_id, reason="customer request"):
        async with self.session_factory() as s:
            return await self._transitions(s).cancel(trip_id, reason)

    async def refund(self, trip_id):
        async with self.session_factory() as s:
            return await self._transitions(s).refund(trip_id)

    async def initiate(self, trip_id, method=PaymentMethod.PIX):
        async with self.session_factory() as s:
            return await PaymentFlowService(s).initiate(trip_id, method)

    async def confirm(self, *, payment_id=None, trip_id=None):
        async with self.session_factory() as s:
            return await PaymentFlowService(s).confirm(payment_id=payment_id, trip_id=trip_id)

    async def retry_invoicing(self, trip_id):
        async with self.session_factory() as s:
            return await SettlementOrchestrator(s, self.gateway).retry_invoicing(trip_id)

    async def disburse(self, payout_id):
        async with self.session_factory() as s:
            return await PayoutDisbursementService(s, self.gateway).disburse(payout_id)

    async def onboard(self, kind, beneficiary_id, base_url="https://portal.example.com"):
        async with self.session_factory() as s:
            return await AccountOnboardingService(s, self.gateway).onboard(
                kind, beneficiary_id, base_url
            )

    async def webhook(self, payload: bytes, signature: Optional[str], *,
                      allow_unsigned: bool = False):
        async with self.session_factory() as s:
            reconciler = WebhookReconciler(
                s, self.gateway, webhook_secret=WEBHOOK_SECRET,
                allow_unsigned=allow_unsigned,
            )
            return await reconciler.handle_webhook_event(payload, signature)

    def _transitions(self, session) -> TripTransitionService:
        return TripTransitionService(session, SettlementOrchestrator(session, self.gateway))
