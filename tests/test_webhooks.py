"""Webhook reconciliation: authentication, deduplication and effects."""

from __future__ import annotations

import json
import time

import pytest

from src.domain.enums import (
    PaymentMethod,
    PaymentPayer,
    PaymentStatus,
    PayoutStatus,
    TripStatus,
)
from src.domain.errors import ErrorKind

from tests.support import WEBHOOK_SECRET, invoice_event, stripe_signature


async def _invoiced_trip(seed, invoice_id="in_1"):
    driver = await seed.driver()
    trip = await seed.trip(status=TripStatus.COMPLETED, driver_id=driver)
    payout = await seed.payout(trip, beneficiary_id=driver, stripe_invoice_id=invoice_id)
    payment = await seed.payment(
        trip, payer=PaymentPayer.SUPPLIER, method=PaymentMethod.INVOICE,
        gateway_payment_id=invoice_id,
    )
    return trip, payout, payment


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_valid_signature_is_accepted(self, seed, services):
        payload = invoice_event("customer.created", "cus_1")

        result = await services.webhook(payload, stripe_signature(payload))

        assert result.success
        [event] = await seed.webhook_events()
        assert event.event_id == "evt_1"
        assert event.signature_valid is True

    @pytest.mark.asyncio
    async def test_bad_signature_writes_nothing(self, seed, services):
        _, payout, _ = await _invoiced_trip(seed)
        payload = invoice_event("invoice.paid", "in_1")

        result = await services.webhook(payload, stripe_signature(payload, secret="whsec_wrong"))

        assert result.error_kind is ErrorKind.VALIDATION
        assert await seed.webhook_events() == []
        assert (await seed.payout_row(payout)).status == PayoutStatus.PENDING

    @pytest.mark.asyncio
    async def test_tampered_payload_is_rejected(self, seed, services):
        payload = invoice_event("invoice.paid", "in_1")
        signature = stripe_signature(payload)
        tampered = payload.replace(b"in_1", b"in_2")

        result = await services.webhook(tampered, signature)

        assert result.error_kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_stale_timestamp_is_rejected(self, services):
        payload = invoice_event("invoice.paid", "in_1")
        signature = stripe_signature(payload, WEBHOOK_SECRET, int(time.time()) - 3600)

        result = await services.webhook(payload, signature)

        assert result.error_kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_unsigned_rejected_by_default(self, seed, services):
        payload = invoice_event("invoice.paid", "in_1")

        result = await services.webhook(payload, None)

        assert result.error_kind is ErrorKind.VALIDATION
        assert await seed.webhook_events() == []

    @pytest.mark.asyncio
    async def test_unsigned_allowed_in_development_when_enabled(self, seed, services):
        _, payout, _ = await _invoiced_trip(seed)
        payload = invoice_event("invoice.paid", "in_1")

        result = await services.webhook(payload, None, allow_unsigned=True)

        assert result.success
        assert result.data["applied"] is True
        [event] = await seed.webhook_events()
        assert event.signature_valid is False

    @pytest.mark.asyncio
    async def test_unsigned_never_allowed_outside_development(self, services, monkeypatch):
        from src.config import settings

        monkeypatch.setattr(settings, "environment", "production")
        payload = invoice_event("invoice.paid", "in_1")

        result = await services.webhook(payload, None, allow_unsigned=True)

        assert result.error_kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_event_without_object_is_rejected(self, services):
        payload = json.dumps({"id": "evt_9", "type": "invoice.paid", "data": {}}).encode()

        result = await services.webhook(payload, stripe_signature(payload))

        assert result.error_kind is ErrorKind.VALIDATION


class TestInvoicePaid:
    @pytest.mark.asyncio
    async def test_marks_payout_and_supplier_payment_paid(self, seed, services):
        _, payout, payment = await _invoiced_trip(seed)
        payload = invoice_event("invoice.paid", "in_1")

        result = await services.webhook(payload, stripe_signature(payload))

        assert result.success
        assert result.data["applied"] is True
        payout_row = await seed.payout_row(payout)
        assert payout_row.status == PayoutStatus.PAID
        assert payout_row.method == "invoice"
        assert payout_row.transfer_reference == "in_1"
        assert payout_row.payment_date is not None
        payment_row = await seed.payment_row(payment)
        assert payment_row.status == PaymentStatus.PAID
        assert payment_row.paid_at is not None

    @pytest.mark.asyncio
    async def test_replay_is_acknowledged_without_effect(self, seed, services):
        _, payout, _ = await _invoiced_trip(seed)
        payload = invoice_event("invoice.paid", "in_1")

        first = await services.webhook(payload, stripe_signature(payload))
        paid_on = (await seed.payout_row(payout)).payment_date
        second = await services.webhook(payload, stripe_signature(payload))

        assert first.data["duplicate"] is False
        assert second.success
        assert second.data["duplicate"] is True
        assert len(await seed.webhook_events()) == 1
        assert (await seed.payout_row(payout)).payment_date == paid_on

    @pytest.mark.asyncio
    async def test_new_event_for_settled_invoice_is_ignored(self, seed, services):
        _, payout, _ = await _invoiced_trip(seed)
        first = invoice_event("invoice.paid", "in_1", event_id="evt_a")
        again = invoice_event("invoice.paid", "in_1", event_id="evt_b")

        await services.webhook(first, stripe_signature(first))
        result = await services.webhook(again, stripe_signature(again))

        assert result.success
        assert result.data["applied"] is False
        assert result.data["ignore_reason"] == "no pending payout"
        events = await seed.webhook_events()
        assert [e.applied for e in events] == [True, False]

    @pytest.mark.asyncio
    async def test_falls_back_to_trip_metadata(self, seed, services):
        driver = await seed.driver()
        trip = await seed.trip(status=TripStatus.COMPLETED, driver_id=driver)
        payout = await seed.payout(trip, beneficiary_id=driver)
        payload = invoice_event("invoice.paid", "in_unknown", trip_id=trip)

        result = await services.webhook(payload, stripe_signature(payload))

        assert result.data["applied"] is True
        row = await seed.payout_row(payout)
        assert row.status == PayoutStatus.PAID
        assert row.stripe_invoice_id == "in_unknown"

    @pytest.mark.asyncio
    async def test_paid_after_failure_recovers_payment(self, seed, services):
        driver = await seed.driver()
        trip = await seed.trip(status=TripStatus.COMPLETED, driver_id=driver)
        payout = await seed.payout(trip, beneficiary_id=driver, stripe_invoice_id="in_7")
        payment = await seed.payment(
            trip, payer=PaymentPayer.SUPPLIER, method=PaymentMethod.INVOICE,
            status=PaymentStatus.FAILED, gateway_payment_id="in_7",
        )
        payload = invoice_event("invoice.paid", "in_7")

        await services.webhook(payload, stripe_signature(payload))

        assert (await seed.payout_row(payout)).status == PayoutStatus.PAID
        assert (await seed.payment_row(payment)).status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_payment_untouched_when_payout_already_disbursed(self, seed, services):
        driver = await seed.driver(stripe_account_id="acct_driver")
        trip = await seed.trip(status=TripStatus.COMPLETED, driver_id=driver)
        payout = await seed.payout(trip, beneficiary_id=driver, stripe_invoice_id="in_8")
        payment = await seed.payment(
            trip, payer=PaymentPayer.SUPPLIER, method=PaymentMethod.INVOICE,
            gateway_payment_id="in_8",
        )
        assert (await services.disburse(payout)).success
        payload = invoice_event("invoice.paid", "in_8")

        result = await services.webhook(payload, stripe_signature(payload))

        assert result.data["applied"] is False
        assert result.data["ignore_reason"] == "no pending payout"
        assert (await seed.payment_row(payment)).status == PaymentStatus.PENDING
        assert (await seed.payout_row(payout)).method == "stripe_connect"


class TestOtherEvents:
    @pytest.mark.asyncio
    async def test_payment_failed_marks_pending_payment_failed(self, seed, services):
        _, payout, payment = await _invoiced_trip(seed)
        payload = invoice_event("invoice.payment_failed", "in_1")

        result = await services.webhook(payload, stripe_signature(payload))

        assert result.data["applied"] is True
        assert (await seed.payment_row(payment)).status == PaymentStatus.FAILED
        assert (await seed.payout_row(payout)).status == PayoutStatus.PENDING

    @pytest.mark.asyncio
    async def test_payment_failed_after_paid_is_ignored(self, seed, services):
        _, _, payment = await _invoiced_trip(seed)
        paid = invoice_event("invoice.paid", "in_1", event_id="evt_paid")
        failed = invoice_event("invoice.payment_failed", "in_1", event_id="evt_failed")

        await services.webhook(paid, stripe_signature(paid))
        result = await services.webhook(failed, stripe_signature(failed))

        assert result.data["applied"] is False
        assert (await seed.payment_row(payment)).status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_unknown_type_is_recorded_and_ignored(self, seed, services):
        payload = invoice_event("charge.dispute.created", "dp_1")

        result = await services.webhook(payload, stripe_signature(payload))

        assert result.success
        assert result.data["applied"] is False
        assert result.data["ignore_reason"] == "unhandled event type"
        [event] = await seed.webhook_events()
        assert event.event_type == "charge.dispute.created"
