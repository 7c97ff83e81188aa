"""
Webhook Reconciler
==================

Applies gateway events to local payouts and payments.

Pipeline for every delivery:

1. Authenticate -- signature checked against the configured secret before
   anything is read or written.  Unsigned deliveries are accepted only when
   ``allow_unsigned_webhooks`` is set *and* the environment is development.
2. Deduplicate -- the event id is recorded in ``webhook_events``; a replay of
   the same id is acknowledged without touching anything.
3. Apply -- every write is conditional on the current status, so events
   about the same invoice may arrive in any order and any number of times.

Handled events
--------------
* ``invoice.paid``            -> pending payout paid (method ``invoice``) and its
                                 supplier payment paid; no pending payout, no-op
* ``invoice.payment_failed``  -> supplier payment failed
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.enums import PaymentPayer, PaymentStatus
from src.domain.errors import ValidationError
from src.domain.results import OperationResult
from src.infrastructure.gateway import GatewayClient, parse_event
from src.infrastructure.models import PaymentModel
from src.infrastructure.repositories import (
    PaymentRepository,
    PayoutRepository,
    WebhookEventRepository,
)

logger = logging.getLogger(__name__)

INVOICE_PAYOUT_METHOD = "invoice"


def _event_time(event: dict[str, Any]) -> datetime:
    created = event.get("created")
    if isinstance(created, (int, float)):
        return datetime.fromtimestamp(created, tz=timezone.utc)
    return datetime.now(timezone.utc)


def _metadata_trip_id(obj: dict[str, Any]) -> Optional[int]:
    raw = (obj.get("metadata") or {}).get("trip_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


class WebhookReconciler:
    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayClient,
        webhook_secret: Optional[str] = None,
        allow_unsigned: Optional[bool] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        )
        if allow_unsigned is None:
            allow_unsigned = settings.allow_unsigned_webhooks
        self.allow_unsigned = allow_unsigned and settings.environment == "development"
        self.events = WebhookEventRepository(session)
        self.payments = PaymentRepository(session)
        self.payouts = PayoutRepository(session)

    def _authenticate(
        self, payload: bytes, signature: Optional[str]
    ) -> tuple[dict[str, Any], bool]:
        if not signature and self.allow_unsigned:
            logger.warning("Accepting UNSIGNED webhook (development mode)")
            return parse_event(payload), False
        return (
            self.gateway.verify_webhook_signature(payload, signature, self.webhook_secret),
            True,
        )

    async def handle_webhook_event(
        self, payload: bytes, signature: Optional[str]
    ) -> OperationResult:
        try:
            event, signed = self._authenticate(payload, signature)
        except ValidationError as exc:
            logger.warning("Rejected webhook: %s", exc.message)
            return OperationResult.fail(exc)

        event_id = event.get("id")
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object")
        if not event_id or not isinstance(obj, dict):
            return OperationResult.fail(
                ValidationError("malformed webhook payload: missing id or data.object")
            )

        if not await self.events.record(
            event_id=event_id, event_type=event_type, signature_valid=signed
        ):
            await self.session.rollback()
            logger.info("Webhook %s (%s) already processed", event_id, event_type)
            return OperationResult.ok(
                event_id=event_id, event_type=event_type, duplicate=True, applied=False
            )

        if event_type == "invoice.paid":
            applied, reason = await self._invoice_paid(obj, _event_time(event))
        elif event_type == "invoice.payment_failed":
            applied, reason = await self._invoice_payment_failed(obj)
        else:
            applied, reason = False, "unhandled event type"

        await self.events.set_outcome(event_id, applied=applied, ignore_reason=reason)
        await self.session.commit()
        logger.info(
            "Webhook %s (%s) processed: applied=%s%s",
            event_id, event_type, applied, f" ({reason})" if reason else "",
        )
        return OperationResult.ok(
            event_id=event_id,
            event_type=event_type,
            duplicate=False,
            applied=applied,
            ignore_reason=reason,
        )

    # ── Handlers ──────────────────────────────────────────────────────

    async def _invoice_paid(
        self, invoice: dict[str, Any], occurred_at: datetime
    ) -> tuple[bool, Optional[str]]:
        invoice_id = invoice.get("id")
        if not invoice_id:
            return False, "invoice without id"

        payout = await self.payouts.find_pending_for_invoice(
            invoice_id, _metadata_trip_id(invoice)
        )
        if payout is None:
            logger.info("invoice.paid for %s matched no pending payout", invoice_id)
            return False, "no pending payout"

        payout_paid = await self.payouts.mark_paid(
            payout.id,
            payment_date=occurred_at,
            method=INVOICE_PAYOUT_METHOD,
            transfer_reference=invoice_id,
            stripe_invoice_id=invoice_id,
        )
        if not payout_paid:
            # Reserved by an in-flight transfer, which records its own result
            logger.info(
                "invoice.paid for %s left payout %s to its transfer", invoice_id, payout.id
            )

        payments_paid = await self.payments.set_status(
            where=[
                PaymentModel.gateway_payment_id == invoice_id,
                PaymentModel.payer == PaymentPayer.SUPPLIER,
            ],
            from_statuses=[PaymentStatus.PENDING, PaymentStatus.FAILED],
            to_status=PaymentStatus.PAID,
            paid_at=occurred_at,
        )

        if not payout_paid and not payments_paid:
            return False, "payout transfer in progress"
        return True, None

    async def _invoice_payment_failed(
        self, invoice: dict[str, Any]
    ) -> tuple[bool, Optional[str]]:
        invoice_id = invoice.get("id")
        if not invoice_id:
            return False, "invoice without id"
        failed = await self.payments.set_status(
            where=[PaymentModel.gateway_payment_id == invoice_id],
            from_statuses=[PaymentStatus.PENDING],
            to_status=PaymentStatus.FAILED,
        )
        if not failed:
            return False, "no pending payment"
        logger.warning("Payment for invoice %s failed", invoice_id)
        return True, None
