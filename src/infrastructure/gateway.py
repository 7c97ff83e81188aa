"""
Gateway client -- the only code that talks to the payment provider.

``GatewayClient`` is the narrow interface the services depend on;
``StripeGatewayClient`` implements it on top of the ``stripe`` SDK.

The SDK is synchronous, so every call runs in a worker thread and is
bounded by ``settings.gateway_timeout_seconds``.  A timeout is reported as
``ExternalServiceError(outcome_unknown=True)``: the provider may or may not
have acted, so callers must retry with the same idempotency key rather than
assume failure.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import stripe

from src.config import settings
from src.domain.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class FinalizedInvoice:
    id: str
    hosted_url: Optional[str] = None


class GatewayClient(Protocol):
    async def create_customer(
        self, email: Optional[str], name: str, metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str: ...

    async def create_invoice(
        self, customer_id: str, due_days: int, metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str: ...

    async def add_invoice_line(
        self, customer_id: str, invoice_id: str, amount_minor_units: int,
        currency: str, description: str,
        idempotency_key: Optional[str] = None,
    ) -> None: ...

    async def finalize_and_send(self, invoice_id: str) -> FinalizedInvoice: ...

    async def create_connected_account(
        self, country: str, email: Optional[str], business_type: str,
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str: ...

    async def create_account_onboarding_link(
        self, account_id: str, refresh_url: str, return_url: str
    ) -> str: ...

    async def create_transfer(
        self, amount_minor_units: int, currency: str, destination_account: str,
        metadata: dict[str, str], idempotency_key: str,
    ) -> str: ...

    def verify_webhook_signature(
        self, payload: bytes, signature: Optional[str], secret: str
    ) -> dict[str, Any]: ...


class StripeGatewayClient:
    """``GatewayClient`` backed by the Stripe API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.gateway_timeout_seconds
        )
        stripe.max_network_retries = settings.stripe_max_network_retries

    async def _call(self, operation: str, fn: Callable[..., Any], **params: Any) -> Any:
        if not self.api_key:
            raise ExternalServiceError("Stripe is not configured")
        call = functools.partial(fn, api_key=self.api_key, **params)
        try:
            return await asyncio.wait_for(asyncio.to_thread(call), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Stripe %s timed out after %.1fs", operation, self.timeout)
            raise ExternalServiceError(
                f"{operation} timed out", outcome_unknown=True
            ) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", operation, exc)
            raise ExternalServiceError(f"{operation} failed: {exc}") from exc

    @staticmethod
    def _with_key(params: dict[str, Any], idempotency_key: Optional[str]) -> dict[str, Any]:
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return params

    async def create_customer(self, email, name, metadata, idempotency_key=None) -> str:
        params: dict[str, Any] = {"name": name, "metadata": metadata}
        if email:
            params["email"] = email
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            **self._with_key(params, idempotency_key),
        )
        return customer.id

    async def create_invoice(self, customer_id, due_days, metadata, idempotency_key=None) -> str:
        invoice = await self._call(
            "create_invoice",
            stripe.Invoice.create,
            **self._with_key(
                {
                    "customer": customer_id,
                    "collection_method": "send_invoice",
                    "days_until_due": due_days,
                    "metadata": metadata,
                },
                idempotency_key,
            ),
        )
        return invoice.id

    async def add_invoice_line(
        self, customer_id, invoice_id, amount_minor_units, currency, description,
        idempotency_key=None,
    ) -> None:
        await self._call(
            "add_invoice_line",
            stripe.InvoiceItem.create,
            **self._with_key(
                {
                    "customer": customer_id,
                    "invoice": invoice_id,
                    "amount": amount_minor_units,
                    "currency": currency,
                    "description": description,
                },
                idempotency_key,
            ),
        )

    async def finalize_and_send(self, invoice_id: str) -> FinalizedInvoice:
        finalized = await self._call(
            "finalize_invoice", stripe.Invoice.finalize_invoice, invoice=invoice_id
        )
        await self._call("send_invoice", stripe.Invoice.send_invoice, invoice=invoice_id)
        return FinalizedInvoice(
            id=finalized.id,
            hosted_url=getattr(finalized, "hosted_invoice_url", None),
        )

    async def create_connected_account(
        self, country, email, business_type, metadata, idempotency_key=None
    ) -> str:
        params: dict[str, Any] = {
            "type": "express",
            "country": country,
            "capabilities": {"transfers": {"requested": True}},
            "business_type": business_type,
            "metadata": metadata,
        }
        if email:
            params["email"] = email
        account = await self._call(
            "create_connected_account",
            stripe.Account.create,
            **self._with_key(params, idempotency_key),
        )
        return account.id

    async def create_account_onboarding_link(self, account_id, refresh_url, return_url) -> str:
        link = await self._call(
            "create_account_link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return link.url

    async def create_transfer(
        self, amount_minor_units, currency, destination_account, metadata, idempotency_key
    ) -> str:
        transfer = await self._call(
            "create_transfer",
            stripe.Transfer.create,
            amount=amount_minor_units,
            currency=currency,
            destination=destination_account,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return transfer.id

    def verify_webhook_signature(
        self, payload: bytes, signature: Optional[str], secret: str
    ) -> dict[str, Any]:
        """Authenticate *payload* and return the decoded event."""
        if not signature:
            raise ValidationError("missing Stripe-Signature header")
        if not secret:
            raise ValidationError("webhook signing secret is not configured")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, secret, tolerance=SIGNATURE_TOLERANCE_SECONDS
            )
        except (UnicodeDecodeError, stripe.SignatureVerificationError) as exc:
            raise ValidationError(f"invalid webhook signature: {exc}") from exc
        return parse_event(payload)


def parse_event(payload: bytes) -> dict[str, Any]:
    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise ValidationError(f"malformed webhook payload: {exc}") from exc
    if not isinstance(event, dict) or "type" not in event:
        raise ValidationError("malformed webhook payload: missing event type")
    return event
