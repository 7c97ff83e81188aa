"""
Background Invoice Retry Worker
===============================

Runs every ``INVOICE_RETRY_INTERVAL_SECONDS`` (0 = disabled, the default).

Completion never fails because supplier invoicing did: the trip stays
COMPLETED and the caller gets a warning.  This worker picks up such trips
(COMPLETED, with a supplier, without a supplier payment) and re-runs the
invoicing step for each.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* Gateway calls carry idempotency keys derived from the trip id, so a
  sweep that overlaps a manual retry does not create a second invoice.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.gateway import GatewayClient, StripeGatewayClient
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import TripRepository
from src.services.settlement import SettlementOrchestrator

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_invoice_retry_loop() -> None:
    global _task, _stop_event
    if settings.invoice_retry_interval_seconds <= 0:
        logger.info("Invoice retry worker disabled")
        return
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Invoice retry worker started (interval=%ds)",
        settings.invoice_retry_interval_seconds,
    )


async def stop_invoice_retry_loop() -> None:
    global _task, _stop_event
    if _task is None:
        return
    if _stop_event:
        _stop_event.set()
    _task.cancel()
    try:
        await _task
    except asyncio.CancelledError:
        pass
    _task = _stop_event = None
    logger.info("Invoice retry worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_invoice_retry_cycle()
        except Exception:
            logger.exception("Unhandled error in invoice retry cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.invoice_retry_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_invoice_retry_cycle(
    gateway: Optional[GatewayClient] = None, batch_size: int = 50
) -> int:
    """Execute one sweep.  Returns the number of trips invoiced."""
    redis = await get_redis()
    lock = DistributedLock(redis, "invoice_retry", ttl_seconds=300)

    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping sweep")
        return 0

    gateway = gateway or StripeGatewayClient()
    invoiced = 0
    try:
        async with async_session_factory() as session:
            trip_ids = await TripRepository(session).get_completed_awaiting_invoice(
                limit=batch_size
            )
            await session.commit()

            settlement = SettlementOrchestrator(session, gateway)
            for trip_id in trip_ids:
                result = await settlement.retry_invoicing(trip_id)
                if result.success:
                    invoiced += 1
                else:
                    logger.warning(
                        "Invoice retry for trip %s failed: %s",
                        trip_id, result.error.message,
                    )
                    await session.rollback()

        if invoiced:
            logger.info("Invoice retry sweep: %d trips invoiced", invoiced)
    except Exception:
        logger.exception("Error in invoice retry sweep")
    finally:
        await lock.release()

    return invoiced
