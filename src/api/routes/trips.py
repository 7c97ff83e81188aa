"""
Trip endpoints
==============

POST /api/v1/trips                      -- create a DRAFT trip (operator)
GET  /api/v1/trips/{trip_id}            -- trip with its payments and payouts
POST /api/v1/trips/{trip_id}/claim      -- verified driver claims a PUBLISHED trip
POST /api/v1/trips/{trip_id}/start      -- assigned driver starts the ride
POST /api/v1/trips/{trip_id}/complete   -- assigned driver completes; settles
POST /api/v1/trips/{trip_id}/cancel     -- cancel any non-terminal trip
POST /api/v1/trips/{trip_id}/refund     -- refund a paid COMPLETED / CANCELED trip
POST /api/v1/trips/{trip_id}/invoice/retry -- re-run supplier invoicing alone
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_gateway
from src.api.middleware import RATE_LIMIT, limiter
from src.api.responses import to_response
from src.api.schemas import (
    CancelRequest,
    DriverActionRequest,
    PaymentResponse,
    PayoutResponse,
    TripCreateRequest,
    TripDetailResponse,
    TripResponse,
)
from src.domain.enums import BeneficiaryType
from src.infrastructure.gateway import GatewayClient
from src.infrastructure.repositories import (
    BeneficiaryRepository,
    PaymentRepository,
    PayoutRepository,
    SupplierRepository,
    TripRepository,
)
from src.services.settlement import SettlementOrchestrator
from src.services.transitions import TripTransitionService

router = APIRouter(prefix="/trips", tags=["trips"])


def _transitions(db: AsyncSession, gateway: GatewayClient) -> TripTransitionService:
    return TripTransitionService(db, SettlementOrchestrator(db, gateway))


@router.post(
    "",
    status_code=201,
    response_model=TripResponse,
    summary="Create a DRAFT trip",
)
@limiter.limit(RATE_LIMIT)
async def create_trip(
    request: Request,
    body: TripCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    if body.fleet_id is not None:
        if await BeneficiaryRepository(db).get(BeneficiaryType.FLEET, body.fleet_id) is None:
            raise HTTPException(status_code=404, detail="Fleet not found")
    if body.supplier_id is not None:
        if await SupplierRepository(db).get_by_id(body.supplier_id) is None:
            raise HTTPException(status_code=404, detail="Supplier not found")

    trip = await TripRepository(db).create(**body.model_dump())
    return trip


@router.get(
    "/{trip_id}",
    response_model=TripDetailResponse,
    summary="Get a trip with its payments and payouts",
)
@limiter.limit(RATE_LIMIT)
async def get_trip(
    request: Request,
    trip_id: int,
    db: AsyncSession = Depends(get_db),
):
    trip = await TripRepository(db).get_by_id(trip_id, fresh=True)
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    payments = await PaymentRepository(db).list_for_trip(trip_id)
    payouts = await PayoutRepository(db).get_for_trip(trip_id)
    return TripDetailResponse(
        **TripResponse.model_validate(trip).model_dump(),
        payments=[PaymentResponse.model_validate(p) for p in payments],
        payouts=[PayoutResponse.model_validate(p) for p in payouts],
    )


# ── Driver actions ────────────────────────────────────────────────────


@router.post(
    "/{trip_id}/claim",
    summary="Claim a published trip",
    description=(
        "Exactly one of several concurrent claims succeeds; the others get "
        "409 with a message saying the trip was already accepted."
    ),
)
@limiter.limit(RATE_LIMIT)
async def claim_trip(
    request: Request,
    trip_id: int,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    return to_response(await _transitions(db, gateway).claim(trip_id, body.driver_id))


@router.post("/{trip_id}/start", summary="Start a claimed trip")
@limiter.limit(RATE_LIMIT)
async def start_trip(
    request: Request,
    trip_id: int,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    return to_response(await _transitions(db, gateway).start(trip_id, body.driver_id))


@router.post(
    "/{trip_id}/complete",
    summary="Complete a trip and settle it",
    description=(
        "Creates the pending payout and, for supplier trips, sends the "
        "supplier invoice.  An invoicing failure is reported under "
        "``warnings``; the trip stays COMPLETED."
    ),
)
@limiter.limit(RATE_LIMIT)
async def complete_trip(
    request: Request,
    trip_id: int,
    body: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    return to_response(
        await _transitions(db, gateway).complete(trip_id, body.driver_id)
    )


# ── Operator actions ──────────────────────────────────────────────────


@router.post("/{trip_id}/cancel", summary="Cancel a trip")
@limiter.limit(RATE_LIMIT)
async def cancel_trip(
    request: Request,
    trip_id: int,
    body: CancelRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    return to_response(await _transitions(db, gateway).cancel(trip_id, body.reason))


@router.post("/{trip_id}/refund", summary="Refund a paid trip")
@limiter.limit(RATE_LIMIT)
async def refund_trip(
    request: Request,
    trip_id: int,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    return to_response(await _transitions(db, gateway).refund(trip_id))


@router.post(
    "/{trip_id}/invoice/retry",
    summary="Retry supplier invoicing for a completed trip",
)
@limiter.limit(RATE_LIMIT)
async def retry_invoice(
    request: Request,
    trip_id: int,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    settlement = SettlementOrchestrator(db, gateway)
    return to_response(await settlement.retry_invoicing(trip_id))
