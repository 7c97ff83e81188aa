"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from src.domain.enums import (
    PaymentMethod,
    PaymentPayer,
    PaymentStatus,
    PayoutStatus,
    TripStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class TripCreateRequest(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=120)
    customer_phone: str = Field(..., min_length=1, max_length=40)
    customer_email: Optional[str] = Field(None, max_length=255)
    origin_text: str = Field(..., min_length=1, max_length=255)
    destination_text: str = Field(..., min_length=1, max_length=255)
    pickup_datetime: datetime
    passengers: int = Field(1, ge=1, le=60)
    luggage: int = Field(0, ge=0, le=100)
    notes: Optional[str] = None
    price_customer: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payout_driver: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    estimated_costs: Optional[Decimal] = Field(
        None, ge=0, max_digits=12, decimal_places=2
    )
    fleet_id: Optional[int] = None
    supplier_id: Optional[int] = None


class DriverActionRequest(BaseModel):
    """Body of claim / start / complete: the acting driver."""

    driver_id: int


class CancelRequest(BaseModel):
    reason: str = Field(..., max_length=500)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cancel reason is required")
        return value.strip()


class PaymentInitiateRequest(BaseModel):
    method: PaymentMethod = PaymentMethod.PIX


class OnboardRequest(BaseModel):
    return_base_url: str = Field(
        ...,
        description="Base URL of the portal the provider redirects back to.",
    )


# ── Responses ─────────────────────────────────────────────────────────


class PaymentResponse(BaseModel):
    id: int
    trip_id: int
    payer: PaymentPayer
    amount: float
    method: PaymentMethod
    gateway: str
    status: PaymentStatus
    gateway_payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PayoutResponse(BaseModel):
    id: int
    trip_id: int
    driver_id: Optional[int] = None
    fleet_id: Optional[int] = None
    amount: float
    status: PayoutStatus
    payment_date: Optional[datetime] = None
    method: Optional[str] = None
    transfer_reference: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    receipt_url: Optional[str] = None

    model_config = {"from_attributes": True}


class TripResponse(BaseModel):
    id: int
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    origin_text: str
    destination_text: str
    pickup_datetime: datetime
    passengers: int
    luggage: int
    notes: Optional[str] = None
    price_customer: float
    payout_driver: float
    estimated_costs: Optional[float] = None
    calculated_margin: Optional[float] = None
    status: TripStatus
    driver_id: Optional[int] = None
    fleet_id: Optional[int] = None
    supplier_id: Optional[int] = None
    claimed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TripDetailResponse(TripResponse):
    payments: list[PaymentResponse] = []
    payouts: list[PayoutResponse] = []


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "ok"
    redis: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
