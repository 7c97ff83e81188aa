"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``drivers``         -- drivers with verification flag and Connect account
* ``fleets``          -- fleet companies with Connect account
* ``suppliers``       -- third parties invoiced for trips
* ``trips``           -- transport bookings (the state machine)
* ``payments``        -- money collected from the customer or a supplier
* ``payouts``         -- money owed to a driver or fleet
* ``webhook_events``  -- verified gateway events, one row per event id

Constraints
-----------
* ``uq_payments_trip_payer``: one active payment per (trip, payer).
* ``uq_payouts_trip_beneficiary``: one payout per (trip, beneficiary);
  this is what makes repeated completion idempotent.
* ``ck_payouts_single_beneficiary``: exactly one of driver_id / fleet_id.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base
from src.domain.enums import (
    DriverStatus,
    FleetStatus,
    PaymentMethod,
    PaymentPayer,
    PaymentStatus,
    PayoutStatus,
    TripStatus,
)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    status = Column(Enum(DriverStatus), default=DriverStatus.PENDING, nullable=False)
    stripe_account_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FleetModel(Base):
    __tablename__ = "fleets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_name = Column(String(200), nullable=False)
    contact_email = Column(String(255), nullable=True)
    status = Column(Enum(FleetStatus), default=FleetStatus.PENDING, nullable=False)
    stripe_account_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SupplierModel(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    code = Column(String(32), unique=True, nullable=False)
    email = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)

    customer_name = Column(String(120), nullable=False)
    customer_phone = Column(String(40), nullable=False)
    customer_email = Column(String(255), nullable=True)
    origin_text = Column(String(255), nullable=False)
    destination_text = Column(String(255), nullable=False)
    pickup_datetime = Column(DateTime(timezone=True), nullable=False)
    passengers = Column(Integer, default=1, nullable=False)
    luggage = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)

    price_customer = Column(Numeric(12, 2), nullable=False)
    payout_driver = Column(Numeric(12, 2), nullable=False)
    estimated_costs = Column(Numeric(12, 2), nullable=True)
    calculated_margin = Column(Numeric(12, 2), nullable=True)

    status = Column(Enum(TripStatus), default=TripStatus.DRAFT, nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    fleet_id = Column(Integer, ForeignKey("fleets.id"), nullable=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)

    claimed_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_trips_status", "status"),
        Index("idx_trips_driver", "driver_id"),
        Index("idx_trips_supplier", "supplier_id"),
    )


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    payer = Column(Enum(PaymentPayer), default=PaymentPayer.CUSTOMER, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(Enum(PaymentMethod), default=PaymentMethod.PIX, nullable=False)
    gateway = Column(String(32), default="stripe", nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    gateway_payment_id = Column(String(64), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("trip_id", "payer", name="uq_payments_trip_payer"),
        Index("idx_payments_gateway_id", "gateway_payment_id"),
    )


class PayoutModel(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    fleet_id = Column(Integer, ForeignKey("fleets.id"), nullable=True)
    beneficiary_key = Column(String(40), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(PayoutStatus), default=PayoutStatus.PENDING, nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    method = Column(String(32), nullable=True)
    transfer_reference = Column(String(64), nullable=True)
    stripe_invoice_id = Column(String(64), nullable=True)
    receipt_url = Column(String(255), nullable=True)
    # Set while a transfer is in flight; invoice reconciliation skips the row
    disbursing_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "trip_id", "beneficiary_key", name="uq_payouts_trip_beneficiary"
        ),
        CheckConstraint(
            "(driver_id IS NULL) <> (fleet_id IS NULL)",
            name="single_beneficiary",
        ),
        Index("idx_payouts_status", "status"),
        Index("idx_payouts_invoice", "stripe_invoice_id"),
    )


class WebhookEventModel(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(64), unique=True, nullable=False)
    event_type = Column(String(64), nullable=False)
    signature_valid = Column(Boolean, nullable=False)
    applied = Column(Boolean, default=False, nullable=False)
    ignore_reason = Column(String(120), nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
