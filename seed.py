"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 4 drivers (3 verified, one with a connected account)
  - 2 fleets
  - 2 suppliers
  - 6 trips covering DRAFT, PENDING_PAYMENT, PUBLISHED, CLAIMED, COMPLETED
    and CANCELED, with their payments and payouts
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import text

from src.domain.enums import (
    BeneficiaryType,
    DriverStatus,
    FleetStatus,
    PaymentMethod,
    PaymentStatus,
    TripStatus,
)
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import (
    DriverModel,
    FleetModel,
    PaymentModel,
    SupplierModel,
)
from src.infrastructure.repositories import PayoutRepository, TripRepository

NOW = datetime.now(timezone.utc)

DRIVERS = [
    {"name": "Lucas Almeida", "email": "lucas@example.com", "verified": True,
     "status": DriverStatus.ACTIVE, "stripe_account_id": "acct_seed_lucas"},
    {"name": "Mariana Costa", "email": "mariana@example.com", "verified": True,
     "status": DriverStatus.ACTIVE, "stripe_account_id": None},
    {"name": "Rafael Souza", "email": "rafael@example.com", "verified": True,
     "status": DriverStatus.ACTIVE, "stripe_account_id": None},
    {"name": "Beatriz Lima", "email": "beatriz@example.com", "verified": False,
     "status": DriverStatus.PENDING, "stripe_account_id": None},
]

FLEETS = [
    {"company_name": "Rota Executiva Ltda", "contact_email": "ops@rotaexec.example.com",
     "status": FleetStatus.ACTIVE},
    {"company_name": "TransAeroporto", "contact_email": None,
     "status": FleetStatus.PENDING},
]

SUPPLIERS = [
    {"name": "Hotel Atlântico", "code": "HATL", "email": "finance@atlantico.example.com"},
    {"name": "Agência Viaje Bem", "code": "AVB", "email": None},
]


def _trip(origin, destination, price, payout, **extra):
    return {
        "customer_name": extra.pop("customer_name", "Ana Ribeiro"),
        "customer_phone": "+55 11 90000-0000",
        "origin_text": origin,
        "destination_text": destination,
        "pickup_datetime": NOW + timedelta(days=1),
        "price_customer": Decimal(price),
        "payout_driver": Decimal(payout),
        **extra,
    }


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM drivers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Parties ───────────────────────────────────────────────────
        drivers = [DriverModel(**d) for d in DRIVERS]
        fleets = [FleetModel(**f) for f in FLEETS]
        suppliers = [SupplierModel(**s) for s in SUPPLIERS]
        session.add_all([*drivers, *fleets, *suppliers])
        await session.flush()
        print(f"  Created {len(drivers)} drivers, {len(fleets)} fleets, "
              f"{len(suppliers)} suppliers")

        # ── Trips ─────────────────────────────────────────────────────
        trips = TripRepository(session)
        draft = await trips.create(**_trip("GRU Terminal 2", "Av. Paulista, 1000", "180.00", "120.00"))
        pending = await trips.create(**_trip(
            "GRU Terminal 3", "Moema", "220.00", "150.00",
            status=TripStatus.PENDING_PAYMENT,
        ))
        published = await trips.create(**_trip(
            "Congonhas", "Alphaville", "300.00", "210.00",
            estimated_costs=Decimal("25.00"), status=TripStatus.PUBLISHED,
        ))
        claimed = await trips.create(**_trip(
            "Hotel Atlântico", "GRU Terminal 2", "250.00", "170.00",
            status=TripStatus.CLAIMED, driver_id=drivers[1].id, claimed_at=NOW,
            supplier_id=suppliers[0].id,
        ))
        completed = await trips.create(**_trip(
            "GRU Terminal 2", "Hotel Atlântico", "500.00", "350.00",
            status=TripStatus.COMPLETED, driver_id=drivers[0].id,
            claimed_at=NOW - timedelta(hours=3), started_at=NOW - timedelta(hours=2),
            completed_at=NOW - timedelta(hours=1),
        ))
        canceled = await trips.create(**_trip(
            "Viracopos", "Campinas Centro", "150.00", "100.00",
            status=TripStatus.CANCELED, canceled_at=NOW,
            cancel_reason="customer no-show",
        ))
        print("  Created 6 trips")

        # ── Payments ──────────────────────────────────────────────────
        session.add_all([
            PaymentModel(trip_id=pending.id, amount=pending.price_customer,
                         method=PaymentMethod.PIX, status=PaymentStatus.PENDING),
            PaymentModel(trip_id=published.id, amount=published.price_customer,
                         method=PaymentMethod.PIX, status=PaymentStatus.PAID, paid_at=NOW),
            PaymentModel(trip_id=claimed.id, amount=claimed.price_customer,
                         method=PaymentMethod.CARD, status=PaymentStatus.PAID, paid_at=NOW),
            PaymentModel(trip_id=completed.id, amount=completed.price_customer,
                         method=PaymentMethod.PIX, status=PaymentStatus.PAID, paid_at=NOW),
            PaymentModel(trip_id=canceled.id, amount=canceled.price_customer,
                         method=PaymentMethod.PIX, status=PaymentStatus.PAID, paid_at=NOW),
        ])
        await session.flush()
        print("  Created 5 payments")

        # ── Payouts ───────────────────────────────────────────────────
        await PayoutRepository(session).create_idempotent(
            trip_id=completed.id,
            kind=BeneficiaryType.DRIVER,
            beneficiary_id=drivers[0].id,
            amount=completed.payout_driver,
        )
        print("  Created 1 pending payout")

        await session.commit()
        print(f"\nSeed complete! (draft trip id: {draft.id})")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
