"""Initial schema: trips, payments, payouts and their parties.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# Enum values are the Python member names (SQLAlchemy's default mapping)
TRIP_STATUS = sa.Enum(
    "DRAFT",
    "PENDING_PAYMENT",
    "PUBLISHED",
    "CLAIMED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELED",
    "REFUNDED",
    name="tripstatus",
)
PAYMENT_STATUS = sa.Enum("PENDING", "PAID", "FAILED", "REFUNDED", name="paymentstatus")
PAYMENT_METHOD = sa.Enum("PIX", "CARD", "INVOICE", name="paymentmethod")
PAYMENT_PAYER = sa.Enum("CUSTOMER", "SUPPLIER", name="paymentpayer")
PAYOUT_STATUS = sa.Enum("PENDING", "PAID", name="payoutstatus")
DRIVER_STATUS = sa.Enum("PENDING", "ACTIVE", "INACTIVE", "BLOCKED", name="driverstatus")
FLEET_STATUS = sa.Enum("PENDING", "ACTIVE", "INACTIVE", "BLOCKED", name="fleetstatus")


def _timestamps(*, updated: bool = False) -> list[sa.Column]:
    cols = [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        )
    ]
    if updated:
        cols.append(
            sa.Column(
                "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
            )
        )
    return cols


def upgrade() -> None:
    # ── drivers / fleets / suppliers ──────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", DRIVER_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("stripe_account_id", sa.String(64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "fleets",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("company_name", sa.String(200), nullable=False),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("status", FLEET_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("stripe_account_id", sa.String(64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(32), unique=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("stripe_customer_id", sa.String(64), nullable=True),
        *_timestamps(),
    )

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_name", sa.String(120), nullable=False),
        sa.Column("customer_phone", sa.String(40), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("origin_text", sa.String(255), nullable=False),
        sa.Column("destination_text", sa.String(255), nullable=False),
        sa.Column("pickup_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("passengers", sa.Integer, nullable=False, server_default="1"),
        sa.Column("luggage", sa.Integer, nullable=False, server_default="0"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("price_customer", sa.Numeric(12, 2), nullable=False),
        sa.Column("payout_driver", sa.Numeric(12, 2), nullable=False),
        sa.Column("estimated_costs", sa.Numeric(12, 2), nullable=True),
        sa.Column("calculated_margin", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", TRIP_STATUS, nullable=False, server_default="DRAFT"),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("fleet_id", sa.Integer, sa.ForeignKey("fleets.id"), nullable=True),
        sa.Column(
            "supplier_id", sa.Integer, sa.ForeignKey("suppliers.id"), nullable=True
        ),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.Text, nullable=True),
        *_timestamps(updated=True),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_index("idx_trips_supplier", "trips", ["supplier_id"])

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("payer", PAYMENT_PAYER, nullable=False, server_default="CUSTOMER"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", PAYMENT_METHOD, nullable=False, server_default="PIX"),
        sa.Column("gateway", sa.String(32), nullable=False, server_default="stripe"),
        sa.Column("status", PAYMENT_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("gateway_payment_id", sa.String(64), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("trip_id", "payer", name="uq_payments_trip_payer"),
    )
    op.create_index("idx_payments_gateway_id", "payments", ["gateway_payment_id"])

    # ── payouts ───────────────────────────────────────────────────────
    op.create_table(
        "payouts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("fleet_id", sa.Integer, sa.ForeignKey("fleets.id"), nullable=True),
        sa.Column("beneficiary_key", sa.String(40), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", PAYOUT_STATUS, nullable=False, server_default="PENDING"),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("method", sa.String(32), nullable=True),
        sa.Column("transfer_reference", sa.String(64), nullable=True),
        sa.Column("stripe_invoice_id", sa.String(64), nullable=True),
        sa.Column("receipt_url", sa.String(255), nullable=True),
        sa.Column("disbursing_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=True),
        sa.UniqueConstraint(
            "trip_id", "beneficiary_key", name="uq_payouts_trip_beneficiary"
        ),
        sa.CheckConstraint(
            "(driver_id IS NULL) <> (fleet_id IS NULL)",
            name="ck_payouts_single_beneficiary",
        ),
    )
    op.create_index("idx_payouts_status", "payouts", ["status"])
    op.create_index("idx_payouts_invoice", "payouts", ["stripe_invoice_id"])

    # ── webhook_events ────────────────────────────────────────────────
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(64), unique=True, nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("signature_valid", sa.Boolean, nullable=False),
        sa.Column("applied", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("ignore_reason", sa.String(120), nullable=True),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("payouts")
    op.drop_table("payments")
    op.drop_table("trips")
    op.drop_table("suppliers")
    op.drop_table("fleets")
    op.drop_table("drivers")
    for enum_name in (
        "tripstatus",
        "paymentstatus",
        "paymentmethod",
        "paymentpayer",
        "payoutstatus",
        "driverstatus",
        "fleetstatus",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
