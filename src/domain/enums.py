"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PUBLISHED = "PUBLISHED"
    CLAIMED = "CLAIMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    REFUNDED = "REFUNDED"


# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.DRAFT: {TripStatus.PENDING_PAYMENT, TripStatus.CANCELED},
    TripStatus.PENDING_PAYMENT: {TripStatus.PUBLISHED, TripStatus.CANCELED},
    TripStatus.PUBLISHED: {TripStatus.CLAIMED, TripStatus.CANCELED},
    TripStatus.CLAIMED: {TripStatus.IN_PROGRESS, TripStatus.CANCELED},
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED, TripStatus.CANCELED},
    # Refund additionally requires a paid customer payment
    TripStatus.COMPLETED: {TripStatus.REFUNDED},
    TripStatus.CANCELED: {TripStatus.REFUNDED},
    TripStatus.REFUNDED: set(),
}

TERMINAL_STATUSES = frozenset(
    {TripStatus.COMPLETED, TripStatus.CANCELED, TripStatus.REFUNDED}
)


def can_transition(current: TripStatus, target: TripStatus) -> bool:
    return target in TRIP_TRANSITIONS.get(current, set())


def sources_for(target: TripStatus) -> frozenset[TripStatus]:
    """All statuses from which *target* is reachable in one step."""
    return frozenset(
        status for status, nexts in TRIP_TRANSITIONS.items() if target in nexts
    )


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    PIX = "PIX"
    CARD = "CARD"
    INVOICE = "INVOICE"


class PaymentPayer(str, enum.Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class BeneficiaryType(str, enum.Enum):
    DRIVER = "driver"
    FLEET = "fleet"


class DriverStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class FleetStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"
