"""
Money helpers
=============

Amounts are stored as ``Decimal`` with two places; the gateway speaks
integer minor units (centavos / cents).

Margin
------
calculated_margin = price_customer - payout_driver - estimated_costs
(``estimated_costs`` counts as zero when absent)
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

Amount = Union[Decimal, int, float, str]

_CENT = Decimal("0.01")


def to_decimal(value: Amount) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value: Amount) -> int:
    return int((to_decimal(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def calculate_margin(
    price_customer: Amount,
    payout_driver: Amount,
    estimated_costs: Optional[Amount] = None,
) -> Decimal:
    costs = to_decimal(estimated_costs) if estimated_costs is not None else Decimal("0")
    return to_decimal(price_customer) - to_decimal(payout_driver) - costs
