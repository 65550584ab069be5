"""
Loyalty tiers derived from a client's total spend.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List


@dataclass(frozen=True)
class Tier:
    level: int
    name: str
    money_required: Decimal
    discount_percent: int


TIERS: List[Tier] = [
    Tier(level=0, name="Member", money_required=Decimal("0"), discount_percent=0),
    Tier(level=1, name="Bronze", money_required=Decimal("10000000"), discount_percent=5),
    Tier(level=2, name="Silver", money_required=Decimal("30000000"), discount_percent=10),
    Tier(level=3, name="Diamond", money_required=Decimal("50000000"), discount_percent=15),
]


def tier_for_spend(total_spent: Decimal) -> Tier:
    """Return the highest tier whose spend threshold has been reached."""
    current = TIERS[0]
    for tier in TIERS:
        if total_spent >= tier.money_required:
            current = tier
    return current
