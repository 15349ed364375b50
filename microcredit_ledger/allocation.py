"""
Payment Waterfall Module

Fixed-priority allocation of funds across debt categories:
penalties, then profit, then principal. Pure Decimal arithmetic, no I/O.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .currency import ZERO, money_str

# Category order of the waterfall
ALLOCATION_ORDER: Tuple[str, ...] = ("penalties", "profit", "principal")


@dataclass(frozen=True)
class Allocation:
    """Split of an amount across the waterfall categories"""
    penalties: Decimal = ZERO
    profit: Decimal = ZERO
    principal: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.penalties + self.profit + self.principal

    def __sub__(self, other: 'Allocation') -> 'Allocation':
        return Allocation(
            penalties=self.penalties - other.penalties,
            profit=self.profit - other.profit,
            principal=self.principal - other.principal
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "penalties": money_str(self.penalties),
            "profit": money_str(self.profit),
            "principal": money_str(self.principal),
            "total": money_str(self.total)
        }


def allocate(funds: Decimal, penalties_due: Decimal, profit_due: Decimal,
             principal_due: Decimal) -> Allocation:
    """
    Allocate funds across categories in waterfall order.

    Each stage takes min(remaining funds, category due). Funds beyond the
    total due are left unallocated.

    Args:
        funds: Amount available (cumulative paid to date)
        penalties_due: Total penalties owed
        profit_due: Total profit margin owed
        principal_due: Principal owed

    Returns:
        Allocation per category
    """
    remaining = max(funds, ZERO)
    allocated: Dict[str, Decimal] = {}
    dues = {"penalties": penalties_due, "profit": profit_due, "principal": principal_due}

    for category in ALLOCATION_ORDER:
        portion = min(remaining, max(dues[category], ZERO))
        allocated[category] = portion
        remaining -= portion

    return Allocation(**allocated)


def allocate_increment(paid_before: Decimal, amount: Decimal, penalties_due: Decimal,
                       profit_due: Decimal, principal_due: Decimal) -> Tuple[Allocation, Allocation]:
    """
    Split a new payment by running the waterfall over cumulative totals.

    Returns:
        (allocation of this payment, cumulative allocation after it)
    """
    before = allocate(paid_before, penalties_due, profit_due, principal_due)
    after = allocate(paid_before + amount, penalties_due, profit_due, principal_due)
    return after - before, after


def liquidation_candidates(open_amounts: List[Tuple[str, Decimal]], available: Decimal) -> List[str]:
    """
    Penalties fully covered by the available penalty allocation.

    Walks (id, amount) pairs oldest first; each is covered only if the
    remaining allocation pays it in full. Stops at the first uncovered one.
    """
    covered = []
    remaining = available
    for penalty_id, amount in open_amounts:
        if remaining < amount:
            break
        covered.append(penalty_id)
        remaining -= amount
    return covered
