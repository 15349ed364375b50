"""
Loan Status Resolver

Pure decision table mapping ledger state to a loan status. Evaluated after
every ledger mutation; the result is cached on the loan record.
"""

from decimal import Decimal
from datetime import datetime

from .models import LoanStatus

DEFAULT_TOLERANCE = Decimal('0.01')


def resolve_loan_status(
    balance: Decimal,
    open_penalty_count: int,
    due_at: datetime,
    now: datetime,
    tolerance: Decimal = DEFAULT_TOLERANCE
) -> LoanStatus:
    """
    Derive the status of a loan.

    Args:
        balance: Outstanding balance (total due minus total paid), unfloored
        open_penalty_count: Number of PENDING or APPLIED penalties
        due_at: Loan due timestamp
        now: Current timestamp
        tolerance: Balance at or below this counts as settled

    Returns:
        PAID when settled with no open penalties, DELINQUENT when past due or
        penalized, ACTIVE otherwise
    """
    if balance <= tolerance and open_penalty_count == 0:
        return LoanStatus.PAID
    if due_at < now or open_penalty_count > 0:
        return LoanStatus.DELINQUENT
    return LoanStatus.ACTIVE
