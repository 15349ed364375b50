"""
Ledger Types Module

Value model for the per-loan ledger: Loan, Payment and Penalty records and
their enumerations. Records carry no behavior beyond (de)serialization.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass
from typing import Dict, Any, Optional
from enum import Enum

from .storage import StorageRecord
from .exceptions import ValidationError


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"             # Within term, balance remaining
    PAID = "paid"                 # Fully settled, closed to payments
    DELINQUENT = "delinquent"     # Past due or carrying open penalties


class PaymentMethod(Enum):
    """Collection channels"""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    M_PESA = "m_pesa"
    E_MOLA = "e_mola"
    MKESH = "mkesh"
    PLEDGE = "pledge"             # Settled against a pledged asset
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> 'PaymentMethod':
        """Accept a PaymentMethod, its value or its name"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
            for method in cls:
                if normalized in (method.value, method.name.lower()):
                    return method
        raise ValidationError(f"Unknown payment method: {value!r}")


class PenaltyKind(Enum):
    """Penalty types"""
    LATE = "late"


class PenaltyStatus(Enum):
    """Penalty states"""
    PENDING = "pending"
    APPLIED = "applied"
    PAID = "paid"
    CANCELLED = "cancelled"
    SIMULATED = "simulated"       # What-if rows, never part of the ledger

    @property
    def is_open(self) -> bool:
        return self in (PenaltyStatus.PENDING, PenaltyStatus.APPLIED)

    @property
    def counts_toward_debt(self) -> bool:
        return self not in (PenaltyStatus.CANCELLED, PenaltyStatus.SIMULATED)


def _parse_datetime(value) -> datetime:
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def penalty_key(loan_id: str, kind: PenaltyKind, day: date) -> str:
    """Storage key for the single penalty allowed per (loan, kind, calendar day)"""
    return f"PEN-{loan_id}-{kind.value}-{day.strftime('%Y%m%d')}"


@dataclass
class Loan(StorageRecord):
    """Loan with its cached status"""
    client_id: str
    principal: Decimal
    issued_at: datetime
    due_at: datetime
    status: LoanStatus = LoanStatus.ACTIVE
    currency: str = "MZN"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=_parse_datetime(data['created_at']),
            updated_at=_parse_datetime(data['updated_at']),
            client_id=data['client_id'],
            principal=Decimal(data['principal']),
            issued_at=_parse_datetime(data['issued_at']),
            due_at=_parse_datetime(data['due_at']),
            status=LoanStatus(data['status']),
            currency=data.get('currency', 'MZN')
        )


@dataclass
class Payment(StorageRecord):
    """Immutable collection event"""
    loan_id: str
    client_id: str
    amount: Decimal
    paid_at: datetime
    method: PaymentMethod
    reference: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            id=data['id'],
            created_at=_parse_datetime(data['created_at']),
            updated_at=_parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            client_id=data['client_id'],
            amount=Decimal(data['amount']),
            paid_at=_parse_datetime(data['paid_at']),
            method=PaymentMethod(data['method']),
            reference=data.get('reference')
        )


@dataclass
class Penalty(StorageRecord):
    """One day of late penalty on a loan"""
    loan_id: str
    client_id: str
    kind: PenaltyKind
    elapsed_days: int
    amount: Decimal
    applied_at: datetime          # Local midnight of the covered day
    status: PenaltyStatus = PenaltyStatus.PENDING
    notes: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Penalty':
        return cls(
            id=data['id'],
            created_at=_parse_datetime(data['created_at']),
            updated_at=_parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            client_id=data['client_id'],
            kind=PenaltyKind(data['kind']),
            elapsed_days=int(data['elapsed_days']),
            amount=Decimal(data['amount']),
            applied_at=_parse_datetime(data['applied_at']),
            status=PenaltyStatus(data['status']),
            notes=data.get('notes') or ""
        )

    def append_note(self, note: str) -> None:
        self.notes = f"{self.notes} | {note}" if self.notes else note
