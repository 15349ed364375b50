"""
Ledger Repository Module

Typed access to the loans, payments and penalties tables on top of a
StorageInterface, with the query shapes the engines need (by loan, by client,
overdue, by loan and day).
"""

from datetime import datetime, date
from typing import List, Optional

from .storage import StorageInterface
from .models import (
    Loan, LoanStatus, Payment, Penalty, PenaltyKind, penalty_key
)


class LedgerRepository:
    """Persistence for Loan, Payment and Penalty records"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.payments_table = "payments"
        self.penalties_table = "penalties"

    # Loans

    def create_loan(self, loan: Loan) -> None:
        self.storage.create(self.loans_table, loan.id, loan.to_dict())

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return Loan.from_dict(data) if data else None

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        if status is None:
            rows = self.storage.load_all(self.loans_table)
        else:
            rows = self.storage.find(self.loans_table, {'status': status.value})
        loans = [Loan.from_dict(row) for row in rows]
        loans.sort(key=lambda l: l.issued_at)
        return loans

    def find_loans_by_client(self, client_id: str) -> List[Loan]:
        rows = self.storage.find(self.loans_table, {'client_id': client_id})
        loans = [Loan.from_dict(row) for row in rows]
        loans.sort(key=lambda l: l.issued_at)
        return loans

    def find_open_loans(self) -> List[Loan]:
        """Loans not yet settled (ACTIVE or DELINQUENT)"""
        return (self.list_loans(LoanStatus.ACTIVE) +
                self.list_loans(LoanStatus.DELINQUENT))

    def find_overdue_loans(self, now: datetime) -> List[Loan]:
        """Open loans whose due date is strictly before now"""
        return [loan for loan in self.find_open_loans() if loan.due_at < now]

    def find_active_loans_due_after(self, now: datetime) -> List[Loan]:
        return [loan for loan in self.list_loans(LoanStatus.ACTIVE) if loan.due_at > now]

    def delete_loan(self, loan_id: str) -> bool:
        return self.storage.delete(self.loans_table, loan_id)

    # Payments

    def create_payment(self, payment: Payment) -> None:
        self.storage.create(self.payments_table, payment.id, payment.to_dict())

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        data = self.storage.load(self.payments_table, payment_id)
        return Payment.from_dict(data) if data else None

    def find_payments_by_loan(self, loan_id: str) -> List[Payment]:
        """Payments for a loan, oldest first"""
        rows = self.storage.find(self.payments_table, {'loan_id': loan_id})
        payments = [Payment.from_dict(row) for row in rows]
        payments.sort(key=lambda p: (p.paid_at, p.created_at))
        return payments

    def find_payments_by_client(self, client_id: str) -> List[Payment]:
        rows = self.storage.find(self.payments_table, {'client_id': client_id})
        payments = [Payment.from_dict(row) for row in rows]
        payments.sort(key=lambda p: (p.paid_at, p.created_at))
        return payments

    # Penalties

    def create_penalty(self, penalty: Penalty) -> None:
        """Create-only insert; raises DuplicateRecordError if the day is already stamped"""
        self.storage.create(self.penalties_table, penalty.id, penalty.to_dict())

    def save_penalty(self, penalty: Penalty) -> None:
        self.storage.save(self.penalties_table, penalty.id, penalty.to_dict())

    def get_penalty(self, penalty_id: str) -> Optional[Penalty]:
        data = self.storage.load(self.penalties_table, penalty_id)
        return Penalty.from_dict(data) if data else None

    def find_penalties_by_loan(self, loan_id: str) -> List[Penalty]:
        """Penalties for a loan, oldest first"""
        rows = self.storage.find(self.penalties_table, {'loan_id': loan_id})
        penalties = [Penalty.from_dict(row) for row in rows]
        penalties.sort(key=lambda p: (p.applied_at, p.elapsed_days))
        return penalties

    def find_penalties_by_client(self, client_id: str) -> List[Penalty]:
        rows = self.storage.find(self.penalties_table, {'client_id': client_id})
        penalties = [Penalty.from_dict(row) for row in rows]
        penalties.sort(key=lambda p: (p.applied_at, p.elapsed_days))
        return penalties

    def list_penalties(self) -> List[Penalty]:
        return [Penalty.from_dict(row) for row in self.storage.load_all(self.penalties_table)]

    def penalty_exists_for_day(self, loan_id: str, kind: PenaltyKind, day: date) -> bool:
        return self.storage.exists(self.penalties_table, penalty_key(loan_id, kind, day))

    def has_dependents(self, loan_id: str) -> bool:
        """True when any payment or penalty references the loan"""
        return bool(self.storage.find(self.payments_table, {'loan_id': loan_id}) or
                    self.storage.find(self.penalties_table, {'loan_id': loan_id}))
