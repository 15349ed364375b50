"""
Payment Allocation Module

Records collection events against a loan and splits them across the debt
categories with a cumulative waterfall (penalties, profit, principal).
Penalty liquidation, the payment row and the loan status are written in one
storage transaction; the client is notified once after commit.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Union
import logging
import uuid

from .allocation import Allocation, allocate_increment, liquidation_candidates
from .audit import AuditTrail, AuditEventType
from .clock import Clock
from .currency import ZERO, Currency, require_positive, format_money, money_str
from .exceptions import NotFoundError, ConflictError, ValidationError
from .logging_config import log_action
from .models import Loan, LoanStatus, Payment, PaymentMethod, Penalty, PenaltyStatus
from .notifications import Notifier, NotificationKind, NotificationResult
from .repository import LedgerRepository
from .status import resolve_loan_status, DEFAULT_TOLERANCE

logger = logging.getLogger("microcredit.payments")

DEFAULT_PROFIT_RATE = Decimal('0.20')


@dataclass
class PenaltyPosition:
    """Penalty side of a receipt"""
    count: int
    max_elapsed_days: int
    total: Decimal
    liquidated: Decimal
    pending: Decimal
    liquidated_ids: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "max_elapsed_days": self.max_elapsed_days,
            "total": money_str(self.total),
            "liquidated": money_str(self.liquidated),
            "pending": money_str(self.pending),
            "liquidated_ids": list(self.liquidated_ids)
        }


@dataclass
class FinancialBreakdown:
    """Loan totals after a payment"""
    principal: Decimal
    profit: Decimal
    penalties: Decimal
    total_paid: Decimal
    balance: Decimal           # Unfloored; negative when overpaid

    @property
    def loan_total(self) -> Decimal:
        return self.principal + self.profit

    @property
    def total_due(self) -> Decimal:
        return self.loan_total + self.penalties

    @property
    def display_balance(self) -> Decimal:
        return max(self.balance, ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principal": money_str(self.principal),
            "profit": money_str(self.profit),
            "loan_total": money_str(self.loan_total),
            "penalties": money_str(self.penalties),
            "total_due": money_str(self.total_due),
            "total_paid": money_str(self.total_paid),
            "balance": money_str(self.display_balance)
        }


@dataclass
class PaymentReceipt:
    """Structured outcome of record_payment"""
    payment: Payment
    loan_status: LoanStatus
    penalties: PenaltyPosition
    financials: FinancialBreakdown
    allocation: Allocation              # This payment only
    cumulative_allocation: Allocation   # All payments to date
    notification: Optional[NotificationResult] = None
    currency: str = "MZN"

    @property
    def settled(self) -> bool:
        return self.loan_status == LoanStatus.PAID

    @property
    def unallocated(self) -> Decimal:
        return self.payment.amount - self.allocation.total

    @property
    def outstanding(self) -> Allocation:
        return Allocation(
            penalties=max(self.financials.penalties - self.cumulative_allocation.penalties, ZERO),
            profit=max(self.financials.profit - self.cumulative_allocation.profit, ZERO),
            principal=max(self.financials.principal - self.cumulative_allocation.principal, ZERO)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": "Loan fully settled." if self.settled else "Payment processed.",
            "currency": self.currency,
            "payment": payment_to_dict(self.payment),
            "loan": {
                "id": self.payment.loan_id,
                "client_id": self.payment.client_id,
                "status": self.loan_status.value
            },
            "penalties": self.penalties.to_dict(),
            "financials": self.financials.to_dict(),
            "allocation": self.allocation.to_dict(),
            "cumulative_allocation": self.cumulative_allocation.to_dict(),
            "outstanding": self.outstanding.to_dict(),
            "unallocated": money_str(self.unallocated),
            "notification_delivered": self.notification.delivered if self.notification else None
        }


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "loan_id": payment.loan_id,
        "client_id": payment.client_id,
        "amount": money_str(payment.amount),
        "paid_at": payment.paid_at.isoformat(),
        "method": payment.method.value,
        "reference": payment.reference
    }


class PaymentAllocationEngine:
    """Applies payments to loans"""

    def __init__(
        self,
        repository: LedgerRepository,
        audit_trail: AuditTrail,
        notifier: Notifier,
        clock: Clock,
        profit_rate: Decimal = DEFAULT_PROFIT_RATE,
        tolerance: Decimal = DEFAULT_TOLERANCE
    ):
        self.repository = repository
        self.audit = audit_trail
        self.notifier = notifier
        self.clock = clock
        self.profit_rate = profit_rate
        self.tolerance = tolerance

    def record_payment(
        self,
        loan_id: str,
        amount: Union[Decimal, int, str],
        method: Union[PaymentMethod, str],
        reference: Optional[str] = None,
        client_id: Optional[str] = None
    ) -> PaymentReceipt:
        """
        Record a payment and allocate it through the waterfall.

        Args:
            loan_id: Loan being paid
            amount: Positive amount (Decimal, int or decimal string)
            method: PaymentMethod or its value
            reference: Optional external reference (receipt number, M-Pesa code)
            client_id: Optional payer; must own the loan when given

        Returns:
            PaymentReceipt with allocation and balances

        Raises:
            ValidationError: Bad amount, unknown method or wrong client
            NotFoundError: Loan does not exist
            ConflictError: Loan is already PAID
        """
        amount = require_positive(amount)
        method = PaymentMethod.parse(method)

        with self.repository.storage.atomic():
            loan = self.repository.get_loan(loan_id)
            if loan is None:
                raise NotFoundError(f"Loan {loan_id} not found")
            if loan.status == LoanStatus.PAID:
                raise ConflictError(f"Loan {loan_id} is already paid")
            if client_id is not None and client_id != loan.client_id:
                raise ValidationError(f"Client {client_id} does not own loan {loan_id}")

            receipt = self._apply(loan, amount, method, reference)

        log_action(
            logger, "info", f"Payment {receipt.payment.id} recorded on loan {loan.id}",
            action="record_payment", resource=f"loan:{loan.id}",
            extra={"amount": str(amount), "status": receipt.loan_status.value}
        )

        if receipt.settled:
            message = f"Loan {loan.id} fully settled. Thank you!"
        else:
            currency = Currency.from_code(loan.currency)
            message = (
                f"We received your payment of {format_money(amount, currency)}. "
                f"Balance remaining: {format_money(receipt.financials.display_balance, currency)}."
            )
        receipt.notification = self.notifier.notify(
            loan.client_id, NotificationKind.PAYMENT_CONFIRMATION, message
        )
        return receipt

    def _apply(self, loan: Loan, amount: Decimal, method: PaymentMethod,
               reference: Optional[str]) -> PaymentReceipt:
        now = self.clock.now()

        principal = loan.principal
        profit_due = principal * self.profit_rate
        penalties = [p for p in self.repository.find_penalties_by_loan(loan.id)
                     if p.status.counts_toward_debt]
        penalties_due = sum((p.amount for p in penalties), ZERO)

        paid_before = sum((p.amount for p in self.repository.find_payments_by_loan(loan.id)), ZERO)
        paid_after = paid_before + amount

        this_payment, cumulative = allocate_increment(
            paid_before, amount, penalties_due, profit_due, principal
        )
        balance = (penalties_due + profit_due + principal) - paid_after

        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            client_id=loan.client_id,
            amount=amount,
            paid_at=now,
            method=method,
            reference=reference
        )
        self.repository.create_payment(payment)
        self.audit.log_event(
            AuditEventType.PAYMENT_RECORDED, "payment", payment.id,
            {"loan_id": loan.id, "amount": amount, "method": method.value,
             "allocation": {"penalties": this_payment.penalties, "profit": this_payment.profit,
                            "principal": this_payment.principal}}
        )

        liquidated = self._liquidate_penalties(penalties, cumulative.penalties, now)
        open_count = sum(1 for p in penalties if p.status.is_open)

        new_status = resolve_loan_status(balance, open_count, loan.due_at, now, self.tolerance)
        if new_status != loan.status:
            self.audit.log_event(
                AuditEventType.LOAN_STATUS_CHANGED, "loan", loan.id,
                {"old_status": loan.status.value, "new_status": new_status.value,
                 "reason": "payment", "payment_id": payment.id}
            )
        loan.status = new_status
        loan.updated_at = now
        self.repository.save_loan(loan)

        return PaymentReceipt(
            payment=payment,
            loan_status=new_status,
            penalties=PenaltyPosition(
                count=len(penalties),
                max_elapsed_days=max((p.elapsed_days for p in penalties), default=0),
                total=penalties_due,
                liquidated=cumulative.penalties,
                pending=max(penalties_due - cumulative.penalties, ZERO),
                liquidated_ids=[p.id for p in liquidated]
            ),
            financials=FinancialBreakdown(
                principal=principal,
                profit=profit_due,
                penalties=penalties_due,
                total_paid=paid_after,
                balance=balance
            ),
            allocation=this_payment,
            cumulative_allocation=cumulative,
            currency=loan.currency
        )

    def _liquidate_penalties(self, penalties: List[Penalty], penalty_allocation: Decimal,
                             now: datetime) -> List[Penalty]:
        """Flip fully covered open penalties to PAID, oldest first, all or nothing"""
        already_paid = sum((p.amount for p in penalties if p.status == PenaltyStatus.PAID), ZERO)
        open_penalties = [p for p in penalties if p.status.is_open]

        covered_ids = set(liquidation_candidates(
            [(p.id, p.amount) for p in open_penalties],
            penalty_allocation - already_paid
        ))

        liquidated = []
        for penalty in open_penalties:
            if penalty.id not in covered_ids:
                continue
            penalty.status = PenaltyStatus.PAID
            penalty.updated_at = now
            penalty.append_note(f"Liquidated on {now.isoformat()}")
            self.repository.save_penalty(penalty)
            self.audit.log_event(
                AuditEventType.PENALTY_LIQUIDATED, "penalty", penalty.id,
                {"loan_id": penalty.loan_id, "amount": penalty.amount}
            )
            liquidated.append(penalty)
        return liquidated

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.repository.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def get_loan_payments(self, loan_id: str) -> List[Payment]:
        """Payments of a loan, newest first"""
        if self.repository.get_loan(loan_id) is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return list(reversed(self.repository.find_payments_by_loan(loan_id)))

    def get_client_payments(self, client_id: str) -> List[Payment]:
        """Payments of a client across loans, newest first"""
        return list(reversed(self.repository.find_payments_by_client(client_id)))
