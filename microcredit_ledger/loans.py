"""
Loan Register Module

Issues loans onto the ledger and serves loan reads. Loans are never edited
directly: their status moves only through payments and penalty accrual, and a
loan with payments or penalties cannot be deleted.
"""

from decimal import Decimal
from datetime import datetime
from typing import Dict, List, Optional, Any, Union
import logging
import uuid

from .audit import AuditTrail, AuditEventType
from .clock import Clock
from .clients import ClientDirectory
from .currency import Currency, require_positive, format_money, money_str
from .exceptions import NotFoundError, ConflictError, ValidationError
from .logging_config import log_action
from .models import Loan, LoanStatus
from .notifications import Notifier, NotificationKind
from .repository import LedgerRepository

logger = logging.getLogger("microcredit.loans")


def loan_to_dict(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "client_id": loan.client_id,
        "principal": money_str(loan.principal),
        "currency": loan.currency,
        "issued_at": loan.issued_at.isoformat(),
        "due_at": loan.due_at.isoformat(),
        "status": loan.status.value
    }


class LoanRegister:
    """Loan issuance and lookup"""

    def __init__(
        self,
        repository: LedgerRepository,
        audit_trail: AuditTrail,
        notifier: Notifier,
        clock: Clock,
        currency: str = "MZN",
        clients: Optional[ClientDirectory] = None
    ):
        self.repository = repository
        self.audit = audit_trail
        self.notifier = notifier
        self.clock = clock
        self.currency = Currency.from_code(currency).code
        self.clients = clients

    def _aware(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.clock.tzinfo)
        return moment

    def issue_loan(
        self,
        client_id: str,
        principal: Union[Decimal, int, str],
        due_at: datetime,
        issued_at: Optional[datetime] = None
    ) -> Loan:
        """
        Create an ACTIVE loan and confirm it to the client.

        Args:
            client_id: Borrower
            principal: Amount lent, strictly positive
            due_at: Repayment due date (naive values are read in the ledger time zone)
            issued_at: Issue timestamp, defaults to now

        Returns:
            Created Loan

        Raises:
            ValidationError: Blank client, non-positive principal or due date not after issue
        """
        if not client_id or not str(client_id).strip():
            raise ValidationError("client_id is required")
        principal = require_positive(principal, "principal")

        now = self.clock.now()
        issued_at = self._aware(issued_at) if issued_at else now
        due_at = self._aware(due_at)
        if due_at <= issued_at:
            raise ValidationError("due_at must be after issued_at")

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            client_id=client_id,
            principal=principal,
            issued_at=issued_at,
            due_at=due_at,
            status=LoanStatus.ACTIVE,
            currency=self.currency
        )

        with self.repository.storage.atomic():
            self.repository.create_loan(loan)
            self.audit.log_event(
                AuditEventType.LOAN_ISSUED, "loan", loan.id,
                {"client_id": client_id, "principal": principal,
                 "due_at": due_at.isoformat()}
            )

        log_action(logger, "info", f"Loan {loan.id} issued", action="issue_loan",
                   resource=f"loan:{loan.id}", extra={"client_id": client_id,
                                                      "principal": str(principal)})

        name = self.clients.display_name(client_id) if self.clients else None
        greeting = f"Dear {name}, your" if name else "Your"
        amount_text = format_money(principal, Currency.from_code(loan.currency))
        self.notifier.notify(
            client_id, NotificationKind.LOAN_CONFIRMATION,
            f"{greeting} loan {loan.id} of {amount_text} was approved. "
            f"Due date: {self.clock.local_day(due_at).isoformat()}."
        )
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        loan = self.repository.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        return self.repository.list_loans(status)

    def get_client_loans(self, client_id: str) -> List[Loan]:
        return self.repository.find_loans_by_client(client_id)

    def delete_loan(self, loan_id: str) -> None:
        """
        Delete a loan with no ledger history.

        Raises:
            NotFoundError: Loan does not exist
            ConflictError: Payments or penalties reference the loan
        """
        with self.repository.storage.atomic():
            loan = self.get_loan(loan_id)
            if self.repository.has_dependents(loan_id):
                raise ConflictError(
                    f"Loan {loan_id} has payments or penalties and cannot be deleted"
                )
            self.repository.delete_loan(loan_id)
            self.audit.log_event(
                AuditEventType.LOAN_DELETED, "loan", loan_id,
                {"client_id": loan.client_id, "principal": loan.principal}
            )
        logger.info(f"Loan {loan_id} deleted")
