"""
Penalty Accrual Module

Daily late-penalty accrual with retroactive backfill, the payment reminder
pass, and the read side of the penalty ledger (statements and notes).

Accrual is idempotent per calendar day: every penalty is keyed by
(loan, kind, day) and inserted create-only, so re-running the job on the same
day, or two runs racing each other, never stamps a day twice.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Any
import logging

from .audit import AuditTrail, AuditEventType
from .clock import Clock, overdue_days, calendar_days_between
from .clients import ClientDirectory
from .currency import ZERO, Currency, format_money, money_str
from .exceptions import NotFoundError, ValidationError, DuplicateRecordError
from .logging_config import log_action
from .models import (
    Loan, LoanStatus, Penalty, PenaltyKind, PenaltyStatus, penalty_key
)
from .notifications import Notifier, NotificationKind, NotificationResult
from .repository import LedgerRepository

logger = logging.getLogger("microcredit.penalties")

DEFAULT_PENALTY_RATE = Decimal('0.05')
DEFAULT_REMINDER_DAYS = (10, 5)


@dataclass
class LoanFailure:
    """A loan that could not be processed during a batch run"""
    loan_id: str
    error: str


@dataclass
class AccrualRunResult:
    """Summary of one accrual run"""
    run_date: date
    loans_scanned: int = 0
    loans_skipped: int = 0
    loans_marked_delinquent: int = 0
    penalties_created: int = 0
    notifications: List[NotificationResult] = field(default_factory=list)
    failures: List[LoanFailure] = field(default_factory=list)

    @property
    def notifications_sent(self) -> int:
        return sum(1 for n in self.notifications if n.delivered)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "loans_scanned": self.loans_scanned,
            "loans_skipped": self.loans_skipped,
            "loans_marked_delinquent": self.loans_marked_delinquent,
            "penalties_created": self.penalties_created,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": len(self.notifications) - self.notifications_sent,
            "failures": [{"loan_id": f.loan_id, "error": f.error} for f in self.failures]
        }


@dataclass
class ReminderRunResult:
    """Summary of one reminder run"""
    run_date: date
    loans_scanned: int = 0
    reminded_loan_ids: List[str] = field(default_factory=list)
    notifications: List[NotificationResult] = field(default_factory=list)
    failures: List[LoanFailure] = field(default_factory=list)

    @property
    def reminders_sent(self) -> int:
        return sum(1 for n in self.notifications if n.delivered)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "loans_scanned": self.loans_scanned,
            "reminders_sent": self.reminders_sent,
            "reminders_failed": len(self.notifications) - self.reminders_sent,
            "reminded_loan_ids": list(self.reminded_loan_ids),
            "failures": [{"loan_id": f.loan_id, "error": f.error} for f in self.failures]
        }


@dataclass
class _LoanAccrual:
    created: List[Penalty]
    today_penalty: Optional[Penalty]
    status_changed: bool


class PenaltyAccrualEngine:
    """Daily accrual and reminder batch jobs"""

    def __init__(
        self,
        repository: LedgerRepository,
        audit_trail: AuditTrail,
        notifier: Notifier,
        clock: Clock,
        penalty_rate: Decimal = DEFAULT_PENALTY_RATE,
        reminder_days: Sequence[int] = DEFAULT_REMINDER_DAYS,
        clients: Optional[ClientDirectory] = None
    ):
        self.repository = repository
        self.audit = audit_trail
        self.notifier = notifier
        self.clock = clock
        self.penalty_rate = penalty_rate
        self.reminder_days = tuple(reminder_days)
        self.clients = clients

    def run_daily_accrual(self) -> AccrualRunResult:
        """
        Stamp one LATE penalty per overdue calendar day on every open loan.

        Missed days since the due date are backfilled; days already stamped
        are left alone. Only today's penalty is notified. A failure on one
        loan is logged and recorded, and the run moves on.

        Returns:
            AccrualRunResult summarizing the run
        """
        now = self.clock.now()
        today = self.clock.today()
        result = AccrualRunResult(run_date=today)

        loans = self.repository.find_overdue_loans(now)
        log_action(logger, "info", f"Starting penalty accrual over {len(loans)} overdue loans",
                   action="accrual_started", extra={"run_date": today.isoformat()})

        for loan in loans:
            result.loans_scanned += 1
            try:
                outcome = self._accrue_loan(loan, today)
            except Exception as e:
                logger.exception(f"Penalty accrual failed for loan {loan.id}")
                result.failures.append(LoanFailure(loan.id, str(e)))
                continue

            if outcome is None:
                result.loans_skipped += 1
                continue

            result.penalties_created += len(outcome.created)
            if outcome.status_changed:
                result.loans_marked_delinquent += 1

            # Notify only after the loan's writes are committed
            if outcome.today_penalty is not None:
                penalty = outcome.today_penalty
                amount_text = format_money(penalty.amount, Currency.from_code(loan.currency))
                message = (
                    f"Daily late penalty of {amount_text} applied to loan "
                    f"{loan.id} (day {penalty.elapsed_days} overdue)."
                )
                result.notifications.append(
                    self.notifier.notify(loan.client_id, NotificationKind.PENALTY, message)
                )

        self.audit.log_event(
            AuditEventType.ACCRUAL_RUN_COMPLETED, "run", f"accrual-{today.isoformat()}",
            result.to_dict()
        )
        log_action(logger, "info", "Penalty accrual completed", action="accrual_completed",
                   extra=result.to_dict())
        return result

    def _accrue_loan(self, loan: Loan, today: date) -> Optional[_LoanAccrual]:
        due_day = self.clock.local_day(loan.due_at)
        days = overdue_days(due_day, today)
        if not days:
            logger.debug(f"Loan {loan.id} is not overdue on {today.isoformat()}, skipping")
            return None

        created: List[Penalty] = []
        today_penalty = None
        status_changed = False
        amount = loan.principal * self.penalty_rate

        with self.repository.storage.atomic():
            for elapsed, day in enumerate(days, start=1):
                if self.repository.penalty_exists_for_day(loan.id, PenaltyKind.LATE, day):
                    continue

                penalty = self._stamp_penalty(loan, day, elapsed, amount)
                if penalty is None:
                    continue
                created.append(penalty)
                if day == today:
                    today_penalty = penalty

            if loan.status != LoanStatus.DELINQUENT:
                previous = loan.status
                loan.status = LoanStatus.DELINQUENT
                loan.updated_at = self.clock.now()
                self.repository.save_loan(loan)
                self.audit.log_event(
                    AuditEventType.LOAN_STATUS_CHANGED, "loan", loan.id,
                    {"old_status": previous.value, "new_status": loan.status.value,
                     "reason": "overdue"}
                )
                status_changed = True

        if created:
            log_action(logger, "info", f"Stamped {len(created)} penalties on loan {loan.id}",
                       action="accrue_penalty", resource=f"loan:{loan.id}",
                       extra={"days": [p.applied_at.date().isoformat() for p in created]})
        return _LoanAccrual(created, today_penalty, status_changed)

    def _stamp_penalty(self, loan: Loan, day: date, elapsed: int,
                       amount: Decimal) -> Optional[Penalty]:
        now = self.clock.now()
        penalty = Penalty(
            id=penalty_key(loan.id, PenaltyKind.LATE, day),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            client_id=loan.client_id,
            kind=PenaltyKind.LATE,
            elapsed_days=elapsed,
            amount=amount,
            applied_at=self.clock.local_midnight(day),
            status=PenaltyStatus.PENDING,
            notes=f"Automatic late penalty (day {elapsed})"
        )
        try:
            self.repository.create_penalty(penalty)
        except DuplicateRecordError:
            # A concurrent run stamped this day between the check and the insert
            logger.info(f"Penalty for loan {loan.id} on {day.isoformat()} already stamped")
            return None

        self.audit.log_event(
            AuditEventType.PENALTY_ACCRUED, "penalty", penalty.id,
            {"loan_id": loan.id, "elapsed_days": elapsed, "amount": amount,
             "day": day.isoformat()}
        )
        return penalty

    def run_payment_reminders(self) -> ReminderRunResult:
        """
        Remind clients whose ACTIVE loans fall due in exactly one of the
        configured numbers of calendar days. Nothing is persisted besides the
        notification itself.
        """
        now = self.clock.now()
        today = self.clock.today()
        result = ReminderRunResult(run_date=today)

        loans = self.repository.find_active_loans_due_after(now)
        log_action(logger, "info", f"Starting payment reminders over {len(loans)} loans",
                   action="reminders_started", extra={"run_date": today.isoformat()})

        for loan in loans:
            result.loans_scanned += 1
            try:
                days_left = calendar_days_between(today, self.clock.local_day(loan.due_at))
                if days_left not in self.reminder_days:
                    continue

                name = self.clients.display_name(loan.client_id) if self.clients else None
                greeting = f"Dear {name}, " if name else ""
                message = (
                    f"{greeting}reminder: loan {loan.id} is due in {days_left} days "
                    f"({self.clock.local_day(loan.due_at).isoformat()})."
                )
            except Exception as e:
                logger.exception(f"Payment reminder failed for loan {loan.id}")
                result.failures.append(LoanFailure(loan.id, str(e)))
                continue

            result.reminded_loan_ids.append(loan.id)
            result.notifications.append(
                self.notifier.notify(loan.client_id, NotificationKind.REMINDER, message)
            )

        self.audit.log_event(
            AuditEventType.REMINDER_RUN_COMPLETED, "run", f"reminders-{today.isoformat()}",
            result.to_dict()
        )
        log_action(logger, "info", "Payment reminders completed", action="reminders_completed",
                   extra=result.to_dict())
        return result


@dataclass
class PenaltySummary:
    """Counts and amounts over a set of penalties"""
    total_count: int = 0
    max_elapsed_days: int = 0
    pending_count: int = 0
    paid_count: int = 0
    cancelled_count: int = 0
    total_amount: Decimal = ZERO
    pending_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    currency: Currency = Currency.MZN

    @classmethod
    def from_penalties(cls, penalties: List[Penalty],
                       currency: Currency = Currency.MZN) -> 'PenaltySummary':
        summary = cls(currency=currency)
        for penalty in penalties:
            summary.total_count += 1
            summary.total_amount += penalty.amount
            summary.max_elapsed_days = max(summary.max_elapsed_days, penalty.elapsed_days)
            if penalty.status.is_open:
                summary.pending_count += 1
                summary.pending_amount += penalty.amount
            elif penalty.status == PenaltyStatus.PAID:
                summary.paid_count += 1
                summary.paid_amount += penalty.amount
            elif penalty.status == PenaltyStatus.CANCELLED:
                summary.cancelled_count += 1
        return summary

    @property
    def description(self) -> str:
        if self.pending_count:
            return (f"{self.pending_count} pending penalties totalling "
                    f"{format_money(self.pending_amount, self.currency)}")
        return "No pending penalties."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_count": self.total_count,
            "max_elapsed_days": self.max_elapsed_days,
            "pending_count": self.pending_count,
            "paid_count": self.paid_count,
            "cancelled_count": self.cancelled_count,
            "total_amount": money_str(self.total_amount),
            "pending_amount": money_str(self.pending_amount),
            "paid_amount": money_str(self.paid_amount),
            "description": self.description
        }


def penalty_to_dict(penalty: Penalty) -> Dict[str, Any]:
    return {
        "id": penalty.id,
        "loan_id": penalty.loan_id,
        "client_id": penalty.client_id,
        "kind": penalty.kind.value,
        "elapsed_days": penalty.elapsed_days,
        "amount": money_str(penalty.amount),
        "status": penalty.status.value,
        "applied_at": penalty.applied_at.isoformat(),
        "notes": penalty.notes
    }


@dataclass
class PenaltyStatement:
    """Penalties of a loan or client, newest first, with their summary"""
    subject_type: str
    subject_id: str
    penalties: List[Penalty]
    summary: PenaltySummary
    by_loan: Dict[str, PenaltySummary] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            f"{self.subject_type}_id": self.subject_id,
            "summary": self.summary.to_dict(),
            "penalties": [penalty_to_dict(p) for p in self.penalties]
        }
        if self.subject_type == "client":
            result["by_loan"] = [
                {"loan_id": loan_id, "count": s.total_count,
                 "total_amount": money_str(s.total_amount)}
                for loan_id, s in self.by_loan.items()
            ]
        return result


class PenaltyBook:
    """Read side of the penalty ledger"""

    def __init__(self, repository: LedgerRepository, audit_trail: AuditTrail, clock: Clock,
                 currency: str = "MZN"):
        self.repository = repository
        self.audit = audit_trail
        self.clock = clock
        self.currency = Currency.from_code(currency)

    def get_loan_penalties(self, loan_id: str) -> PenaltyStatement:
        loan = self.repository.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        penalties = list(reversed(self.repository.find_penalties_by_loan(loan_id)))
        currency = Currency.from_code(loan.currency)
        return PenaltyStatement("loan", loan_id, penalties,
                                PenaltySummary.from_penalties(penalties, currency))

    def get_client_penalties(self, client_id: str) -> PenaltyStatement:
        penalties = list(reversed(self.repository.find_penalties_by_client(client_id)))
        grouped: Dict[str, List[Penalty]] = {}
        for penalty in penalties:
            grouped.setdefault(penalty.loan_id, []).append(penalty)
        return PenaltyStatement(
            "client", client_id, penalties,
            PenaltySummary.from_penalties(penalties, self.currency),
            {loan_id: PenaltySummary.from_penalties(items, self.currency)
             for loan_id, items in grouped.items()}
        )

    def append_note(self, penalty_id: str, note: str) -> Penalty:
        """Append a free-text note; the only edit a penalty accepts outside liquidation"""
        if not note or not note.strip():
            raise ValidationError("Note must not be blank")
        penalty = self.repository.get_penalty(penalty_id)
        if penalty is None:
            raise NotFoundError(f"Penalty {penalty_id} not found")

        with self.repository.storage.atomic():
            penalty.append_note(note.strip())
            penalty.updated_at = self.clock.now()
            self.repository.save_penalty(penalty)
            self.audit.log_event(
                AuditEventType.PENALTY_NOTE_ADDED, "penalty", penalty.id,
                {"loan_id": penalty.loan_id, "note": note.strip()}
            )
        return penalty
