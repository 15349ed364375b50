"""
Test suite for penalty accrual

Tests retroactive backfill, same-day idempotence, today-only notification,
per-loan failure isolation, the reminder pass and penalty statements.
"""

import pytest
from datetime import datetime, date
from decimal import Decimal
from unittest.mock import patch

from microcredit_ledger.exceptions import NotFoundError, ValidationError
from microcredit_ledger.models import LoanStatus, PenaltyKind, PenaltyStatus
from microcredit_ledger.notifications import NotificationKind


@pytest.fixture
def overdue_loan(system):
    """Loan of 10000 due 10 March 2025, five days overdue on the fixture clock"""
    return system.loan_register.issue_loan(
        "C1", "10000",
        due_at=datetime(2025, 3, 10, 12, 0),
        issued_at=datetime(2025, 2, 1, 10, 0)
    )


class TestDailyAccrual:
    """Test run_daily_accrual"""

    def test_backfills_one_penalty_per_overdue_day(self, system, overdue_loan):
        """Test one penalty per overdue day"""
        result = system.accrual_engine.run_daily_accrual()

        penalties = system.repository.find_penalties_by_loan(overdue_loan.id)
        assert result.penalties_created == 5
        assert len(penalties) == 5
        assert [p.elapsed_days for p in penalties] == [1, 2, 3, 4, 5]
        assert [p.applied_at.date() for p in penalties] == [
            date(2025, 3, 11), date(2025, 3, 12), date(2025, 3, 13),
            date(2025, 3, 14), date(2025, 3, 15)
        ]
        for penalty in penalties:
            assert penalty.amount == Decimal('500')
            assert penalty.status == PenaltyStatus.PENDING
            assert penalty.kind == PenaltyKind.LATE
            assert penalty.client_id == "C1"
        assert penalties[0].notes == "Automatic late penalty (day 1)"

    def test_penalties_are_stamped_at_local_midnight(self, system, overdue_loan):
        """Test penalty timestamps at local midnight"""
        system.accrual_engine.run_daily_accrual()

        for penalty in system.repository.find_penalties_by_loan(overdue_loan.id):
            local = penalty.applied_at.astimezone(system.clock.tzinfo)
            assert (local.hour, local.minute, local.second) == (0, 0, 0)

    def test_marks_loan_delinquent(self, system, overdue_loan):
        """Test marking overdue loans delinquent"""
        result = system.accrual_engine.run_daily_accrual()

        assert result.loans_marked_delinquent == 1
        assert system.loan_register.get_loan(overdue_loan.id).status == LoanStatus.DELINQUENT

    def test_second_run_same_day_creates_nothing(self, system, sink, overdue_loan):
        """Test same-day rerun idempotency"""
        system.accrual_engine.run_daily_accrual()
        notified = len(sink.of_kind(NotificationKind.PENALTY))

        second = system.accrual_engine.run_daily_accrual()

        assert second.penalties_created == 0
        assert second.loans_marked_delinquent == 0
        assert len(system.repository.find_penalties_by_loan(overdue_loan.id)) == 5
        assert len(sink.of_kind(NotificationKind.PENALTY)) == notified

    def test_next_day_adds_only_the_new_day(self, system, clock, overdue_loan):
        """Test next-day run adds one penalty"""
        system.accrual_engine.run_daily_accrual()
        clock.advance(days=1)

        result = system.accrual_engine.run_daily_accrual()

        penalties = system.repository.find_penalties_by_loan(overdue_loan.id)
        assert result.penalties_created == 1
        assert [p.elapsed_days for p in penalties] == [1, 2, 3, 4, 5, 6]

    def test_missed_runs_are_backfilled_without_gaps(self, system, clock, overdue_loan):
        """Test backfill after missed runs"""
        system.accrual_engine.run_daily_accrual()
        clock.advance(days=4)

        result = system.accrual_engine.run_daily_accrual()

        penalties = system.repository.find_penalties_by_loan(overdue_loan.id)
        assert result.penalties_created == 4
        assert [p.elapsed_days for p in penalties] == list(range(1, 10))

    def test_only_todays_penalty_is_notified(self, system, sink, overdue_loan):
        """Test that only today's penalty is notified"""
        system.accrual_engine.run_daily_accrual()

        penalty_notices = sink.of_kind(NotificationKind.PENALTY)
        assert len(penalty_notices) == 1
        client_id, _, message = penalty_notices[0]
        assert client_id == "C1"
        assert "day 5" in message

    def test_no_notification_when_today_already_stamped(self, system, sink, overdue_loan,
                                                          make_penalty):
        """Test no notification on rerun"""
        make_penalty(overdue_loan, date(2025, 3, 15), 5)

        result = system.accrual_engine.run_daily_accrual()

        assert result.penalties_created == 4
        assert sink.of_kind(NotificationKind.PENALTY) == []

    def test_due_earlier_today_is_skipped(self, system):
        """Test loans due earlier today are not yet overdue"""
        loan = system.loan_register.issue_loan(
            "C2", "1000",
            due_at=datetime(2025, 3, 15, 8, 0),
            issued_at=datetime(2025, 3, 1, 8, 0)
        )

        result = system.accrual_engine.run_daily_accrual()

        assert result.loans_scanned == 1
        assert result.loans_skipped == 1
        assert system.repository.find_penalties_by_loan(loan.id) == []
        assert system.loan_register.get_loan(loan.id).status == LoanStatus.ACTIVE

    def test_loans_not_yet_due_are_ignored(self, system):
        """Test loans not yet due"""
        system.loan_register.issue_loan("C3", "1000", due_at=datetime(2025, 4, 1, 12, 0))

        result = system.accrual_engine.run_daily_accrual()

        assert result.loans_scanned == 0
        assert result.penalties_created == 0

    def test_paid_loans_are_ignored(self, system, overdue_loan):
        """Test that paid loans accrue nothing"""
        system.payment_engine.record_payment(overdue_loan.id, "12000", "cash")
        assert system.loan_register.get_loan(overdue_loan.id).status == LoanStatus.PAID

        result = system.accrual_engine.run_daily_accrual()

        assert result.loans_scanned == 0
        assert system.repository.find_penalties_by_loan(overdue_loan.id) == []

    def test_penalty_rate_applies_to_principal(self, system):
        """Test penalty amount from principal"""
        loan = system.loan_register.issue_loan(
            "C4", "2500.50",
            due_at=datetime(2025, 3, 14, 12, 0),
            issued_at=datetime(2025, 3, 1, 12, 0)
        )

        system.accrual_engine.run_daily_accrual()

        penalties = system.repository.find_penalties_by_loan(loan.id)
        assert len(penalties) == 1
        assert penalties[0].amount == Decimal('125.025')

    def test_failure_on_one_loan_does_not_stop_the_run(self, system, overdue_loan):
        """Test per-loan failure isolation"""
        other = system.loan_register.issue_loan(
            "C5", "2000",
            due_at=datetime(2025, 3, 12, 12, 0),
            issued_at=datetime(2025, 2, 1, 12, 0)
        )
        original = system.repository.penalty_exists_for_day

        def flaky(loan_id, kind, day):
            if loan_id == overdue_loan.id:
                raise RuntimeError("database hiccup")
            return original(loan_id, kind, day)

        with patch.object(system.repository, "penalty_exists_for_day", side_effect=flaky):
            result = system.accrual_engine.run_daily_accrual()

        assert [f.loan_id for f in result.failures] == [overdue_loan.id]
        assert "database hiccup" in result.failures[0].error
        assert len(system.repository.find_penalties_by_loan(other.id)) == 3
        assert system.repository.find_penalties_by_loan(overdue_loan.id) == []
        assert system.loan_register.get_loan(overdue_loan.id).status == LoanStatus.ACTIVE
        assert system.loan_register.get_loan(other.id).status == LoanStatus.DELINQUENT

    def test_lost_insert_race_is_treated_as_already_stamped(self, system, overdue_loan):
        """Test duplicate insert treated as already stamped"""
        system.accrual_engine.run_daily_accrual()

        # Existence check misses, the create-only insert must still refuse
        with patch.object(system.repository, "penalty_exists_for_day", return_value=False):
            result = system.accrual_engine.run_daily_accrual()

        assert result.failures == []
        assert result.penalties_created == 0
        assert len(system.repository.find_penalties_by_loan(overdue_loan.id)) == 5

    def test_notification_failure_does_not_fail_accrual(self, system, sink, overdue_loan):
        """Test notification failure during accrual"""
        with patch.object(sink, "send", side_effect=ConnectionError("sink down")):
            result = system.accrual_engine.run_daily_accrual()

        assert result.failures == []
        assert result.penalties_created == 5
        assert result.notifications_sent == 0
        assert result.to_dict()["notifications_failed"] == 1

    def test_run_summary(self, system, overdue_loan):
        """Test accrual run summary and audit event"""
        result = system.accrual_engine.run_daily_accrual()

        summary = result.to_dict()
        assert summary["run_date"] == "2025-03-15"
        assert summary["loans_scanned"] == 1
        assert summary["penalties_created"] == 5
        assert summary["notifications_sent"] == 1
        assert summary["failures"] == []


class TestPaymentReminders:
    """Test run_payment_reminders"""

    def test_reminds_at_ten_and_five_days(self, system, sink):
        """Test reminders at ten and five days before due"""
        ten = system.loan_register.issue_loan("C1", "1000", due_at=datetime(2025, 3, 25, 12, 0))
        five = system.loan_register.issue_loan("C2", "1000", due_at=datetime(2025, 3, 20, 8, 0))
        system.loan_register.issue_loan("C3", "1000", due_at=datetime(2025, 3, 22, 12, 0))

        result = system.accrual_engine.run_payment_reminders()

        assert result.loans_scanned == 3
        assert sorted(result.reminded_loan_ids) == sorted([ten.id, five.id])
        assert result.reminders_sent == 2
        reminders = sink.of_kind(NotificationKind.REMINDER)
        assert sorted(r[0] for r in reminders) == ["C1", "C2"]
        assert any("due in 10 days" in r[2] for r in reminders)
        assert any("due in 5 days" in r[2] for r in reminders)

    def test_reminder_uses_client_name(self, system, storage, sink):
        """Test reminder greeting with client name"""
        storage.save("clients", "C1", {"id": "C1", "name": "Ana Mabunda"})
        system.loan_register.issue_loan("C1", "1000", due_at=datetime(2025, 3, 20, 12, 0))

        system.accrual_engine.run_payment_reminders()

        reminders = sink.of_kind(NotificationKind.REMINDER)
        assert reminders[0][2].startswith("Dear Ana Mabunda")

    def test_delinquent_loans_get_no_reminder(self, system, sink):
        """Test no reminders for delinquent loans"""
        loan = system.loan_register.issue_loan("C1", "1000", due_at=datetime(2025, 3, 25, 12, 0))
        loan.status = LoanStatus.DELINQUENT
        system.repository.save_loan(loan)

        result = system.accrual_engine.run_payment_reminders()

        assert result.loans_scanned == 0
        assert sink.of_kind(NotificationKind.REMINDER) == []

    def test_reminders_persist_nothing_on_the_ledger(self, system):
        """Test that reminders do not touch the ledger"""
        loan = system.loan_register.issue_loan("C1", "1000", due_at=datetime(2025, 3, 25, 12, 0))

        system.accrual_engine.run_payment_reminders()

        assert system.repository.find_penalties_by_loan(loan.id) == []
        assert system.loan_register.get_loan(loan.id).status == LoanStatus.ACTIVE


class TestPenaltyBook:
    """Test penalty statements and notes"""

    def test_loan_statement_summary(self, system, overdue_loan):
        """Test loan penalty statement summary"""
        system.accrual_engine.run_daily_accrual()
        system.payment_engine.record_payment(overdue_loan.id, "1200", "m_pesa")

        statement = system.penalty_book.get_loan_penalties(overdue_loan.id)

        assert [p.elapsed_days for p in statement.penalties] == [5, 4, 3, 2, 1]
        summary = statement.summary
        assert summary.total_count == 5
        assert summary.max_elapsed_days == 5
        assert summary.paid_count == 2
        assert summary.pending_count == 3
        assert summary.paid_amount == Decimal('1000')
        assert summary.pending_amount == Decimal('1500')
        assert summary.total_amount == Decimal('2500')
        assert "3 pending penalties" in summary.description

    def test_unknown_loan_statement(self, system):
        """Test statement for an unknown loan"""
        with pytest.raises(NotFoundError):
            system.penalty_book.get_loan_penalties("missing")

    def test_client_statement_groups_by_loan(self, system, overdue_loan):
        """Test client statement grouped by loan"""
        other = system.loan_register.issue_loan(
            "C1", "2000",
            due_at=datetime(2025, 3, 13, 12, 0),
            issued_at=datetime(2025, 2, 1, 12, 0)
        )
        system.accrual_engine.run_daily_accrual()

        statement = system.penalty_book.get_client_penalties("C1")

        assert statement.summary.total_count == 7
        assert statement.by_loan[overdue_loan.id].total_count == 5
        assert statement.by_loan[other.id].total_count == 2
        assert statement.by_loan[other.id].total_amount == Decimal('200')
        data = statement.to_dict()
        assert data["client_id"] == "C1"
        assert len(data["by_loan"]) == 2

    def test_empty_client_statement(self, system):
        """Test statement for a client without penalties"""
        statement = system.penalty_book.get_client_penalties("nobody")

        assert statement.penalties == []
        assert statement.summary.total_count == 0
        assert statement.summary.description == "No pending penalties."

    def test_append_note(self, system, overdue_loan, make_penalty):
        """Test appending a penalty note"""
        penalty = make_penalty(overdue_loan, date(2025, 3, 11), 1)

        updated = system.penalty_book.append_note(penalty.id, "Client called, promised Friday")

        stored = system.repository.get_penalty(penalty.id)
        assert stored.notes == "Client called, promised Friday"
        assert stored.status == PenaltyStatus.PENDING
        assert stored.amount == Decimal('500')
        assert updated.notes == stored.notes

    def test_append_note_validation(self, system, overdue_loan, make_penalty):
        """Test blank notes and unknown penalties"""
        penalty = make_penalty(overdue_loan, date(2025, 3, 11), 1)

        with pytest.raises(ValidationError):
            system.penalty_book.append_note(penalty.id, "   ")
        with pytest.raises(NotFoundError):
            system.penalty_book.append_note("missing", "note")
