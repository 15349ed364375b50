"""
Test suite for the batch job runner and a SQLite-backed end-to-end flow
"""

import json
import logging
import pytest
from datetime import datetime

from microcredit_ledger.clock import FixedClock
from microcredit_ledger.config import LedgerConfig
from microcredit_ledger.jobs import main, run_command
from microcredit_ledger.models import LoanStatus, PenaltyStatus
from microcredit_ledger.notifications import StorageNotificationSink
from microcredit_ledger.storage import SQLiteStorage
from microcredit_ledger.system import LedgerSystem


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("microcredit")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.propagate = True


class TestJobsCli:

    def test_risk_command(self, system, capsys):
        """Test the risk command output"""
        system.loan_register.issue_loan("C1", "1000", due_at=datetime(2025, 4, 30, 12, 0))

        exit_code = main(["risk"], system=system)

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["level"] == "low"
        assert summary["buckets"]["current"]["count"] == 1

    def test_accrue_command(self, system, capsys):
        """Test the accrue command output"""
        system.loan_register.issue_loan(
            "C1", "1000", due_at=datetime(2025, 3, 13, 12, 0), issued_at=datetime(2025, 2, 1)
        )

        exit_code = main(["accrue"], system=system)

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["penalties_created"] == 2
        assert summary["run_date"] == "2025-03-15"

    def test_remind_command(self, system, capsys):
        """Test the remind command output"""
        system.loan_register.issue_loan("C1", "1000", due_at=datetime(2025, 3, 20, 12, 0))

        assert main(["remind"], system=system) == 0
        assert json.loads(capsys.readouterr().out)["reminders_sent"] == 1

    def test_failures_set_exit_code(self, system, capsys, monkeypatch):
        """Test non-zero exit when a loan fails"""
        system.loan_register.issue_loan(
            "C1", "1000", due_at=datetime(2025, 3, 13, 12, 0), issued_at=datetime(2025, 2, 1)
        )

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(system.repository, "create_penalty", broken)

        assert main(["accrue"], system=system) == 1
        summary = json.loads(capsys.readouterr().out)
        assert summary["failures"][0]["error"] == "disk full"

    def test_unknown_command(self, system):
        """Test rejection of an unknown command"""
        with pytest.raises(SystemExit):
            main(["compound"], system=system)
        with pytest.raises(ValueError):
            run_command(system, "compound")


class TestSQLiteLedgerFlow:

    def test_loan_lifecycle_persists(self, tmp_path):
        """Test a full loan lifecycle on SQLite across reopen"""
        path = tmp_path / "ledger.db"
        config = LedgerConfig(database_url=f"sqlite:///{path}", notification_sink="storage")
        clock = FixedClock(datetime(2025, 3, 15, 9, 0))

        system = LedgerSystem(config, clock=clock)
        loan = system.loan_register.issue_loan(
            "C1", "10000", due_at=datetime(2025, 3, 13, 12, 0), issued_at=datetime(2025, 2, 1)
        )
        first_run = system.accrual_engine.run_daily_accrual()
        second_run = system.accrual_engine.run_daily_accrual()
        receipt = system.payment_engine.record_payment(loan.id, "600", "cash")
        system.close()

        assert first_run.penalties_created == 2
        assert second_run.penalties_created == 0
        assert receipt.allocation.penalties == 600
        assert receipt.loan_status == LoanStatus.DELINQUENT

        reopened = LedgerSystem(config, storage=SQLiteStorage(path), clock=clock)
        penalties = reopened.repository.find_penalties_by_loan(loan.id)
        assert [p.status for p in penalties] == [PenaltyStatus.PAID, PenaltyStatus.PENDING]
        assert len(reopened.payment_engine.get_loan_payments(loan.id)) == 1
        assert reopened.loan_register.get_loan(loan.id).status == LoanStatus.DELINQUENT
        assert reopened.audit_trail.verify_integrity()["valid"] is True
        notifications = StorageNotificationSink(reopened.storage).list_notifications("C1")
        assert len(notifications) == 3
        reopened.close()
