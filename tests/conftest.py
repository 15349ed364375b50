"""
Shared fixtures: a fixed clock, in-memory storage, a recording notification
sink and a fully wired ledger system.
"""

import pytest
from datetime import datetime, date
from decimal import Decimal

from microcredit_ledger.clock import FixedClock
from microcredit_ledger.config import LedgerConfig
from microcredit_ledger.models import Penalty, PenaltyKind, PenaltyStatus, penalty_key
from microcredit_ledger.notifications import NotificationSink
from microcredit_ledger.storage import InMemoryStorage
from microcredit_ledger.system import LedgerSystem


class RecordingSink(NotificationSink):
    """Sink that keeps every notification in memory"""

    def __init__(self):
        self.sent = []

    def send(self, client_id, kind, message):
        self.sent.append((client_id, kind, message))

    def of_kind(self, kind):
        return [entry for entry in self.sent if entry[1] == kind]


def add_penalty(system, loan, day: date, elapsed: int, amount: str = "500",
                status: PenaltyStatus = PenaltyStatus.PENDING) -> Penalty:
    """Insert a penalty row directly, bypassing the accrual job"""
    now = system.clock.now()
    penalty = Penalty(
        id=penalty_key(loan.id, PenaltyKind.LATE, day),
        created_at=now,
        updated_at=now,
        loan_id=loan.id,
        client_id=loan.client_id,
        kind=PenaltyKind.LATE,
        elapsed_days=elapsed,
        amount=Decimal(amount),
        applied_at=system.clock.local_midnight(day),
        status=status
    )
    system.repository.create_penalty(penalty)
    return penalty


@pytest.fixture
def clock():
    """15 March 2025, 09:00 in Maputo"""
    return FixedClock(datetime(2025, 3, 15, 9, 0))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def config():
    return LedgerConfig(database_url="memory://", notification_sink="log")


@pytest.fixture
def system(config, storage, clock, sink):
    return LedgerSystem(config, storage=storage, clock=clock, sink=sink)


@pytest.fixture
def make_penalty(system):
    """add_penalty bound to the system fixture"""
    def factory(loan, day, elapsed, amount="500", status=PenaltyStatus.PENDING):
        return add_penalty(system, loan, day, elapsed, amount, status)
    return factory
