"""
System Wiring Module

Builds the ledger components from a LedgerConfig around one storage backend,
one clock and one notification sink.
"""

from typing import Optional

from .audit import AuditTrail
from .clients import ClientDirectory, StorageClientDirectory
from .clock import Clock, SystemClock
from .config import LedgerConfig, get_config
from .loans import LoanRegister
from .notifications import NotificationSink, Notifier, StorageNotificationSink, build_sink
from .payments import PaymentAllocationEngine
from .penalties import PenaltyAccrualEngine, PenaltyBook
from .repository import LedgerRepository
from .risk import RiskClassifier
from .storage import StorageInterface, build_storage


class LedgerSystem:
    """Ledger engine with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None,
        sink: Optional[NotificationSink] = None,
        clients: Optional[ClientDirectory] = None
    ):
        self.config = config or get_config()

        self.storage = storage or build_storage(self.config.database_url)
        self.clock = clock or SystemClock(self.config.timezone)
        self.sink = sink or build_sink(
            self.config.notification_sink, self.storage,
            webhook_url=self.config.notification_webhook_url,
            timeout=self.config.notification_timeout
        )
        self.clients = clients or StorageClientDirectory(self.storage)

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.repository = LedgerRepository(self.storage)
        self.notifier = Notifier(self.sink)
        if isinstance(self.sink, StorageNotificationSink):
            self.notification_inbox = self.sink
        else:
            self.notification_inbox = StorageNotificationSink(self.storage)

        self.loan_register = LoanRegister(
            self.repository, self.audit_trail, self.notifier, self.clock,
            currency=self.config.currency, clients=self.clients
        )
        self.payment_engine = PaymentAllocationEngine(
            self.repository, self.audit_trail, self.notifier, self.clock,
            profit_rate=self.config.profit_rate_decimal,
            tolerance=self.config.tolerance_decimal
        )
        self.accrual_engine = PenaltyAccrualEngine(
            self.repository, self.audit_trail, self.notifier, self.clock,
            penalty_rate=self.config.penalty_rate_decimal,
            reminder_days=self.config.reminder_days,
            clients=self.clients
        )
        self.penalty_book = PenaltyBook(self.repository, self.audit_trail, self.clock,
                                        currency=self.config.currency)
        self.risk_classifier = RiskClassifier(
            self.repository, self.clock,
            profit_rate=self.config.profit_rate_decimal,
            clients=self.clients
        )

    def close(self) -> None:
        self.storage.close()
