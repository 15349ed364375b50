"""
Portfolio Risk Module

Read-only classification of the open loan book: days-overdue buckets, a
weighted risk score and level, the provision for doubtful debt (PDD),
penalty totals by kind and the most penalized clients.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
from collections import Counter
import logging

from .allocation import allocate
from .clock import Clock, calendar_days_between
from .clients import ClientDirectory
from .currency import ZERO, money_str, round_money
from .models import Loan, LoanStatus
from .repository import LedgerRepository

logger = logging.getLogger("microcredit.risk")


class RiskLevel(Enum):
    """Portfolio risk levels"""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


class RiskBucket(Enum):
    """Loan buckets with (score weight, provision rate)"""
    CURRENT = ("current", 0, Decimal('0'))
    OVERDUE_1_7 = ("overdue_1_7", 1, Decimal('0.02'))
    OVERDUE_8_30 = ("overdue_8_30", 2, Decimal('0.10'))
    OVERDUE_OVER_30 = ("overdue_over_30", 3, Decimal('0.30'))
    DELINQUENT = ("delinquent", 5, Decimal('1.00'))

    def __init__(self, label: str, weight: int, provision_rate: Decimal):
        self.label = label
        self.weight = weight
        self.provision_rate = provision_rate


RECOMMENDED_ACTIONS = {
    RiskLevel.CRITICAL: "Immediate action required: review lending policy and intensify collections",
    RiskLevel.HIGH: "Monitor closely and start preventive collection actions",
    RiskLevel.MODERATE: "Keep regular monitoring and follow up on late loans",
    RiskLevel.LOW: "Portfolio under control, keep current practices",
}

TOP_PENALIZED_CLIENTS = 5


def bucket_for_days(days_overdue: int) -> RiskBucket:
    """Bucket of an ACTIVE loan by calendar days past due"""
    if days_overdue <= 0:
        return RiskBucket.CURRENT
    elif days_overdue <= 7:
        return RiskBucket.OVERDUE_1_7
    elif days_overdue <= 30:
        return RiskBucket.OVERDUE_8_30
    else:
        return RiskBucket.OVERDUE_OVER_30


def level_for_score(score: Decimal) -> RiskLevel:
    if score < 20:
        return RiskLevel.LOW
    elif score < 50:
        return RiskLevel.MODERATE
    elif score < 75:
        return RiskLevel.HIGH
    else:
        return RiskLevel.CRITICAL


@dataclass
class BucketTotals:
    """Loans in one bucket"""
    bucket: RiskBucket
    count: int = 0
    principal: Decimal = ZERO
    outstanding_principal: Decimal = ZERO

    @property
    def provision(self) -> Decimal:
        return self.outstanding_principal * self.bucket.provision_rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "principal": money_str(self.principal),
            "outstanding_principal": money_str(self.outstanding_principal),
            "provision_rate": str(self.bucket.provision_rate),
            "provision": money_str(self.provision)
        }


@dataclass
class PenalizedClient:
    client_id: str
    name: str
    penalty_count: int


@dataclass
class PortfolioRiskReport:
    """Outcome of classify_portfolio"""
    generated_at: str
    score: Decimal
    level: RiskLevel
    buckets: Dict[RiskBucket, BucketTotals]
    penalties_by_kind: Dict[str, Tuple[int, Decimal]] = field(default_factory=dict)
    top_penalized_clients: List[PenalizedClient] = field(default_factory=list)

    @property
    def provision(self) -> Decimal:
        return sum((b.provision for b in self.buckets.values()), ZERO)

    @property
    def recommended_action(self) -> str:
        return RECOMMENDED_ACTIONS[self.level]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "score": str(self.score.quantize(Decimal('0.1'))),
            "level": self.level.value,
            "buckets": {bucket.label: totals.to_dict() for bucket, totals in self.buckets.items()},
            "provision": money_str(self.provision),
            "penalties_by_kind": [
                {"kind": kind, "count": count, "amount": money_str(amount)}
                for kind, (count, amount) in self.penalties_by_kind.items()
            ],
            "top_penalized_clients": [
                {"client_id": c.client_id, "name": c.name, "penalty_count": c.penalty_count}
                for c in self.top_penalized_clients
            ],
            "recommended_action": self.recommended_action
        }


class RiskClassifier:
    """Scores the portfolio; writes nothing"""

    def __init__(self, repository: LedgerRepository, clock: Clock,
                 profit_rate: Decimal = Decimal('0.20'),
                 clients: Optional[ClientDirectory] = None):
        self.repository = repository
        self.clock = clock
        self.profit_rate = profit_rate
        self.clients = clients

    def classify_portfolio(self) -> PortfolioRiskReport:
        today = self.clock.today()
        buckets = {bucket: BucketTotals(bucket) for bucket in RiskBucket}

        for loan in self.repository.list_loans(LoanStatus.ACTIVE):
            days = calendar_days_between(self.clock.local_day(loan.due_at), today)
            self._add(buckets[bucket_for_days(days)], loan)

        for loan in self.repository.list_loans(LoanStatus.DELINQUENT):
            self._add(buckets[RiskBucket.DELINQUENT], loan)

        considered = sum(b.count for b in buckets.values())
        if considered:
            weighted = Decimal(sum(b.count * b.bucket.weight for b in buckets.values())) / Decimal(considered)
            score = min(Decimal('100'), weighted * 20)
        else:
            score = ZERO

        report = PortfolioRiskReport(
            generated_at=self.clock.now().isoformat(),
            score=score,
            level=level_for_score(score),
            buckets=buckets,
            penalties_by_kind=self._penalties_by_kind(),
            top_penalized_clients=self._top_penalized_clients()
        )
        logger.info(f"Portfolio risk {report.level.value} (score {report.score:.1f}) "
                    f"over {considered} open loans, provision {round_money(report.provision)}")
        return report

    def _add(self, totals: BucketTotals, loan: Loan) -> None:
        totals.count += 1
        totals.principal += loan.principal
        totals.outstanding_principal += self._outstanding_principal(loan)

    def _outstanding_principal(self, loan: Loan) -> Decimal:
        """Principal not yet covered by the cumulative waterfall"""
        paid = sum((p.amount for p in self.repository.find_payments_by_loan(loan.id)), ZERO)
        if paid == ZERO:
            return loan.principal
        penalties_due = sum((p.amount for p in self.repository.find_penalties_by_loan(loan.id)
                             if p.status.counts_toward_debt), ZERO)
        covered = allocate(paid, penalties_due, loan.principal * self.profit_rate, loan.principal)
        return loan.principal - covered.principal

    def _penalties_by_kind(self) -> Dict[str, Tuple[int, Decimal]]:
        totals: Dict[str, Tuple[int, Decimal]] = {}
        for penalty in self.repository.list_penalties():
            count, amount = totals.get(penalty.kind.value, (0, ZERO))
            totals[penalty.kind.value] = (count + 1, amount + penalty.amount)
        return totals

    def _top_penalized_clients(self) -> List[PenalizedClient]:
        counts = Counter(p.client_id for p in self.repository.list_penalties())
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:TOP_PENALIZED_CLIENTS]
        return [
            PenalizedClient(
                client_id=client_id,
                name=self.clients.display_name(client_id) if self.clients else client_id,
                penalty_count=count
            )
            for client_id, count in ranked
        ]
