"""
Test suite for portfolio risk classification

Tests bucketing by days overdue, the weighted score, provisioning on
outstanding principal and the penalty breakdowns.
"""

import pytest
from datetime import datetime, date
from decimal import Decimal

from microcredit_ledger.models import LoanStatus, Payment, PaymentMethod, PenaltyStatus
from microcredit_ledger.risk import RiskBucket, RiskLevel, bucket_for_days, level_for_score


def issue(system, client_id, due_at, principal="1000"):
    return system.loan_register.issue_loan(
        client_id, principal, due_at=due_at, issued_at=datetime(2025, 1, 1, 12, 0)
    )


def mark_delinquent(system, loan):
    loan.status = LoanStatus.DELINQUENT
    system.repository.save_loan(loan)


@pytest.fixture
def portfolio(system):
    """One loan per bucket, principal 1000 each, as of 15 March"""
    loans = {
        RiskBucket.CURRENT: issue(system, "C1", datetime(2025, 3, 20, 12, 0)),
        RiskBucket.OVERDUE_1_7: issue(system, "C2", datetime(2025, 3, 12, 12, 0)),
        RiskBucket.OVERDUE_8_30: issue(system, "C3", datetime(2025, 3, 1, 12, 0)),
        RiskBucket.OVERDUE_OVER_30: issue(system, "C4", datetime(2025, 2, 1, 12, 0)),
        RiskBucket.DELINQUENT: issue(system, "C5", datetime(2025, 3, 10, 12, 0)),
    }
    mark_delinquent(system, loans[RiskBucket.DELINQUENT])
    return loans


class TestBucketing:

    @pytest.mark.parametrize("days,bucket", [
        (-3, RiskBucket.CURRENT),
        (0, RiskBucket.CURRENT),
        (1, RiskBucket.OVERDUE_1_7),
        (7, RiskBucket.OVERDUE_1_7),
        (8, RiskBucket.OVERDUE_8_30),
        (30, RiskBucket.OVERDUE_8_30),
        (31, RiskBucket.OVERDUE_OVER_30),
    ])
    def test_bucket_for_days(self, days, bucket):
        """Test bucket boundaries"""
        assert bucket_for_days(days) == bucket

    @pytest.mark.parametrize("score,level", [
        (Decimal('0'), RiskLevel.LOW),
        (Decimal('19.9'), RiskLevel.LOW),
        (Decimal('20'), RiskLevel.MODERATE),
        (Decimal('50'), RiskLevel.HIGH),
        (Decimal('75'), RiskLevel.CRITICAL),
        (Decimal('100'), RiskLevel.CRITICAL),
    ])
    def test_level_thresholds(self, score, level):
        """Test risk level thresholds"""
        assert level_for_score(score) == level


class TestClassifyPortfolio:

    def test_empty_portfolio(self, system):
        """Test empty portfolio report"""
        report = system.risk_classifier.classify_portfolio()

        assert report.score == Decimal('0')
        assert report.level == RiskLevel.LOW
        assert report.provision == Decimal('0')
        assert report.top_penalized_clients == []

    def test_mixed_portfolio(self, system, portfolio):
        """Test mixed portfolio score and buckets"""
        report = system.risk_classifier.classify_portfolio()

        for bucket in RiskBucket:
            assert report.buckets[bucket].count == 1
        assert report.score == Decimal('44')
        assert report.level == RiskLevel.MODERATE
        assert report.provision == Decimal('1420')
        assert report.recommended_action.startswith("Keep regular monitoring")

    def test_paid_loans_are_ignored(self, system):
        """Test that paid loans are excluded"""
        loan = issue(system, "C1", datetime(2025, 3, 20, 12, 0))
        system.payment_engine.record_payment(loan.id, "1200", "cash")

        report = system.risk_classifier.classify_portfolio()

        assert sum(b.count for b in report.buckets.values()) == 0
        assert report.level == RiskLevel.LOW

    def test_provision_uses_outstanding_principal(self, system, portfolio, clock):
        """Test provision on outstanding principal"""
        loan = portfolio[RiskBucket.OVERDUE_OVER_30]
        now = clock.now()
        # Inserted directly so the loan keeps its ACTIVE status
        system.repository.create_payment(Payment(
            id="PAY-1", created_at=now, updated_at=now,
            loan_id=loan.id, client_id=loan.client_id,
            amount=Decimal('300'), paid_at=now, method=PaymentMethod.CASH
        ))

        report = system.risk_classifier.classify_portfolio()
        totals = report.buckets[RiskBucket.OVERDUE_OVER_30]

        assert totals.principal == Decimal('1000')
        assert totals.outstanding_principal == Decimal('900')
        assert totals.provision == Decimal('270')

    def test_all_delinquent_is_critical(self, system):
        """Test critical level for a fully delinquent portfolio"""
        for client_id in ("C1", "C2"):
            mark_delinquent(system, issue(system, client_id, datetime(2025, 3, 1, 12, 0)))

        report = system.risk_classifier.classify_portfolio()

        assert report.score == Decimal('100')
        assert report.level == RiskLevel.CRITICAL
        assert report.provision == Decimal('2000')

    def test_penalty_breakdowns(self, system, storage, make_penalty):
        """Test penalty totals by kind and top clients"""
        storage.save("clients", "C2", {"id": "C2", "name": "Ana Macuacua"})
        first = issue(system, "C1", datetime(2025, 3, 1, 12, 0))
        second = issue(system, "C2", datetime(2025, 3, 1, 12, 0))
        make_penalty(first, date(2025, 3, 2), 1, "50")
        make_penalty(second, date(2025, 3, 2), 1, "50")
        make_penalty(second, date(2025, 3, 3), 2, "50", status=PenaltyStatus.PAID)

        report = system.risk_classifier.classify_portfolio()

        assert report.penalties_by_kind == {"late": (3, Decimal('150'))}
        assert [(c.client_id, c.name, c.penalty_count) for c in report.top_penalized_clients] == [
            ("C2", "Ana Macuacua", 2),
            ("C1", "C1", 1),
        ]

    def test_to_dict(self, system, portfolio):
        """Test risk report serialization"""
        data = system.risk_classifier.classify_portfolio().to_dict()

        assert data["score"] == "44.0"
        assert data["level"] == "moderate"
        assert data["provision"] == "1420.00"
        assert data["buckets"]["overdue_8_30"]["provision"] == "100.00"
        assert data["buckets"]["delinquent"]["provision_rate"] == "1.00"

    def test_classification_writes_nothing(self, system, portfolio):
        """Test that classification is read-only"""
        before = system.audit_trail.count_events()

        system.risk_classifier.classify_portfolio()

        assert system.audit_trail.count_events() == before
        assert system.repository.get_loan(portfolio[RiskBucket.CURRENT].id).status == LoanStatus.ACTIVE
