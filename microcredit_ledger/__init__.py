"""
Microcredit Ledger Engine

Payment allocation, daily late-penalty accrual, loan status resolution and
portfolio risk classification for a microcredit back-office. All money math
uses Decimal.
"""

__version__ = "1.0.0"
