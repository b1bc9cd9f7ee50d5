"""
Loan Ledger

Loan amortization and payment ledger for microfinance lenders: schedule
generation, penalty suggestions, payment application with surplus cascade,
and collector route closings.
"""

__version__ = "1.0.0"
