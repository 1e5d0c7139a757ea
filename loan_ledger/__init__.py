"""
Loan Ledger

A loan-servicing ledger: amortized payment schedules, penalty-first payment
allocation, overpayment re-spreading and delinquency detection, built on
Decimal money arithmetic.
"""

__version__ = "1.0.0"
