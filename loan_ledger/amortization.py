"""
Amortization Module

Pure functions for the loan math: monthly rate derivation, the standard
equal-installment payment formula and the calendar arithmetic used to place
due dates. All values are Decimal.
"""

from decimal import Decimal
from datetime import date
import calendar

from .exceptions import InvalidArgumentError


# Remaining balances closer to zero than this count as settled
SETTLEMENT_TOLERANCE = Decimal('0.01')

# Flat late fee as a fraction of the original principal
PENALTY_RATE = Decimal('0.01')

MONTHS_PER_YEAR = Decimal('12')


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    """Convert an annual percentage rate (e.g. 12 for 12%) to a monthly fraction"""
    return Decimal(annual_rate_percent) / Decimal('100') / MONTHS_PER_YEAR


def amortized_payment(principal: Decimal, rate: Decimal, periods: int) -> Decimal:
    """
    Equal-installment payment for a principal spread over a number of periods

    Standard formula: P * [r(1+r)^n] / [(1+r)^n - 1]

    Args:
        principal: Amount to amortize
        rate: Periodic (monthly) interest rate as a fraction
        periods: Number of remaining payments

    Returns:
        Payment per period, unrounded. Zero when no periods remain.
    """
    if periods < 0:
        raise InvalidArgumentError(f"Number of periods cannot be negative, got {periods}")
    if periods == 0:
        return Decimal('0')

    if rate == Decimal('0'):
        return principal / Decimal(periods)

    factor = (Decimal('1') + rate) ** periods
    return principal * (rate * factor) / (factor - Decimal('1'))


def is_effectively_zero(value: Decimal) -> bool:
    return abs(value) < SETTLEMENT_TOLERANCE


def due_day_in_month(year: int, month: int, day: int) -> date:
    """Date with the given day-of-month, clamped to the month's length"""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def add_months(start_date: date, months: int, day: int = None) -> date:
    """
    Add months to a date, handling month-end edge cases

    Args:
        start_date: Base date
        months: Months to add (may be negative)
        day: Day-of-month to aim for; defaults to the base date's day
    """
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    return due_day_in_month(year, month, day or start_date.day)
