"""
Payment Schedule Module

One expected monthly installment of a loan, with paid/outstanding tracking.
"""

from datetime import date
from dataclasses import dataclass
from typing import Any, Dict

from .currency import Money, min_money
from .storage import StorageRecord


@dataclass
class PaymentSchedule(StorageRecord):
    """Single installment in a loan's payment schedule"""
    loan_id: str
    payment_day: date                   # Due date
    amount: Money                       # Expected payment, recalculated on overpayment
    paid_amount: Money = None           # Paid toward this installment so far
    is_paid: bool = False

    def __post_init__(self):
        if self.paid_amount is None:
            self.paid_amount = Money.zero(self.amount.currency)

    @property
    def outstanding(self) -> Money:
        """Amount still owed on this installment, never negative"""
        remaining = self.amount - self.paid_amount
        if remaining.is_negative():
            return Money.zero(self.amount.currency)
        return remaining

    def is_due_in(self, year: int, month: int) -> bool:
        return self.payment_day.year == year and self.payment_day.month == month

    def apply(self, money: Money) -> Money:
        """
        Apply money toward this installment

        Returns:
            The portion actually consumed (at most the outstanding amount)
        """
        outstanding = self.outstanding
        consumed = min_money(money, outstanding)
        self.paid_amount = self.paid_amount + consumed
        if self.paid_amount >= self.amount:
            self.is_paid = True
        return consumed

    def settle(self) -> None:
        """Mark fully paid, used when the whole loan is settled"""
        self.paid_amount = self.amount
        self.is_paid = True

    def reschedule(self, new_amount: Money) -> None:
        """Overwrite the expected amount after a re-spread of the remaining balance"""
        if self.paid_amount >= new_amount:
            # Already covered by earlier partial payments
            self.amount = self.paid_amount
            self.is_paid = True
        else:
            self.amount = new_amount

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            'loan_id': self.loan_id,
            'payment_day': self.payment_day.isoformat(),
            'amount': self.amount.to_dict(),
            'paid_amount': self.paid_amount.to_dict(),
            'is_paid': self.is_paid,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentSchedule':
        return cls(
            **cls._base_fields(data),
            loan_id=data['loan_id'],
            payment_day=date.fromisoformat(data['payment_day']),
            amount=Money.from_dict(data['amount']),
            paid_amount=Money.from_dict(data['paid_amount']),
            is_paid=data['is_paid'],
        )
