"""
Penalty Module

Late fees imposed on a loan. A penalty is paid down independently of the
regular installments and always before them.
"""

from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .currency import Money, min_money
from .exceptions import InvalidArgumentError
from .storage import StorageRecord


@dataclass
class Penalty(StorageRecord):
    """Late fee owed on a loan"""
    loan_id: str
    amount: Money                       # Original fee
    reason: str
    imposed_date: datetime
    remaining_amount: Money = None      # Still owed
    is_paid: bool = False
    paid_date: Optional[datetime] = None

    def __post_init__(self):
        if self.remaining_amount is None:
            self.remaining_amount = self.amount
        if self.remaining_amount.is_negative() or self.remaining_amount > self.amount:
            raise InvalidArgumentError(
                f"Penalty remaining amount {self.remaining_amount.to_string()} must be "
                f"between zero and {self.amount.to_string()}"
            )
        if self.remaining_amount.is_zero():
            self.is_paid = True

    def apply(self, money: Money, paid_on: datetime) -> Money:
        """
        Pay down this penalty

        Args:
            money: Money available for the penalty
            paid_on: Timestamp recorded if the penalty becomes fully paid

        Returns:
            The portion consumed, at most the remaining amount
        """
        consumed = min_money(money, self.remaining_amount)
        self.remaining_amount = self.remaining_amount - consumed
        if self.remaining_amount.is_zero():
            self.is_paid = True
            self.paid_date = paid_on
        return consumed

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            'loan_id': self.loan_id,
            'amount': self.amount.to_dict(),
            'remaining_amount': self.remaining_amount.to_dict(),
            'reason': self.reason,
            'imposed_date': self.imposed_date.isoformat(),
            'is_paid': self.is_paid,
            'paid_date': self.paid_date.isoformat() if self.paid_date else None,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Penalty':
        paid_date = data.get('paid_date')
        return cls(
            **cls._base_fields(data),
            loan_id=data['loan_id'],
            amount=Money.from_dict(data['amount']),
            remaining_amount=Money.from_dict(data['remaining_amount']),
            reason=data['reason'],
            imposed_date=datetime.fromisoformat(data['imposed_date']),
            is_paid=data['is_paid'],
            paid_date=datetime.fromisoformat(paid_date) if paid_date else None,
        )
