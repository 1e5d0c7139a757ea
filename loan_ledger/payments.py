"""Historical record of money applied to a loan."""

from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict

from .currency import Money
from .storage import StorageRecord


@dataclass
class Payment(StorageRecord):
    """Append-only payment log entry; references its loan by id only"""
    loan_id: str
    payment_date: datetime
    amount: Money

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            'loan_id': self.loan_id,
            'payment_date': self.payment_date.isoformat(),
            'amount': self.amount.to_dict(),
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            **cls._base_fields(data),
            loan_id=data['loan_id'],
            payment_date=datetime.fromisoformat(data['payment_date']),
            amount=Money.from_dict(data['amount']),
        )
