"""
Pydantic schemas for loan status and history responses
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field

from .currency import Money, Currency
from .loans import Loan
from .payments import Payment
from .penalties import Penalty


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (USD, EUR, etc.)")

    def to_money(self) -> Money:
        return Money(Decimal(self.amount), Currency[self.currency])

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


class LoanStatusResponse(BaseModel):
    loan_id: str
    name: str
    monthly_payment: MoneyModel = Field(..., description="Next installment nothing has been paid toward")
    current_month_payment: MoneyModel = Field(..., description="Still owed for the current billing month")
    remaining_amount: MoneyModel
    start_date: date
    end_date: date
    status: str

    @classmethod
    def from_loan(cls, loan: Loan, today: Optional[date] = None) -> 'LoanStatusResponse':
        return cls(
            loan_id=loan.id,
            name=loan.name,
            monthly_payment=MoneyModel.from_money(loan.get_next_month_payment()),
            current_month_payment=MoneyModel.from_money(loan.get_this_month_payment(today)),
            remaining_amount=MoneyModel.from_money(loan.remaining_amount),
            start_date=loan.start_date,
            end_date=loan.end_date,
            status=loan.status.display_string,
        )


class PenaltyResponse(BaseModel):
    penalty_id: str
    loan_id: str
    amount: MoneyModel
    remaining_amount: MoneyModel
    reason: str
    imposed_date: datetime
    is_paid: bool
    paid_date: Optional[datetime] = None

    @classmethod
    def from_penalty(cls, penalty: Penalty) -> 'PenaltyResponse':
        return cls(
            penalty_id=penalty.id,
            loan_id=penalty.loan_id,
            amount=MoneyModel.from_money(penalty.amount),
            remaining_amount=MoneyModel.from_money(penalty.remaining_amount),
            reason=penalty.reason,
            imposed_date=penalty.imposed_date,
            is_paid=penalty.is_paid,
            paid_date=penalty.paid_date,
        )


class PaymentResponse(BaseModel):
    payment_id: str
    loan_id: str
    amount: MoneyModel
    payment_date: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> 'PaymentResponse':
        return cls(
            payment_id=payment.id,
            loan_id=payment.loan_id,
            amount=MoneyModel.from_money(payment.amount),
            payment_date=payment.payment_date,
        )
