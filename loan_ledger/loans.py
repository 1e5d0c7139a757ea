"""
Loan Module

The loan aggregate: amortized schedule generation, penalty-first payment
allocation, re-spreading of overpayments across the remaining installments,
and the queries used for delinquency detection and status reporting.

A Loan owns its payment schedules and penalties. All mutation happens inside
a single method call (make_payment, generate_payment_schedules), and every
precondition is checked before the first mutation, so a failed call leaves
the aggregate untouched.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import logging
import uuid

from .amortization import (
    PENALTY_RATE, add_months, amortized_payment, due_day_in_month,
    is_effectively_zero, monthly_rate,
)
from .currency import Money
from .exceptions import InvalidArgumentError, InvalidStateError
from .payments import Payment
from .penalties import Penalty
from .schedules import PaymentSchedule
from .storage import StorageRecord


logger = logging.getLogger("loan_ledger.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"        # Application received
    APPROVED = "approved"      # Approved, accepting payments
    REJECTED = "rejected"      # Terminal, never accepts payments
    COMPLETED = "completed"    # Terminal, fully paid

    @property
    def display_string(self) -> str:
        return {
            LoanStatus.PENDING: "Loan is Pending",
            LoanStatus.APPROVED: "Loan has been Approved",
            LoanStatus.REJECTED: "Loan has been Rejected",
            LoanStatus.COMPLETED: "Loan has been Completed",
        }[self]


def _timestamp(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


@dataclass
class Loan(StorageRecord):
    """Loan aggregate with its schedule, penalties and payment history"""
    client_id: str
    amount: Money                       # Original principal
    interest_rate: Decimal              # Annual percent, e.g. 12 for 12%
    duration_in_months: int
    start_date: date
    name: str = ""
    status: LoanStatus = LoanStatus.PENDING
    remaining_amount: Money = None      # Outstanding balance, never below zero
    end_date: Optional[date] = None
    payment_schedules: List[PaymentSchedule] = field(default_factory=list)
    penalties: List[Penalty] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    version: int = 0                    # Optimistic concurrency counter

    def __post_init__(self):
        if not isinstance(self.interest_rate, Decimal):
            self.interest_rate = Decimal(str(self.interest_rate))
        if self.remaining_amount is None:
            self.remaining_amount = self.amount
        if self.end_date is None:
            self.end_date = add_months(self.start_date, self.duration_in_months)

    @property
    def currency(self):
        return self.amount.currency

    @property
    def is_completed(self) -> bool:
        return self.status == LoanStatus.COMPLETED

    @property
    def unpaid_schedules(self) -> List[PaymentSchedule]:
        """Unpaid installments in due-date order"""
        return sorted(
            (schedule for schedule in self.payment_schedules if not schedule.is_paid),
            key=lambda schedule: schedule.payment_day,
        )

    @property
    def unpaid_penalties(self) -> List[Penalty]:
        """Unpaid penalties, oldest first"""
        return sorted(
            (penalty for penalty in self.penalties if not penalty.is_paid),
            key=lambda penalty: penalty.imposed_date,
        )

    # Lifecycle

    def approve(self) -> None:
        self._transition(LoanStatus.APPROVED)

    def reject(self) -> None:
        self._transition(LoanStatus.REJECTED)

    def _transition(self, new_status: LoanStatus) -> None:
        if self.status != LoanStatus.PENDING:
            raise InvalidStateError(
                f"Loan {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.touch()

    # Amortization

    def generate_payment_schedules(self) -> List[PaymentSchedule]:
        """
        Build the full installment plan from the original terms

        One fixed payment is computed from the original amount and duration,
        then one installment per month is created, the first due one month
        after the start date. Any existing schedule is replaced.

        Returns:
            The generated PaymentSchedule list

        Raises:
            InvalidStateError: If amount or duration is not positive
        """
        if not self.amount.is_positive():
            raise InvalidStateError(f"Loan amount must be greater than zero, got {self.amount.to_string()}")
        if self.duration_in_months <= 0:
            raise InvalidStateError(
                f"Loan duration must be greater than zero months, got {self.duration_in_months}"
            )

        payment = Money(
            amortized_payment(self.amount.amount, monthly_rate(self.interest_rate), self.duration_in_months),
            self.currency,
        )

        now = datetime.now(timezone.utc)
        self.payment_schedules = [
            PaymentSchedule(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=self.id,
                payment_day=add_months(self.start_date, offset, self.start_date.day),
                amount=payment,
            )
            for offset in range(1, self.duration_in_months + 1)
        ]
        self.touch()

        logger.debug(
            f"Generated {len(self.payment_schedules)} installments of {payment.to_string()} for loan {self.id}"
        )
        return list(self.payment_schedules)

    def calculate_monthly_payment(self) -> Money:
        """
        Current required payment: the remaining balance amortized over the
        unpaid installments. Zero when no installments remain unpaid.
        """
        return Money(
            amortized_payment(
                self.remaining_amount.amount,
                monthly_rate(self.interest_rate),
                len(self.unpaid_schedules),
            ),
            self.currency,
        )

    def calculate_penalty(self) -> Money:
        """Flat late fee: 1% of the original amount, regardless of how late"""
        return self.amount * PENALTY_RATE

    # Payments

    def make_payment(self, amount: Money, today: Optional[date] = None) -> None:
        """
        Apply an incoming payment

        Allocation order:
            1. Unpaid penalties, oldest first
            2. The full payment reduces the remaining balance
            3. Settlement when the balance reaches zero
            4. The current billing month's installment
            5. Anything left re-spreads the balance over the unpaid installments

        Args:
            amount: Payment amount, in the loan's currency
            today: Payment date (defaults to today)

        Raises:
            InvalidArgumentError: If the amount is not positive, in the wrong
                currency, or exceeds what is owed
        """
        if amount.currency != self.currency:
            raise InvalidArgumentError(
                f"Payment currency {amount.currency.code} does not match loan currency {self.currency.code}"
            )
        if not amount.is_positive():
            raise InvalidArgumentError("Payment amount must be greater than zero.")

        today = today or date.today()
        penalties = self.unpaid_penalties

        owed_penalties = Money.zero(self.currency)
        for penalty in penalties:
            owed_penalties = owed_penalties + penalty.remaining_amount
        reaches_balance = amount > owed_penalties
        if reaches_balance and amount > self.remaining_amount:
            raise InvalidArgumentError(
                f"Payment {amount.to_string()} exceeds remaining amount {self.remaining_amount.to_string()}"
            )

        money = amount
        for penalty in penalties:
            if money.is_zero():
                break
            money = money - penalty.apply(money, _timestamp(today))

        if money.is_zero():
            logger.debug(f"Payment of {amount.to_string()} on loan {self.id} fully absorbed by penalties")
            self.touch()
            return

        self.remaining_amount = self.remaining_amount - amount

        if is_effectively_zero(self.remaining_amount.amount):
            self._settle()
            return

        current = self._current_schedule(today)
        if current is not None:
            money = money - current.apply(money)

        if money.is_positive():
            self._respread()

        self.touch()

    def _settle(self) -> None:
        self.remaining_amount = Money.zero(self.currency)
        self.status = LoanStatus.COMPLETED
        for schedule in self.payment_schedules:
            schedule.settle()
        self.touch()
        logger.info(f"Loan {self.id} fully settled")

    def _respread(self) -> None:
        new_payment = self.calculate_monthly_payment()
        for schedule in self.unpaid_schedules:
            schedule.reschedule(new_payment)
        logger.debug(f"Loan {self.id} installments recalculated to {new_payment.to_string()}")

    # Billing-period queries

    def _billing_month(self, today: date) -> Tuple[int, int]:
        """
        Month whose installment is currently being collected: this month
        until the start day-of-month is reached, the next month from then on.
        """
        if today.day < self.start_date.day:
            return today.year, today.month
        following = add_months(today, 1, 1)
        return following.year, following.month

    def _current_schedule(self, today: date) -> Optional[PaymentSchedule]:
        year, month = self._billing_month(today)
        for schedule in self.unpaid_schedules:
            if schedule.is_due_in(year, month):
                return schedule
        return None

    def last_due_date(self, today: Optional[date] = None) -> date:
        """Most recent due day on or before today"""
        today = today or date.today()
        due = due_day_in_month(today.year, today.month, self.start_date.day)
        if due > today:
            due = add_months(today, -1, self.start_date.day)
        return due

    def have_last_months_fully_paid(self, today: Optional[date] = None) -> bool:
        """True when every installment due so far and every penalty is paid"""
        last_due = self.last_due_date(today)
        schedules_paid = all(
            schedule.is_paid
            for schedule in self.payment_schedules
            if schedule.payment_day <= last_due
        )
        penalties_paid = all(penalty.is_paid for penalty in self.penalties)
        return schedules_paid and penalties_paid

    def get_this_month_payment(self, today: Optional[date] = None) -> Money:
        """Outstanding amount on the current billing month's installment"""
        current = self._current_schedule(today or date.today())
        if current is None:
            return Money.zero(self.currency)
        return current.outstanding

    def get_next_month_payment(self) -> Money:
        """Amount of the earliest installment nothing has been paid toward"""
        if self.is_completed:
            return Money.zero(self.currency)
        untouched = [
            schedule for schedule in self.payment_schedules
            if schedule.paid_amount.is_zero()
        ]
        if not untouched:
            return Money.zero(self.currency)
        return min(untouched, key=lambda schedule: schedule.payment_day).amount

    def total_penalties_due(self) -> Money:
        total = Money.zero(self.currency)
        for penalty in self.unpaid_penalties:
            total = total + penalty.remaining_amount
        return total

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        """Aggregate document: the loan with its schedules and penalties embedded"""
        result = super().to_dict()
        result.update({
            'client_id': self.client_id,
            'name': self.name,
            'amount': self.amount.to_dict(),
            'remaining_amount': self.remaining_amount.to_dict(),
            'interest_rate': str(self.interest_rate),
            'duration_in_months': self.duration_in_months,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'status': self.status.value,
            'version': self.version,
            'payment_schedules': [schedule.to_dict() for schedule in self.payment_schedules],
            'penalties': [penalty.to_dict() for penalty in self.penalties],
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            **cls._base_fields(data),
            client_id=data['client_id'],
            name=data.get('name', ""),
            amount=Money.from_dict(data['amount']),
            remaining_amount=Money.from_dict(data['remaining_amount']),
            interest_rate=Decimal(data['interest_rate']),
            duration_in_months=data['duration_in_months'],
            start_date=date.fromisoformat(data['start_date']),
            end_date=date.fromisoformat(data['end_date']),
            status=LoanStatus(data['status']),
            version=data.get('version', 0),
            payment_schedules=[PaymentSchedule.from_dict(item) for item in data.get('payment_schedules', [])],
            penalties=[Penalty.from_dict(item) for item in data.get('penalties', [])],
        )
