"""Borrowers and the eligibility rule applied before a loan application is accepted."""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Optional


@dataclass
class Client:
    """Loan applicant"""
    id: str
    first_name: str
    last_name: str
    date_of_birth: date
    credit_score: Decimal = Decimal('0')

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def age_on(self, day: date) -> int:
        """Age in completed years on the given day"""
        age = day.year - self.date_of_birth.year
        if (day.month, day.day) < (self.date_of_birth.month, self.date_of_birth.day):
            age -= 1
        return age

    def is_eligible_for_loan(self, today: Optional[date] = None, minimum_age: int = 18) -> bool:
        return self.age_on(today or date.today()) >= minimum_age
