"""
Test suite for the loan aggregate

Tests schedule generation, penalty-first payment allocation, settlement,
overpayment re-spreading and the delinquency queries. All dates are fixed so
billing-month rules are deterministic.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from loan_ledger.amortization import amortized_payment, monthly_rate
from loan_ledger.currency import Money, Currency
from loan_ledger.exceptions import InvalidArgumentError, InvalidStateError
from loan_ledger.loans import Loan, LoanStatus
from loan_ledger.penalties import Penalty


START = date(2024, 1, 15)
BEFORE_FIRST_DUE = date(2024, 1, 20)   # Billing month is February


def usd(value: str) -> Money:
    return Money(Decimal(value), Currency.USD)


def make_loan(amount: str = '10000.00', rate: str = '12', months: int = 12,
              start: date = START, status: LoanStatus = LoanStatus.APPROVED) -> Loan:
    now = datetime.now(timezone.utc)
    return Loan(
        id="LOAN001",
        created_at=now,
        updated_at=now,
        client_id="CLIENT001",
        name="Test Loan",
        amount=usd(amount),
        interest_rate=Decimal(rate),
        duration_in_months=months,
        start_date=start,
        status=status,
    )


def make_penalty(amount: str, imposed: datetime, penalty_id: str = "PEN001") -> Penalty:
    return Penalty(
        id=penalty_id,
        created_at=imposed,
        updated_at=imposed,
        loan_id="LOAN001",
        amount=usd(amount),
        reason="Late payment penalty",
        imposed_date=imposed,
    )


class TestLoanCreation:
    """Test loan defaults and lifecycle transitions"""

    def test_defaults(self):
        """Remaining amount starts at the principal and end date follows the duration"""
        loan = make_loan(status=LoanStatus.PENDING)

        assert loan.remaining_amount == usd('10000.00')
        assert loan.end_date == date(2025, 1, 15)
        assert loan.status == LoanStatus.PENDING
        assert loan.payment_schedules == []
        assert loan.version == 0

    def test_interest_rate_coerced_to_decimal(self):
        """Interest rate given as a string or int is stored as Decimal"""
        now = datetime.now(timezone.utc)
        loan = Loan(
            id="L", created_at=now, updated_at=now, client_id="C",
            amount=usd('500'), interest_rate='7.5', duration_in_months=6, start_date=START
        )
        assert loan.interest_rate == Decimal('7.5')

    def test_approve_and_reject_from_pending(self):
        """Pending loans can be approved or rejected exactly once"""
        approved = make_loan(status=LoanStatus.PENDING)
        approved.approve()
        assert approved.status == LoanStatus.APPROVED

        rejected = make_loan(status=LoanStatus.PENDING)
        rejected.reject()
        assert rejected.status == LoanStatus.REJECTED

        with pytest.raises(InvalidStateError):
            approved.reject()
        with pytest.raises(InvalidStateError):
            rejected.approve()

    def test_status_display_strings(self):
        """Statuses have human-readable descriptions"""
        assert LoanStatus.PENDING.display_string == "Loan is Pending"
        assert LoanStatus.APPROVED.display_string == "Loan has been Approved"
        assert LoanStatus.REJECTED.display_string == "Loan has been Rejected"
        assert LoanStatus.COMPLETED.display_string == "Loan has been Completed"


class TestGeneratePaymentSchedules:
    """Test amortized schedule generation"""

    def test_creates_one_unpaid_installment_per_month(self):
        """Exactly duration_in_months installments, all unpaid and equal"""
        loan = make_loan()

        schedules = loan.generate_payment_schedules()

        assert len(schedules) == loan.duration_in_months
        assert loan.payment_schedules == schedules
        assert all(not schedule.is_paid for schedule in schedules)
        assert all(schedule.paid_amount.is_zero() for schedule in schedules)
        assert len({schedule.amount for schedule in schedules}) == 1

    def test_fixed_payment_matches_formula(self):
        """$10,000 at 12% over 12 months is $888.49 per month"""
        loan = make_loan()

        schedules = loan.generate_payment_schedules()

        assert schedules[0].amount == usd('888.49')

    def test_due_dates_start_one_month_after_start(self):
        """Installments fall on the start day-of-month, beginning the following month"""
        loan = make_loan()

        schedules = loan.generate_payment_schedules()

        assert schedules[0].payment_day == date(2024, 2, 15)
        assert schedules[-1].payment_day == date(2025, 1, 15)
        assert schedules[-1].payment_day == loan.end_date
        assert all(schedule.loan_id == loan.id for schedule in schedules)

    def test_month_end_start_clamps_without_drift(self):
        """A loan starting on the 31st pays on each month's last day and returns to the 31st"""
        loan = make_loan(months=3, start=date(2024, 1, 31))

        days = [schedule.payment_day for schedule in loan.generate_payment_schedules()]

        assert days == [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]

    def test_regeneration_replaces_schedule(self):
        """Generating twice leaves a single schedule of duration_in_months entries"""
        loan = make_loan()
        first = loan.generate_payment_schedules()

        second = loan.generate_payment_schedules()

        assert len(loan.payment_schedules) == 12
        assert {s.id for s in first}.isdisjoint({s.id for s in second})

    def test_zero_interest_splits_evenly(self):
        """Interest-free loans divide the principal evenly"""
        loan = make_loan(amount='1200.00', rate='0')

        schedules = loan.generate_payment_schedules()

        assert all(schedule.amount == usd('100.00') for schedule in schedules)

    @pytest.mark.parametrize("amount,months", [('0', 12), ('-100', 12), ('10000', 0), ('10000', -3)])
    def test_rejects_non_positive_terms(self, amount, months):
        """Non-positive principal or duration cannot be amortized"""
        loan = make_loan(amount=amount, months=max(months, 1))
        loan.duration_in_months = months

        with pytest.raises(InvalidStateError):
            loan.generate_payment_schedules()


class TestCalculations:
    """Test monthly payment and penalty calculations"""

    def test_monthly_payment_uses_remaining_balance_and_unpaid_count(self):
        """The current payment re-amortizes the balance over unpaid installments"""
        loan = make_loan()
        loan.generate_payment_schedules()
        loan.remaining_amount = usd('6000.00')
        for schedule in loan.payment_schedules[:4]:
            schedule.is_paid = True

        expected = Money(amortized_payment(Decimal('6000.00'), monthly_rate(Decimal('12')), 8), Currency.USD)
        assert loan.calculate_monthly_payment() == expected

    def test_monthly_payment_is_idempotent(self):
        """Two calls without a payment in between agree"""
        loan = make_loan()
        loan.generate_payment_schedules()

        assert loan.calculate_monthly_payment() == loan.calculate_monthly_payment()
        assert loan.calculate_monthly_payment() == usd('888.49')

    def test_monthly_payment_zero_when_nothing_unpaid(self):
        """No unpaid installments means nothing further is due"""
        loan = make_loan()
        loan.generate_payment_schedules()
        for schedule in loan.payment_schedules:
            schedule.is_paid = True

        assert loan.calculate_monthly_payment() == usd('0')

    def test_penalty_is_flat_one_percent_of_original_amount(self):
        """Penalty ignores elapsed time and the remaining balance"""
        loan = make_loan()
        loan.remaining_amount = usd('2500.00')

        assert loan.calculate_penalty() == usd('100.00')
        assert loan.calculate_penalty() == loan.amount * Decimal('0.01')


class TestMakePayment:
    """Test the payment allocation algorithm"""

    def setup_method(self):
        self.loan = make_loan()
        self.loan.generate_payment_schedules()
        self.initial_payment = self.loan.payment_schedules[0].amount

    @pytest.mark.parametrize("value", ['0', '-5', '-100'])
    def test_non_positive_amount_rejected(self, value):
        """Zero and negative payments are invalid"""
        with pytest.raises(InvalidArgumentError):
            self.loan.make_payment(usd(value), BEFORE_FIRST_DUE)

        assert self.loan.remaining_amount == usd('10000.00')

    def test_invalid_argument_is_value_error(self):
        """InvalidArgumentError can be caught as ValueError"""
        with pytest.raises(ValueError):
            self.loan.make_payment(usd('0'), BEFORE_FIRST_DUE)

    def test_wrong_currency_rejected(self):
        """Payments must be in the loan currency"""
        with pytest.raises(InvalidArgumentError, match="currency"):
            self.loan.make_payment(Money(Decimal('100'), Currency.EUR), BEFORE_FIRST_DUE)

    def test_overpayment_beyond_balance_rejected_without_changes(self):
        """Paying more than is owed fails and leaves the loan untouched"""
        with pytest.raises(InvalidArgumentError, match="exceeds remaining amount"):
            self.loan.make_payment(usd('10000.01'), BEFORE_FIRST_DUE)

        assert self.loan.remaining_amount == usd('10000.00')
        assert self.loan.status == LoanStatus.APPROVED
        assert all(s.paid_amount.is_zero() for s in self.loan.payment_schedules)

    def test_regular_payment_covers_current_installment(self):
        """An exact installment pays the current billing month only"""
        self.loan.make_payment(self.initial_payment, BEFORE_FIRST_DUE)

        first, second = self.loan.payment_schedules[:2]
        assert first.is_paid
        assert first.paid_amount == self.initial_payment
        assert not second.is_paid
        assert self.loan.remaining_amount == usd('10000.00') - self.initial_payment
        # No spillover, so the plan is unchanged
        assert all(s.amount == self.initial_payment for s in self.loan.payment_schedules)

    def test_partial_payment(self):
        """A partial payment accumulates on the current installment"""
        self.loan.make_payment(usd('300.00'), BEFORE_FIRST_DUE)

        first = self.loan.payment_schedules[0]
        assert first.paid_amount == usd('300.00')
        assert not first.is_paid
        assert first.outstanding == usd('588.49')

        self.loan.make_payment(usd('588.49'), BEFORE_FIRST_DUE)
        assert first.is_paid

    def test_billing_month_before_start_day_is_current_month(self):
        """Before the start day-of-month the installment due this month is collected"""
        self.loan.make_payment(usd('100.00'), date(2024, 3, 10))

        march = self.loan.payment_schedules[1]
        assert march.payment_day == date(2024, 3, 15)
        assert march.paid_amount == usd('100.00')
        assert self.loan.payment_schedules[0].paid_amount.is_zero()

    def test_billing_month_on_start_day_is_next_month(self):
        """From the start day-of-month on, next month's installment is collected"""
        self.loan.make_payment(usd('100.00'), date(2024, 3, 15))

        assert self.loan.payment_schedules[2].payment_day == date(2024, 4, 15)
        assert self.loan.payment_schedules[2].paid_amount == usd('100.00')
        assert self.loan.payment_schedules[1].paid_amount.is_zero()

    def test_penalties_paid_first(self):
        """A 150 payment clears a 100 penalty and reduces the balance by the full 150"""
        penalty = make_penalty('100.00', datetime(2024, 1, 16, tzinfo=timezone.utc))
        self.loan.penalties = [penalty]

        self.loan.make_payment(usd('150.00'), BEFORE_FIRST_DUE)

        assert penalty.is_paid
        assert penalty.remaining_amount == usd('0')
        assert penalty.paid_date == datetime(2024, 1, 20, tzinfo=timezone.utc)
        assert self.loan.remaining_amount == usd('9850.00')
        assert self.loan.payment_schedules[0].paid_amount == usd('50.00')
        # Nothing spilled over, so installments keep their amounts
        assert self.loan.payment_schedules[1].amount == self.initial_payment

    def test_penalties_paid_oldest_first(self):
        """Older penalties are settled before newer ones"""
        newer = make_penalty('100.00', datetime(2024, 1, 18, tzinfo=timezone.utc), "NEW")
        older = make_penalty('100.00', datetime(2024, 1, 10, tzinfo=timezone.utc), "OLD")
        self.loan.penalties = [newer, older]

        self.loan.make_payment(usd('130.00'), BEFORE_FIRST_DUE)

        assert older.is_paid
        assert not newer.is_paid
        assert newer.remaining_amount == usd('70.00')
        assert self.loan.remaining_amount == usd('10000.00')

    def test_payment_absorbed_by_penalties_leaves_balance(self):
        """When penalties take the whole payment the balance is not touched"""
        penalty = make_penalty('100.00', datetime(2024, 1, 16, tzinfo=timezone.utc))
        self.loan.penalties = [penalty]

        self.loan.make_payment(usd('60.00'), BEFORE_FIRST_DUE)

        assert penalty.remaining_amount == usd('40.00')
        assert not penalty.is_paid
        assert self.loan.remaining_amount == usd('10000.00')
        assert self.loan.payment_schedules[0].paid_amount.is_zero()

    def test_penalty_only_payment_not_checked_against_balance(self):
        """A payment fully absorbed by penalties may exceed the remaining balance"""
        self.loan.remaining_amount = usd('50.00')
        penalty = make_penalty('100.00', datetime(2024, 1, 16, tzinfo=timezone.utc))
        self.loan.penalties = [penalty]

        self.loan.make_payment(usd('80.00'), BEFORE_FIRST_DUE)

        assert penalty.remaining_amount == usd('20.00')
        assert self.loan.remaining_amount == usd('50.00')

    def test_full_settlement_completes_loan(self):
        """Paying the whole balance completes the loan and every installment"""
        self.loan.make_payment(usd('10000.00'), BEFORE_FIRST_DUE)

        assert self.loan.status == LoanStatus.COMPLETED
        assert self.loan.remaining_amount.is_zero()
        for schedule in self.loan.payment_schedules:
            assert schedule.is_paid
            assert schedule.paid_amount == schedule.amount

    def test_overpayment_respreads_remaining_installments(self):
        """Money beyond the current installment shrinks every unpaid installment equally"""
        self.loan.make_payment(usd('2000.00'), BEFORE_FIRST_DUE)

        first = self.loan.payment_schedules[0]
        unpaid = self.loan.unpaid_schedules
        expected = Money(amortized_payment(Decimal('8000.00'), monthly_rate(Decimal('12')), 11), Currency.USD)

        assert first.is_paid
        assert first.paid_amount == self.initial_payment
        assert self.loan.remaining_amount == usd('8000.00')
        assert len(unpaid) == 11
        assert all(schedule.amount == expected for schedule in unpaid)
        assert expected < self.initial_payment
        assert self.loan.calculate_monthly_payment() == expected

    def test_successive_overpayments_keep_shrinking_installments(self):
        """Each further overpayment lowers the re-spread installment again"""
        self.loan.make_payment(usd('2000.00'), BEFORE_FIRST_DUE)
        after_first = self.loan.unpaid_schedules[0].amount

        self.loan.make_payment(usd('1000.00'), BEFORE_FIRST_DUE)
        after_second = self.loan.unpaid_schedules[0].amount

        assert after_first < self.initial_payment
        assert after_second < after_first
        assert self.loan.remaining_amount == usd('7000.00')

    @pytest.mark.parametrize("value", ['5000', '7500', '9000'])
    def test_large_overpayments(self, value):
        """Large overpayments leave positive, identical future installments"""
        self.loan.make_payment(usd(value), BEFORE_FIRST_DUE)

        amounts = {schedule.amount for schedule in self.loan.unpaid_schedules}
        assert len(amounts) == 1
        new_payment = amounts.pop()
        assert new_payment.is_positive()
        assert new_payment < self.initial_payment

    def test_balance_decreases_by_each_payment(self):
        """Every accepted payment reduces the balance by exactly its amount"""
        for value in ['888.49', '250.00', '1500.00', '10.01']:
            before = self.loan.remaining_amount
            self.loan.make_payment(usd(value), BEFORE_FIRST_DUE)
            assert self.loan.remaining_amount == before - usd(value)
            assert not self.loan.remaining_amount.is_negative()

    def test_respread_marks_partially_covered_installment_paid(self):
        """An overdue installment already paid beyond the new amount counts as paid"""
        overdue = self.loan.payment_schedules[0]
        overdue.paid_amount = usd('800.00')

        # Paying in April: March is overdue too, April's installment is collected
        self.loan.make_payment(usd('9000.00'), date(2024, 3, 20))

        assert overdue.is_paid
        assert overdue.paid_amount <= overdue.amount
        for schedule in self.loan.payment_schedules:
            assert schedule.paid_amount <= schedule.amount


class TestDelinquencyQueries:
    """Test last-months-paid check and payment projections"""

    def setup_method(self):
        self.loan = make_loan()
        self.loan.generate_payment_schedules()

    def test_fully_paid_before_first_due_date(self):
        """Nothing is due before the first installment date"""
        assert self.loan.have_last_months_fully_paid(BEFORE_FIRST_DUE)

    def test_unpaid_last_month_is_detected(self):
        """A partially paid installment at or before the last due day fails the check"""
        february = self.loan.payment_schedules[0]
        february.paid_amount = usd('500.00')

        assert not self.loan.have_last_months_fully_paid(date(2024, 2, 20))

    def test_due_day_itself_counts(self):
        """On the due day the installment is already expected"""
        assert not self.loan.have_last_months_fully_paid(date(2024, 2, 15))
        assert self.loan.have_last_months_fully_paid(date(2024, 2, 14))

    def test_all_due_installments_paid(self):
        """Paid installments up to the last due day pass the check"""
        for schedule in self.loan.payment_schedules[:2]:
            schedule.settle()

        assert self.loan.have_last_months_fully_paid(date(2024, 3, 20))
        assert not self.loan.have_last_months_fully_paid(date(2024, 4, 20))

    def test_unpaid_penalty_fails_check(self):
        """Outstanding penalties count as missed payments"""
        self.loan.penalties = [make_penalty('100.00', datetime(2024, 1, 16, tzinfo=timezone.utc))]

        assert not self.loan.have_last_months_fully_paid(BEFORE_FIRST_DUE)

    def test_last_due_date_clamps_to_month_end(self):
        """Start day 31 maps to the last day of shorter months"""
        loan = make_loan(start=date(2024, 1, 31))

        assert loan.last_due_date(date(2024, 2, 29)) == date(2024, 2, 29)
        assert loan.last_due_date(date(2024, 2, 28)) == date(2024, 1, 31)
        assert loan.last_due_date(date(2024, 3, 5)) == date(2024, 2, 29)

    def test_this_month_payment(self):
        """The current billing month's outstanding amount"""
        assert self.loan.get_this_month_payment(BEFORE_FIRST_DUE) == usd('888.49')

        self.loan.make_payment(usd('88.49'), BEFORE_FIRST_DUE)
        assert self.loan.get_this_month_payment(BEFORE_FIRST_DUE) == usd('800.00')

        self.loan.make_payment(usd('800.00'), BEFORE_FIRST_DUE)
        assert self.loan.get_this_month_payment(BEFORE_FIRST_DUE) == usd('0')

    def test_this_month_payment_without_schedules(self):
        """No schedule means nothing due"""
        self.loan.payment_schedules = []

        assert self.loan.get_this_month_payment(BEFORE_FIRST_DUE) == usd('0')

    def test_next_month_payment(self):
        """Amount of the earliest untouched installment"""
        assert self.loan.get_next_month_payment() == usd('888.49')

        self.loan.make_payment(usd('2000.00'), BEFORE_FIRST_DUE)

        assert self.loan.get_next_month_payment() == self.loan.unpaid_schedules[0].amount
        assert self.loan.get_next_month_payment() < usd('888.49')

    def test_next_month_payment_zero_when_completed(self):
        """Completed loans owe nothing further"""
        self.loan.make_payment(usd('10000.00'), BEFORE_FIRST_DUE)

        assert self.loan.get_next_month_payment() == usd('0')
        assert self.loan.total_penalties_due() == usd('0')


class TestLoanSerialization:
    """Test the aggregate document format"""

    def test_round_trip_preserves_state(self):
        """Schedules, penalties and balances survive to_dict/from_dict"""
        loan = make_loan()
        loan.generate_payment_schedules()
        loan.penalties = [make_penalty('100.00', datetime(2024, 1, 16, tzinfo=timezone.utc))]
        loan.make_payment(usd('1000.00'), BEFORE_FIRST_DUE)

        restored = Loan.from_dict(loan.to_dict())

        assert restored.remaining_amount == loan.remaining_amount
        assert restored.status == loan.status
        assert restored.interest_rate == Decimal('12')
        assert restored.end_date == loan.end_date
        assert [s.amount for s in restored.payment_schedules] == [s.amount for s in loan.payment_schedules]
        assert [s.is_paid for s in restored.payment_schedules] == [s.is_paid for s in loan.payment_schedules]
        assert restored.penalties[0].is_paid
        assert restored.penalties[0].paid_date == loan.penalties[0].paid_date
