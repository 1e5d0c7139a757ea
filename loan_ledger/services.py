"""
Application Services Module

Boundary-layer operations around the loan aggregate: applying for a loan,
reporting its status, and taking payments. These services own the checks the
aggregate deliberately leaves to its callers (ownership, loan status, refunds
of overpayments) and wrap every load/mutate/save cycle in one storage
transaction.
"""

from datetime import datetime, timezone, date, time
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
import logging
import uuid

from .clients import Client
from .config import LedgerConfig, get_config
from .currency import Money, Currency
from .delinquency import DelinquencyScanner
from .exceptions import (
    ClientNotEligibleError, InvalidArgumentError, InvalidStateError,
    LoanLedgerError, LoanNotFoundError, PenaltyNotFoundError,
)
from .loans import Loan, LoanStatus
from .logging_config import log_action
from .payments import Payment
from .penalties import Penalty
from .repository import LoanRepository
from .schemas import LoanStatusResponse, PenaltyResponse
from .storage import create_storage
from .strategies import (
    ApproveAllStrategy, LoanApprovalStrategy, LoggingRefundSink, RefundSink,
)


logger = logging.getLogger("loan_ledger.services")


def _payment_timestamp(today: Optional[date]) -> datetime:
    if today is None:
        return datetime.now(timezone.utc)
    return datetime.combine(today, time.min, tzinfo=timezone.utc)


class LoanService:
    """Loan applications and status reporting"""

    def __init__(
        self,
        repository: LoanRepository,
        approval_strategy: Optional[LoanApprovalStrategy] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.repository = repository
        self.approval_strategy = approval_strategy or ApproveAllStrategy()
        self.config = config or get_config()

    def apply_for_loan(
        self,
        client: Client,
        amount: Money,
        interest_rate: Decimal,
        duration_in_months: int,
        start_date: Optional[date] = None,
        name: str = ""
    ) -> Loan:
        """
        Apply for a new loan

        The client must be eligible; the approval strategy then decides the
        status. Approved loans get their payment schedule generated before
        the loan is stored.

        Args:
            client: Applicant
            amount: Principal; plain numbers are taken in the default currency
            interest_rate: Annual rate in percent
            duration_in_months: Number of monthly installments
            start_date: Loan start (defaults to today)
            name: Display name

        Returns:
            The stored Loan (APPROVED or REJECTED)

        Raises:
            InvalidArgumentError: If the terms are not positive
            ClientNotEligibleError: If the client may not borrow
        """
        if client is None:
            raise InvalidArgumentError("Client is required to apply for a loan.")
        if not isinstance(amount, Money):
            amount = Money(Decimal(str(amount)), Currency[self.config.default_currency])
        if not amount.is_positive():
            raise InvalidArgumentError("Loan amount must be greater than zero.")
        if duration_in_months <= 0:
            raise InvalidArgumentError("Loan duration must be at least one month.")

        start_date = start_date or date.today()
        if not client.is_eligible_for_loan(start_date, self.config.minimum_borrower_age):
            logger.warning(f"Client {client.id} is not eligible for a loan")
            raise ClientNotEligibleError(f"Client {client.id} is not eligible for a loan.")

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            client_id=client.id,
            name=name,
            amount=amount,
            interest_rate=interest_rate,
            duration_in_months=duration_in_months,
            start_date=start_date,
        )

        if self.approval_strategy.is_loan_approved(client, loan):
            loan.approve()
            loan.generate_payment_schedules()
        else:
            loan.reject()

        self.repository.add(loan)

        log_action(
            logger, "info", f"Loan applied for client {client.id}: {loan.status.display_string}",
            action="apply_for_loan", loan_id=loan.id, client_id=client.id,
            extra={"amount": amount.to_string(), "duration_in_months": duration_in_months},
        )
        return loan

    def get_loan_status(self, client: Client, loan_id: str, today: Optional[date] = None) -> LoanStatusResponse:
        """Status summary for one of the client's loans"""
        loan = self.repository.get(loan_id)
        self._validate_ownership(client, loan, loan_id)
        return LoanStatusResponse.from_loan(loan, today)

    def get_penalties(self, client: Client) -> List[PenaltyResponse]:
        """All penalties across the client's loans, oldest first"""
        penalties = [
            penalty
            for loan in self.repository.get_for_client(client.id)
            for penalty in loan.penalties
        ]
        penalties.sort(key=lambda penalty: penalty.imposed_date)
        return [PenaltyResponse.from_penalty(penalty) for penalty in penalties]

    def _validate_ownership(self, client: Client, loan: Optional[Loan], loan_id: str) -> None:
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        if loan.client_id != client.id:
            logger.warning(f"Client {client.id} does not own loan {loan_id}")
            raise InvalidArgumentError("The specified loan does not belong to the client.")


class PaymentService:
    """Loan and penalty payments"""

    def __init__(self, repository: LoanRepository, refund_sink: Optional[RefundSink] = None):
        self.repository = repository
        self.refund_sink = refund_sink or LoggingRefundSink()

    def make_payment(self, loan_id: str, amount: Money, today: Optional[date] = None) -> Payment:
        """
        Take a payment on a loan

        Money beyond the remaining balance is refunded through the refund sink
        once the capped payment has been committed. The loan update and the
        payment log entry are stored in one transaction.

        Returns:
            The recorded Payment

        Raises:
            InvalidArgumentError: If the amount is not positive
            LoanNotFoundError: If the loan does not exist
            InvalidStateError: If the loan does not accept payments
            ConcurrentModificationError: If the loan changed while being paid
        """
        if not amount.is_positive():
            logger.warning(f"Invalid payment amount {amount.to_string()} for loan {loan_id}")
            raise InvalidArgumentError("Payment amount must be greater than zero.")

        loan = self.repository.require(loan_id)
        if amount.currency != loan.currency:
            logger.warning(f"Payment currency {amount.currency.code} rejected for loan {loan_id}")
            raise InvalidArgumentError(
                f"Payment currency {amount.currency.code} does not match loan currency {loan.currency.code}"
            )
        self._check_accepts_payments(loan)

        refund = Money.zero(amount.currency)
        if amount > loan.remaining_amount:
            refund = amount - loan.remaining_amount
            amount = loan.remaining_amount
            logger.info(f"Payment on loan {loan_id} exceeds the remaining amount by {refund.to_string()}")

        payment_date = _payment_timestamp(today)
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=payment_date,
            updated_at=payment_date,
            loan_id=loan.id,
            payment_date=payment_date,
            amount=amount,
        )

        try:
            with self.repository.storage.atomic():
                loan.make_payment(amount, today)
                self.repository.update(loan)
                self.repository.add_payment(payment)
        except LoanLedgerError as e:
            logger.warning(f"Payment on loan {loan_id} rejected: {e}")
            raise
        except Exception:
            logger.exception(f"Error occurred while processing payment for loan {loan_id}")
            raise

        loan.payments.append(payment)
        if refund.is_positive():
            self.refund_sink.send_back(refund, loan.id)

        log_action(
            logger, "info", f"Payment of {amount.to_string()} processed",
            action="make_payment", loan_id=loan.id, client_id=loan.client_id,
            extra={
                "payment_id": payment.id,
                "remaining_amount": loan.remaining_amount.to_string(),
                "status": loan.status.value,
            },
        )
        return payment

    def make_penalty_payment(self, penalty_id: str, amount: Money, today: Optional[date] = None) -> Penalty:
        """
        Pay one penalty directly, refunding anything beyond what it still owes

        Raises:
            InvalidArgumentError: If the amount is not positive
            PenaltyNotFoundError: If no loan holds the penalty
            InvalidStateError: If the penalty is already paid
        """
        if not amount.is_positive():
            raise InvalidArgumentError("Payment amount must be greater than zero.")

        found = self.repository.find_penalty(penalty_id)
        if found is None:
            logger.error(f"Penalty {penalty_id} not found")
            raise PenaltyNotFoundError(f"Penalty {penalty_id} not found")
        loan, penalty = found

        if penalty.is_paid:
            logger.warning(f"Penalty {penalty_id} is already paid")
            raise InvalidStateError("Penalty is already paid.")
        if amount.currency != penalty.amount.currency:
            raise InvalidArgumentError(
                f"Payment currency {amount.currency.code} does not match penalty currency {penalty.amount.currency.code}"
            )

        with self.repository.storage.atomic():
            consumed = penalty.apply(amount, _payment_timestamp(today))
            loan.touch()
            self.repository.update(loan)

        excess = amount - consumed
        if excess.is_positive():
            self.refund_sink.send_back(excess, loan.id)

        log_action(
            logger, "info", f"Penalty payment of {consumed.to_string()} processed",
            action="make_penalty_payment", loan_id=loan.id,
            extra={"penalty_id": penalty.id, "remaining_amount": penalty.remaining_amount.to_string()},
        )
        return penalty

    def get_payments(self, client: Client) -> List[Payment]:
        """Payment log across all of the client's loans"""
        payments = [
            payment
            for loan in self.repository.get_for_client(client.id)
            for payment in loan.payments
        ]
        logger.debug(f"Found {len(payments)} payment(s) for client {client.id}")
        return payments

    def _check_accepts_payments(self, loan: Loan) -> None:
        if loan.status == LoanStatus.APPROVED:
            return
        logger.warning(f"Attempted to make a payment on a {loan.status.value} loan {loan.id}")
        raise InvalidStateError(f"Cannot make payments on a {loan.status.value} loan.")


@dataclass
class Ledger:
    """Wired set of ledger components sharing one storage backend"""
    repository: LoanRepository
    loans: LoanService
    payments: PaymentService
    scanner: DelinquencyScanner


def create_ledger(
    config: Optional[LedgerConfig] = None,
    approval_strategy: Optional[LoanApprovalStrategy] = None,
    refund_sink: Optional[RefundSink] = None
) -> Ledger:
    """Build repository, services and scanner from configuration"""
    config = config or get_config()
    repository = LoanRepository(create_storage(config.database_url))
    return Ledger(
        repository=repository,
        loans=LoanService(repository, approval_strategy, config),
        payments=PaymentService(repository, refund_sink),
        scanner=DelinquencyScanner(repository, config.late_payment_reason),
    )
