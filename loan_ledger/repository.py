"""
Loan Repository Module

Persists loan aggregates on top of a StorageInterface. Each loan is stored as
one document with its schedules and penalties embedded; the payment log lives
in its own table and references loans by id.

Every loan document carries a version number. update() only succeeds when the
caller loaded the version that is still stored, which keeps concurrent
payments and penalty impositions on the same loan from overwriting each other.
"""

from typing import List, Optional, Tuple
import logging

from .exceptions import ConcurrentModificationError, InvalidStateError, LoanNotFoundError
from .loans import Loan
from .payments import Payment
from .penalties import Penalty
from .storage import StorageInterface


logger = logging.getLogger("loan_ledger.repository")


class LoanRepository:
    """Load/save boundary for loan aggregates and their payment log"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.payments_table = "loan_payments"

    def add(self, loan: Loan) -> None:
        """Store a new loan"""
        with self.storage.atomic():
            if self.storage.exists(self.loans_table, loan.id):
                raise InvalidStateError(f"Loan {loan.id} already exists")
            data = loan.to_dict()
            data['version'] = 1
            self.storage.save(self.loans_table, loan.id, data)
        loan.version = 1

    def get(self, loan_id: str) -> Optional[Loan]:
        """Load a loan with schedules, penalties and payments populated"""
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            return None
        loan = Loan.from_dict(data)
        loan.payments = self.get_payments(loan_id)
        return loan

    def require(self, loan_id: str) -> Loan:
        loan = self.get(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def get_for_client(self, client_id: str) -> List[Loan]:
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, {"client_id": client_id})]
        for loan in loans:
            loan.payments = self.get_payments(loan.id)
        return loans

    def list_all(self) -> List[Loan]:
        """All loans, without their payment logs"""
        return [Loan.from_dict(data) for data in self.storage.load_all(self.loans_table)]

    def update(self, loan: Loan) -> None:
        """
        Save a mutated loan

        Raises:
            LoanNotFoundError: If the loan was never stored
            ConcurrentModificationError: If the stored loan changed since it was loaded
        """
        with self.storage.atomic():
            stored = self.storage.load(self.loans_table, loan.id)
            if stored is None:
                raise LoanNotFoundError(f"Loan {loan.id} not found")
            if stored.get('version', 0) != loan.version:
                raise ConcurrentModificationError(
                    f"Loan {loan.id} was modified concurrently "
                    f"(loaded version {loan.version}, stored version {stored.get('version', 0)})"
                )
            data = loan.to_dict()
            data['version'] = loan.version + 1
            self.storage.save(self.loans_table, loan.id, data)
        loan.version += 1

    def add_penalty(self, penalty: Penalty) -> None:
        """Attach a new penalty to the latest stored version of its loan"""
        with self.storage.atomic():
            stored = self.storage.load(self.loans_table, penalty.loan_id)
            if stored is None:
                raise LoanNotFoundError(f"Loan {penalty.loan_id} not found")
            stored.setdefault('penalties', []).append(penalty.to_dict())
            stored['version'] = stored.get('version', 0) + 1
            self.storage.save(self.loans_table, penalty.loan_id, stored)
        logger.debug(f"Penalty {penalty.id} stored for loan {penalty.loan_id}")

    def find_penalty(self, penalty_id: str) -> Optional[Tuple[Loan, Penalty]]:
        """Locate a penalty and the loan that owns it"""
        for loan in self.list_all():
            for penalty in loan.penalties:
                if penalty.id == penalty_id:
                    return loan, penalty
        return None

    def add_payment(self, payment: Payment) -> None:
        self.storage.save(self.payments_table, payment.id, payment.to_dict())

    def get_payments(self, loan_id: str) -> List[Payment]:
        """Payment history for a loan, oldest first"""
        payments = [Payment.from_dict(data) for data in self.storage.find(self.payments_table, {"loan_id": loan_id})]
        payments.sort(key=lambda payment: payment.payment_date)
        return payments
