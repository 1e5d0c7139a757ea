"""
Pluggable Policies

Loan approval and overpayment refunds are decided outside the ledger core.
Each policy is an abstract interface with one trivial default.
"""

from abc import ABC, abstractmethod
import logging

from .clients import Client
from .currency import Money
from .loans import Loan


logger = logging.getLogger("loan_ledger.strategies")


class LoanApprovalStrategy(ABC):
    """Decides whether a new loan application is approved"""

    @abstractmethod
    def is_loan_approved(self, client: Client, loan: Loan) -> bool:
        pass


class ApproveAllStrategy(LoanApprovalStrategy):
    """Approves every application"""

    def is_loan_approved(self, client: Client, loan: Loan) -> bool:
        return True


class RefundSink(ABC):
    """Returns money a client paid beyond what was owed"""

    @abstractmethod
    def send_back(self, amount: Money, loan_id: str) -> None:
        pass


class LoggingRefundSink(RefundSink):
    """Records refunds in the log; real money movement happens elsewhere"""

    def __init__(self):
        self.refunds = []

    def send_back(self, amount: Money, loan_id: str) -> None:
        self.refunds.append((loan_id, amount))
        logger.info(f"{amount.to_string()} sent back to the client of loan {loan_id}")
