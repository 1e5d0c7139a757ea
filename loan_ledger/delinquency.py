"""
Delinquency Module

Periodic check that imposes a late penalty on every approved loan whose
installments due so far (or earlier penalties) are not fully paid. The
scheduler that runs the check lives outside the ledger.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
import logging
import uuid

from .loans import Loan, LoanStatus
from .penalties import Penalty


logger = logging.getLogger("loan_ledger.delinquency")

DEFAULT_PENALTY_REASON = "Late payment penalty"


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps are taken as UTC so imposed dates stay comparable
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class DelinquencyScanner:
    """
    Imposes penalties for missed payments

    The penalty sink is any object with an add_penalty(penalty) method,
    normally a LoanRepository.
    """

    def __init__(self, penalty_sink, reason: str = DEFAULT_PENALTY_REASON):
        self.penalty_sink = penalty_sink
        self.reason = reason

    def scan(self, loans: Iterable[Loan], now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Check every loan and impose penalties where payments are missing

        A failure on one loan is logged and counted; the remaining loans are
        still scanned.

        Returns:
            Counters: loans_scanned, penalties_imposed, loans_skipped, loans_failed
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        results = {"loans_scanned": 0, "penalties_imposed": 0, "loans_skipped": 0, "loans_failed": 0}

        logger.info("Starting payment checks")

        for loan in loans:
            results["loans_scanned"] += 1

            if loan.status != LoanStatus.APPROVED:
                results["loans_skipped"] += 1
                continue

            try:
                if self.check_loan(loan, now) is not None:
                    results["penalties_imposed"] += 1
            except Exception:
                logger.exception(f"Payment check failed for loan {loan.id}")
                results["loans_failed"] += 1

        logger.info(
            f"Payment checks completed: {results['loans_scanned']} scanned, "
            f"{results['penalties_imposed']} penalties imposed, {results['loans_failed']} failed"
        )
        return results

    def scan_repository(self, repository, now: Optional[datetime] = None) -> Dict[str, int]:
        """Scan every loan stored in a LoanRepository"""
        return self.scan(repository.list_all(), now)

    def check_loan(self, loan: Loan, now: datetime) -> Optional[Penalty]:
        """Impose a penalty on one loan if it is behind; returns the new penalty"""
        now = _as_utc(now)
        if loan.have_last_months_fully_paid(now.date()):
            return None

        amount = loan.calculate_penalty()
        if amount.is_zero():
            logger.debug(f"Penalty for loan {loan.id} rounds to zero, none imposed")
            return None
        penalty = Penalty(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            amount=amount,
            remaining_amount=amount,
            reason=self.reason,
            imposed_date=now,
            is_paid=False,
        )
        self.penalty_sink.add_penalty(penalty)
        loan.penalties.append(penalty)

        logger.info(f"Imposed {amount.to_string()} penalty on loan {loan.id}")
        return penalty
