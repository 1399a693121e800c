"""Overdue fine generation for ShelfLend.

Batch job that charges every outstanding loan past its due date, at most
once per loan per day. Safe to re-run and to run concurrently: the
candidate scan skips loans already fined today, and the unique index on
(loan_id, fine_date) turns a lost race into a harmless skip.
"""
import logging
from datetime import date

from shelflend.data_structures import FineKind, OverdueFineReport, OverdueLoanOutcome
from shelflend.exceptions import ConstraintViolationError, DatabaseError, StaleStateError
from shelflend.result import Result
from shelflend.services.fine_calculator import date_str, fine_amount, late_return_reason, overdue_days

logger = logging.getLogger(__name__)


class OverdueFineGenerator:
    """Creates daily fines for overdue loans."""

    def __init__(self, db_manager, rules, clock=None):
        self.db = db_manager
        self.rules = rules
        self.clock = clock or date.today

    def generate(self, today=None):
        """Fine every overdue loan not yet fined today.

        Each loan is handled in its own transaction. A failure on one loan
        is recorded in the report and processing continues.

        Args:
            today: Optional run date; defaults to the service clock.

        Returns:
            Result wrapping an OverdueFineReport.
        """
        today = today or self.clock()
        run_date = date_str(today)
        candidates = self.db.get_overdue_candidates(run_date)
        report = OverdueFineReport(run_date=run_date, loans_checked=len(candidates))

        for row in candidates.itertuples(index=False):
            days = overdue_days(row.due_date, today, self.rules)
            amount = fine_amount(days, self.rules)
            if amount <= 0:
                # Still inside the grace period
                continue
            outcome = self._fine_loan(int(row.loan_id), int(row.borrower_id), days, amount, run_date)
            report.results.append(outcome)
            if outcome.status == "created":
                report.fines_created += 1
                report.total_amount += amount

        if report.fines_created or report.failures:
            logger.info("Overdue run %s: %d fines created (%d cents), %d failed",
                        run_date, report.fines_created, report.total_amount, len(report.failures))
        return Result.ok(report)

    def _fine_loan(self, loan_id, borrower_id, days, amount, run_date):
        outcome = OverdueLoanOutcome(loan_id=loan_id, borrower_id=borrower_id, status="created",
                                     overdue_days=days, fine_amount=amount)
        try:
            with self.db.transaction():
                outcome.fine_id = self.db.insert_fine(
                    loan_id, borrower_id, amount, late_return_reason(days),
                    FineKind.OVERDUE.value, run_date,
                )
                if self.db.mark_loan_overdue(loan_id) == 0:
                    raise StaleStateError("Loan", loan_id, "outstanding")
        except ConstraintViolationError as e:
            if "UNIQUE" not in str(e):
                return self._failed(outcome, e)
            logger.debug("Loan %s already fined on %s", loan_id, run_date)
            outcome.status, outcome.fine_id = "skipped", None
        except StaleStateError:
            logger.debug("Loan %s closed before it could be fined", loan_id)
            outcome.status, outcome.fine_id = "skipped", None
        except DatabaseError as e:
            return self._failed(outcome, e)
        return outcome

    @staticmethod
    def _failed(outcome, error):
        logger.error("Could not fine loan %s: %s", outcome.loan_id, error)
        outcome.status, outcome.fine_id, outcome.error = "failed", None, str(error)
        return outcome
