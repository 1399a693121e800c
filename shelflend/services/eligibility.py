"""Borrowing eligibility service for ShelfLend.

Aggregates a borrower's current posture and an item's availability into an
accept/reject decision. Every failed rule contributes a reason; nothing is
short-circuited, so callers can show the complete explanation.

The decision is advisory. Availability is enforced again, atomically, when
the loan is written (see LoanService.create_loan).
"""
import logging
from datetime import date

from shelflend.data_structures import Borrower, BorrowerPosture, EligibilityResult, Item
from shelflend.result import Result, ErrorType
from shelflend.services.fine_calculator import date_str

logger = logging.getLogger(__name__)

REASON_LOAN_LIMIT = "loan limit reached (maximum {limit})"
REASON_UNPAID_FINES = "borrower has unpaid fines"
REASON_OVERDUE_LOANS = "borrower has overdue loans"
REASON_ITEM_NOT_FOUND = "item not found"
REASON_NO_COPIES = "no copies available"
REASON_BORROWER_INACTIVE = "borrower account is inactive"


class EligibilityChecker:
    """Evaluates whether a borrower may take out a given item."""

    def __init__(self, db_manager, rules, clock=None):
        """Initialize EligibilityChecker.

        Args:
            db_manager: DatabaseManager instance for data access.
            rules: LendingRules in force.
            clock: Optional callable returning today's date.
        """
        self.db = db_manager
        self.rules = rules
        self.clock = clock or date.today

    def load_posture(self, borrower_id):
        """Recompute the borrower's posture from loan and fine records."""
        borrower = self.db.get_borrower(borrower_id)
        if not borrower:
            return None
        counts = self.db.get_borrower_posture(borrower_id, date_str(self.clock()))
        return BorrowerPosture(
            borrower_id=borrower_id,
            active_loans=counts['active_loans'],
            overdue_loans=counts['overdue_loans'],
            unpaid_fines_count=counts['unpaid_fines_count'],
            unpaid_fines_amount=counts['unpaid_fines_amount'],
            is_active=Borrower.from_row(borrower).is_active,
        )

    def evaluate(self, posture, item):
        """Apply the eligibility rules in order, collecting every failure."""
        reasons = []
        if not posture.is_active:
            reasons.append(REASON_BORROWER_INACTIVE)
        if posture.active_loans >= self.rules.max_loans_per_user:
            reasons.append(REASON_LOAN_LIMIT.format(limit=self.rules.max_loans_per_user))
        if not self.rules.allow_loans_with_fines and posture.unpaid_fines_count > 0:
            reasons.append(REASON_UNPAID_FINES)
        if posture.overdue_loans > 0:
            reasons.append(REASON_OVERDUE_LOANS)
        if item is None:
            reasons.append(REASON_ITEM_NOT_FOUND)
        elif item.available_copies <= 0:
            reasons.append(REASON_NO_COPIES)
        return reasons

    def check(self, borrower_id, item_id):
        """Check eligibility of a borrower for an item.

        Returns:
            Result wrapping an EligibilityResult. The Result itself only
            fails when the borrower does not exist; an ineligible borrower
            is a successful check with eligible=False.
        """
        posture = self.load_posture(borrower_id)
        if posture is None:
            return Result.fail(f"Borrower {borrower_id} not found", ErrorType.NOT_FOUND,
                               reasons=["borrower not found"])

        row = self.db.get_item(item_id)
        item = Item.from_row(row) if row else None

        reasons = self.evaluate(posture, item)
        if reasons:
            logger.info("Borrower %s not eligible for item %s: %s", borrower_id, item_id, reasons)
        return Result.ok(EligibilityResult(
            eligible=not reasons,
            reasons=reasons,
            borrower_posture=posture,
            item_state=item,
        ))
