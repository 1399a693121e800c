"""Loan lifecycle service for ShelfLend.

This service handles all loan state transitions:
- Loan creation (active)
- Returns (active/overdue -> returned), charging a late fine when due
- Extensions (active -> active with a later due date)
- Lost copies (active/overdue -> lost), used by catalog administration

Stock moves with the loan in the same transaction. Loan creation
decrements available_copies with a guarded update and aborts the whole
transaction when the guard finds no copy left.
"""
import logging
from datetime import date

from shelflend.data_structures import (
    CreateLoanOptions, ReturnOptions, ExtensionOptions,
    ExtensionReceipt, Fine, FineKind, Loan, LoanStatus, ReturnCondition, ReturnReceipt,
)
from shelflend.exceptions import StaleStateError, StockExhaustedError
from shelflend.result import Result, ErrorType
from shelflend.services.eligibility import EligibilityChecker, REASON_NO_COPIES
from shelflend.services.fine_calculator import (
    calculate_due_date, date_str, fine_amount, late_return_reason, overdue_days,
)

logger = logging.getLogger(__name__)

REASON_EXTENSION_LIMIT = "extension limit reached"
REASON_EXTENSION_FINES = "borrower has unpaid fines"
REASON_STOCK_INCONSISTENT = "item stock does not account for this loan"


class LoanService:
    """Handles loan lifecycle operations.

    This class creates, returns, extends, and closes loans, keeping each
    item's available_copies equal to its total minus its outstanding loans.
    """

    def __init__(self, db_manager, rules, eligibility=None, clock=None):
        """Initialize LoanService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
            rules: LendingRules in force.
            eligibility: Optional EligibilityChecker; built on demand.
            clock: Optional callable returning today's date.
        """
        self.db = db_manager
        self.rules = rules
        self.clock = clock or date.today
        self._eligibility = eligibility

    @property
    def eligibility(self):
        """Lazy-load the eligibility checker."""
        if self._eligibility is None:
            self._eligibility = EligibilityChecker(self.db, self.rules, self.clock)
        return self._eligibility

    def _load_loan(self, loan_id):
        row = self.db.get_loan(loan_id)
        return Loan.from_row(row) if row else None

    @staticmethod
    def _loan_not_found(loan_id):
        return Result.fail(f"Loan {loan_id} not found", ErrorType.NOT_FOUND, reasons=["loan not found"])

    # =========================================================================
    # Create
    # =========================================================================

    def create_loan(self, borrower_id, item_id, options=None):
        """Lend one copy of an item to a borrower.

        Args:
            borrower_id: ID of the borrower.
            item_id: ID of the item.
            options: Optional CreateLoanOptions (loan_days, notes, actor).

        Returns:
            Result wrapping the new Loan, or a rejection listing every
            failed eligibility rule. "no copies available" is returned when
            the last copy went to a concurrent borrower after the check.
        """
        options = options or CreateLoanOptions()
        errors = options.validate()
        if errors:
            return Result.reject(errors, ErrorType.VALIDATION)

        check = self.eligibility.check(borrower_id, item_id)
        if not check:
            return check
        decision = check.value
        if not decision.eligible:
            error_type = ErrorType.NOT_FOUND if decision.item_state is None else ErrorType.BUSINESS_RULE
            return Result.reject(decision.reasons, error_type)

        today = self.clock()
        loan_days = options.loan_days or self.rules.loan_period_days
        due_date = calculate_due_date(today, loan_days)

        try:
            with self.db.transaction():
                loan_id = self.db.insert_loan(
                    borrower_id, item_id, date_str(today), date_str(due_date),
                    notes=options.notes, created_by=options.actor,
                )
                taken = self.db.conditional_update(
                    "items", item_id, "available_copies", -1, guard="in_stock")
                if taken == 0:
                    raise StockExhaustedError(item_id)
        except StockExhaustedError:
            logger.info("Loan for item %s lost the race for the last copy", item_id)
            return Result.reject([REASON_NO_COPIES])

        logger.debug("Created loan %s (borrower %s, item %s, due %s)",
                     loan_id, borrower_id, item_id, date_str(due_date))
        return Result.ok(self._load_loan(loan_id))

    # =========================================================================
    # Return
    # =========================================================================

    def return_loan(self, loan_id, options=None):
        """Close an outstanding loan and put the copy back on the shelf.

        A fine is charged, in the same transaction, when the loan comes
        back past its due date and grace period.

        Returns:
            Result wrapping a ReturnReceipt.
        """
        options = options or ReturnOptions()
        errors = options.validate()
        if errors:
            return Result.reject(errors, ErrorType.VALIDATION)

        loan = self._load_loan(loan_id)
        if loan is None:
            return self._loan_not_found(loan_id)
        if loan.status not in LoanStatus.outstanding():
            return Result.reject([f"cannot return a loan in state {loan.status.value}"])

        today = self.clock()
        days = overdue_days(loan.due_date, today, self.rules)
        amount = fine_amount(days, self.rules)
        note = self._return_note(options)

        fine_id = None
        try:
            with self.db.transaction():
                if self.db.mark_loan_returned(loan_id, date_str(today), note) == 0:
                    raise StaleStateError("Loan", loan_id, "outstanding")
                if amount > 0:
                    fine_id = self.db.insert_fine(
                        loan_id, loan.borrower_id, amount, late_return_reason(days),
                        FineKind.LATE_RETURN.value, date_str(today),
                    )
                self.db.conditional_update("items", loan.item_id, "available_copies", 1)
        except StaleStateError:
            current = self._load_loan(loan_id)
            return Result.reject([f"cannot return a loan in state {current.status.value}"])

        fine = Fine.from_row(self.db.get_fine(fine_id)) if fine_id else None
        return Result.ok(ReturnReceipt(
            loan=self._load_loan(loan_id),
            overdue_days=days,
            fine_amount=amount,
            condition=options.condition,
            fine=fine,
        ))

    @staticmethod
    def _return_note(options):
        parts = []
        if options.condition != ReturnCondition.GOOD.value:
            parts.append(f"Returned in {options.condition} condition.")
        if options.notes:
            parts.append(options.notes)
        return " ".join(parts) or None

    # =========================================================================
    # Extend
    # =========================================================================

    def extension_reasons(self, loan):
        """All reasons the loan cannot be extended right now."""
        reasons = []
        if loan.status != LoanStatus.ACTIVE:
            reasons.append(f"cannot extend a loan in state {loan.status.value}")
        if loan.extensions >= self.rules.max_extensions:
            reasons.append(REASON_EXTENSION_LIMIT)
        if self.db.count_unpaid_fines(loan.borrower_id) > 0:
            reasons.append(REASON_EXTENSION_FINES)
        return reasons

    def extend_loan(self, loan_id, options=None):
        """Push an active loan's due date forward.

        Returns:
            Result wrapping an ExtensionReceipt, or a rejection listing
            every violated rule.
        """
        options = options or ExtensionOptions()
        errors = options.validate()
        if errors:
            return Result.reject(errors, ErrorType.VALIDATION)

        loan = self._load_loan(loan_id)
        if loan is None:
            return self._loan_not_found(loan_id)

        reasons = self.extension_reasons(loan)
        if reasons:
            return Result.reject(reasons)

        days = options.extension_days or self.rules.extension_days
        new_due = date_str(calculate_due_date(loan.due_date, days))
        note = (f"Extension: {days} days. Reason: {options.reason or 'not specified'}. "
                f"Processed by: {options.actor or 'system'}")

        try:
            with self.db.transaction():
                if self.db.extend_loan_record(loan_id, new_due, note, self.rules.max_extensions) == 0:
                    raise StaleStateError("Loan", loan_id, "extendable")
        except StaleStateError:
            current = self._load_loan(loan_id)
            return Result.reject(self.extension_reasons(current) or [REASON_EXTENSION_LIMIT])

        return Result.ok(ExtensionReceipt(
            loan=self._load_loan(loan_id),
            old_due_date=loan.due_date,
            new_due_date=new_due,
            extension_days=days,
        ))

    # =========================================================================
    # Lost
    # =========================================================================

    def mark_lost(self, loan_id, actor=None, notes=None):
        """Close an outstanding loan whose copy will not come back.

        The copy leaves the collection, so total_copies drops by one and
        available_copies is unchanged.
        """
        loan = self._load_loan(loan_id)
        if loan is None:
            return self._loan_not_found(loan_id)
        if loan.status not in LoanStatus.outstanding():
            return Result.reject([f"cannot mark a loan in state {loan.status.value} as lost"])

        note = f"Marked lost by {actor or 'system'}." + (f" {notes}" if notes else "")
        try:
            with self.db.transaction():
                if self.db.mark_loan_lost(loan_id, note) == 0:
                    raise StaleStateError("Loan", loan_id, "outstanding")
                if self.db.conditional_update("items", loan.item_id, "total_copies", -1,
                                              guard="spare_total") == 0:
                    raise StaleStateError("Item", loan.item_id, "holding this copy")
        except StaleStateError as e:
            if e.details['entity'] == "Item":
                logger.warning("Item %s stock does not cover loan %s", loan.item_id, loan_id)
                return Result.reject([REASON_STOCK_INCONSISTENT])
            current = self._load_loan(loan_id)
            return Result.reject([f"cannot mark a loan in state {current.status.value} as lost"])

        return Result.ok(self._load_loan(loan_id))
