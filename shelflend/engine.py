"""Lending engine for ShelfLend.

This module provides the LendingEngine class which acts as a facade over
the focused service classes in shelflend/services/ and is the surface
callers use.

Service Classes:
    - LoanService: Loan lifecycle operations
    - EligibilityChecker: Borrowing rule evaluation
    - OverdueFineGenerator: Daily overdue fines
    - FineService: Fine payment and forgiveness
    - StockReconciler: Item stock consistency checks

Every operation returns a Result. Successful state changes are reported to
the audit trail after the business transaction has committed.
"""
import logging
from datetime import date

from shelflend.audit import AuditTrail
from shelflend.config import load_rules
from shelflend.data_structures import (
    CreateLoanOptions, ReturnOptions, ExtensionOptions, PaymentInfo,
)
from shelflend.services import (
    LoanService, EligibilityChecker, OverdueFineGenerator, FineService, StockReconciler,
)

logger = logging.getLogger(__name__)


class LendingEngine:
    """Handles lending business logic, interfacing with DatabaseManager.

    Attributes:
        db: DatabaseManager instance for data persistence.
        rules: LendingRules in force, loaded once at construction.
        audit: AuditTrail receiving one event per successful state change.
        loan_service: LoanService instance (lazy-loaded).
        eligibility: EligibilityChecker instance (lazy-loaded).
        overdue_generator: OverdueFineGenerator instance (lazy-loaded).
        fine_service: FineService instance (lazy-loaded).
        stock_reconciler: StockReconciler instance (lazy-loaded).
    """

    def __init__(self, db_manager, rules=None, audit_sink=None, clock=None):
        self.db = db_manager
        self.rules = rules if rules is not None else load_rules(db_manager)
        self.audit = AuditTrail(audit_sink)
        self.clock = clock or date.today
        self._eligibility = None
        self._loan_service = None
        self._overdue_generator = None
        self._fine_service = None
        self._stock_reconciler = None

    @property
    def eligibility(self):
        """Lazy-load EligibilityChecker instance."""
        if self._eligibility is None:
            self._eligibility = EligibilityChecker(self.db, self.rules, self.clock)
        return self._eligibility

    @property
    def loan_service(self):
        """Lazy-load LoanService instance."""
        if self._loan_service is None:
            self._loan_service = LoanService(self.db, self.rules, self.eligibility, self.clock)
        return self._loan_service

    @property
    def overdue_generator(self):
        """Lazy-load OverdueFineGenerator instance."""
        if self._overdue_generator is None:
            self._overdue_generator = OverdueFineGenerator(self.db, self.rules, self.clock)
        return self._overdue_generator

    @property
    def fine_service(self):
        """Lazy-load FineService instance."""
        if self._fine_service is None:
            self._fine_service = FineService(self.db)
        return self._fine_service

    @property
    def stock_reconciler(self):
        """Lazy-load StockReconciler instance."""
        if self._stock_reconciler is None:
            self._stock_reconciler = StockReconciler(self.db)
        return self._stock_reconciler

    # =========================================================================
    # Loans
    # =========================================================================

    def check_eligibility(self, borrower_id, item_id):
        """Evaluate whether a borrower may take out an item. Read-only."""
        return self.eligibility.check(borrower_id, item_id)

    def create_loan(self, borrower_id, item_id, options=None):
        """Lend one copy of an item. Delegates to LoanService."""
        options = options or CreateLoanOptions()
        result = self.loan_service.create_loan(borrower_id, item_id, options)
        if result:
            loan = result.value
            self.audit.record("create_loan", options.actor,
                              {"loan_id": loan.id, "borrower_id": borrower_id, "item_id": item_id},
                              due_date=loan.due_date)
        return result

    def return_loan(self, loan_id, options=None):
        """Return a loan, charging a late fine when due. Delegates to LoanService."""
        options = options or ReturnOptions()
        result = self.loan_service.return_loan(loan_id, options)
        if result:
            receipt = result.value
            entity_ids = {"loan_id": loan_id, "item_id": receipt.loan.item_id}
            if receipt.fine is not None:
                entity_ids["fine_id"] = receipt.fine.id
            self.audit.record("return_loan", options.actor, entity_ids,
                              overdue_days=receipt.overdue_days,
                              fine_amount=receipt.fine_amount,
                              condition=receipt.condition)
        return result

    def extend_loan(self, loan_id, options=None):
        """Extend an active loan. Delegates to LoanService."""
        options = options or ExtensionOptions()
        result = self.loan_service.extend_loan(loan_id, options)
        if result:
            receipt = result.value
            self.audit.record("extend_loan", options.actor, {"loan_id": loan_id},
                              old_due_date=receipt.old_due_date,
                              new_due_date=receipt.new_due_date,
                              reason=options.reason)
        return result

    def mark_loan_lost(self, loan_id, actor=None, notes=None):
        """Close a loan whose copy is gone. Delegates to LoanService."""
        result = self.loan_service.mark_lost(loan_id, actor=actor, notes=notes)
        if result:
            self.audit.record("mark_loan_lost", actor,
                              {"loan_id": loan_id, "item_id": result.value.item_id})
        return result

    # =========================================================================
    # Fines
    # =========================================================================

    def generate_overdue_fines(self, today=None):
        """Run the daily overdue fine job.

        One audit event is recorded per fine created.
        """
        result = self.overdue_generator.generate(today)
        report = result.value
        for outcome in report.results:
            if outcome.status == "created":
                self.audit.record("overdue_fine", None,
                                  {"loan_id": outcome.loan_id, "fine_id": outcome.fine_id,
                                   "borrower_id": outcome.borrower_id},
                                  amount=outcome.fine_amount, run_date=report.run_date)
        return result

    def pay_fine(self, fine_id, payment: PaymentInfo):
        """Settle a fine by payment in full."""
        result = self.fine_service.pay_fine(fine_id, payment)
        if result:
            fine = result.value.fine
            self.audit.record("pay_fine", payment.actor, {"fine_id": fine_id, "loan_id": fine.loan_id},
                              amount=fine.amount, method=result.value.payment_method)
        return result

    def forgive_fine(self, fine_id, reason, actor):
        """Waive a fine with a written justification."""
        result = self.fine_service.forgive_fine(fine_id, reason, actor)
        if result:
            fine = result.value.fine
            self.audit.record("forgive_fine", actor, {"fine_id": fine_id, "loan_id": fine.loan_id},
                              amount=fine.amount, reason=result.value.notes)
        return result

    # =========================================================================
    # Stock
    # =========================================================================

    def reconcile_stock(self, repair=False, actor=None):
        """Check item stock against outstanding loans, optionally repairing it."""
        result = self.stock_reconciler.reconcile(repair=repair)
        report = result.value
        if repair and report.discrepancies:
            self.audit.record("reconcile_stock", actor,
                              {"item_ids": [d.item_id for d in report.discrepancies]},
                              repaired=report.repaired)
        return result
