"""Tests for loan creation, return, extension and loss."""
import os
import sys
import unittest
from datetime import date

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shelflend.config import LendingRules
from shelflend.data_structures import (
    CreateLoanOptions, ExtensionOptions, FineKind, LoanStatus, ReturnOptions,
)
from shelflend.database import DatabaseManager
from shelflend.engine import LendingEngine
from shelflend.result import ErrorType


class LendingTestCase(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.today = date(2026, 3, 1)
        self.engine = LendingEngine(self.db, rules=LendingRules(), clock=lambda: self.today)
        self.alice = self.db.add_borrower("Alice", "alice@test.com")
        self.bob = self.db.add_borrower("Bob", "bob@test.com")
        self.item = self.db.add_item("The Left Hand of Darkness", 2, isbn="9780441478125")

    def tearDown(self):
        self.db.close()

    def assertStockConsistent(self, item_id):
        item = self.db.get_item(item_id)
        outstanding = self.db.count_outstanding_loans(item_id)
        self.assertEqual(item['available_copies'], item['total_copies'] - outstanding)
        self.assertGreaterEqual(item['available_copies'], 0)


class TestCreateLoan(LendingTestCase):

    def test_create_loan(self):
        result = self.engine.create_loan(self.alice, self.item, CreateLoanOptions(actor="desk"))
        self.assertTrue(result.success)
        loan = result.value
        self.assertEqual(loan.status, LoanStatus.ACTIVE)
        self.assertEqual(loan.loan_date, "2026-03-01")
        self.assertEqual(loan.due_date, "2026-03-15")
        self.assertEqual(loan.created_by, "desk")
        self.assertEqual(self.db.get_item(self.item)['available_copies'], 1)
        self.assertStockConsistent(self.item)

    def test_custom_loan_days(self):
        loan = self.engine.create_loan(self.alice, self.item, CreateLoanOptions(loan_days=7)).value
        self.assertEqual(loan.due_date, "2026-03-08")

    def test_invalid_options(self):
        for days in (0, 31, "7", True):
            result = self.engine.create_loan(self.alice, self.item, CreateLoanOptions(loan_days=days))
            self.assertFalse(result.success)
            self.assertEqual(result.error_type, ErrorType.VALIDATION)
        result = self.engine.create_loan(self.alice, self.item, CreateLoanOptions(notes="x" * 501))
        self.assertEqual(result.error_type, ErrorType.VALIDATION)
        self.assertEqual(self.db.get_item(self.item)['available_copies'], 2)

    def test_last_copy_scenario(self):
        """Second borrower is refused once the only copy is out."""
        single = self.db.add_item("Single Copy", 1)
        first = self.engine.create_loan(self.alice, single)
        self.assertTrue(first.success)
        self.assertEqual(self.db.get_item(single)['available_copies'], 0)

        second = self.engine.create_loan(self.bob, single)
        self.assertFalse(second.success)
        self.assertEqual(second.reasons, ["no copies available"])
        self.assertEqual(second.error_type, ErrorType.BUSINESS_RULE)
        self.assertEqual(len(self.db.get_loans_for_borrower(self.bob)), 0)

        self.engine.return_loan(first.value.id)
        self.assertTrue(self.engine.create_loan(self.bob, single).success)
        self.assertStockConsistent(single)


class TestReturnLoan(LendingTestCase):

    def setUp(self):
        super().setUp()
        self.loan = self.engine.create_loan(self.alice, self.item).value

    def test_return_on_time(self):
        self.today = date(2026, 3, 10)
        result = self.engine.return_loan(self.loan.id)
        self.assertTrue(result.success)
        receipt = result.value
        self.assertEqual(receipt.loan.status, LoanStatus.RETURNED)
        self.assertEqual(receipt.loan.return_date, "2026-03-10")
        self.assertEqual(receipt.overdue_days, 0)
        self.assertEqual(receipt.fine_amount, 0)
        self.assertIsNone(receipt.fine)
        self.assertEqual(self.db.get_fines_for_loan(self.loan.id), [])
        self.assertEqual(self.db.get_item(self.item)['available_copies'], 2)
        self.assertStockConsistent(self.item)

    def test_late_return_charges_fine(self):
        self.today = date(2026, 3, 20)
        receipt = self.engine.return_loan(self.loan.id).value
        self.assertEqual(receipt.overdue_days, 4)
        self.assertEqual(receipt.fine_amount, 4000)
        self.assertEqual(receipt.fine.kind, FineKind.LATE_RETURN)
        self.assertEqual(receipt.fine.reason, "late return – 4 days overdue")
        self.assertFalse(receipt.fine.is_paid)
        self.assertEqual(len(self.db.get_fines_for_borrower(self.alice)), 1)
        self.assertStockConsistent(self.item)

    def test_return_within_grace(self):
        self.today = date(2026, 3, 16)
        receipt = self.engine.return_loan(self.loan.id).value
        self.assertEqual(receipt.fine_amount, 0)

    def test_condition_note(self):
        options = ReturnOptions(condition="damaged", notes="Cover torn")
        receipt = self.engine.return_loan(self.loan.id, options).value
        self.assertEqual(receipt.condition, "damaged")
        self.assertIn("Returned in damaged condition.", receipt.loan.notes)
        self.assertIn("Cover torn", receipt.loan.notes)

    def test_invalid_condition(self):
        result = self.engine.return_loan(self.loan.id, ReturnOptions(condition="soggy"))
        self.assertEqual(result.error_type, ErrorType.VALIDATION)

    def test_return_twice(self):
        self.assertTrue(self.engine.return_loan(self.loan.id).success)
        result = self.engine.return_loan(self.loan.id)
        self.assertFalse(result.success)
        self.assertEqual(result.reasons, ["cannot return a loan in state returned"])
        self.assertEqual(self.db.get_item(self.item)['available_copies'], 2)

    def test_return_unknown_loan(self):
        result = self.engine.return_loan(9999)
        self.assertEqual(result.error_type, ErrorType.NOT_FOUND)


class TestExtendLoan(LendingTestCase):

    def setUp(self):
        super().setUp()
        self.loan = self.engine.create_loan(self.alice, self.item).value

    def test_extend(self):
        options = ExtensionOptions(reason="holiday", actor="desk")
        receipt = self.engine.extend_loan(self.loan.id, options).value
        self.assertEqual(receipt.old_due_date, "2026-03-15")
        self.assertEqual(receipt.new_due_date, "2026-03-22")
        self.assertEqual(receipt.loan.extensions, 1)
        self.assertIn("Reason: holiday", receipt.loan.notes)
        self.assertIn("Processed by: desk", receipt.loan.notes)

    def test_extension_limit(self):
        self.assertTrue(self.engine.extend_loan(self.loan.id).success)
        self.assertTrue(self.engine.extend_loan(self.loan.id, ExtensionOptions(extension_days=3)).success)
        result = self.engine.extend_loan(self.loan.id)
        self.assertFalse(result.success)
        self.assertEqual(result.reasons, ["extension limit reached"])
        loan = self.db.get_loan(self.loan.id)
        self.assertEqual(loan['extensions'], 2)
        self.assertEqual(loan['due_date'], "2026-03-25")

    def test_all_extension_reasons(self):
        self.engine.extend_loan(self.loan.id)
        self.engine.extend_loan(self.loan.id)
        self.today = date(2026, 4, 10)
        self.engine.return_loan(self.loan.id)

        result = self.engine.extend_loan(self.loan.id)
        self.assertEqual(result.reasons, [
            "cannot extend a loan in state returned",
            "extension limit reached",
            "borrower has unpaid fines",
        ])

    def test_invalid_extension_days(self):
        result = self.engine.extend_loan(self.loan.id, ExtensionOptions(extension_days=15))
        self.assertEqual(result.error_type, ErrorType.VALIDATION)
        self.assertEqual(self.db.get_loan(self.loan.id)['extensions'], 0)


class TestLostLoan(LendingTestCase):

    def test_mark_lost(self):
        loan = self.engine.create_loan(self.alice, self.item).value
        result = self.engine.mark_loan_lost(loan.id, actor="admin", notes="Never returned")
        self.assertTrue(result.success)
        self.assertEqual(result.value.status, LoanStatus.LOST)
        item = self.db.get_item(self.item)
        self.assertEqual(item['total_copies'], 1)
        self.assertEqual(item['available_copies'], 1)
        self.assertStockConsistent(self.item)

    def test_lost_loan_cannot_be_returned(self):
        loan = self.engine.create_loan(self.alice, self.item).value
        self.engine.mark_loan_lost(loan.id)
        self.assertEqual(self.engine.return_loan(loan.id).reasons,
                         ["cannot return a loan in state lost"])
        self.assertFalse(self.engine.mark_loan_lost(loan.id).success)


if __name__ == '__main__':
    unittest.main()
