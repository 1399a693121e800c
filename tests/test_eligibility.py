"""Tests for borrower eligibility evaluation."""
import os
import sys
import unittest
from datetime import date, timedelta

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shelflend.config import LendingRules
from shelflend.database import DatabaseManager
from shelflend.engine import LendingEngine
from shelflend.result import ErrorType


class TestEligibility(unittest.TestCase):
    """Every failed rule is reported, in rule order."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.today = date(2026, 3, 1)
        self.engine = LendingEngine(self.db, rules=LendingRules(), clock=lambda: self.today)
        self.borrower = self.db.add_borrower("Ada Reader", "ada@test.com")
        self.item = self.db.add_item("Dune", 5)

    def tearDown(self):
        self.db.close()

    def test_eligible_borrower(self):
        result = self.engine.check_eligibility(self.borrower, self.item)
        self.assertTrue(result.success)
        self.assertTrue(result.value.eligible)
        self.assertEqual(result.value.reasons, [])
        self.assertEqual(result.value.item_state.available_copies, 5)
        self.assertEqual(result.value.borrower_posture.active_loans, 0)

    def test_loan_limit(self):
        for _ in range(3):
            self.assertTrue(self.engine.create_loan(self.borrower, self.item))
        result = self.engine.check_eligibility(self.borrower, self.item)
        self.assertFalse(result.value.eligible)
        self.assertEqual(result.value.reasons, ["loan limit reached (maximum 3)"])

    def test_all_reasons_accumulate(self):
        loans = [self.engine.create_loan(self.borrower, self.item).value for _ in range(3)]
        self.db.insert_fine(loans[0].id, self.borrower, 500, "damage", "late_return", "2026-03-01")
        empty = self.db.add_item("Out of print", 0)
        self.today = self.today + timedelta(days=20)

        result = self.engine.check_eligibility(self.borrower, empty)

        self.assertEqual(result.value.reasons, [
            "loan limit reached (maximum 3)",
            "borrower has unpaid fines",
            "borrower has overdue loans",
            "no copies available",
        ])
        posture = result.value.borrower_posture
        self.assertEqual(posture.overdue_loans, 3)
        self.assertEqual(posture.unpaid_fines_count, 1)
        self.assertEqual(posture.unpaid_fines_amount, 500)

    def test_fines_allowed_by_rules(self):
        engine = LendingEngine(self.db, rules=LendingRules(allow_loans_with_fines=True),
                               clock=lambda: self.today)
        loan = engine.create_loan(self.borrower, self.item).value
        self.db.insert_fine(loan.id, self.borrower, 500, "damage", "late_return", "2026-03-01")
        result = engine.check_eligibility(self.borrower, self.item)
        self.assertTrue(result.value.eligible)

    def test_unknown_borrower(self):
        result = self.engine.check_eligibility(9999, self.item)
        self.assertFalse(result.success)
        self.assertEqual(result.error_type, ErrorType.NOT_FOUND)
        self.assertEqual(result.reasons, ["borrower not found"])

    def test_unknown_item(self):
        result = self.engine.check_eligibility(self.borrower, 9999)
        self.assertEqual(result.value.reasons, ["item not found"])
        self.assertIsNone(result.value.item_state)

        created = self.engine.create_loan(self.borrower, 9999)
        self.assertFalse(created.success)
        self.assertEqual(created.error_type, ErrorType.NOT_FOUND)

    def test_inactive_borrower(self):
        self.db.set_borrower_active(self.borrower, False)
        result = self.engine.check_eligibility(self.borrower, self.item)
        self.assertEqual(result.value.reasons, ["borrower account is inactive"])

        self.db.set_borrower_active(self.borrower, True)
        self.assertTrue(self.engine.check_eligibility(self.borrower, self.item).value.eligible)

    def test_check_is_read_only(self):
        self.engine.check_eligibility(self.borrower, self.item)
        self.assertEqual(self.db.get_item(self.item)['available_copies'], 5)
        self.assertEqual(self.db.get_loans_for_borrower(self.borrower), [])


if __name__ == '__main__':
    unittest.main()
