"""Tests for the daily overdue fine generator."""
import os
import sys
import unittest
from datetime import date
from unittest.mock import patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shelflend.audit import MemoryAuditSink
from shelflend.config import LendingRules
from shelflend.data_structures import FineKind, LoanStatus
from shelflend.database import DatabaseManager
from shelflend.engine import LendingEngine
from shelflend.exceptions import DatabaseError


class TestOverdueFines(unittest.TestCase):
    """Test suite for overdue fine generation, including partial failures."""

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.today = date(2026, 3, 1)
        self.sink = MemoryAuditSink()
        self.engine = LendingEngine(self.db, rules=LendingRules(), audit_sink=self.sink,
                                    clock=lambda: self.today)
        self.u1 = self.db.add_borrower("User 1")
        self.u2 = self.db.add_borrower("User 2")
        self.item = self.db.add_item("Neuromancer", 3)
        # Both loans due 2026-03-15
        self.loan1 = self.engine.create_loan(self.u1, self.item).value
        self.loan2 = self.engine.create_loan(self.u2, self.item).value
        self.sink.events.clear()

    def tearDown(self):
        self.db.close()

    def test_generates_fines(self):
        self.today = date(2026, 3, 20)
        report = self.engine.generate_overdue_fines().value

        self.assertEqual(report.run_date, "2026-03-20")
        self.assertEqual(report.loans_checked, 2)
        self.assertEqual(report.fines_created, 2)
        self.assertEqual(report.total_amount, 8000)
        self.assertEqual(report.failures, [])

        fines = self.db.get_fines_for_loan(self.loan1.id)
        self.assertEqual(len(fines), 1)
        self.assertEqual(fines[0]['kind'], FineKind.OVERDUE.value)
        self.assertEqual(fines[0]['fine_date'], "2026-03-20")
        self.assertEqual(fines[0]['amount'], 4000)
        self.assertEqual(self.db.get_loan(self.loan1.id)['status'], LoanStatus.OVERDUE.value)

        self.assertEqual([e.operation for e in self.sink.events], ["overdue_fine", "overdue_fine"])

    def test_same_day_rerun_is_idempotent(self):
        self.today = date(2026, 3, 20)
        self.engine.generate_overdue_fines()
        report = self.engine.generate_overdue_fines().value

        self.assertEqual(report.loans_checked, 0)
        self.assertEqual(report.fines_created, 0)
        self.assertEqual(len(self.db.get_fines_for_loan(self.loan1.id)), 1)

    def test_next_day_fines_again(self):
        self.today = date(2026, 3, 20)
        self.engine.generate_overdue_fines()
        self.today = date(2026, 3, 21)
        report = self.engine.generate_overdue_fines().value

        self.assertEqual(report.fines_created, 2)
        amounts = [f['amount'] for f in self.db.get_fines_for_loan(self.loan1.id)]
        self.assertEqual(amounts, [4000, 5000])

    def test_within_grace_period(self):
        self.today = date(2026, 3, 16)
        report = self.engine.generate_overdue_fines().value
        self.assertEqual(report.loans_checked, 2)
        self.assertEqual(report.fines_created, 0)
        self.assertEqual(report.results, [])
        self.assertEqual(self.db.get_loan(self.loan1.id)['status'], LoanStatus.ACTIVE.value)

    def test_returned_loans_ignored(self):
        self.engine.return_loan(self.loan2.id)
        self.today = date(2026, 3, 20)
        report = self.engine.generate_overdue_fines().value
        self.assertEqual(report.loans_checked, 1)
        self.assertEqual(report.results[0].loan_id, self.loan1.id)

    def test_lost_race_is_skipped(self):
        """A concurrent run that already fined the loan today is a skip, not a failure."""
        self.today = date(2026, 3, 20)
        stale_candidates = self.db.get_overdue_candidates("2026-03-20")
        self.engine.generate_overdue_fines()

        with patch.object(self.db, 'get_overdue_candidates', return_value=stale_candidates):
            report = self.engine.generate_overdue_fines().value

        self.assertEqual(report.fines_created, 0)
        self.assertEqual(report.failures, [])
        self.assertEqual([r.status for r in report.results], ["skipped", "skipped"])
        self.assertEqual(len(self.db.get_fines_for_loan(self.loan1.id)), 1)

    def test_partial_failure(self):
        """One failing loan is reported and rolled back; the rest are fined."""
        self.today = date(2026, 3, 20)
        original = self.db.mark_loan_overdue
        failing_loan = self.loan1.id

        def side_effect(loan_id):
            if loan_id == failing_loan:
                raise DatabaseError("Database operation failed: disk I/O error")
            return original(loan_id)

        with patch.object(self.db, 'mark_loan_overdue', side_effect=side_effect):
            report = self.engine.generate_overdue_fines().value

        self.assertEqual(report.fines_created, 1)
        self.assertEqual(len(report.failures), 1)
        failure = report.failures[0]
        self.assertEqual(failure.loan_id, failing_loan)
        self.assertIn("disk I/O error", failure.error)
        self.assertIsNone(failure.fine_id)

        # The failed loan's fine insert was rolled back
        self.assertEqual(self.db.get_fines_for_loan(failing_loan), [])
        self.assertEqual(len(self.db.get_fines_for_loan(self.loan2.id)), 1)

        # The failed loan is picked up on the next run
        retry = self.engine.generate_overdue_fines().value
        self.assertEqual(retry.loans_checked, 1)
        self.assertEqual(retry.fines_created, 1)

    def test_report_dataframe(self):
        self.today = date(2026, 3, 20)
        df = self.engine.generate_overdue_fines().value.to_dataframe()
        self.assertEqual(len(df), 2)
        self.assertIn("fine_amount", df.columns)
        self.assertEqual(df["fine_amount"].sum(), 8000)
        self.assertEqual(set(df["status"]), {"created"})

    def test_generated_fine_blocks_borrowing(self):
        self.today = date(2026, 3, 20)
        self.engine.generate_overdue_fines()
        reasons = self.engine.check_eligibility(self.u1, self.item).value.reasons
        self.assertIn("borrower has unpaid fines", reasons)
        self.assertIn("borrower has overdue loans", reasons)


if __name__ == '__main__':
    unittest.main()
