"""Stock reconciliation for ShelfLend.

Checks that every item's available_copies equals total_copies minus its
outstanding (active or overdue) loans, and optionally repairs drift.
"""
import logging

from shelflend.data_structures import StockDiscrepancy, StockReconciliationReport
from shelflend.result import Result

logger = logging.getLogger(__name__)


class StockReconciler:
    """Compares item counters with the loan records that should back them."""

    def __init__(self, db_manager):
        self.db = db_manager

    def find_discrepancies(self):
        """Return (items_checked, list of StockDiscrepancy)."""
        items = self.db.get_items_frame()
        loans = self.db.get_outstanding_loans_frame()

        outstanding = loans.groupby(loans["item_id"].astype(int)).size()
        merged = items.copy()
        merged["outstanding"] = merged["item_id"].map(outstanding).fillna(0).astype(int)
        merged["expected_available"] = merged["total_copies"] - merged["outstanding"]

        drifted = merged[merged["available_copies"] != merged["expected_available"]]
        discrepancies = [
            StockDiscrepancy(
                item_id=int(row.item_id),
                title=row.title,
                total_copies=int(row.total_copies),
                available_copies=int(row.available_copies),
                expected_available=int(row.expected_available),
            )
            for row in drifted.itertuples(index=False)
        ]
        return len(merged), discrepancies

    def reconcile(self, repair=False):
        """Report stock drift, and with repair=True reset the counters.

        With repair=True the scan and the writes share one write
        transaction, so no loan can commit between them.

        Items with more outstanding loans than copies cannot be repaired by
        adjusting available_copies; they are reported and left untouched.
        """
        if not repair:
            items_checked, discrepancies = self.find_discrepancies()
            self._log_drift(discrepancies)
            return Result.ok(StockReconciliationReport(items_checked, discrepancies))

        with self.db.transaction():
            items_checked, discrepancies = self.find_discrepancies()
            self._log_drift(discrepancies)
            fixable = [d for d in discrepancies if 0 <= d.expected_available <= d.total_copies]
            for d in fixable:
                self.db.set_available_copies(d.item_id, d.expected_available)

        repaired = False
        if discrepancies:
            repaired = len(fixable) == len(discrepancies)
            logger.info("Repaired stock for %d of %d items", len(fixable), len(discrepancies))

        return Result.ok(StockReconciliationReport(
            items_checked=items_checked,
            discrepancies=discrepancies,
            repaired=repaired,
        ))

    @staticmethod
    def _log_drift(discrepancies):
        for d in discrepancies:
            logger.warning("Item %s (%s): available %d, expected %d",
                           d.item_id, d.title, d.available_copies, d.expected_available)
