"""Fine settlement service for ShelfLend.

This service settles fines, exactly once each:
- Payment in full by an accepted method
- Forgiveness with a written justification

Both are a single guarded UPDATE (WHERE is_paid = 0), so two concurrent
settlements of the same fine cannot both succeed.
"""
import logging
from datetime import datetime

from shelflend.config import (
    MIN_FORGIVE_REASON_LENGTH, MAX_FORGIVE_REASON_LENGTH, TIMESTAMP_FORMAT_STORAGE,
)
from shelflend.data_structures import Fine, SettlementReceipt
from shelflend.result import Result, ErrorType

logger = logging.getLogger(__name__)

REASON_ALREADY_PAID = "fine already paid"
REASON_PARTIAL = "partial payments are not implemented"


class FineService:
    """Handles fine payment and forgiveness."""

    def __init__(self, db_manager, now=None):
        """Initialize FineService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
            now: Optional callable returning the current datetime.
        """
        self.db = db_manager
        self.now = now or datetime.now

    def _load_fine(self, fine_id):
        row = self.db.get_fine(fine_id)
        return Fine.from_row(row) if row else None

    @staticmethod
    def _fine_not_found(fine_id):
        return Result.fail(f"Fine {fine_id} not found", ErrorType.NOT_FOUND, reasons=["fine not found"])

    def pay_fine(self, fine_id, payment):
        """Record full payment of a fine.

        Args:
            fine_id: ID of the fine.
            payment: PaymentInfo (method, actor, notes, partial_payment, amount).

        Returns:
            Result wrapping a SettlementReceipt.
        """
        errors = payment.validate()
        if errors:
            return Result.reject(errors, ErrorType.VALIDATION)

        fine = self._load_fine(fine_id)
        if fine is None:
            return self._fine_not_found(fine_id)
        if fine.is_paid:
            return Result.reject([REASON_ALREADY_PAID])
        if payment.partial_payment or (payment.amount is not None and payment.amount != fine.amount):
            return Result.reject([REASON_PARTIAL])

        method = payment.method.lower()
        paid_at = self.now().strftime(TIMESTAMP_FORMAT_STORAGE)
        with self.db.transaction():
            settled = self.db.settle_fine(fine_id, paid_at, payment.actor, payment_method=method)
        if settled == 0:
            return Result.reject([REASON_ALREADY_PAID])

        return Result.ok(SettlementReceipt(
            fine=self._load_fine(fine_id), forgiven=False,
            payment_method=method, notes=payment.notes,
        ))

    def forgive_fine(self, fine_id, reason, actor):
        """Waive a fine, keeping the justification on the fine record."""
        errors = []
        text = reason.strip() if isinstance(reason, str) else ""
        if len(text) < MIN_FORGIVE_REASON_LENGTH:
            errors.append(f"a reason of at least {MIN_FORGIVE_REASON_LENGTH} characters is required")
        elif len(text) > MAX_FORGIVE_REASON_LENGTH:
            errors.append(f"reason must be at most {MAX_FORGIVE_REASON_LENGTH} characters")
        if not actor:
            errors.append("actor is required")
        if errors:
            return Result.reject(errors, ErrorType.VALIDATION)

        fine = self._load_fine(fine_id)
        if fine is None:
            return self._fine_not_found(fine_id)
        if fine.is_paid:
            return Result.reject([REASON_ALREADY_PAID])

        paid_at = self.now().strftime(TIMESTAMP_FORMAT_STORAGE)
        with self.db.transaction():
            settled = self.db.settle_fine(fine_id, paid_at, actor, reason_suffix=f" [FORGIVEN: {text}]")
        if settled == 0:
            return Result.reject([REASON_ALREADY_PAID])

        return Result.ok(SettlementReceipt(fine=self._load_fine(fine_id), forgiven=True, notes=text))
