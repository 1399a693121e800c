from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import pandas as pd

from shelflend.config import (
    MIN_LOAN_DAYS, MAX_LOAN_DAYS,
    MIN_EXTENSION_DAYS, MAX_EXTENSION_DAYS,
    MAX_NOTES_LENGTH, MAX_EXTENSION_REASON_LENGTH,
)


class LoanStatus(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    LOST = "lost"

    @classmethod
    def outstanding(cls):
        """Statuses that hold a copy off the shelf."""
        return (cls.ACTIVE, cls.OVERDUE)


class FineKind(str, Enum):
    LATE_RETURN = "late_return"   # charged when the loan comes back
    OVERDUE = "overdue"           # charged by the daily generator


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    CHECK = "check"


class ReturnCondition(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    DAMAGED = "damaged"


def _row_dict(row):
    return dict(row) if not isinstance(row, dict) else row


@dataclass
class Borrower:
    id: int
    name: str
    email: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row):
        r = _row_dict(row)
        return cls(id=r['id'], name=r['name'], email=r.get('email'), is_active=bool(r['is_active']))


@dataclass
class Item:
    id: int
    title: str
    total_copies: int
    available_copies: int
    isbn: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        r = _row_dict(row)
        return cls(id=r['id'], title=r['title'], total_copies=r['total_copies'],
                   available_copies=r['available_copies'], isbn=r.get('isbn'))


@dataclass
class Loan:
    id: int
    borrower_id: int
    item_id: int
    loan_date: str
    due_date: str
    status: LoanStatus
    extensions: int = 0
    return_date: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        r = _row_dict(row)
        return cls(id=r['id'], borrower_id=r['borrower_id'], item_id=r['item_id'],
                   loan_date=r['loan_date'], due_date=r['due_date'],
                   status=LoanStatus(r['status']), extensions=r['extensions'] or 0,
                   return_date=r.get('return_date'), notes=r.get('notes'),
                   created_by=r.get('created_by'))


@dataclass
class Fine:
    id: int
    loan_id: int
    borrower_id: int
    amount: int
    reason: str
    kind: FineKind
    fine_date: str
    is_paid: bool = False
    paid_date: Optional[str] = None
    paid_by: Optional[str] = None
    payment_method: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        r = _row_dict(row)
        return cls(id=r['id'], loan_id=r['loan_id'], borrower_id=r['borrower_id'],
                   amount=r['amount'], reason=r['reason'], kind=FineKind(r['kind']),
                   fine_date=r['fine_date'], is_paid=bool(r['is_paid']),
                   paid_date=r.get('paid_date'), paid_by=r.get('paid_by'),
                   payment_method=r.get('payment_method'))


@dataclass
class BorrowerPosture:
    """Snapshot of a borrower's loans and unpaid fines, recomputed per check."""
    borrower_id: int
    active_loans: int = 0
    overdue_loans: int = 0
    unpaid_fines_count: int = 0
    unpaid_fines_amount: int = 0
    is_active: bool = True


@dataclass
class EligibilityResult:
    eligible: bool
    reasons: List[str]
    borrower_posture: Optional[BorrowerPosture]
    item_state: Optional[Item]


# =============================================================================
# OPTION STRUCTS
# =============================================================================

def _check_text(errors, value, label, max_length, min_length=0):
    if value is None:
        return
    if not isinstance(value, str):
        errors.append(f"{label} must be text")
    elif len(value.strip()) < min_length:
        errors.append(f"{label} must be at least {min_length} characters")
    elif len(value) > max_length:
        errors.append(f"{label} must be at most {max_length} characters")


def _check_days(errors, value, label, low, high):
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{label} must be a whole number of days")
    elif not low <= value <= high:
        errors.append(f"{label} must be between {low} and {high}")


@dataclass
class CreateLoanOptions:
    loan_days: Optional[int] = None
    notes: Optional[str] = None
    actor: Optional[str] = None

    def validate(self) -> List[str]:
        errors = []
        _check_days(errors, self.loan_days, "loan_days", MIN_LOAN_DAYS, MAX_LOAN_DAYS)
        _check_text(errors, self.notes, "notes", MAX_NOTES_LENGTH)
        return errors


@dataclass
class ReturnOptions:
    notes: Optional[str] = None
    condition: str = ReturnCondition.GOOD.value
    actor: Optional[str] = None

    def validate(self) -> List[str]:
        errors = []
        _check_text(errors, self.notes, "notes", MAX_NOTES_LENGTH)
        allowed = [c.value for c in ReturnCondition]
        if self.condition not in allowed:
            errors.append(f"condition must be one of: {', '.join(allowed)}")
        return errors


@dataclass
class ExtensionOptions:
    extension_days: Optional[int] = None
    reason: Optional[str] = None
    actor: Optional[str] = None

    def validate(self) -> List[str]:
        errors = []
        _check_days(errors, self.extension_days, "extension_days", MIN_EXTENSION_DAYS, MAX_EXTENSION_DAYS)
        _check_text(errors, self.reason, "reason", MAX_EXTENSION_REASON_LENGTH)
        return errors


@dataclass
class PaymentInfo:
    method: str
    actor: str
    notes: Optional[str] = None
    partial_payment: bool = False
    amount: Optional[int] = None

    def validate(self) -> List[str]:
        errors = []
        allowed = [m.value for m in PaymentMethod]
        if not isinstance(self.method, str) or self.method.lower() not in allowed:
            errors.append(f"payment method must be one of: {', '.join(allowed)}")
        if not self.actor:
            errors.append("actor is required")
        _check_text(errors, self.notes, "notes", MAX_NOTES_LENGTH)
        if self.amount is not None and (isinstance(self.amount, bool)
                                        or not isinstance(self.amount, int) or self.amount <= 0):
            errors.append("amount must be a positive number of cents")
        return errors


# =============================================================================
# RECEIPTS AND REPORTS
# =============================================================================

@dataclass
class ReturnReceipt:
    loan: Loan
    overdue_days: int
    fine_amount: int
    condition: str
    fine: Optional[Fine] = None


@dataclass
class ExtensionReceipt:
    loan: Loan
    old_due_date: str
    new_due_date: str
    extension_days: int


@dataclass
class SettlementReceipt:
    fine: Fine
    forgiven: bool
    payment_method: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class OverdueLoanOutcome:
    loan_id: int
    borrower_id: int
    status: str                      # "created", "skipped" or "failed"
    overdue_days: int = 0
    fine_amount: int = 0
    fine_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class OverdueFineReport:
    run_date: str
    loans_checked: int = 0
    fines_created: int = 0
    total_amount: int = 0
    results: List[OverdueLoanOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[OverdueLoanOutcome]:
        return [r for r in self.results if r.status == "failed"]

    def to_dataframe(self) -> pd.DataFrame:
        """Per-loan detail as a DataFrame."""
        columns = ["loan_id", "borrower_id", "status", "overdue_days",
                   "fine_amount", "fine_id", "error"]
        return pd.DataFrame([r.__dict__ for r in self.results], columns=columns)


@dataclass
class StockDiscrepancy:
    item_id: int
    title: str
    total_copies: int
    available_copies: int
    expected_available: int


@dataclass
class StockReconciliationReport:
    items_checked: int
    discrepancies: List[StockDiscrepancy] = field(default_factory=list)
    repaired: bool = False

    @property
    def consistent(self) -> bool:
        return not self.discrepancies

