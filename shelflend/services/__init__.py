"""Services package for ShelfLend business logic.

This package contains focused service classes behind the LendingEngine
facade.
"""

from .eligibility import EligibilityChecker
from .loan_service import LoanService
from .overdue_fines import OverdueFineGenerator
from .fine_service import FineService
from .stock_reconciler import StockReconciler

__all__ = ['EligibilityChecker', 'LoanService', 'OverdueFineGenerator', 'FineService',
           'StockReconciler']
