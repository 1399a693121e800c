"""ShelfLend: lending and fine engine for library loans."""

from shelflend.config import LendingRules, load_rules, configure_logging
from shelflend.database import DatabaseManager
from shelflend.engine import LendingEngine
from shelflend.result import Result, ErrorType

__version__ = "1.0.0"

__all__ = ['LendingRules', 'load_rules', 'configure_logging', 'DatabaseManager',
           'LendingEngine', 'Result', 'ErrorType']
