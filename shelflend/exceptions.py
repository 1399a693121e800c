"""Custom exceptions for ShelfLend.

Expected business-rule violations are returned as Result failures, never
raised. The exceptions here cover infrastructure failures, invalid
configuration, and the internal signal used to abort a loan-creation
transaction.
"""


class LendingError(Exception):
    """Base exception for all ShelfLend errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigurationError(LendingError):
    """Raised when lending rules cannot be loaded or are out of range."""
    pass


class DatabaseError(LendingError):
    """Raised when a database operation fails."""
    pass


class TransactionError(DatabaseError):
    """Raised when a database transaction fails to complete."""
    pass


class ConstraintViolationError(TransactionError):
    """Raised when a statement violates an integrity constraint."""
    pass


class StockExhaustedError(LendingError):
    """Raised inside a transaction when a guarded stock decrement changed nothing.

    Forces the surrounding transaction to roll back. Callers report it as
    the business rule "no copies available".
    """

    def __init__(self, item_id: int):
        super().__init__(f"Item {item_id} has no copies available", {'item_id': item_id})
        self.item_id = item_id


class StaleStateError(LendingError):
    """Raised inside a transaction when a guarded status update changed nothing."""

    def __init__(self, entity: str, entity_id: int, expected: str):
        details = {
            'entity': entity,
            'id': entity_id,
            'expected': expected
        }
        super().__init__(f"{entity} {entity_id} is no longer {expected}", details)
