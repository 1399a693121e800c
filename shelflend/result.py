"""Result pattern for consistent return types in ShelfLend.

Every caller-facing operation returns a Result. Business-rule rejections
carry an itemized list of reasons so callers can present every violated
rule at once.
"""
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any, List, Optional, TypeVar, Generic

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """Represents the outcome of an operation.

    Attributes:
        success: Whether the operation succeeded.
        value: The return value on success, None on failure.
        error: Error message on failure, None on success.
        error_type: Type/category of error (see ErrorType).
        reasons: Itemized reasons for a failure; empty on success.

    Usage:
        # Success case
        return Result.ok(loan)

        # Business-rule rejection
        return Result.reject(["extension limit reached"])

        # Checking result
        result = engine.extend_loan(loan_id, options)
        if not result:
            for reason in result.reasons:
                print(reason)
    """
    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    reasons: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, value: T = None) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str, error_type: str = None, reasons: List[str] = None) -> 'Result[T]':
        """Create a failure result.

        Args:
            error: Error message describing what went wrong.
            error_type: Optional error category for programmatic handling.
            reasons: Optional itemized reasons; defaults to [error].

        Returns:
            A Result with success=False and error details.
        """
        return cls(success=False, error=error, error_type=error_type,
                   reasons=list(reasons) if reasons else [error])

    @classmethod
    def reject(cls, reasons: List[str], error_type: str = None) -> 'Result[T]':
        """Create a business-rule rejection from a list of reasons."""
        reasons = list(reasons)
        return cls(success=False, error="; ".join(reasons),
                   error_type=error_type or ErrorType.BUSINESS_RULE, reasons=reasons)

    def __bool__(self) -> bool:
        return self.success

    def unwrap(self) -> T:
        """Get the value, raising an exception if the operation failed.

        Raises:
            ValueError: If the operation failed.
        """
        if not self.success:
            raise ValueError(f"Result unwrap failed: {self.error}")
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get the value or a default if the operation failed."""
        return self.value if self.success else default

    def to_dict(self) -> dict:
        """Render the uniform {success, data | error, reasons} shape."""
        if self.success:
            return {"success": True, "data": _plain(self.value)}
        return {
            "success": False,
            "error": self.error,
            "error_type": self.error_type,
            "reasons": list(self.reasons),
        }


def _plain(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {k: _plain(v) for k, v in asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# Common error types for consistency
class ErrorType:
    """Standard error type constants."""
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    BUSINESS_RULE = "BUSINESS_RULE"
