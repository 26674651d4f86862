"""
Custom Exception Hierarchy

Internal error types for the coverage engine. Public entry points catch
these and return a complete result object instead of raising; contract
violations at the record boundary surface as pydantic/ValueError.
"""
from typing import Optional, Dict, Any


class CoverageEngineError(Exception):
    """Base exception for all coverage engine errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for audit/reporting."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class InputDataError(CoverageEngineError):
    """A measurement or encounter is missing a required field or holds an invalid value."""

    def __init__(
        self,
        message: str,
        field_name: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="INPUT_DATA_ERROR",
            details={"field": field_name, **(details or {})}
        )
        self.field_name = field_name


class InsufficientDataError(CoverageEngineError):
    """Not enough usable data points to reach a decision."""

    def __init__(
        self,
        message: str,
        required: int = 0,
        available: int = 0,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="INSUFFICIENT_DATA",
            details={"required": required, "available": available, **(details or {})}
        )
        self.required = required
        self.available = available


class StorageError(CoverageEngineError):
    """The policy store could not be read."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="STORAGE_ERROR",
            details={"operation": operation, **(details or {})}
        )
        self.operation = operation
