"""
Utilities Package - Logging and Exception Handling
"""
from .logging import get_logger, setup_logging
from .exceptions import (
    CoverageEngineError,
    InputDataError,
    InsufficientDataError,
    StorageError,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "CoverageEngineError",
    "InputDataError",
    "InsufficientDataError",
    "StorageError",
]
