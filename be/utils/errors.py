"""
Budget error types

BudgetValidationError is raised for input that breaks the import/save
contract and is always raised before anything is written.
BudgetPersistenceError wraps database failures after the transaction has
been rolled back.
"""

from typing import Any, List, Optional


class BudgetValidationError(Exception):
    """User input out of contract (missing field, out of range value, bad HTML)."""

    def __init__(self, message: str, details: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class BudgetPersistenceError(Exception):
    """Database failure inside a budget transaction (already rolled back)."""
