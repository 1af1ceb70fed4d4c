from __future__ import annotations

from typing import Any


class DivisionError(Exception):
    """Base error for division hierarchy and reassignment failures."""

    code = "division_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(DivisionError):
    """Raised when a division, parent, manager or entity is missing or belongs to another tenant."""

    code = "not_found"


class ConflictError(DivisionError):
    """Raised when a division name is already taken within the tenant."""

    code = "conflict"


class BusinessRuleViolationError(DivisionError):
    """Raised when a hierarchy rule would be broken (self-parenting, cycles, live references)."""

    code = "business_rule_violation"
