"""Typed failures raised by the deal store and stage guard.

The HTTP layer maps DealValidationError and InvalidStatusError to 400 and
DealNotFoundError to 404. Storage errors are never wrapped in these.
"""

from __future__ import annotations

from collections.abc import Iterable


class DealError(ValueError):
    """Base class for expected, caller-correctable deal failures."""


class DealValidationError(DealError):
    """Raised when a required field is missing, empty or out of range."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class InvalidStatusError(DealError):
    """Raised when a status value is outside the fixed pipeline enumeration."""

    def __init__(self, value: object, allowed: Iterable[str]) -> None:
        self.value = value
        self.allowed = tuple(allowed)
        super().__init__(
            f"Invalid deal status: {value!r}. "
            f"Allowed statuses: {', '.join(self.allowed)}"
        )


class DealNotFoundError(DealError):
    """Raised when an operation targets a deal id that does not exist."""

    def __init__(self, deal_id: object) -> None:
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {deal_id}")
