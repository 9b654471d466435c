"""
Exception hierarchy for inventory collection and reconciliation.
Every error records the source it relates to so diagnostics can name it.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for all inventory errors."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"[{self.source}] {self.message}"
        return self.message


class AuthenticationError(InventoryError):
    """Credentials were missing or rejected by a source."""


class OrganizationLookupError(InventoryError, LookupError):
    """The organization/client does not exist in a source."""


class TransportError(InventoryError):
    """Network, timeout or server failure while talking to a source."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status: Optional[int] = None
    ):
        super().__init__(message, source)
        self.status = status


class PartialResultError(InventoryError):
    """Pagination stopped before the source reported the end of the data."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        items_received: int = 0
    ):
        super().__init__(message, source)
        self.items_received = items_received


class IncompleteReconciliationError(InventoryError):
    """One or more comparisons could not be computed."""
