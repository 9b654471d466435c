"""
Inventory value types shared by the connectors and the reconciler.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Tuple

from ..errors import InventoryError


class SourceName(Enum):
    """Sources of record taking part in reconciliation."""
    DIRECTORY = "directory"
    ENDPOINT_PROTECTION = "endpoint_protection"
    RMM = "rmm"

    @property
    def label(self) -> str:
        return _SOURCE_LABELS[self]


_SOURCE_LABELS = {
    SourceName.DIRECTORY: "Directory",
    SourceName.ENDPOINT_PROTECTION: "EndpointProtection",
    SourceName.RMM: "RMM",
}


@dataclass(frozen=True)
class SourceInventory:
    """
    Raw hostnames returned by one source for one organization.
    Built once per run and never mutated.
    """
    source: SourceName
    organization: str
    hostnames: Tuple[Optional[str], ...] = ()
    captured_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_records(
        cls,
        source: SourceName,
        organization: str,
        hostnames: Iterable[Optional[str]]
    ) -> "SourceInventory":
        return cls(source=source, organization=organization, hostnames=tuple(hostnames))

    def __len__(self) -> int:
        return len(self.hostnames)


@dataclass(frozen=True)
class FetchOutcome:
    """
    Result of fetching one source: either an inventory (possibly empty)
    or the error that prevented it from being determined.
    """
    source: SourceName
    result: Optional[SourceInventory] = None
    error: Optional[InventoryError] = None

    def __post_init__(self):
        if (self.result is None) == (self.error is None):
            raise ValueError("FetchOutcome needs exactly one of result or error")

    @classmethod
    def ok(cls, inventory: SourceInventory) -> "FetchOutcome":
        return cls(source=inventory.source, result=inventory)

    @classmethod
    def failed(cls, source: SourceName, error: InventoryError) -> "FetchOutcome":
        return cls(source=source, error=error)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def inventory(self) -> SourceInventory:
        """Return the inventory, re-raising the stored error if the fetch failed."""
        if self.error is not None:
            raise self.error
        return self.result

    def describe_failure(self) -> str:
        if self.error is None:
            return ''
        return f"{self.source.label} failed: {type(self.error).__name__}: {self.error.message}"
