"""
Reconciliation of device inventories across the directory, endpoint
protection and RMM sources.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple
from enum import Enum

from ..errors import IncompleteReconciliationError
from .inventory import FetchOutcome, SourceName
from .normalizer import normalize_inventory


class ComparisonStatus(Enum):
    """Status of a single directed comparison."""
    COMPLETE = "complete"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class Comparison:
    """Hosts present in one source that the other source does not know about."""
    present_in: SourceName
    missing_from: SourceName

    def __post_init__(self):
        if self.present_in == self.missing_from:
            raise ValueError("A comparison needs two different sources")

    @property
    def key(self) -> str:
        return f"{self.present_in.value}_not_in_{self.missing_from.value}"

    @property
    def description(self) -> str:
        return f"{self.present_in.label} \\ {self.missing_from.label}"


DIRECTORY_NOT_IN_RMM = Comparison(SourceName.DIRECTORY, SourceName.RMM)
RMM_NOT_IN_ENDPOINT_PROTECTION = Comparison(SourceName.RMM, SourceName.ENDPOINT_PROTECTION)

DEFAULT_COMPARISONS: Tuple[Comparison, ...] = (
    DIRECTORY_NOT_IN_RMM,
    RMM_NOT_IN_ENDPOINT_PROTECTION,
)


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of one comparison. Hosts are sorted for stable output."""
    comparison: Comparison
    status: ComparisonStatus
    hosts: Tuple[str, ...] = ()
    reason: str = ''

    @property
    def is_complete(self) -> bool:
        return self.status == ComparisonStatus.COMPLETE


@dataclass(frozen=True)
class ReconciliationResult:
    """Immutable result of one reconciliation run."""
    comparisons: Tuple[ComparisonResult, ...] = ()
    source_counts: Tuple[Tuple[str, Optional[int]], ...] = ()

    def get(
        self,
        present_in: SourceName,
        missing_from: SourceName
    ) -> Optional[ComparisonResult]:
        target = Comparison(present_in, missing_from)
        for result in self.comparisons:
            if result.comparison == target:
                return result
        return None

    @property
    def missing_from_directory(self) -> Optional[ComparisonResult]:
        """Directory hosts (recently active) that the RMM platform does not track."""
        return self.get(SourceName.DIRECTORY, SourceName.RMM)

    @property
    def missing_from_endpoint_protection(self) -> Optional[ComparisonResult]:
        """RMM-managed hosts not reporting to the endpoint protection console."""
        return self.get(SourceName.RMM, SourceName.ENDPOINT_PROTECTION)

    @property
    def is_complete(self) -> bool:
        return all(r.is_complete for r in self.comparisons)

    @property
    def indeterminate(self) -> List[ComparisonResult]:
        return [r for r in self.comparisons if not r.is_complete]

    @property
    def total_missing(self) -> int:
        return sum(len(r.hosts) for r in self.comparisons)

    def require_complete(self) -> "ReconciliationResult":
        """Raise IncompleteReconciliationError if any comparison is indeterminate."""
        failed = self.indeterminate
        if failed:
            details = '; '.join(
                f"{r.comparison.description}: {r.reason}" for r in failed
            )
            raise IncompleteReconciliationError(
                f"{len(failed)} comparison(s) indeterminate - {details}"
            )
        return self

    def to_records(self) -> List[Dict[str, str]]:
        """Flatten complete comparisons into export rows."""
        records = []
        for result in self.comparisons:
            if not result.is_complete:
                continue
            for host in result.hosts:
                records.append({
                    'ComputerName': host,
                    'MissingFrom': result.comparison.missing_from.label,
                    'PresentIn': result.comparison.present_in.label
                })
        return records

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            'complete': self.is_complete,
            'total_missing': self.total_missing,
            'source_counts': dict(self.source_counts),
            'comparisons': [
                {
                    'key': r.comparison.key,
                    'present_in': r.comparison.present_in.label,
                    'missing_from': r.comparison.missing_from.label,
                    'status': r.status.value,
                    'count': len(r.hosts),
                    'hosts': list(r.hosts),
                    'reason': r.reason
                }
                for r in self.comparisons
            ]
        }


def compare_inventories(
    present: Iterable[Optional[str]],
    check: Iterable[Optional[str]],
    strip_domain: bool = False
) -> FrozenSet[str]:
    """
    Return identities in `present` that do not exist in `check`.

    Both sides are normalized first, so the comparison is case- and
    whitespace-insensitive and ignores blank entries.
    """
    return (
        normalize_inventory(present, strip_domain)
        - normalize_inventory(check, strip_domain)
    )


class InventoryReconciler:
    """
    Computes directed set differences between source inventories.

    A comparison whose inputs include a failed source is reported as
    indeterminate instead of treating that source as empty.
    """

    def __init__(
        self,
        comparisons: Optional[Sequence[Comparison]] = None,
        strip_domain: bool = False
    ):
        self.logger = logging.getLogger(f"inventory_recon.{self.__class__.__name__}")
        self.comparisons = tuple(comparisons) if comparisons else DEFAULT_COMPARISONS
        self.strip_domain = strip_domain

    def reconcile(
        self,
        outcomes: Mapping[SourceName, FetchOutcome]
    ) -> ReconciliationResult:
        """
        Reconcile the fetched inventories.

        Args:
            outcomes: Fetch outcome per source. A source with no entry is
                treated as not collected.

        Returns:
            ReconciliationResult with one entry per configured comparison
        """
        normalized: Dict[SourceName, FrozenSet[str]] = {}
        for source, outcome in outcomes.items():
            if outcome.succeeded:
                normalized[source] = normalize_inventory(
                    outcome.inventory.hostnames,
                    self.strip_domain
                )

        results = []
        for comparison in self.comparisons:
            result = self._compare(comparison, outcomes, normalized)
            if result.is_complete:
                self.logger.info(
                    f"{comparison.description}: {len(result.hosts)} device(s)"
                )
            else:
                self.logger.warning(
                    f"{comparison.description}: indeterminate ({result.reason})"
                )
            results.append(result)

        source_counts = tuple(
            (source.label, len(normalized[source]) if source in normalized else None)
            for source in SourceName
        )

        return ReconciliationResult(
            comparisons=tuple(results),
            source_counts=source_counts
        )

    def _compare(
        self,
        comparison: Comparison,
        outcomes: Mapping[SourceName, FetchOutcome],
        normalized: Dict[SourceName, FrozenSet[str]]
    ) -> ComparisonResult:
        reasons = []
        for source in (comparison.present_in, comparison.missing_from):
            outcome = outcomes.get(source)
            if outcome is None:
                reasons.append(f"{source.label} was not collected")
            elif not outcome.succeeded:
                reasons.append(outcome.describe_failure())

        if reasons:
            return ComparisonResult(
                comparison=comparison,
                status=ComparisonStatus.INDETERMINATE,
                reason='; '.join(reasons)
            )

        missing = normalized[comparison.present_in] - normalized[comparison.missing_from]

        return ComparisonResult(
            comparison=comparison,
            status=ComparisonStatus.COMPLETE,
            hosts=tuple(sorted(missing))
        )


def parse_comparison(value: str) -> Comparison:
    """
    Parse a comparison written as "<present_in>:<missing_from>",
    e.g. "directory:rmm".
    """
    try:
        present_in, missing_from = (part.strip().lower() for part in value.split(':'))
        return Comparison(SourceName(present_in), SourceName(missing_from))
    except ValueError as e:
        raise ValueError(
            f"Invalid comparison '{value}': expected '<source>:<source>' "
            f"with sources from {[s.value for s in SourceName]}"
        ) from e
