"""Data processing modules for normalization and reconciliation."""

from .inventory import FetchOutcome, SourceInventory, SourceName
from .normalizer import (
    normalize_identity,
    normalize_inventory,
    count_duplicates
)
from .reconciliation import (
    Comparison,
    ComparisonResult,
    ComparisonStatus,
    DEFAULT_COMPARISONS,
    InventoryReconciler,
    ReconciliationResult,
    compare_inventories,
    parse_comparison
)

__all__ = [
    'FetchOutcome',
    'SourceInventory',
    'SourceName',
    'normalize_identity',
    'normalize_inventory',
    'count_duplicates',
    'Comparison',
    'ComparisonResult',
    'ComparisonStatus',
    'DEFAULT_COMPARISONS',
    'InventoryReconciler',
    'ReconciliationResult',
    'compare_inventories',
    'parse_comparison'
]
