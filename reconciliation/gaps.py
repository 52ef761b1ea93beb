"""Gap resolution: explaining a positive reconciliation gap with legacy batches.

A legacy batch is inventory that existed before the system started
tracking. Adding one reduces the remaining gap by its volume.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from core.models.ttb import LegacyBatchInput, TaxClass, TaxClassReconciliation
from reconciliation.engine import RECONCILIATION_TOLERANCE, ZERO, is_within_tolerance, to_decimal


class GapStatus(str, Enum):
    """Where a gap stands after legacy batches are applied."""
    NO_GAP = "NO_GAP"
    RESOLVED_BY_LEGACY_BATCHES = "RESOLVED_BY_LEGACY_BATCHES"
    UNRESOLVED = "UNRESOLVED"
    OVER_ALLOCATED = "OVER_ALLOCATED"


# =============================================================================
# Validation
# =============================================================================

def validate_legacy_batch(batch: LegacyBatchInput) -> List[str]:
    """Return validation errors for a legacy batch (empty when valid)."""
    errors = []
    if not batch.name or not batch.name.strip():
        errors.append("Batch name is required")
    if batch.volume_gallons is None or batch.volume_gallons <= ZERO:
        errors.append("Volume must be greater than 0")
    return errors


# =============================================================================
# Batch List Operations
# =============================================================================

def add_legacy_batch(
    batches: Sequence[LegacyBatchInput],
    batch: LegacyBatchInput,
) -> List[LegacyBatchInput]:
    """New list with the batch appended."""
    return [*batches, batch]


def remove_legacy_batch(
    batches: Sequence[LegacyBatchInput],
    index: int,
) -> List[LegacyBatchInput]:
    """New list without the batch at index; the rest keep their order.
    
    Raises:
        IndexError: If index is out of range (negative indexes included)
    """
    if index < 0 or index >= len(batches):
        raise IndexError(f"Legacy batch index {index} out of range (have {len(batches)})")
    return [b for i, b in enumerate(batches) if i != index]


# =============================================================================
# Gap Arithmetic
# =============================================================================

def total_legacy_volume(batches: Iterable[LegacyBatchInput]) -> Decimal:
    return sum((to_decimal(b.volume_gallons) for b in batches), ZERO)


def remaining_gap(original_difference: Decimal, batches: Iterable[LegacyBatchInput]) -> Decimal:
    """Gap left after subtracting every legacy batch volume."""
    return to_decimal(original_difference) - total_legacy_volume(batches)


def is_resolved(remaining: Decimal) -> bool:
    return is_within_tolerance(remaining)


def gap_status(original_difference: Decimal, batches: Sequence[LegacyBatchInput]) -> GapStatus:
    """Classify the gap; is_resolved() remains the gating check."""
    original = to_decimal(original_difference)
    if not batches and (is_within_tolerance(original) or original < ZERO):
        return GapStatus.NO_GAP
    remaining = remaining_gap(original, batches)
    if is_resolved(remaining):
        return GapStatus.RESOLVED_BY_LEGACY_BATCHES if batches else GapStatus.NO_GAP
    if remaining < ZERO:
        return GapStatus.OVER_ALLOCATED
    return GapStatus.UNRESOLVED


# =============================================================================
# Guidance Helpers
# =============================================================================

def legacy_volume_by_tax_class(batches: Iterable[LegacyBatchInput]) -> Dict[TaxClass, Decimal]:
    """Legacy volume attributed to each tax class."""
    totals: Dict[TaxClass, Decimal] = {}
    for batch in batches:
        totals[batch.tax_class] = totals.get(batch.tax_class, ZERO) + to_decimal(batch.volume_gallons)
    return totals


def tax_classes_with_gaps(
    by_tax_class: Iterable[TaxClassReconciliation],
) -> List[TaxClassReconciliation]:
    """Rows where the regulator reports more than the system tracks."""
    return [row for row in by_tax_class if row.difference > RECONCILIATION_TOLERANCE]


def suggest_legacy_batch_name(tax_class: TaxClass, as_of_date: Optional[date] = None) -> str:
    year = (as_of_date or date.today()).year
    return f"Legacy Inventory - {tax_class.label} {year}"
