"""Reconciliation - regulator vs system comparison and gap resolution."""

from reconciliation.engine import (
    RECONCILIATION_TOLERANCE,
    is_within_tolerance,
    reconcile,
    reconcile_spirits,
)
from reconciliation.gaps import (
    GapStatus,
    add_legacy_batch,
    gap_status,
    is_resolved,
    remaining_gap,
    remove_legacy_batch,
    validate_legacy_batch,
)

__all__ = [
    "RECONCILIATION_TOLERANCE",
    "is_within_tolerance",
    "reconcile",
    "reconcile_spirits",
    "GapStatus",
    "add_legacy_batch",
    "gap_status",
    "is_resolved",
    "remaining_gap",
    "remove_legacy_batch",
    "validate_legacy_batch",
]
