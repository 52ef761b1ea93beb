"""Reconciliation engine for TTB opening balances vs system inventory.

Exposes high-level functions:
- reconcile(opening_balances, system_inventory) -> ReconciliationResult
- reconcile_spirits(spirits, legacy_by_class) -> list of spirits rows
"""

from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from core.models.ttb import (
    OpeningBalances,
    ReconciliationResult,
    ReconciliationTotals,
    SPIRITS_TAX_CLASSES,
    SpiritsBalances,
    SystemInventory,
    TaxClass,
    TaxClassReconciliation,
    WINE_TAX_CLASSES,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Configuration
# =============================================================================

# Absolute tolerance in gallons; a difference must be strictly below it
RECONCILIATION_TOLERANCE = Decimal("0.5")

ZERO = Decimal("0")


# =============================================================================
# Utility Functions
# =============================================================================

def to_decimal(value) -> Decimal:
    """Convert value to Decimal (None is zero)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def is_within_tolerance(
    value: Decimal,
    tolerance: Decimal = RECONCILIATION_TOLERANCE,
) -> bool:
    """True when |value| is strictly below the tolerance."""
    return abs(to_decimal(value)) < tolerance


# =============================================================================
# Per-Class Comparison
# =============================================================================

def reconcile_tax_class(
    tax_class: TaxClass,
    ttb_balance: Decimal,
    system_inventory: Decimal,
) -> TaxClassReconciliation:
    """Compare one tax class. Positive difference means regulator > system."""
    difference = ttb_balance - system_inventory
    return TaxClassReconciliation(
        tax_class=tax_class,
        label=tax_class.label,
        ttb_balance=ttb_balance,
        system_inventory=system_inventory,
        difference=difference,
        is_reconciled=is_within_tolerance(difference),
    )


def _check_aggregator_total(system_inventory: SystemInventory, summed_total: Decimal) -> None:
    """Warn when the aggregator's own total disagrees with its per-class volumes."""
    reported = to_decimal(system_inventory.total)
    wine_classes = set(WINE_TAX_CLASSES)
    # Spirits volumes are proof gallons and never part of the wine total
    non_wine = sum(
        (to_decimal(e.volume) for e in system_inventory.by_tax_class if e.tax_class not in wine_classes),
        ZERO,
    )
    if not is_within_tolerance(reported - non_wine - summed_total):
        logger.warning(
            "System inventory total disagrees with per-class volumes",
            extra_fields={
                "reported_total": str(reported),
                "summed_total": str(summed_total),
                "non_wine_total": str(non_wine),
            },
        )


# =============================================================================
# Main Reconciliation Engine
# =============================================================================

def reconcile(
    opening_balances: OpeningBalances,
    system_inventory: SystemInventory,
) -> ReconciliationResult:
    """Compare regulator balances with system inventory per wine tax class.
    
    Args:
        opening_balances: Regulator-reported bulk/bottled/spirits balances
        system_inventory: Aggregated system inventory as of the balance date
        
    Returns:
        ReconciliationResult with per-class rows (classes where both sides
        are zero are omitted) and totals summed from the per-class values
    """
    by_tax_class: List[TaxClassReconciliation] = []
    ttb_total = ZERO
    system_total = ZERO
    
    for tax_class in WINE_TAX_CLASSES:
        ttb = opening_balances.ttb_balance(tax_class)
        system = to_decimal(system_inventory.volume_for(tax_class))
        
        ttb_total += ttb
        system_total += system
        
        if ttb == ZERO and system == ZERO:
            continue
        
        by_tax_class.append(reconcile_tax_class(tax_class, ttb, system))
    
    _check_aggregator_total(system_inventory, system_total)
    
    difference = ttb_total - system_total
    totals = ReconciliationTotals(
        ttb_total=ttb_total,
        system_total=system_total,
        difference=difference,
        is_fully_reconciled=is_within_tolerance(difference),
    )
    
    return ReconciliationResult(by_tax_class=by_tax_class, totals=totals)


def reconcile_spirits(
    spirits: SpiritsBalances,
    legacy_by_class: Optional[Mapping[TaxClass, Decimal]] = None,
) -> List[TaxClassReconciliation]:
    """Spirits rows (proof gallons), reported separately from wine.
    
    The system does not track spirits inventory outside legacy batches, so
    the comparison is regulator balance vs legacy volume for the class.
    """
    legacy_by_class = legacy_by_class or {}
    rows: List[TaxClassReconciliation] = []
    for tax_class in SPIRITS_TAX_CLASSES:
        ttb = spirits.get(tax_class)
        legacy = to_decimal(legacy_by_class.get(tax_class))
        if ttb == ZERO and legacy == ZERO:
            continue
        rows.append(reconcile_tax_class(tax_class, ttb, legacy))
    return rows


def summarize(result: ReconciliationResult) -> Dict:
    """Plain dict view of a result, for logs and CLI output."""
    return {
        "ttb_total": str(result.totals.ttb_total),
        "system_total": str(result.totals.system_total),
        "difference": str(result.totals.difference),
        "is_fully_reconciled": result.totals.is_fully_reconciled,
        "unreconciled_classes": [
            row.tax_class.value for row in result.by_tax_class if not row.is_reconciled
        ],
    }
