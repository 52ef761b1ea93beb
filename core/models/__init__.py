"""Core data models - TTB balances, reconciliation records, onboarding state.

This package contains the data contracts shared by the reconciliation
engine, the onboarding wizard, persistence and the API.
"""

from core.models.ttb import (
    # Base
    TTBBase,
    VolumeValue,
    DateValue,
    
    # Tax classes
    TaxClass,
    ProductType,
    TAX_CLASS_LABELS,
    WINE_TAX_CLASSES,
    SPIRITS_TAX_CLASSES,
    product_type_for,
    
    # Opening balances
    TaxClassBalances,
    SpiritsBalances,
    OpeningBalances,
    OpeningBalanceSnapshot,
    
    # System inventory
    BatchDetail,
    SystemTaxClassInventory,
    SystemInventory,
    
    # Reconciliation
    TaxClassReconciliation,
    ReconciliationTotals,
    ReconciliationResult,
    LegacyBatchInput,
    
    # Snapshot
    SnapshotTotals,
    SnapshotBreakdown,
    SnapshotTaxClassRow,
    ReconciliationSummary,
    ReconciliationSnapshot,
    
    # Onboarding
    ONBOARDING_SCHEMA_VERSION,
    Step1Data,
    Step2Data,
    Step3Data,
    Step4Data,
    OnboardingState,
)

from core.models.refs import (
    DataReference,
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    # Base
    "TTBBase",
    "VolumeValue",
    "DateValue",
    
    # Tax classes
    "TaxClass",
    "ProductType",
    "TAX_CLASS_LABELS",
    "WINE_TAX_CLASSES",
    "SPIRITS_TAX_CLASSES",
    "product_type_for",
    
    # Opening balances
    "TaxClassBalances",
    "SpiritsBalances",
    "OpeningBalances",
    "OpeningBalanceSnapshot",
    
    # System inventory
    "BatchDetail",
    "SystemTaxClassInventory",
    "SystemInventory",
    
    # Reconciliation
    "TaxClassReconciliation",
    "ReconciliationTotals",
    "ReconciliationResult",
    "LegacyBatchInput",
    
    # Snapshot
    "SnapshotTotals",
    "SnapshotBreakdown",
    "SnapshotTaxClassRow",
    "ReconciliationSummary",
    "ReconciliationSnapshot",
    
    # Onboarding
    "ONBOARDING_SCHEMA_VERSION",
    "Step1Data",
    "Step2Data",
    "Step3Data",
    "Step4Data",
    "OnboardingState",
    
    # References
    "DataReference",
    "AuditEvent",
    "AuditSeverity",
]
