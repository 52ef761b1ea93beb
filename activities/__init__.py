"""Activity definitions module."""

from activities.commit import (
    save_opening_balances,
    create_legacy_batch,
    discard_legacy_batches,
    save_reconciliation_snapshot,
    mark_onboarding_complete,
    get_repository,
    SaveOpeningBalancesInput,
    CreateLegacyBatchInput,
    DiscardLegacyBatchesInput,
    SaveReconciliationSnapshotInput,
    MarkOnboardingCompleteInput,
)

COMMIT_ACTIVITIES = [
    save_opening_balances,
    create_legacy_batch,
    discard_legacy_batches,
    save_reconciliation_snapshot,
    mark_onboarding_complete,
]

__all__ = [
    "save_opening_balances",
    "create_legacy_batch",
    "discard_legacy_batches",
    "save_reconciliation_snapshot",
    "mark_onboarding_complete",
    "get_repository",
    "SaveOpeningBalancesInput",
    "CreateLegacyBatchInput",
    "DiscardLegacyBatchesInput",
    "SaveReconciliationSnapshotInput",
    "MarkOnboardingCompleteInput",
    "COMMIT_ACTIVITIES",
]
