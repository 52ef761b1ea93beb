"""Commit activities for TTB onboarding.

One activity per persistent commit stage, plus the cleanup of legacy
batches left by superseded attempts. Each is safe to retry:
opening balances are an upsert, legacy batches are keyed by batch number,
a repeated discard matches nothing, snapshots are saved once per commit
id and completion is a timestamp overwrite.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from temporalio import activity

from core.config import get_settings
from core.models.ttb import LegacyBatchInput, OpeningBalances, ReconciliationSnapshot
from inventory.db import InventoryRepository


def get_repository() -> InventoryRepository:
    """Repository for the configured database."""
    settings = get_settings()
    return InventoryRepository(
        settings.db_path,
        artifacts_dir=settings.artifacts_dir,
        organization_id=settings.organization_id,
    )


@dataclass
class SaveOpeningBalancesInput:
    """Input for save_opening_balances activity.

    Attributes:
        commit_id: Onboarding commit attempt
        as_of_date: Opening balance date (YYYY-MM-DD)
        balances: OpeningBalances dumped in JSON mode
        reconciliation_notes: Free-text notes from step 1
    """
    commit_id: str
    as_of_date: str
    balances: dict
    reconciliation_notes: Optional[str] = None


@dataclass
class CreateLegacyBatchInput:
    """Input for create_legacy_batch activity.

    Attributes:
        commit_id: Onboarding commit attempt
        batch_number: Deterministic batch number for this commit and position
        as_of_date: Opening balance date (YYYY-MM-DD)
        batch: LegacyBatchInput dumped in JSON mode
    """
    commit_id: str
    batch_number: str
    as_of_date: str
    batch: dict


@dataclass
class DiscardLegacyBatchesInput:
    """Input for discard_legacy_batches activity.

    Attributes:
        commit_id: Onboarding commit attempt now running
        superseded_commit_ids: Earlier attempts of the same draft
    """
    commit_id: str
    superseded_commit_ids: List[str] = field(default_factory=list)


@dataclass
class SaveReconciliationSnapshotInput:
    commit_id: str
    snapshot: dict


@dataclass
class MarkOnboardingCompleteInput:
    commit_id: str
    completed_at: Optional[str] = None


@activity.defn
async def save_opening_balances(input: SaveOpeningBalancesInput) -> dict:
    """Persist the organization's opening balances (upsert)."""
    activity.logger.info(f"Saving opening balances as of {input.as_of_date} for commit {input.commit_id}")

    balances = OpeningBalances.model_validate(input.balances)
    get_repository().save_opening_balances(
        date.fromisoformat(input.as_of_date),
        balances,
        input.reconciliation_notes,
    )

    return {
        "commit_id": input.commit_id,
        "as_of_date": input.as_of_date,
        "wine_total": str(balances.wine_total()),
    }


@activity.defn
async def create_legacy_batch(input: CreateLegacyBatchInput) -> dict:
    """Create one legacy batch; an existing batch with the same number is reused."""
    batch = LegacyBatchInput.model_validate(input.batch)
    activity.logger.info(f"Creating legacy batch {input.batch_number}: {batch.name} ({batch.volume_gallons} gal)")

    batch_id = get_repository().create_legacy_batch(
        batch_number=input.batch_number,
        name=batch.name.strip(),
        volume_gallons=batch.volume_gallons,
        product_type=batch.product_type,
        tax_class=batch.tax_class,
        as_of_date=date.fromisoformat(input.as_of_date),
        notes=batch.notes,
        original_gravity=batch.original_gravity,
        final_gravity=batch.final_gravity,
        ph=batch.ph,
        vessel_id=batch.vessel_id,
        start_date=batch.start_date,
    )

    return {"batch_id": batch_id, "batch_number": input.batch_number}


@activity.defn
async def discard_legacy_batches(input: DiscardLegacyBatchesInput) -> dict:
    """Delete legacy batches written by superseded attempts of this draft."""
    repo = get_repository()
    discarded = 0
    for old_id in input.superseded_commit_ids:
        discarded += repo.discard_legacy_batches(old_id)

    activity.logger.info(f"Discarded {discarded} superseded legacy batches before commit {input.commit_id}")

    return {"discarded": discarded}


@activity.defn
async def save_reconciliation_snapshot(input: SaveReconciliationSnapshotInput) -> dict:
    """Append the reconciliation snapshot (once per commit id)."""
    snapshot = ReconciliationSnapshot.model_validate(input.snapshot)
    activity.logger.info(f"Saving reconciliation snapshot '{snapshot.name}' for commit {input.commit_id}")

    snapshot_id = get_repository().save_reconciliation_snapshot(snapshot, input.commit_id)

    return {"snapshot_id": snapshot_id}


@activity.defn
async def mark_onboarding_complete(input: MarkOnboardingCompleteInput) -> dict:
    """Stamp the organization's onboarding completion time."""
    completed_at = datetime.fromisoformat(input.completed_at) if input.completed_at else None
    stamped = get_repository().mark_onboarding_complete(completed_at)

    activity.logger.info(f"Onboarding marked complete at {stamped} for commit {input.commit_id}")

    return {"completed_at": stamped}
