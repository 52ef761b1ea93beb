"""
Commit Activity Tests

Runs each commit activity in temporalio's ActivityEnvironment against a
throwaway SQLite repository. Every activity must be safe to retry.
"""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from temporalio.testing import ActivityEnvironment

import activities.commit as commit_activities
from activities.commit import (
    CreateLegacyBatchInput,
    DiscardLegacyBatchesInput,
    MarkOnboardingCompleteInput,
    SaveOpeningBalancesInput,
    SaveReconciliationSnapshotInput,
    create_legacy_batch,
    discard_legacy_batches,
    mark_onboarding_complete,
    save_opening_balances,
    save_reconciliation_snapshot,
)
from conftest import AS_OF
from core.models.ttb import ProductType, TaxClass


COMMIT_ID = "7d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a"


@pytest.fixture(autouse=True)
def use_test_repository(monkeypatch, repository):
    monkeypatch.setattr(commit_activities, "get_repository", lambda: repository)
    return repository


def run(activity_fn, input):
    return asyncio.run(ActivityEnvironment().run(activity_fn, input))


def snapshot_json(name="Initial Reconciliation"):
    return {
        "name": name,
        "reconciliationDate": "2024-01-01",
        "summary": {
            "openingBalanceDate": "2024-01-01",
            "totals": {
                "ttbBalance": "150",
                "currentInventory": "140",
                "legacyBatches": "10",
                "difference": "0",
            },
            "breakdown": {"bulkInventory": "140", "packagedInventory": "0"},
        },
    }


def test_save_opening_balances(repository):
    input = SaveOpeningBalancesInput(
        commit_id=COMMIT_ID,
        as_of_date="2024-01-01",
        balances={"bulk": {"hardCider": "100"}, "bottled": {"hardCider": "50"}},
        reconciliation_notes="From the December report",
    )

    result = run(save_opening_balances, input)
    # Upsert: a retry leaves one row with the same content
    run(save_opening_balances, input)

    assert result == {"commit_id": COMMIT_ID, "as_of_date": "2024-01-01", "wine_total": "150"}
    saved = repository.get_opening_balances()
    assert saved.date == AS_OF
    assert saved.balances.ttb_balance(TaxClass.HARD_CIDER) == Decimal("150")
    assert saved.reconciliation_notes == "From the December report"


def test_create_legacy_batch_is_idempotent(repository):
    input = CreateLegacyBatchInput(
        commit_id=COMMIT_ID,
        batch_number="LEGACY-7D1E2F3A-001",
        as_of_date="2024-01-01",
        batch={"name": "  Old tank 3  ", "volumeGallons": "10", "taxClass": "appleBrandy"},
    )

    first = run(create_legacy_batch, input)
    second = run(create_legacy_batch, input)

    assert first == second
    assert first["batch_number"] == "LEGACY-7D1E2F3A-001"

    rows = repository.list_legacy_batches()
    assert len(rows) == 1
    assert rows[0]["name"] == "Old tank 3"
    assert rows[0]["tax_class"] == TaxClass.APPLE_BRANDY.value
    assert rows[0]["product_type"] == ProductType.BRANDY.value
    assert rows[0]["start_date"] == "2024-01-01"


def test_discard_legacy_batches_of_superseded_attempts(repository):
    old_id = "3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f"
    run(create_legacy_batch, CreateLegacyBatchInput(
        commit_id=old_id,
        batch_number="LEGACY-3C4D5E6F-001",
        as_of_date="2024-01-01",
        batch={"name": "Old cider", "volumeGallons": "50", "taxClass": "hardCider"},
    ))
    input = DiscardLegacyBatchesInput(commit_id=COMMIT_ID, superseded_commit_ids=[old_id])

    assert run(discard_legacy_batches, input) == {"discarded": 1}
    # Nothing left on a retry
    assert run(discard_legacy_batches, input) == {"discarded": 0}
    assert repository.list_legacy_batches() == []


def test_save_reconciliation_snapshot_once_per_commit(repository):
    first = run(save_reconciliation_snapshot, SaveReconciliationSnapshotInput(
        commit_id=COMMIT_ID, snapshot=snapshot_json(),
    ))
    retry = run(save_reconciliation_snapshot, SaveReconciliationSnapshotInput(
        commit_id=COMMIT_ID, snapshot=snapshot_json("Retried"),
    ))

    assert first == retry
    snapshots = repository.list_reconciliation_snapshots()
    assert len(snapshots) == 1
    assert snapshots[0].name == "Initial Reconciliation"
    assert snapshots[0].summary.totals.legacy_batches == Decimal("10")


def test_mark_onboarding_complete(repository):
    result = run(mark_onboarding_complete, MarkOnboardingCompleteInput(
        commit_id=COMMIT_ID, completed_at="2024-01-15T09:30:00",
    ))

    assert result == {"completed_at": "2024-01-15T09:30:00"}
    assert repository.get_onboarding_completed_at() == datetime(2024, 1, 15, 9, 30)


def test_mark_onboarding_complete_defaults_to_now(repository):
    run(mark_onboarding_complete, MarkOnboardingCompleteInput(commit_id=COMMIT_ID))
    assert repository.get_onboarding_completed_at() is not None


def test_invalid_balances_fail_the_activity(repository):
    with pytest.raises(ValueError):
        run(save_opening_balances, SaveOpeningBalancesInput(
            commit_id=COMMIT_ID,
            as_of_date="2024-01-01",
            balances={"bulk": {"hardCider": "-5"}},
        ))
    assert repository.get_opening_balances() is None
