"""
Onboarding Wizard Tests

Drives the four-step state machine against an in-memory draft store, a
fake inventory reader and a recording commit executor:
- navigation gates (step 1 needs a date and a balance, step 2 needs a calculation)
- drafts survive a restart and bad drafts start over
- calculation is skipped when its inputs have not changed
- commit is refused off step 4 or unconfirmed, clears the draft on success
  and keeps it on failure
"""

import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

import pytest

from conftest import AS_OF, make_inventory
from core.audit import AuditEventType, AuditLogger, InMemoryAuditBackend
from core.models.ttb import OpeningBalances, OpeningBalanceSnapshot, SystemInventory, TaxClass
from core.observability.metrics import get_metrics
from core.storage.drafts import ONBOARDING_DRAFT_KEY, InMemoryDraftStore
from core.workflow.base import CommitResult, CommitStage
from reconciliation.gaps import GapStatus
from inventory.db import InventoryRepository, PersistenceError
from workflows.commit import CommitExecutor, CommitPlan, LocalCommitExecutor
from workflows.onboarding import OnboardingWizard


class FakeReader:
    """Inventory reader returning fixed data and counting calls."""

    def __init__(self, inventory: SystemInventory, existing: Optional[OpeningBalanceSnapshot] = None):
        self.inventory = inventory
        self.existing = existing
        self.inventory_calls: List[date] = []

    def get_opening_balances(self) -> Optional[OpeningBalanceSnapshot]:
        return self.existing

    def get_system_inventory_as_of(self, as_of_date: date) -> SystemInventory:
        self.inventory_calls.append(as_of_date)
        return self.inventory


class SnapshotFailsOnceRepository(InventoryRepository):
    """Repository whose first reconciliation snapshot save hits a locked database."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.snapshot_failed = False

    def save_reconciliation_snapshot(self, *args, **kwargs):
        if not self.snapshot_failed:
            self.snapshot_failed = True
            raise PersistenceError("save_reconciliation_snapshot", sqlite3.OperationalError("database is locked"))
        return super().save_reconciliation_snapshot(*args, **kwargs)


class RecordingExecutor(CommitExecutor):
    """Records plans; fails at a given stage when asked to."""

    def __init__(self, fail_at: Optional[CommitStage] = None, message: str = "database is locked"):
        super().__init__()
        self.plans: List[CommitPlan] = []
        self.fail_at = fail_at
        self.message = message

    def execute(self, plan: CommitPlan) -> CommitResult:
        self.plans.append(plan)
        result = CommitResult(commit_id=plan.commit_id, success=False, started_at=datetime.utcnow())
        for stage in CommitStage:
            if stage == self.fail_at:
                result.failed_stage = stage
                result.error_message = self.message
                result.completed_at = datetime.utcnow()
                return result
            result.completed_stages.append(stage)
        result.success = True
        result.snapshot_id = 1
        result.completed_at = datetime.utcnow()
        return result


@pytest.fixture
def store():
    return InMemoryDraftStore()


@pytest.fixture
def reader():
    return FakeReader(make_inventory(HARD_CIDER="140"))


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def audit():
    backend = InMemoryAuditBackend()
    logger = AuditLogger()
    logger.add_backend(backend)
    return logger


@pytest.fixture
def wizard(store, reader, executor, audit):
    return OnboardingWizard(store, reader, executor, audit_logger=audit)


def fill_step1(wizard, balances=None):
    wizard.update_step1(
        as_of_date=AS_OF,
        balances=balances or {"bulk": {"hardCider": "100"}, "bottled": {"hardCider": "50"}},
    )


def walk_to_review(wizard):
    fill_step1(wizard)
    assert wizard.go_next()
    wizard.calculate()
    assert wizard.go_next()
    assert wizard.add_legacy_batch({"name": "Pre-system cider", "volumeGallons": "10", "taxClass": "hardCider"}) == []
    assert wizard.go_next()
    wizard.set_confirmed(True)


class TestStep1:

    def test_fresh_wizard_starts_at_step_1(self, wizard):
        assert wizard.state.current_step == 1
        assert wizard.completed_steps() == set()
        assert wizard.has_draft() is False

    def test_cannot_advance_without_date_or_balance(self, wizard):
        assert wizard.go_next() is False

        wizard.update_step1(as_of_date=AS_OF)
        assert wizard.can_advance_from_step1() is False
        assert wizard.go_next() is False

        wizard.update_step1(balances={"bulk": {"hardCider": "1"}})
        assert wizard.go_next() is True
        assert wizard.state.current_step == 2

    def test_spirits_alone_allow_advancing(self, wizard):
        wizard.update_step1(as_of_date="2024-01-01", balances={"spirits": {"appleBrandy": "3"}})
        assert wizard.can_advance_from_step1()

    def test_balance_updates_merge(self, wizard):
        wizard.update_step1(balances={"bulk": {"hardCider": "100"}})
        wizard.update_step1(balances={"bulk": {"wineUnder16": "20"}})

        bulk = wizard.state.step1.balances.bulk
        assert bulk.hard_cider == Decimal("100")
        assert bulk.wine_under_16 == Decimal("20")

    def test_date_can_be_cleared(self, wizard):
        wizard.update_step1(as_of_date=AS_OF)
        wizard.update_step1(as_of_date=None)
        assert wizard.state.step1.date is None

    def test_prefill_from_saved_balances(self, store, executor):
        existing = OpeningBalanceSnapshot(
            date=date(2023, 12, 31),
            balances=OpeningBalances.model_validate({"bulk": {"hardCider": "75"}}),
            reconciliation_notes="From last filing",
        )
        wizard = OnboardingWizard(store, FakeReader(make_inventory(), existing), executor)

        assert wizard.prefill_from_existing() is True
        assert wizard.state.step1.date == date(2023, 12, 31)
        assert wizard.state.step1.reconciliation_notes == "From last filing"

        # Never overwrites a dated draft
        assert wizard.prefill_from_existing() is False

    def test_starting_onboarding_is_audited(self, wizard, audit):
        fill_step1(wizard)
        assert [e.event_type for e in audit.query()] == [AuditEventType.ONBOARDING_STARTED.value]


class TestNavigation:

    def test_step_2_requires_calculation(self, wizard):
        fill_step1(wizard)
        wizard.go_next()
        assert wizard.go_next() is False

        wizard.calculate()
        assert wizard.go_next() is True

    def test_step_3_always_advances(self, wizard):
        fill_step1(wizard)
        wizard.go_next()
        wizard.calculate()
        wizard.go_next()
        assert wizard.is_gap_resolved() is False
        assert wizard.go_next() is True
        assert wizard.state.current_step == 4

    def test_next_capped_and_back_floored(self, wizard):
        assert wizard.go_back() is False
        walk_to_review(wizard)
        assert wizard.go_next() is False
        assert wizard.state.current_step == 4

    def test_go_to_step(self, wizard):
        fill_step1(wizard)
        wizard.go_next()
        wizard.calculate()

        assert wizard.go_to_step(0) is False
        assert wizard.go_to_step(5) is False
        assert wizard.go_to_step(4) is False   # not completed yet
        assert wizard.go_to_step(1) is True     # back is always allowed
        assert wizard.go_to_step(2) is True     # calculated, so completed
        assert wizard.state.current_step == 2

    def test_cannot_skip_to_step_3_before_calculating(self, wizard):
        fill_step1(wizard)
        assert wizard.state.step2.calculated is False

        assert wizard.go_to_step(3) is False
        assert wizard.state.current_step == 1

    def test_completed_steps(self, wizard):
        walk_to_review(wizard)
        assert wizard.completed_steps() == {1, 2, 4}


class TestCalculation:

    def test_no_date_no_calculation(self, wizard, reader):
        assert wizard.calculate() is None
        assert reader.inventory_calls == []

    def test_calculation_results(self, wizard):
        fill_step1(wizard)
        step2 = wizard.calculate()

        assert step2.calculated is True
        assert step2.ttb_total == Decimal("150")
        assert step2.system_total == Decimal("140")
        assert step2.difference == Decimal("10")
        assert [row.tax_class for row in step2.by_tax_class] == [TaxClass.HARD_CIDER]
        assert get_metrics().get_summary()["reconciliations"]["runs"] == 1

    def test_unchanged_inputs_are_not_recalculated(self, wizard):
        fill_step1(wizard)
        wizard.calculate()
        wizard.calculate()
        assert get_metrics().get_summary()["reconciliations"]["runs"] == 1

    def test_changing_balances_drops_calculation_and_confirmation(self, wizard):
        walk_to_review(wizard)

        wizard.update_step1(balances={"bulk": {"hardCider": "101"}})

        assert wizard.state.step2.calculated is False
        assert wizard.state.step4.confirmed is False
        assert 2 not in wizard.completed_steps()

    def test_notes_alone_keep_calculation(self, wizard):
        fill_step1(wizard)
        wizard.calculate()
        wizard.update_step1(reconciliation_notes="Checked against Form 5120.17")
        assert wizard.state.step2.calculated is True


class TestGapResolution:

    def test_invalid_batch_returns_errors(self, wizard):
        errors = wizard.add_legacy_batch({"name": "", "volumeGallons": "0"})
        assert errors == ["Batch name is required", "Volume must be greater than 0"]
        assert wizard.state.step3.legacy_batches == []

    def test_batches_reduce_the_gap(self, wizard):
        fill_step1(wizard)
        wizard.calculate()

        wizard.add_legacy_batch({"name": "Old tank 3", "volumeGallons": "9.7"})
        assert wizard.remaining_gap() == Decimal("0.3")
        assert wizard.is_gap_resolved()
        assert wizard.gap_status() == GapStatus.RESOLVED_BY_LEGACY_BATCHES

        removed = wizard.remove_legacy_batch(0)
        assert removed.name == "Old tank 3"
        assert wizard.remaining_gap() == Decimal("10")

    def test_gap_tax_classes(self, wizard):
        assert wizard.gap_tax_classes() == []
        fill_step1(wizard)
        wizard.calculate()
        assert wizard.gap_tax_classes() == [TaxClass.HARD_CIDER]

    def test_remove_out_of_range(self, wizard):
        with pytest.raises(IndexError):
            wizard.remove_legacy_batch(0)

    def test_suggested_name_uses_balance_year(self, wizard):
        fill_step1(wizard)
        assert wizard.suggested_batch_name(TaxClass.HARD_CIDER) == "Legacy Inventory - Hard Cider (<8.5% ABV) 2024"


class TestDraftPersistence:

    def test_draft_survives_restart(self, wizard, store, reader, executor):
        fill_step1(wizard)
        wizard.go_next()
        wizard.calculate()
        wizard.add_legacy_batch({"name": "Old tank 3", "volumeGallons": "4"})

        resumed = OnboardingWizard(store, reader, executor)

        assert resumed.state == wizard.state
        assert resumed.has_draft() is True
        assert resumed.state.current_step == 2

    def test_date_alone_is_a_draft(self, wizard):
        wizard.update_step1(as_of_date="2024-12-31")

        assert wizard.state.current_step == 1
        assert wizard.has_draft() is True

    def test_corrupt_draft_starts_over(self, store, reader, executor):
        store.save_raw(ONBOARDING_DRAFT_KEY, "{broken")
        wizard = OnboardingWizard(store, reader, executor)
        assert wizard.state.current_step == 1
        assert wizard.has_draft() is False

    def test_other_schema_version_starts_over(self, store, reader, executor):
        store.save(ONBOARDING_DRAFT_KEY, {"schemaVersion": 0, "currentStep": 3})
        assert OnboardingWizard(store, reader, executor).state.current_step == 1

    def test_invalid_draft_starts_over(self, store, reader, executor):
        store.save(ONBOARDING_DRAFT_KEY, {"schemaVersion": 1, "currentStep": 9})
        assert OnboardingWizard(store, reader, executor).state.current_step == 1

    def test_reset(self, wizard, store):
        fill_step1(wizard)
        wizard.reset()
        assert wizard.state.step1.date is None
        assert store.exists(ONBOARDING_DRAFT_KEY) is False


class TestSnapshot:

    def test_snapshot_totals_and_rows(self, wizard):
        fill_step1(wizard, {"bulk": {"hardCider": "150"}, "spirits": {"appleBrandy": "2"}})
        wizard.calculate()
        wizard.add_legacy_batch({"name": "Cider", "volumeGallons": "8"})
        wizard.add_legacy_batch({"name": "Brandy", "volumeGallons": "2", "taxClass": "appleBrandy"})
        wizard.update_step3(discrepancy_notes="  Pre-system stock  ")

        snapshot = wizard.build_reconciliation_snapshot()

        assert snapshot.name == "Initial Reconciliation"
        assert snapshot.reconciliation_date == AS_OF
        assert snapshot.discrepancy_explanation == "Pre-system stock"

        totals = snapshot.summary.totals
        assert totals.ttb_balance == Decimal("150")
        assert totals.current_inventory == Decimal("140")
        assert totals.legacy_batches == Decimal("10")
        assert totals.difference == Decimal("0")

        rows = {row.key: row for row in snapshot.summary.tax_classes}
        assert rows[TaxClass.HARD_CIDER].legacy_batches == Decimal("8")
        assert rows[TaxClass.APPLE_BRANDY].type == "spirits"
        assert rows[TaxClass.APPLE_BRANDY].is_reconciled is True
        assert snapshot.summary.breakdown.bulk_inventory == Decimal("140")


class TestCommit:

    def test_refused_off_review_step(self, wizard, executor):
        fill_step1(wizard)
        result = wizard.commit()
        assert result.success is False
        assert "review step" in result.error_message
        assert executor.plans == []

    def test_refused_when_unconfirmed(self, wizard, executor):
        walk_to_review(wizard)
        wizard.set_confirmed(False)
        result = wizard.commit()
        assert result.success is False
        assert executor.plans == []

    def test_successful_commit_clears_draft(self, wizard, store, executor, audit):
        walk_to_review(wizard)
        result = wizard.commit()

        assert result.success is True
        assert len(executor.plans) == 1
        plan = executor.plans[0]
        assert plan.as_of_date == AS_OF
        assert plan.batch_numbers() == [f"LEGACY-{plan.commit_id[:8].upper()}-001"]

        assert store.exists(ONBOARDING_DRAFT_KEY) is False
        assert wizard.state.current_step == 1

        events = [e.event_type for e in audit.query(commit_id=plan.commit_id)]
        assert AuditEventType.COMMIT_STARTED.value in events
        assert AuditEventType.ONBOARDING_COMPLETED.value in events
        assert get_metrics().get_summary()["commits"]["completed"] == 1

    def test_failed_commit_keeps_draft_and_commit_id(self, store, reader, audit):
        executor = RecordingExecutor(fail_at=CommitStage.SAVE_RECONCILIATION_SNAPSHOT)
        wizard = OnboardingWizard(store, reader, executor, audit_logger=audit)
        walk_to_review(wizard)

        result = wizard.commit()

        assert result.success is False
        assert result.failed_stage == CommitStage.SAVE_RECONCILIATION_SNAPSHOT
        assert result.error_message == "database is locked"
        assert wizard.state.current_step == 4
        assert store.exists(ONBOARDING_DRAFT_KEY)

        failures = audit.query(event_type=AuditEventType.COMMIT_FAILED.value)
        assert len(failures) == 1
        assert get_metrics().get_summary()["commits"]["failed_by_stage"] == {"save_reconciliation_snapshot": 1}

        # A retry reuses the commit id, so batch numbers do not change
        wizard.commit()
        assert executor.plans[0].commit_id == executor.plans[1].commit_id

    def test_editing_batches_after_failure_starts_a_new_attempt(self, store, reader):
        executor = RecordingExecutor(fail_at=CommitStage.SAVE_RECONCILIATION_SNAPSHOT)
        wizard = OnboardingWizard(store, reader, executor)
        walk_to_review(wizard)
        wizard.commit()
        failed_id = wizard.state.step4.commit_id

        wizard.remove_legacy_batch(0)
        assert wizard.state.step4.commit_id is None
        assert wizard.state.step4.superseded_commit_ids == [failed_id]

        wizard.commit()
        retry = executor.plans[1]
        assert retry.commit_id != failed_id
        assert retry.superseded_commit_ids == [failed_id]
        assert retry.legacy_batches == []

    def test_changing_balances_after_failure_starts_a_new_attempt(self, store, reader):
        executor = RecordingExecutor(fail_at=CommitStage.MARK_ONBOARDING_COMPLETE)
        wizard = OnboardingWizard(store, reader, executor)
        walk_to_review(wizard)
        wizard.commit()
        failed_id = wizard.state.step4.commit_id

        wizard.update_step1(balances={"bulk": {"hardCider": "120"}})

        assert wizard.state.step4.commit_id is None
        assert wizard.state.step4.superseded_commit_ids == [failed_id]

    def test_retry_after_editing_batches_persists_only_the_new_batches(self, tmp_path, store, reader):
        repo = SnapshotFailsOnceRepository(tmp_path / "ttb.db", artifacts_dir=tmp_path / "artifacts")
        wizard = OnboardingWizard(store, reader, LocalCommitExecutor(repo))
        fill_step1(wizard)
        wizard.go_next()
        wizard.calculate()
        wizard.go_next()
        assert wizard.add_legacy_batch({"name": "Old cider", "volumeGallons": "50", "taxClass": "hardCider"}) == []
        wizard.go_next()
        wizard.set_confirmed(True)

        first = wizard.commit()
        assert first.failed_stage == CommitStage.SAVE_RECONCILIATION_SNAPSHOT
        assert [b["name"] for b in repo.list_legacy_batches()] == ["Old cider"]

        wizard.remove_legacy_batch(0)
        assert wizard.add_legacy_batch({"name": "Old wine", "volumeGallons": "30", "taxClass": "wineUnder16"}) == []
        second = wizard.commit()

        assert second.success is True
        assert second.commit_id != first.commit_id
        assert [b["name"] for b in repo.list_legacy_batches()] == ["Old wine"]
        snapshots = repo.list_reconciliation_snapshots()
        assert len(snapshots) == 1
        assert snapshots[0].summary.totals.legacy_batches == Decimal("30")
